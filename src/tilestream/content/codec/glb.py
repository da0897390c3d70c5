from __future__ import annotations

"""
Binary scene container (GLB) helpers.

Includes:
- header and chunk parsing with a lenient or strict header policy
- relocation offset lookup (``CESIUM_RTC``)
- in-place removal of an entry from ``extensionsRequired`` that keeps every
  byte offset of the container valid
"""

import json
import logging
import struct
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

BytesLike = Union[bytes, bytearray, memoryview]

logger = logging.getLogger(__name__)

GLB_MAGIC = 0x46546C67  # "glTF"
GLB_VERSION = 2
CHUNK_JSON = 0x4E4F534A
CHUNK_BIN = 0x004E4942
HEADER_SIZE = 12
CHUNK_HEADER_SIZE = 8
JSON_CHUNK_OFFSET = HEADER_SIZE + CHUNK_HEADER_SIZE

RTC_EXTENSION = "CESIUM_RTC"

_HEADER = struct.Struct("<III")
_CHUNK = struct.Struct("<II")


class DecodeError(ValueError):
    """Tile payload cannot be decoded."""


@dataclass(frozen=True)
class GlbHeader:
    magic: int
    version: int
    length: int


@dataclass
class GlbContainer:
    header: GlbHeader
    json_length: int
    document: dict[str, Any]
    bin_offset: Optional[int] = None
    bin_length: int = 0
    issues: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PatchResult:
    patched: bool
    reason: str
    document: Optional[dict[str, Any]] = None


def header_issue(message: str, strict: bool, issues: list[str]) -> None:
    """Record a recoverable header problem, or raise under a strict policy."""
    if strict:
        raise DecodeError(message)
    logger.warning("%s; continuing", message)
    issues.append(message)


def read_header(buf: BytesLike) -> GlbHeader:
    if len(buf) < HEADER_SIZE:
        raise DecodeError(f"GLB too short: {len(buf)} bytes")
    magic, version, length = _HEADER.unpack_from(buf, 0)
    return GlbHeader(magic, version, length)


def _decode_json(raw: BytesLike, what: str) -> Any:
    try:
        text = bytes(raw).decode("utf-8").rstrip(" \x00")
        return json.loads(text) if text else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"invalid {what} JSON: {exc}") from exc


def parse_glb(buf: BytesLike, strict: bool = False) -> GlbContainer:
    """Validate the header and locate the JSON and BIN chunks.

    A short buffer, a truncated chunk or a missing JSON chunk always raise
    `DecodeError`. Magic, version and length mismatches raise only when
    ``strict`` is set; otherwise they are logged and listed in ``issues``.
    """
    mv = memoryview(buf).cast("B")
    n = len(mv)
    header = read_header(mv)
    issues: list[str] = []
    if header.magic != GLB_MAGIC:
        header_issue(f"bad GLB magic 0x{header.magic:08X}", strict, issues)
    if header.version != GLB_VERSION:
        header_issue(f"unsupported GLB version {header.version}", strict, issues)
    if header.length != n:
        header_issue(f"GLB length field {header.length} does not match buffer length {n}", strict, issues)

    if n < JSON_CHUNK_OFFSET:
        raise DecodeError("GLB has no JSON chunk header")
    json_length, chunk_type = _CHUNK.unpack_from(mv, HEADER_SIZE)
    if chunk_type != CHUNK_JSON:
        raise DecodeError(f"first GLB chunk is 0x{chunk_type:08X}, expected JSON")
    json_end = JSON_CHUNK_OFFSET + json_length
    if json_end > n:
        raise DecodeError(f"GLB JSON chunk runs past the buffer ({json_end} > {n})")
    document = _decode_json(mv[JSON_CHUNK_OFFSET:json_end], "GLB")
    if not isinstance(document, dict):
        raise DecodeError("GLB JSON chunk is not an object")

    container = GlbContainer(header=header, json_length=json_length, document=document, issues=issues)
    offset = json_end
    while offset + CHUNK_HEADER_SIZE <= n:
        length, kind = _CHUNK.unpack_from(mv, offset)
        start = offset + CHUNK_HEADER_SIZE
        if start + length > n:
            raise DecodeError(f"GLB chunk 0x{kind:08X} runs past the buffer")
        if kind == CHUNK_BIN and container.bin_offset is None:
            container.bin_offset = start
            container.bin_length = length
        offset = start + length
    return container


def _center(value: Any) -> Optional[tuple[float, float, float]]:
    if isinstance(value, (list, tuple)) and len(value) == 3:
        try:
            return (float(value[0]), float(value[1]), float(value[2]))
        except (TypeError, ValueError):
            return None
    return None


def read_rtc_center(document: Mapping[str, Any]) -> Optional[tuple[float, float, float]]:
    """``extensions.CESIUM_RTC.center`` of a GLB document, if present."""
    extensions = document.get("extensions")
    if not isinstance(extensions, Mapping):
        return None
    rtc = extensions.get(RTC_EXTENSION)
    if not isinstance(rtc, Mapping):
        return None
    center = _center(rtc.get("center"))
    if center is None and "center" in rtc:
        logger.debug("ignoring malformed %s center %r", RTC_EXTENSION, rtc.get("center"))
    return center


def remove_required_extension(buf: bytearray, container: GlbContainer, name: str = RTC_EXTENSION) -> PatchResult:
    """Drop ``name`` from ``extensionsRequired`` inside ``buf``.

    The JSON is re-serialized compactly and written back at the JSON chunk
    offset, padded with spaces to the original chunk length; the chunk
    length field is left alone. When the new text does not fit nothing is
    written.
    """
    document = container.document
    required = document.get("extensionsRequired")
    if not isinstance(required, list) or name not in required:
        return PatchResult(False, "absent")

    patched = dict(document)
    remaining = [entry for entry in required if entry != name]
    if remaining:
        patched["extensionsRequired"] = remaining
    else:
        del patched["extensionsRequired"]

    text = json.dumps(patched, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    length = container.json_length
    if len(text) > length:
        logger.warning("cannot drop %s from extensionsRequired: %d bytes needed, %d available", name, len(text), length)
        return PatchResult(False, "no-room")
    end = JSON_CHUNK_OFFSET + len(text)
    buf[JSON_CHUNK_OFFSET:end] = text
    buf[end:JSON_CHUNK_OFFSET + length] = b" " * (length - len(text))
    container.document = patched
    return PatchResult(True, "removed", patched)


__all__ = [
    "BytesLike",
    "CHUNK_BIN",
    "CHUNK_JSON",
    "DecodeError",
    "GLB_MAGIC",
    "GlbContainer",
    "GlbHeader",
    "JSON_CHUNK_OFFSET",
    "PatchResult",
    "RTC_EXTENSION",
    "header_issue",
    "parse_glb",
    "read_header",
    "read_rtc_center",
    "remove_required_extension",
]
