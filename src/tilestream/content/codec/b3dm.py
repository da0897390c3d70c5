from __future__ import annotations

"""
Batched model (b3dm) reader.

Layout: a 28-byte header, then feature table JSON and binary, batch table
JSON and binary, then the embedded GLB. The embedded GLB length is taken
from its own header rather than from the outer byte length.
"""

import logging
import struct
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from .glb import BytesLike, DecodeError, _decode_json, header_issue

logger = logging.getLogger(__name__)

B3DM_MAGIC = b"b3dm"
B3DM_VERSION = 1
_HEADER = struct.Struct("<4s6I")
HEADER_SIZE = _HEADER.size  # 28


@dataclass
class B3dmPayload:
    glb: bytearray
    feature_table: dict[str, Any]
    feature_table_binary: bytes
    batch_table: Optional[dict[str, Any]]
    batch_table_binary: bytes
    rtc_center: Optional[tuple[float, float, float]] = None
    issues: list[str] = field(default_factory=list)


def feature_table_rtc_center(
    feature_table: Mapping[str, Any], binary: BytesLike
) -> Optional[tuple[float, float, float]]:
    """``RTC_CENTER`` as an inline triple or a float32[3] at ``byteOffset``."""
    value = feature_table.get("RTC_CENTER")
    if value is None:
        return None
    if isinstance(value, (list, tuple)) and len(value) == 3:
        try:
            return (float(value[0]), float(value[1]), float(value[2]))
        except (TypeError, ValueError):
            logger.debug("ignoring non-numeric RTC_CENTER %r", value)
            return None
    if isinstance(value, Mapping) and isinstance(value.get("byteOffset"), int):
        offset = value["byteOffset"]
        if offset < 0 or offset + 12 > len(binary):
            logger.debug("RTC_CENTER byteOffset %d outside feature table binary (%d bytes)", offset, len(binary))
            return None
        x, y, z = struct.unpack_from("<3f", binary, offset)
        return (float(x), float(y), float(z))
    logger.debug("ignoring malformed RTC_CENTER %r", value)
    return None


def read_b3dm(buf: BytesLike, strict: bool = False) -> B3dmPayload:
    mv = memoryview(buf).cast("B")
    n = len(mv)
    if n < HEADER_SIZE:
        raise DecodeError(f"b3dm too short: {n} bytes")
    magic, version, byte_length, ft_json_len, ft_bin_len, bt_json_len, bt_bin_len = _HEADER.unpack_from(mv, 0)
    if magic != B3DM_MAGIC:
        raise DecodeError(f"bad b3dm magic {bytes(magic)!r}")
    issues: list[str] = []
    if version != B3DM_VERSION:
        header_issue(f"unsupported b3dm version {version}", strict, issues)
    if byte_length != n:
        header_issue(f"b3dm length field {byte_length} does not match buffer length {n}", strict, issues)

    offset = HEADER_SIZE
    sections = []
    for length in (ft_json_len, ft_bin_len, bt_json_len, bt_bin_len):
        end = offset + length
        if end > n:
            raise DecodeError(f"b3dm table section runs past the buffer ({end} > {n})")
        sections.append(mv[offset:end])
        offset = end
    ft_json, ft_bin, bt_json, bt_bin = sections

    if offset + 12 > n:
        raise DecodeError(f"b3dm has {n - offset} bytes left for the embedded GLB header")
    (glb_length,) = struct.unpack_from("<I", mv, offset + 8)
    if glb_length < 12:
        raise DecodeError(f"embedded GLB length {glb_length} is too small")
    if offset + glb_length > n:
        raise DecodeError(f"embedded GLB runs past the buffer ({offset + glb_length} > {n})")

    feature_table = _decode_json(ft_json, "feature table") if ft_json_len else {}
    if not isinstance(feature_table, dict):
        raise DecodeError("feature table JSON is not an object")
    batch_table = _decode_json(bt_json, "batch table") if bt_json_len else None
    if batch_table is not None and not isinstance(batch_table, dict):
        raise DecodeError("batch table JSON is not an object")

    feature_binary = bytes(ft_bin)
    return B3dmPayload(
        glb=bytearray(mv[offset:offset + glb_length]),
        feature_table=feature_table,
        feature_table_binary=feature_binary,
        batch_table=batch_table,
        batch_table_binary=bytes(bt_bin),
        rtc_center=feature_table_rtc_center(feature_table, feature_binary),
        issues=issues,
    )


__all__ = ["B3DM_MAGIC", "B3dmPayload", "feature_table_rtc_center", "read_b3dm"]
