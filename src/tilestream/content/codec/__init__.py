from __future__ import annotations

"""Tile payload decoding: b3dm unwrapping, GLB validation and patching."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from tilestream.config.models import CodecSettings

from .b3dm import B3DM_MAGIC, B3dmPayload, read_b3dm
from .glb import BytesLike, DecodeError, PatchResult, parse_glb, read_rtc_center, remove_required_extension

logger = logging.getLogger(__name__)

UNSUPPORTED_REQUIRED_EXTENSIONS = (
    "KHR_draco_mesh_compression",
    "EXT_meshopt_compression",
    "KHR_texture_basisu",
)
# Known 3D Tiles payloads this codec does not decode.
_FOREIGN_MAGICS = (b"i3dm", b"pnts", b"cmpt")


@dataclass
class DecodedPayload:
    format: str
    glb: bytearray
    document: dict[str, Any]
    rtc_center: Optional[tuple[float, float, float]]
    patch: PatchResult
    issues: list[str] = field(default_factory=list)
    batched: Optional[B3dmPayload] = None


def decode_payload(data: BytesLike, settings: Optional[CodecSettings] = None, uri: str = "") -> DecodedPayload:
    """Turn a downloaded tile payload into a GLB ready for a renderer.

    Raises `DecodeError` for anything that cannot be handed on.
    """
    settings = settings or CodecSettings()
    magic = bytes(data[:4])
    if magic in _FOREIGN_MAGICS:
        raise DecodeError(f"unsupported tile format {magic.decode('ascii')!r}")

    batched: Optional[B3dmPayload] = None
    issues: list[str] = []
    if magic == B3DM_MAGIC:
        batched = read_b3dm(data, strict=settings.strict_headers)
        issues.extend(batched.issues)
        glb = batched.glb
        fmt = "b3dm"
    else:
        glb = bytearray(data)
        fmt = "glb"

    container = parse_glb(glb, strict=settings.strict_headers)
    issues.extend(container.issues)

    rtc_center = batched.rtc_center if batched is not None else None
    if rtc_center is None:
        rtc_center = read_rtc_center(container.document)

    if settings.patch_required_extensions:
        patch = remove_required_extension(glb, container)
    else:
        patch = PatchResult(False, "disabled")

    required = container.document.get("extensionsRequired") or []
    blocked = [name for name in required if name in UNSUPPORTED_REQUIRED_EXTENSIONS]
    if blocked:
        raise DecodeError(f"payload requires unsupported extensions: {', '.join(blocked)}")

    if issues:
        logger.debug("decoded %s with header issues %s", uri or fmt, issues)
    return DecodedPayload(
        format=fmt,
        glb=glb,
        document=container.document,
        rtc_center=rtc_center,
        patch=patch,
        issues=issues,
        batched=batched,
    )


__all__ = [
    "DecodeError",
    "DecodedPayload",
    "PatchResult",
    "UNSUPPORTED_REQUIRED_EXTENSIONS",
    "decode_payload",
]
