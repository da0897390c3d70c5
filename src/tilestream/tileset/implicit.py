"""Implicit tiling availability.

Availability data for one subtree answers three questions using coordinates
relative to the subtree root: which tiles exist, which of them carry
content, and which subtrees hang below the subtree's last level. The binary
``.subtree`` container is decoded here; fetching it is the caller's job.
"""

from __future__ import annotations

import json
import logging
import struct
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from tilestream.geometry.bounding_volume import SubdivisionScheme

logger = logging.getLogger(__name__)

SUBTREE_MAGIC = b"subt"
_HEADER = struct.Struct("<4sIQQ")


class SubtreeParseError(ValueError):
    """Malformed subtree availability container."""


class SubtreeAvailability(Protocol):
    def tile_available(self, level: int, x: int, y: int, z: int = 0) -> bool: ...

    def content_available(self, level: int, x: int, y: int, z: int = 0) -> bool: ...

    def child_subtree_available(self, x: int, y: int, z: int = 0) -> bool: ...


def morton_index(scheme: SubdivisionScheme, x: int, y: int, z: int = 0) -> int:
    """Interleave grid coordinates, x in the lowest bit."""
    result = 0
    bit = 0
    dims = (x, y, z) if scheme is SubdivisionScheme.OCTREE else (x, y)
    width = len(dims)
    while any(v >> bit for v in dims):
        for axis, v in enumerate(dims):
            result |= ((v >> bit) & 1) << (bit * width + axis)
        bit += 1
    return result


def level_offset(scheme: SubdivisionScheme, level: int) -> int:
    """Index of the first tile of ``level`` in a level-ordered bitstream."""
    n = scheme.child_count
    return (n ** level - 1) // (n - 1)


@dataclass(frozen=True)
class AvailabilityBits:
    constant: Optional[bool] = None
    bits: bytes = b""

    @classmethod
    def from_indices(cls, indices: Iterable[int]) -> "AvailabilityBits":
        indices = list(indices)
        if not indices:
            return cls(constant=False)
        data = bytearray(max(indices) // 8 + 1)
        for i in indices:
            data[i >> 3] |= 1 << (i & 7)
        return cls(bits=bytes(data))

    def __getitem__(self, index: int) -> bool:
        if self.constant is not None:
            return self.constant
        byte = index >> 3
        if index < 0 or byte >= len(self.bits):
            return False
        return bool((self.bits[byte] >> (index & 7)) & 1)


@dataclass(frozen=True)
class Subtree:
    scheme: SubdivisionScheme
    subtree_levels: int
    tiles: AvailabilityBits
    content: AvailabilityBits
    child_subtrees: AvailabilityBits

    def _index(self, level: int, x: int, y: int, z: int) -> Optional[int]:
        if not 0 <= level < self.subtree_levels:
            return None
        side = 1 << level
        if not (0 <= x < side and 0 <= y < side and 0 <= z < side):
            return None
        return level_offset(self.scheme, level) + morton_index(self.scheme, x, y, z)

    def tile_available(self, level: int, x: int, y: int, z: int = 0) -> bool:
        index = self._index(level, x, y, z)
        return index is not None and self.tiles[index]

    def content_available(self, level: int, x: int, y: int, z: int = 0) -> bool:
        index = self._index(level, x, y, z)
        return index is not None and self.tiles[index] and self.content[index]

    def child_subtree_available(self, x: int, y: int, z: int = 0) -> bool:
        side = 1 << self.subtree_levels
        if not (0 <= x < side and 0 <= y < side and 0 <= z < side):
            return False
        return self.child_subtrees[morton_index(self.scheme, x, y, z)]


def _buffer_view(meta: Mapping[str, Any], binary: bytes, index: int) -> bytes:
    try:
        view = meta["bufferViews"][index]
        buffer = meta["buffers"][int(view.get("buffer", 0))]
        external = bool(buffer.get("uri"))
        start = int(view.get("byteOffset", 0))
        end = start + int(view["byteLength"])
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
        raise SubtreeParseError(f"bad bufferView {index}: {exc}") from exc
    if external:
        raise SubtreeParseError("external subtree buffers are not supported")
    if end > len(binary):
        raise SubtreeParseError(f"bufferView {index} runs past the binary chunk")
    return binary[start:end]


def _availability(meta: Mapping[str, Any], binary: bytes, node: Any, name: str) -> AvailabilityBits:
    if isinstance(node, Sequence) and not isinstance(node, (str, bytes)):
        # contentAvailability is a list, one entry per content
        node = node[0] if node else None
    if not isinstance(node, Mapping):
        if name == "contentAvailability":
            return AvailabilityBits(constant=False)
        raise SubtreeParseError(f"subtree is missing {name}")
    if "constant" in node:
        return AvailabilityBits(constant=bool(node["constant"]))
    index = node.get("bitstream", node.get("bufferView"))
    if index is None:
        raise SubtreeParseError(f"{name} has neither constant nor bitstream")
    try:
        index = int(index)
    except (TypeError, ValueError) as exc:
        raise SubtreeParseError(f"{name} bitstream index is invalid: {exc}") from exc
    return AvailabilityBits(bits=_buffer_view(meta, binary, index))


def parse_subtree(data: bytes, scheme: SubdivisionScheme, subtree_levels: int) -> Subtree:
    """Decode a binary ``.subtree`` container."""
    if len(data) < _HEADER.size:
        raise SubtreeParseError(f"subtree too short: {len(data)} bytes")
    magic, version, json_len, bin_len = _HEADER.unpack_from(data, 0)
    if magic != SUBTREE_MAGIC:
        raise SubtreeParseError(f"bad subtree magic {magic!r}")
    if version != 1:
        logger.warning("subtree version %d, expected 1", version)
    json_end = _HEADER.size + json_len
    if json_end + bin_len > len(data):
        raise SubtreeParseError("subtree chunks run past the buffer")
    try:
        meta = json.loads(bytes(data[_HEADER.size:json_end]).decode("utf-8").rstrip(" \x00"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SubtreeParseError(f"subtree JSON is invalid: {exc}") from exc
    if not isinstance(meta, Mapping):
        raise SubtreeParseError("subtree JSON must be an object")
    binary = bytes(data[json_end:json_end + bin_len])
    return Subtree(
        scheme=scheme,
        subtree_levels=subtree_levels,
        tiles=_availability(meta, binary, meta.get("tileAvailability"), "tileAvailability"),
        content=_availability(meta, binary, meta.get("contentAvailability"), "contentAvailability"),
        child_subtrees=_availability(meta, binary, meta.get("childSubtreeAvailability"), "childSubtreeAvailability"),
    )


__all__ = [
    "AvailabilityBits",
    "Subtree",
    "SubtreeAvailability",
    "SubtreeParseError",
    "level_offset",
    "morton_index",
    "parse_subtree",
]
