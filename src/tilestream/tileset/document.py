"""Tile-set JSON documents."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from tilestream.geometry.bounding_volume import SubdivisionScheme

IMPLICIT_TILING_EXTENSION = "3DTILES_implicit_tiling"

SUPPORTED_EXTENSIONS = frozenset(
    {
        IMPLICIT_TILING_EXTENSION,
        "3DTILES_content_gltf",
        "3DTILES_multiple_contents",
        "3DTILES_metadata",
    }
)


class TilesetParseError(ValueError):
    """Malformed tile-set document or tile node."""


@dataclass(frozen=True)
class ImplicitTilingSettings:
    subdivision_scheme: SubdivisionScheme
    available_levels: int
    subtree_levels: int
    subtrees_uri: str
    content_uri: Optional[str] = None

    @classmethod
    def from_json(cls, node: Mapping[str, Any], content_uri: Optional[str] = None) -> "ImplicitTilingSettings":
        try:
            scheme = SubdivisionScheme.parse(node.get("subdivisionScheme"))
            available = int(node.get("availableLevels", node.get("maximumLevel", -1) + 1))
            subtree_levels = int(node["subtreeLevels"])
            subtrees = node["subtrees"]
            subtrees_uri = subtrees["uri"] if isinstance(subtrees, Mapping) else str(subtrees)
        except (KeyError, TypeError, ValueError) as exc:
            raise TilesetParseError(f"invalid implicit tiling settings: {exc}") from exc
        if available < 1 or subtree_levels < 1:
            raise TilesetParseError("implicit tiling needs availableLevels and subtreeLevels >= 1")
        return cls(scheme, available, subtree_levels, str(subtrees_uri), content_uri)

    def subtree_uri(self, level: int, x: int, y: int, z: int = 0) -> str:
        return expand_template(self.subtrees_uri, level, x, y, z)

    def tile_content_uri(self, level: int, x: int, y: int, z: int = 0) -> str:
        if not self.content_uri:
            return ""
        return expand_template(self.content_uri, level, x, y, z)


def expand_template(template: str, level: int, x: int, y: int, z: int = 0) -> str:
    return (
        template.replace("{level}", str(level))
        .replace("{x}", str(x))
        .replace("{y}", str(y))
        .replace("{z}", str(z))
    )


def node_content_uri(node: Mapping[str, Any]) -> str:
    """Content reference of a tile node (``content.uri``, legacy
    ``content.url`` or the first entry of ``contents``)."""
    content = node.get("content")
    if content is None:
        contents = node.get("contents")
        if isinstance(contents, list) and contents:
            content = contents[0]
    if content is None:
        return ""
    if not isinstance(content, Mapping):
        raise TilesetParseError("tile content must be an object")
    uri = content.get("uri", content.get("url", ""))
    return str(uri or "")


def node_implicit_settings(node: Mapping[str, Any]) -> Optional[ImplicitTilingSettings]:
    raw = node.get("implicitTiling")
    if raw is None:
        extensions = node.get("extensions")
        if isinstance(extensions, Mapping):
            raw = extensions.get(IMPLICIT_TILING_EXTENSION)
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise TilesetParseError("implicitTiling must be an object")
    return ImplicitTilingSettings.from_json(raw, node_content_uri(node) or None)


@dataclass(frozen=True)
class TilesetDocument:
    root: Mapping[str, Any]
    version: str = ""
    geometric_error: Optional[float] = None
    extensions_used: tuple[str, ...] = ()
    extensions_required: tuple[str, ...] = ()
    url: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_json(cls, payload: Union[bytes, str, Mapping[str, Any]], url: Optional[str] = None) -> "TilesetDocument":
        if isinstance(payload, (bytes, bytearray, memoryview)):
            try:
                payload = bytes(payload).decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise TilesetParseError(f"tile-set document is not UTF-8: {exc}") from exc
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise TilesetParseError(f"tile-set document is not JSON: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise TilesetParseError("tile-set document must be a JSON object")
        root = payload.get("root")
        if not isinstance(root, Mapping):
            raise TilesetParseError("tile-set document has no root tile")
        asset = payload.get("asset") if isinstance(payload.get("asset"), Mapping) else {}
        ge = payload.get("geometricError")
        return cls(
            root=root,
            version=str(asset.get("version", "")),
            geometric_error=float(ge) if isinstance(ge, (int, float)) else None,
            extensions_used=tuple(str(e) for e in payload.get("extensionsUsed", ()) or ()),
            extensions_required=tuple(str(e) for e in payload.get("extensionsRequired", ()) or ()),
            url=url,
            raw=payload,
        )

    @property
    def unsupported_extensions(self) -> tuple[str, ...]:
        return tuple(e for e in self.extensions_used if e not in SUPPORTED_EXTENSIONS)

    def check_required_extensions(self) -> None:
        missing = [e for e in self.extensions_required if e not in SUPPORTED_EXTENSIONS]
        if missing:
            raise TilesetParseError(f"tile-set requires unsupported extensions: {missing}")


__all__ = [
    "IMPLICIT_TILING_EXTENSION",
    "ImplicitTilingSettings",
    "SUPPORTED_EXTENSIONS",
    "TilesetDocument",
    "TilesetParseError",
    "expand_template",
    "node_content_uri",
    "node_implicit_settings",
]
