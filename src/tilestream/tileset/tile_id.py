"""Deterministic tile identifiers used as metadata cache keys."""

from __future__ import annotations

from typing import Callable, Optional
from urllib.parse import urljoin, urlsplit

from tilestream.tileset.tile import Tile

_URI_UNSAFE = str.maketrans({c: "_" for c in "/\\:?&=."})


def sanitize_uri(uri: str) -> str:
    return "uri_" + uri.translate(_URI_UNSAFE)


def resolved_content_uri(tile: Tile) -> str:
    """``tile.content_uri`` joined onto the document that declared it,
    without the scheme, so equal relative URIs in different documents stay
    apart."""
    uri = urljoin(tile.base_url, tile.content_uri) if tile.base_url else tile.content_uri
    parts = urlsplit(uri)
    if not parts.scheme:
        return uri
    text = parts.netloc + parts.path
    return f"{text}?{parts.query}" if parts.query else text


def make_tile_id(tile: Tile, parent: Optional[Tile], parent_id: Callable[[Tile], str]) -> str:
    """Identifier by priority: resolved content URI, implicit level/x/y, box
    center plus geometric error, parent identifier plus sibling index, arena
    id."""
    if tile.content_uri:
        return sanitize_uri(resolved_content_uri(tile))

    if tile.level >= 0 and tile.x >= 0 and tile.y >= 0:
        return f"lxy_{tile.level}_{tile.x}_{tile.y}"

    center = tile.bounding_volume.center
    if center is not None and tile.geometric_error > 0:
        cx, cy, cz = (float(v) for v in center)
        text = f"bbox_{cx:.6f}_{cy:.6f}_{cz:.6f}_{tile.geometric_error:.2f}"
        return text.replace(".", "_").replace("-", "n")

    if parent is not None:
        return f"{parent_id(parent)}_child_{tile.sibling_index}"

    return f"tile_{tile.id:08X}"


__all__ = ["make_tile_id", "resolved_content_uri", "sanitize_uri"]
