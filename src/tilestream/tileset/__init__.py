"""Tile hierarchy: documents, tile records, the arena tree and implicit tiling."""

from .document import ImplicitTilingSettings, TilesetDocument, TilesetParseError
from .implicit import Subtree, SubtreeAvailability, SubtreeParseError, parse_subtree
from .tile import ContentKind, RefinementMode, Tile
from .tree import TileTree

__all__ = [
    "ContentKind",
    "ImplicitTilingSettings",
    "RefinementMode",
    "Subtree",
    "SubtreeAvailability",
    "SubtreeParseError",
    "Tile",
    "TileTree",
    "TilesetDocument",
    "TilesetParseError",
    "parse_subtree",
]
