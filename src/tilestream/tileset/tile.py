"""Tile records stored in the tile arena."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlsplit

import numpy as np

from tilestream.geometry.bounding_volume import BoundingVolume
from tilestream.geometry.bounds import Bounds
from tilestream.tileset.document import ImplicitTilingSettings

if TYPE_CHECKING:
    from tilestream.content.state import Content


class RefinementMode(enum.Enum):
    REPLACE = "REPLACE"
    ADD = "ADD"


class ContentKind(enum.Enum):
    NONE = "none"
    RENDERABLE = "renderable"
    NESTED_TILESET = "nested_tileset"
    SUBTREE = "subtree"

    @classmethod
    def classify(cls, uri: str) -> "ContentKind":
        if not uri:
            return cls.NONE
        path = urlsplit(uri).path.lower()
        if path.endswith(".json"):
            return cls.NESTED_TILESET
        if path.endswith(".subtree"):
            return cls.SUBTREE
        return cls.RENDERABLE


@dataclass(eq=False)
class Tile:
    """One node of the hierarchy.

    ``parent_id`` and ``child_ids`` are arena ids; the arena owns the
    records. ``x``/``y``/``z`` are implicit-tiling grid coordinates and stay
    ``-1`` for explicitly described tiles.
    """

    id: int
    parent_id: Optional[int]
    level: int
    bounding_volume: BoundingVolume
    world_volume: BoundingVolume
    geometric_error: float
    refine: RefinementMode
    transform: np.ndarray
    world_transform: np.ndarray
    content_uri: str = ""
    base_url: Optional[str] = None
    x: int = -1
    y: int = -1
    z: int = -1
    sibling_index: int = 0
    child_ids: list[int] = field(default_factory=list)
    implicit: Optional[ImplicitTilingSettings] = None
    content: Optional["Content"] = None
    screen_space_error: float = 0.0
    nested_tiles_loaded: bool = False
    is_expanding: bool = False
    tile_id: Optional[str] = None
    cached_bounds: Optional[Bounds] = field(default=None, repr=False)

    @property
    def content_kind(self) -> ContentKind:
        return ContentKind.classify(self.content_uri)

    @property
    def has_renderable_content(self) -> bool:
        return self.content_kind is ContentKind.RENDERABLE


__all__ = ["ContentKind", "RefinementMode", "Tile"]
