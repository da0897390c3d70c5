"""Arena-backed tile hierarchy.

Tiles live in a dict keyed by integer id. A tile owns its ``child_ids``;
``parent_id`` is a plain back-reference. New subtrees (root document, nested
document, implicit subtree) are built into a staging dict first and only
merged into the arena once the whole subtree parsed, so a malformed document
never leaves half a subtree attached.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Any, Callable, Optional

from tilestream.content.state import ContentLoadState
from tilestream.geometry.bounding_volume import BoundingVolume, BoundingVolumeType
from tilestream.geometry.bounds import Bounds
from tilestream.geometry.geodesy import RegionToBounds, region_to_ecef_bounds
from tilestream.geometry.transform import IDENTITY, compose, from_column_major, is_identity
from tilestream.tileset.document import (
    ImplicitTilingSettings,
    TilesetDocument,
    TilesetParseError,
    node_content_uri,
    node_implicit_settings,
)
from tilestream.tileset.implicit import SubtreeAvailability
from tilestream.tileset.tile import RefinementMode, Tile
from tilestream.tileset.tile_id import make_tile_id

logger = logging.getLogger(__name__)

ReleaseFn = Callable[[Tile], None]


def _default_release(tile: Tile) -> None:
    if tile.content is not None:
        tile.content.dispose()


def _is_loaded(tile: Tile) -> bool:
    return tile.content is not None and tile.content.state is ContentLoadState.DOWNLOADED


class TileTree:
    def __init__(self, region_to_bounds: RegionToBounds = region_to_ecef_bounds) -> None:
        self._tiles: dict[int, Tile] = {}
        self._next_id = 0
        self._region_to_bounds = region_to_bounds
        self.root_id: Optional[int] = None

    # --- access ------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._tiles)

    def __contains__(self, tile_id: object) -> bool:
        return tile_id in self._tiles

    def get(self, tile_id: int) -> Tile:
        return self._tiles[tile_id]

    @property
    def root(self) -> Optional[Tile]:
        return None if self.root_id is None else self._tiles.get(self.root_id)

    def parent(self, tile: Tile) -> Optional[Tile]:
        return None if tile.parent_id is None else self._tiles.get(tile.parent_id)

    def children(self, tile: Tile) -> list[Tile]:
        return [self._tiles[cid] for cid in tile.child_ids]

    def ancestors(self, tile: Tile) -> Iterator[Tile]:
        current = self.parent(tile)
        while current is not None:
            yield current
            current = self.parent(current)

    def walk(self, tile: Optional[Tile] = None) -> Iterator[Tile]:
        """Pre-order iteration from ``tile`` (default: root)."""
        start = tile if tile is not None else self.root
        if start is None:
            return
        stack = [start]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(self._tiles[cid] for cid in reversed(current.child_ids))

    def depth(self, tile: Tile) -> int:
        return sum(1 for _ in self.ancestors(tile))

    def nesting_depth(self, tile: Tile) -> int:
        """Levels of descendants currently attached below ``tile``."""
        deepest = 0
        for child in self.children(tile):
            deepest = max(deepest, self.nesting_depth(child) + 1)
        return deepest

    def bounds_of(self, tile: Tile) -> Bounds:
        if tile.cached_bounds is None:
            tile.cached_bounds = tile.world_volume.to_bounds(self._region_to_bounds)
        return tile.cached_bounds

    def tile_id(self, tile: Tile) -> str:
        if tile.tile_id is None:
            tile.tile_id = make_tile_id(tile, self.parent(tile), self.tile_id)
        return tile.tile_id

    # --- construction --------------------------------------------------------
    def _allocate(self) -> int:
        tile_id = self._next_id
        self._next_id += 1
        return tile_id

    def _build(
        self,
        node: Any,
        parent: Optional[Tile],
        level: int,
        sibling_index: int,
        staged: dict[int, Tile],
        base_url: Optional[str],
        default_error: Optional[float] = None,
    ) -> Tile:
        if not isinstance(node, Mapping):
            raise TilesetParseError("tile node must be an object")

        try:
            volume = BoundingVolume.from_json(node.get("boundingVolume"))
        except ValueError as exc:
            raise TilesetParseError(f"tile at level {level}: {exc}") from exc

        raw_error = node.get("geometricError", default_error)
        if raw_error is None and parent is not None:
            raw_error = parent.geometric_error
        try:
            geometric_error = float(raw_error)
        except (TypeError, ValueError):
            raise TilesetParseError(f"tile at level {level} has no usable geometricError") from None
        if parent is not None and geometric_error > parent.geometric_error:
            logger.warning(
                "tile at level %d declares geometricError %.3f above its parent's %.3f; clamping",
                level,
                geometric_error,
                parent.geometric_error,
            )
            geometric_error = parent.geometric_error

        raw_refine = node.get("refine")
        if raw_refine is None:
            refine = parent.refine if parent is not None else RefinementMode.REPLACE
        else:
            try:
                refine = RefinementMode(str(raw_refine).upper())
            except ValueError:
                raise TilesetParseError(f"unknown refine mode {raw_refine!r}") from None

        try:
            local = from_column_major(node.get("transform"))
        except (TypeError, ValueError) as exc:
            raise TilesetParseError(f"bad transform: {exc}") from exc
        parent_world = parent.world_transform if parent is not None else IDENTITY
        world = compose(parent_world, local)
        world_volume = volume if is_identity(world) else volume.transform_by(world)

        implicit = node_implicit_settings(node)
        tile = Tile(
            id=self._allocate(),
            parent_id=parent.id if parent is not None else None,
            level=level,
            bounding_volume=volume,
            world_volume=world_volume,
            geometric_error=geometric_error,
            refine=refine,
            transform=local,
            world_transform=world,
            base_url=base_url,
            sibling_index=sibling_index,
        )
        staged[tile.id] = tile

        if implicit is not None:
            if volume.kind is BoundingVolumeType.SPHERE:
                raise TilesetParseError("implicit tiling needs a box or region bounding volume")
            # the node becomes the placeholder of the root subtree
            tile.implicit = implicit
            tile.level, tile.x, tile.y = 0, 0, 0
            tile.z = 0 if implicit.subdivision_scheme.child_count == 8 else -1
            tile.content_uri = implicit.subtree_uri(0, 0, 0, 0)
            return tile

        tile.content_uri = node_content_uri(node)
        children = node.get("children") or []
        if not isinstance(children, list):
            raise TilesetParseError("tile children must be a list")
        for index, child_node in enumerate(children):
            child = self._build(child_node, tile, level + 1, index, staged, base_url)
            tile.child_ids.append(child.id)
        return tile

    def _commit(self, staged: Mapping[int, Tile]) -> None:
        self._tiles.update(staged)

    def parse_root(self, document: TilesetDocument) -> Tile:
        """Build the hierarchy of ``document`` and make it the tree root.

        An existing hierarchy is released first. Raises `TilesetParseError`
        when the document cannot be used at all.
        """
        if self.root_id is not None:
            self.dispose_all()
        staged: dict[int, Tile] = {}
        root = self._build(document.root, None, 0, 0, staged, document.url, document.geometric_error)
        self._commit(staged)
        self.root_id = root.id
        logger.info("tile-set parsed: %d tiles, root geometricError %.3f", len(staged), root.geometric_error)
        return root

    def expand_nested(self, tile: Tile, document: TilesetDocument) -> bool:
        """Attach the root of a nested tile-set document below ``tile``.

        Idempotent: a tile whose nested document is already attached is left
        untouched. Returns False (and attaches nothing) on a malformed
        document.
        """
        if tile.nested_tiles_loaded:
            return True
        if tile.id not in self._tiles:
            logger.debug("nested document for detached tile %d ignored", tile.id)
            return False
        staged: dict[int, Tile] = {}
        try:
            child = self._build(document.root, tile, tile.level + 1, len(tile.child_ids), staged, document.url)
        except TilesetParseError as exc:
            logger.warning("nested tile-set %s rejected: %s", tile.content_uri, exc)
            return False
        self._commit(staged)
        tile.child_ids.append(child.id)
        tile.nested_tiles_loaded = True
        logger.debug("nested tile-set %s attached: %d tiles", tile.content_uri, len(staged))
        return True

    def expand_implicit(self, tile: Tile, availability: SubtreeAvailability) -> bool:
        """Create the tiles of the subtree rooted at placeholder ``tile``.

        The subtree root becomes the single child of the placeholder; tiles
        in the subtree's last level get placeholder children for each
        available child subtree.
        """
        settings = tile.implicit
        if settings is None:
            logger.warning("tile %d is not an implicit subtree root", tile.id)
            return False
        if tile.nested_tiles_loaded:
            return True
        if tile.id not in self._tiles:
            return False
        staged: dict[int, Tile] = {}
        try:
            if availability.tile_available(0, 0, 0, 0):
                root = self._build_implicit(
                    tile, settings, availability, staged, 0, 0, 0, 0, tile, tile.bounding_volume, tile.geometric_error, 0
                )
                tile.child_ids.append(root.id)
        except (ValueError, IndexError) as exc:
            logger.warning("subtree %s rejected: %s", tile.content_uri, exc)
            return False
        self._commit(staged)
        tile.nested_tiles_loaded = True
        logger.debug("subtree %s expanded: %d tiles", tile.content_uri, len(staged))
        return True

    def _build_implicit(
        self,
        anchor: Tile,
        settings: ImplicitTilingSettings,
        availability: SubtreeAvailability,
        staged: dict[int, Tile],
        rel_level: int,
        rx: int,
        ry: int,
        rz: int,
        parent: Tile,
        volume: BoundingVolume,
        geometric_error: float,
        sibling_index: int,
    ) -> Tile:
        octree = settings.subdivision_scheme.child_count == 8
        level = anchor.level + rel_level
        x = (anchor.x << rel_level) + rx
        y = (anchor.y << rel_level) + ry
        z = ((anchor.z << rel_level) + rz) if octree else -1
        content_uri = ""
        if availability.content_available(rel_level, rx, ry, rz):
            content_uri = settings.tile_content_uri(level, x, y, max(z, 0))
        world = anchor.world_transform
        tile = Tile(
            id=self._allocate(),
            parent_id=parent.id,
            level=level,
            bounding_volume=volume,
            world_volume=volume if is_identity(world) else volume.transform_by(world),
            geometric_error=geometric_error,
            refine=anchor.refine,
            transform=IDENTITY.copy(),
            world_transform=world,
            content_uri=content_uri,
            base_url=anchor.base_url,
            x=x,
            y=y,
            z=z,
            sibling_index=sibling_index,
            implicit=settings,
        )
        staged[tile.id] = tile

        if level + 1 >= settings.available_levels:
            return tile
        child_error = geometric_error / 2.0
        last_level = rel_level + 1 >= settings.subtree_levels
        for index in range(settings.subdivision_scheme.child_count):
            cx = rx * 2 + (index & 1)
            cy = ry * 2 + ((index >> 1) & 1)
            cz = rz * 2 + ((index >> 2) & 1) if octree else 0
            child_volume = volume.child_volume(index, settings.subdivision_scheme)
            if last_level:
                if not availability.child_subtree_available(cx, cy, cz):
                    continue
                child = self._subtree_placeholder(anchor, settings, tile, level + 1, cx, cy, cz, child_volume, child_error, index)
            else:
                if not availability.tile_available(rel_level + 1, cx, cy, cz):
                    continue
                child = self._build_implicit(
                    anchor, settings, availability, staged, rel_level + 1, cx, cy, cz, tile, child_volume, child_error, index
                )
            staged[child.id] = child
            tile.child_ids.append(child.id)
        return tile

    def _subtree_placeholder(
        self,
        anchor: Tile,
        settings: ImplicitTilingSettings,
        parent: Tile,
        level: int,
        rx: int,
        ry: int,
        rz: int,
        volume: BoundingVolume,
        geometric_error: float,
        sibling_index: int,
    ) -> Tile:
        octree = settings.subdivision_scheme.child_count == 8
        shift = settings.subtree_levels
        x = (anchor.x << shift) + rx
        y = (anchor.y << shift) + ry
        z = ((anchor.z << shift) + rz) if octree else -1
        world = anchor.world_transform
        return Tile(
            id=self._allocate(),
            parent_id=parent.id,
            level=level,
            bounding_volume=volume,
            world_volume=volume if is_identity(world) else volume.transform_by(world),
            geometric_error=geometric_error,
            refine=anchor.refine,
            transform=IDENTITY.copy(),
            world_transform=world,
            content_uri=settings.subtree_uri(level, x, y, max(z, 0)),
            base_url=anchor.base_url,
            x=x,
            y=y,
            z=z,
            sibling_index=sibling_index,
            implicit=settings,
        )

    # --- disposal --------------------------------------------------------------
    def release_content(self, tile: Tile, release: ReleaseFn = _default_release) -> None:
        if tile.content is None:
            return
        release(tile)
        tile.content = None

    def _drop(self, tile: Tile, release: ReleaseFn) -> int:
        dropped = 0
        for child in self.children(tile):
            dropped += self._drop(child, release)
        self.release_content(tile, release)
        tile.child_ids.clear()
        del self._tiles[tile.id]
        return dropped + 1

    def dispose_subtree(self, tile: Tile, release: ReleaseFn = _default_release) -> int:
        """Release every content below and at ``tile`` (children first) and
        detach the descendants. Returns the number of tiles removed."""
        dropped = 0
        for child in self.children(tile):
            dropped += self._drop(child, release)
        tile.child_ids.clear()
        tile.nested_tiles_loaded = False
        tile.is_expanding = False
        self.release_content(tile, release)
        return dropped

    def dispose_all(self, release: ReleaseFn = _default_release) -> int:
        root = self.root
        if root is None:
            return 0
        dropped = self._drop(root, release)
        self.root_id = None
        return dropped

    # --- ancestry ---------------------------------------------------------------
    def count_loading_children(self, tile: Tile) -> int:
        """Direct renderable children that were requested but are not shown."""
        if tile.refine is RefinementMode.ADD:
            return 0
        return sum(
            1
            for child in self.children(tile)
            if child.content is not None and child.has_renderable_content and not _is_loaded(child)
        )

    def count_loaded_children(self, tile: Tile) -> int:
        """Loaded descendants below a REPLACE tile."""
        if tile.refine is RefinementMode.ADD:
            return 0
        result = 0
        for child in self.children(tile):
            if child.has_renderable_content and _is_loaded(child):
                result += 1
            result += self.count_loaded_children(child)
        return result

    def count_loaded_ancestors(self, tile: Tile) -> int:
        """Loaded ancestors; ADD tiles always report one, since their parent
        stays on screen."""
        if tile.refine is RefinementMode.ADD:
            return 1
        parent = self.parent(tile)
        if parent is None:
            return 0
        own = 1 if parent.has_renderable_content and _is_loaded(parent) else 0
        return own + self.count_loaded_ancestors(parent)

    def renderable_ancestor_exists(self, tile: Tile) -> bool:
        return any(a.has_renderable_content for a in self.ancestors(tile))


__all__ = ["ReleaseFn", "TileTree"]
