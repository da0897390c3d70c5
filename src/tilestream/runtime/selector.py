"""Per-frame level-of-detail traversal and eviction.

`LODSelector.select` walks the tile tree for one camera pose:

- tiles outside the view (camera beyond the in-view margin, or the bounds
  outside the frustum) are skipped along with their subtree;
- nested documents and implicit subtrees without children are handed to the
  host for expansion;
- a tile with enough detail (``sse < maximum_screen_space_error``) or no
  children is selected and its content requested; otherwise the traversal
  descends, and ADD tiles also keep their own content;
- previously visible tiles that were not selected this frame are evicted
  when they left the view or are superseded by loaded ancestors or
  descendants, and otherwise stay as placeholders.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Optional, Protocol

import numpy as np

from tilestream.config.logging_policy import LoggingToggles
from tilestream.config.models import SelectionSettings
from tilestream.content.state import Content, ContentLoadState
from tilestream.geometry.camera import CameraPose
from tilestream.metrics import Metrics
from tilestream.tileset.tile import ContentKind, RefinementMode, Tile
from tilestream.tileset.tree import TileTree

from .scheduler import DownloadScheduler

logger = logging.getLogger(__name__)


class TraversalHost(Protocol):
    """Session-side hooks the traversal calls into."""

    def request_nested(self, tile: Tile) -> bool:
        ...

    def request_subtree(self, tile: Tile) -> bool:
        ...

    def content_failed(self, tile: Tile) -> bool:
        ...

    def release_tile(self, tile: Tile) -> None:
        ...


@dataclass
class FrameStats:
    visited: int = 0
    culled: int = 0
    selected: int = 0
    requested: int = 0
    disposed: int = 0
    nested_requests: int = 0
    subtree_requests: int = 0
    visible: int = 0
    elapsed_ms: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


class LODSelector:
    def __init__(
        self,
        tree: TileTree,
        scheduler: DownloadScheduler,
        host: TraversalHost,
        settings: Optional[SelectionSettings] = None,
        metrics: Optional[Metrics] = None,
        toggles: Optional[LoggingToggles] = None,
    ) -> None:
        self.tree = tree
        self.scheduler = scheduler
        self.host = host
        self.settings = settings or SelectionSettings()
        self.metrics = metrics or Metrics()
        self.toggles = toggles or LoggingToggles()
        self.sse_component = 0.0
        self.visible: set[int] = set()

    # --- screen-space error ----------------------------------------------------
    def update_sse_component(self, camera: CameraPose) -> float:
        height = float(camera.viewport_height)
        cap = self.settings.max_screen_height_px
        if cap > 0:
            height = min(float(cap), height)
        if camera.orthographic:
            self.sse_component = height / float(camera.orthographic_size)
        else:
            coverage = 2.0 * math.tan(math.radians(camera.fov_deg) / 2.0)
            self.sse_component = height / coverage
        return self.sse_component

    def screen_space_error(self, tile: Tile, camera: CameraPose) -> float:
        bounds = self.tree.bounds_of(tile)
        if camera.orthographic:
            return self._orthographic_sse(bounds.extents, camera)
        distance = bounds.distance_to(camera.position)
        return self.sse_component * float(tile.geometric_error) / max(distance, self.settings.distance_epsilon)

    def _orthographic_sse(self, extents: np.ndarray, camera: CameraPose) -> float:
        clamp = self.settings.ortho_extent_clamp
        clamped = np.minimum(extents, clamp)
        _, right, up = camera.basis
        # ground footprint of the box along the view rectangle axes
        tx = 2.0 * float(np.abs(right) @ clamped)
        ty = 2.0 * float(np.abs(up) @ clamped)
        diagonal = camera.frustum_ground_diagonal(math.inf)
        ratio = math.hypot(tx, ty) / diagonal if diagonal > 0.0 else 0.0
        zoom = min(max(float(camera.orthographic_size) / 10.0, 0.1), 10.0)
        return max(self.sse_component * ratio * zoom * 2.0, 0.5)

    def is_in_view(self, tile: Tile, camera: CameraPose) -> bool:
        bounds = self.tree.bounds_of(tile)
        if not bounds.contains(camera.position, margin=self.settings.in_view_margin):
            return False
        return camera.intersects(bounds)

    # --- traversal -----------------------------------------------------------------
    def select(self, camera: CameraPose) -> FrameStats:
        t0 = time.perf_counter()
        stats = FrameStats()
        self.update_sse_component(camera)
        root = self.tree.root
        selected: set[int] = set()
        if root is not None:
            self._visit(root, camera, selected, stats)
        self._evict(camera, selected, stats)
        self.visible |= selected
        stats.visible = len(self.visible)
        stats.elapsed_ms = (time.perf_counter() - t0) * 1000.0

        self.metrics.set("tilestream_visible_tiles", stats.visible)
        if self.toggles.log_traversal:
            logger.info("traversal %s", stats.as_dict())
        return stats

    def _visit(self, tile: Tile, camera: CameraPose, selected: set[int], stats: FrameStats) -> None:
        stats.visited += 1
        if not self.is_in_view(tile, camera):
            stats.culled += 1
            return

        kind = tile.content_kind
        if kind is ContentKind.NESTED_TILESET and not tile.child_ids:
            if not tile.is_expanding and not tile.nested_tiles_loaded and self.host.request_nested(tile):
                stats.nested_requests += 1
            return
        if kind is ContentKind.SUBTREE and not tile.child_ids:
            if not tile.is_expanding and not tile.nested_tiles_loaded and self.host.request_subtree(tile):
                stats.subtree_requests += 1
            return

        tile.screen_space_error = self.screen_space_error(tile, camera)
        enough_detail = tile.screen_space_error < self.settings.maximum_screen_space_error
        if enough_detail or not tile.child_ids:
            if tile.has_renderable_content:
                self._select(tile, selected, stats)
            return

        for child in self.tree.children(tile):
            self._visit(child, camera, selected, stats)
        if tile.refine is RefinementMode.ADD and tile.has_renderable_content:
            self._select(tile, selected, stats)

    def _select(self, tile: Tile, selected: set[int], stats: FrameStats) -> None:
        selected.add(tile.id)
        stats.selected += 1
        if self.host.content_failed(tile):
            return
        if tile.content is None:
            tile.content = Content(tile.content_uri)
        content = tile.content
        if content.state is ContentLoadState.NOTLOADING and content.failure is None:
            if self.scheduler.enqueue(tile):
                stats.requested += 1

    # --- eviction --------------------------------------------------------------------
    def _evict(self, camera: CameraPose, selected: set[int], stats: FrameStats) -> None:
        max_sse = self.settings.maximum_screen_space_error
        for tile_id in list(self.visible):
            if tile_id in selected:
                continue
            if tile_id not in self.tree:
                self.visible.discard(tile_id)
                continue
            tile = self.tree.get(tile_id)
            if self._should_evict(tile, camera, max_sse):
                self.dispose(tile)
                stats.disposed += 1

    def _should_evict(self, tile: Tile, camera: CameraPose, max_sse: float) -> bool:
        if not self.is_in_view(tile, camera):
            return True
        tile.screen_space_error = self.screen_space_error(tile, camera)
        if tile.screen_space_error < max_sse:
            parent = self.tree.parent(tile)
            if parent is None:
                return False
            parent.screen_space_error = self.screen_space_error(parent, camera)
            return parent.screen_space_error < max_sse and self.tree.count_loaded_ancestors(tile) > 0
        if tile.refine is RefinementMode.ADD:
            return False
        return self.tree.count_loading_children(tile) == 0 and self.tree.count_loaded_children(tile) > 0

    def dispose(self, tile: Tile) -> None:
        """Drop ``tile``'s content and forget it as visible."""
        if self.toggles.log_traversal:
            logger.debug("evict %s", tile.content_uri)
        self.visible.discard(tile.id)
        self.scheduler.discard(tile)
        self.host.release_tile(tile)

    def reset(self) -> None:
        self.visible.clear()


__all__ = ["FrameStats", "LODSelector", "TraversalHost"]
