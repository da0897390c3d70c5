"""Priority-ordered, concurrency-bounded download admission.

The selector enqueues tiles whose content it wants; every frame `process`
re-ranks the pending set against the current camera and starts loads while
fewer than ``max_simultaneous_downloads`` contents are DOWNLOADING.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

from tilestream.config.logging_policy import LoggingToggles
from tilestream.config.models import SchedulerSettings
from tilestream.content.state import Content, ContentLoadState
from tilestream.geometry.camera import CameraPose
from tilestream.metrics import Metrics
from tilestream.tileset.tile import Tile
from tilestream.tileset.tree import TileTree

logger = logging.getLogger(__name__)

SpawnFn = Callable[[Tile, Content, int], None]

_DISTANCE_FLOOR = 0.1
_MIN_DISTANCE_FACTOR = 0.01


@dataclass(frozen=True)
class ScheduleEntry:
    tile: Tile
    distance: float
    score: float
    screen_space_error: float

    def sort_key(self) -> tuple[float, float, float]:
        return (self.distance, -self.score, -self.screen_space_error)


class DownloadScheduler:
    def __init__(
        self,
        tree: TileTree,
        spawn: SpawnFn,
        settings: Optional[SchedulerSettings] = None,
        metrics: Optional[Metrics] = None,
        toggles: Optional[LoggingToggles] = None,
    ) -> None:
        self.tree = tree
        self._spawn = spawn
        self.settings = settings or SchedulerSettings()
        self.metrics = metrics or Metrics()
        self.toggles = toggles or LoggingToggles()
        self._pending: dict[int, Tile] = {}
        self._active: dict[int, Tile] = {}
        self._paused = False

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, tile: object) -> bool:
        return isinstance(tile, Tile) and tile.id in self._pending

    @property
    def pending(self) -> list[Tile]:
        return list(self._pending.values())

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def enqueue(self, tile: Tile) -> bool:
        if tile.id in self._pending:
            return False
        self._pending[tile.id] = tile
        return True

    def discard(self, tile: Tile) -> None:
        self._pending.pop(tile.id, None)
        self._active.pop(tile.id, None)

    def cancel_all(self) -> None:
        self._pending.clear()
        self._active.clear()

    def active_downloads(self) -> int:
        """Contents currently DOWNLOADING among admitted tiles."""
        for tile_id, tile in list(self._active.items()):
            content = tile.content
            if tile_id not in self.tree or content is None or content.state is not ContentLoadState.DOWNLOADING:
                del self._active[tile_id]
        return len(self._active)

    def compute_entry(self, tile: Tile, camera: CameraPose) -> ScheduleEntry:
        s = self.settings
        bounds = self.tree.bounds_of(tile)
        distance = bounds.distance_to(camera.position)
        sse = float(tile.screen_space_error)

        score = sse * max(_MIN_DISTANCE_FACTOR, s.distance_weight / max(distance, _DISTANCE_FLOOR))
        vx, vy = camera.viewport_point(bounds.center)
        offset = math.hypot(vx - 0.5, vy - 0.5)
        score += s.center_score * max(0.0, 1.0 - offset)
        if self.tree.count_loaded_ancestors(tile) < 1:
            score *= s.unloaded_ancestor_boost
        return ScheduleEntry(tile=tile, distance=distance, score=score, screen_space_error=sse)

    def _prune(self) -> None:
        for tile_id, tile in list(self._pending.items()):
            content = tile.content
            if (
                tile_id not in self.tree
                or content is None
                or content.state is not ContentLoadState.NOTLOADING
                or content.failure is not None
            ):
                del self._pending[tile_id]

    def process(self, camera: CameraPose) -> list[Tile]:
        """Rank the pending tiles and start as many loads as slots allow."""
        self._prune()
        admitted: list[Tile] = []
        if self._paused or not self._pending:
            self.metrics.set("tilestream_pending_tiles", len(self._pending))
            return admitted

        entries = sorted(
            (self.compute_entry(tile, camera) for tile in self._pending.values()),
            key=ScheduleEntry.sort_key,
        )
        available = self.settings.max_simultaneous_downloads - self.active_downloads()
        for entry in entries:
            if available <= 0:
                break
            tile = entry.tile
            content = tile.content
            if content is None:
                continue
            ticket = content.begin_load()
            if ticket is None:
                continue
            del self._pending[tile.id]
            self._active[tile.id] = tile
            available -= 1
            admitted.append(tile)
            self.metrics.inc("tilestream_downloads_started")
            if self.toggles.log_scheduler:
                logger.info(
                    "admit %s distance=%.1f score=%.2f sse=%.2f",
                    tile.content_uri,
                    entry.distance,
                    entry.score,
                    entry.screen_space_error,
                )
            self._spawn(tile, content, ticket)

        self.metrics.set("tilestream_pending_tiles", len(self._pending))
        return admitted


__all__ = ["DownloadScheduler", "ScheduleEntry", "SpawnFn"]
