"""Tileset streaming session.

Owns the tile tree, the selector, the scheduler, the loader and every
background task of one tileset. ``tick`` runs one synchronous frame
(traversal, eviction, admission) and must be called from inside the event
loop that runs the loads; fetches and decodes happen in tasks spawned from
there.

Hosts observe outcomes through two optional callbacks: ``on_tile_loaded(tile,
ok)`` after every content load task and ``on_request_failed(url, exc)`` for
every transport failure (content, nested document or subtree). Callback
errors are logged and never reach the frame loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Optional

from tilestream.config.models import TilesetConfig
from tilestream.content.decode_pool import DecodePool
from tilestream.content.state import Content
from tilestream.content.loader import ContentLoader
from tilestream.geometry.camera import CameraPose
from tilestream.geometry.geodesy import RegionToBounds, region_to_ecef_bounds
from tilestream.metrics import Metrics
from tilestream.tileset.document import TilesetDocument, TilesetParseError
from tilestream.tileset.implicit import SubtreeParseError
from tilestream.tileset.tile import Tile
from tilestream.tileset.tree import TileTree

from .interfaces import MetadataCache, SceneRenderer, SubtreeReader, Transport, TransportError
from .scheduler import DownloadScheduler
from .selector import FrameStats, LODSelector
from .transports import TransportSubtreeReader, transport_for
from .urls import UrlResolver

logger = logging.getLogger(__name__)


class TilesetSession:
    def __init__(
        self,
        config: TilesetConfig,
        renderer: SceneRenderer,
        *,
        transport: Optional[Transport] = None,
        cache: Optional[MetadataCache] = None,
        subtree_reader: Optional[SubtreeReader] = None,
        metrics: Optional[Metrics] = None,
        region_to_bounds: RegionToBounds = region_to_ecef_bounds,
        material_override: Any = None,
        on_tile_loaded: Optional[Callable[[Tile, bool], None]] = None,
        on_request_failed: Optional[Callable[[str, BaseException], None]] = None,
    ) -> None:
        if not config.tileset_url:
            raise ValueError("TilesetConfig.tileset_url is required")
        self.config = config
        self.renderer = renderer
        self.transport = transport or transport_for(config.tileset_url, config.request_timeout_s)
        self.subtree_reader = subtree_reader or TransportSubtreeReader(self.transport)
        self.cache = cache
        self.metrics = metrics or Metrics()
        self.urls = UrlResolver(config.tileset_url, config.api_key, config.query_key_name)
        self.headers: dict[str, str] = dict(config.request_headers)
        self.failed_keys: set[str] = set()
        self.subtree_busy = False
        self._tasks: set[asyncio.Task] = set()
        self.on_tile_loaded = on_tile_loaded
        self.on_request_failed = on_request_failed

        toggles = config.logging
        self.tree = TileTree(region_to_bounds)
        self.pool = DecodePool(config.scheduler.max_concurrent_parses)
        self.loader = ContentLoader(
            self.transport,
            renderer,
            resolve_url=self.content_url,
            tile_key=self.tree.tile_id,
            headers=self.headers,
            pool=self.pool,
            failed_keys=self.failed_keys,
            codec=config.codec,
            cache=cache,
            metrics=self.metrics,
            toggles=toggles,
            material_override=material_override,
            on_request_failed=self._request_failed,
        )
        self.scheduler = DownloadScheduler(self.tree, self._spawn_load, config.scheduler, self.metrics, toggles)
        self.selector = LODSelector(self.tree, self.scheduler, self, config.selection, self.metrics, toggles)

    # --- properties ----------------------------------------------------------------
    @property
    def root(self) -> Optional[Tile]:
        return self.tree.root

    @property
    def cache_hits(self) -> int:
        return self.loader.cache_hits

    @property
    def cache_stores(self) -> int:
        return self.loader.cache_stores

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def content_url(self, tile: Tile) -> str:
        return self.urls.resolve(tile.content_uri, tile.base_url)

    def add_header(self, name: str, value: str, replace: bool = True) -> None:
        if not replace and name in self.headers:
            return
        self.headers[name] = value

    def clear_headers(self) -> None:
        self.headers.clear()

    # --- task bookkeeping ----------------------------------------------------------
    def _schedule(self, coro: Awaitable[Any], label: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error("task '%s' failed", label, exc_info=exc)

        task.add_done_callback(_done)
        return task

    def _notify(self, callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("session callback %r failed", callback)

    def _request_failed(self, url: str, exc: BaseException) -> None:
        self._notify(self.on_request_failed, url, exc)

    def _spawn_load(self, tile: Tile, content: Content, ticket: int) -> None:
        self._schedule(self._load_tile(tile, content, ticket), f"load {tile.content_uri}")

    async def _load_tile(self, tile: Tile, content: Content, ticket: int) -> None:
        ok = await self.loader.load(tile, content, ticket)
        self._notify(self.on_tile_loaded, tile, ok)

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until every outstanding load and expansion finished."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            await asyncio.wait(set(self._tasks), timeout=remaining)
            if deadline is not None and time.monotonic() >= deadline:
                break

    # --- loading -------------------------------------------------------------------
    async def load(self) -> Tile:
        """Fetch the tile-set document and build the tree.

        Raises `TransportError` or `TilesetParseError`; nothing is attached
        on failure.
        """
        url = self.urls.tileset_url
        data = await self.transport.fetch(url, self.headers)
        document = TilesetDocument.from_json(data, url=url)
        document.check_required_extensions()
        if document.unsupported_extensions:
            logger.warning("tile-set uses unsupported extensions %s", list(document.unsupported_extensions))
        return self.tree.parse_root(document)

    def request_nested(self, tile: Tile) -> bool:
        if self.content_failed(tile):
            return False
        tile.is_expanding = True
        self._schedule(self._load_nested(tile), f"nested {tile.content_uri}")
        return True

    async def _load_nested(self, tile: Tile) -> None:
        url = self.content_url(tile)
        try:
            try:
                data = await self.transport.fetch(url, self.headers)
            except TransportError as exc:
                logger.warning("nested tile-set %s failed: %s", url, exc)
                self._request_failed(url, exc)
                return
            try:
                expanded = self.tree.expand_nested(tile, TilesetDocument.from_json(data, url=url))
            except TilesetParseError as exc:
                logger.warning("nested tile-set %s is malformed: %s", url, exc)
                expanded = False
            if not expanded:
                # malformed documents are not fetched again until refresh()
                self.failed_keys.add(self.tree.tile_id(tile))
        finally:
            tile.is_expanding = False

    def request_subtree(self, tile: Tile) -> bool:
        if self.subtree_busy or tile.implicit is None or self.content_failed(tile):
            return False
        self.subtree_busy = True
        tile.is_expanding = True
        self._schedule(self._load_subtree(tile), f"subtree {tile.content_uri}")
        return True

    async def _load_subtree(self, tile: Tile) -> None:
        url = self.content_url(tile)
        try:
            try:
                availability = await self.subtree_reader.read(url, tile.implicit, self.headers)
            except TransportError as exc:
                logger.warning("subtree %s failed: %s", url, exc)
                self._request_failed(url, exc)
                return
            except SubtreeParseError as exc:
                logger.warning("subtree %s is malformed: %s", url, exc)
                availability = None
            if availability is None or not self.tree.expand_implicit(tile, availability):
                self.failed_keys.add(self.tree.tile_id(tile))
        finally:
            tile.is_expanding = False
            self.subtree_busy = False

    def content_failed(self, tile: Tile) -> bool:
        return self.tree.tile_id(tile) in self.failed_keys

    def _release(self, tile: Tile) -> None:
        if tile.content is None:
            return
        handle = tile.content.dispose()
        if handle is not None:
            self.renderer.release(handle)

    def release_tile(self, tile: Tile) -> None:
        self.tree.release_content(tile, self._release)

    # --- frame loop -----------------------------------------------------------------
    def tick(self, camera: CameraPose) -> FrameStats:
        t0 = time.perf_counter()
        stats = self.selector.select(camera)
        self.scheduler.process(camera)
        self.metrics.observe_ms("tilestream_frame_ms", (time.perf_counter() - t0) * 1000.0)
        return stats

    async def run(self, cameras: Iterable[CameraPose], frame_interval_s: float = 0.0) -> list[FrameStats]:
        """Drive one frame per camera pose, yielding to the loads in between."""
        frames: list[FrameStats] = []
        for camera in cameras:
            frames.append(self.tick(camera))
            await asyncio.sleep(frame_interval_s)
        return frames

    async def _cancel_tasks(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def refresh(self) -> Tile:
        """Drop the whole hierarchy and load the tile-set again."""
        await self._cancel_tasks()
        self.scheduler.cancel_all()
        self.selector.reset()
        self.tree.dispose_all(self._release)
        self.failed_keys.clear()
        self.subtree_busy = False
        return await self.load()

    async def close(self) -> None:
        await self._cancel_tasks()
        self.scheduler.cancel_all()
        self.selector.reset()
        self.tree.dispose_all(self._release)
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()

    def snapshot(self) -> dict[str, object]:
        snap = self.metrics.snapshot()
        snap["session"] = {
            "tiles": len(self.tree),
            "visible": len(self.selector.visible),
            "pending": len(self.scheduler),
            "failed": len(self.failed_keys),
            "cache_hits": self.cache_hits,
            "cache_stores": self.cache_stores,
            "decode_pool": self.pool.stats(),
        }
        return snap


__all__ = ["TilesetSession"]
