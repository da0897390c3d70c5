"""Fetch -> decode -> render handoff for one tile content.

`ContentLoader.load` is the body of every download task the scheduler
spawns. It never raises for an expected failure: transport errors, decode
errors and renderer rejections all come back as ``False`` with the content
returned to NOTLOADING. The metadata cache is advisory: a cache that raises
counts as a miss.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Mapping, MutableSet, Optional

from tilestream.config.logging_policy import LoggingToggles
from tilestream.config.models import CodecSettings
from tilestream.content.codec import DecodeError, decode_payload
from tilestream.content.decode_pool import DecodePool
from tilestream.content.state import Content, FailureKind, LoadCancelled
from tilestream.metrics import Metrics
from tilestream.runtime.interfaces import CachedTileInfo, TransportError

if TYPE_CHECKING:
    from tilestream.runtime.interfaces import MetadataCache, SceneRenderer, Transport
    from tilestream.tileset.tile import Tile

logger = logging.getLogger(__name__)


class ContentLoader:
    def __init__(
        self,
        transport: "Transport",
        renderer: "SceneRenderer",
        *,
        resolve_url: Callable[["Tile"], str],
        tile_key: Callable[["Tile"], str],
        headers: Mapping[str, str],
        pool: DecodePool,
        failed_keys: MutableSet[str],
        codec: Optional[CodecSettings] = None,
        cache: Optional["MetadataCache"] = None,
        metrics: Optional[Metrics] = None,
        toggles: Optional[LoggingToggles] = None,
        material_override: Any = None,
        on_request_failed: Optional[Callable[[str, BaseException], None]] = None,
    ) -> None:
        self.transport = transport
        self.renderer = renderer
        self._resolve_url = resolve_url
        self._tile_key = tile_key
        self.headers = headers
        self.pool = pool
        self.failed_keys = failed_keys
        self.codec = codec or CodecSettings()
        self.cache = cache
        self.metrics = metrics or Metrics()
        self.toggles = toggles or LoggingToggles()
        self.material_override = material_override
        self._on_request_failed = on_request_failed
        self.cache_hits = 0
        self.cache_stores = 0

    # --- metadata cache ------------------------------------------------------
    def _lookup_cache(self, key: str) -> None:
        if self.cache is None:
            return
        try:
            info = self.cache.load(key)
        except Exception:
            logger.debug("metadata cache lookup failed for %s", key, exc_info=True)
            return
        if info is None:
            return
        self.cache_hits += 1
        self.metrics.inc("tilestream_cache_hits")
        if self.toggles.log_cache:
            logger.info("cache hit for tile %s (geometricError=%.3f)", key, info.geometric_error)

    def _store_cache(self, key: str, tile: "Tile") -> None:
        if self.cache is None:
            return
        try:
            self.cache.store(key, CachedTileInfo(tile.geometric_error, tile.content_uri, time.time()))
        except Exception:
            logger.debug("metadata cache store failed for %s", key, exc_info=True)
            return
        self.cache_stores += 1
        self.metrics.inc("tilestream_cache_stores")
        if self.toggles.log_cache:
            logger.info("cache store for tile %s", key)

    def _transport_failed(self, url: str, exc: BaseException, content: Content, ticket: int) -> None:
        content.fail(ticket, FailureKind.TRANSPORT)
        self.metrics.inc("tilestream_downloads_failed")
        if self._on_request_failed is not None:
            self._on_request_failed(url, exc)

    def _record_decode_failure(self, key: str, content: Content, ticket: int, kind: FailureKind) -> None:
        content.fail(ticket, kind)
        self.failed_keys.add(key)
        self.metrics.inc("tilestream_decode_failed")

    # --- load task -----------------------------------------------------------------
    async def load(self, tile: "Tile", content: Content, ticket: int) -> bool:
        token = content.token
        url = self._resolve_url(tile)
        key = self._tile_key(tile)
        self._lookup_cache(key)

        t0 = time.perf_counter()
        try:
            data = await self.transport.fetch(url, self.headers)
        except TransportError as exc:
            logger.warning("download failed for %s: %s", url, exc)
            self._transport_failed(url, exc, content, ticket)
            return False
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("unexpected error downloading %s", url)
            self._transport_failed(url, exc, content, ticket)
            return False
        self.metrics.observe_ms("tilestream_fetch_ms", (time.perf_counter() - t0) * 1000.0)

        if token.cancelled or not content.bytes_received(ticket):
            return False

        t1 = time.perf_counter()
        try:
            async with self.pool.slot():
                token.raise_if_cancelled()
                decoded = await asyncio.to_thread(decode_payload, data, self.codec, url)
            token.raise_if_cancelled()
        except LoadCancelled:
            if self.toggles.log_codec:
                logger.debug("decode of %s abandoned after disposal", url)
            return False
        except DecodeError as exc:
            logger.warning("decode failed for %s: %s", url, exc)
            self._record_decode_failure(key, content, ticket, FailureKind.DECODE)
            return False
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("unexpected error decoding %s", url)
            self._record_decode_failure(key, content, ticket, FailureKind.DECODE)
            return False
        self.metrics.observe_ms("tilestream_decode_ms", (time.perf_counter() - t1) * 1000.0)
        if self.toggles.log_codec:
            logger.debug(
                "decoded %s as %s rtc=%s patch=%s issues=%s",
                url,
                decoded.format,
                decoded.rtc_center,
                decoded.patch.reason,
                decoded.issues,
            )

        try:
            handle = await self.renderer.instantiate(decoded, tile, decoded.rtc_center, self.material_override)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("renderer rejected %s", url)
            self._record_decode_failure(key, content, ticket, FailureKind.RENDER)
            return False
        if handle is None:
            logger.warning("renderer returned no scene for %s", url)
            self._record_decode_failure(key, content, ticket, FailureKind.RENDER)
            return False

        if token.cancelled or not content.publish(ticket, handle, decoded.rtc_center):
            # disposed while the renderer was busy; the scene is ours to drop
            self.renderer.release(handle)
            return False

        self._store_cache(key, tile)
        self.metrics.inc("tilestream_tiles_loaded")
        return True


__all__ = ["ContentLoader"]
