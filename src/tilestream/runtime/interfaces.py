"""Collaborator protocols and the reference metadata caches.

The streaming core never talks to a renderer, the network or a disk cache
directly; it goes through the small protocols below.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol, Union

if TYPE_CHECKING:
    from tilestream.content.codec import DecodedPayload
    from tilestream.tileset.document import ImplicitTilingSettings
    from tilestream.tileset.implicit import SubtreeAvailability
    from tilestream.tileset.tile import Tile

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Fetching a resource failed (network, status code, missing file)."""


class Transport(Protocol):
    async def fetch(self, url: str, headers: Mapping[str, str]) -> bytes:
        ...


class SceneRenderer(Protocol):
    async def instantiate(
        self,
        payload: "DecodedPayload",
        tile: "Tile",
        rtc_center: Optional[tuple[float, float, float]],
        material_override: Any = None,
    ) -> Any:
        """Return an opaque scene handle, or ``None`` / raise on failure."""
        ...

    def release(self, handle: Any) -> None:
        ...


class SubtreeReader(Protocol):
    async def read(
        self, url: str, settings: "ImplicitTilingSettings", headers: Mapping[str, str]
    ) -> "SubtreeAvailability":
        ...


@dataclass(frozen=True)
class CachedTileInfo:
    geometric_error: float
    content_uri: str
    cached_time: float = 0.0


class MetadataCache(Protocol):
    def load(self, tile_id: str) -> Optional[CachedTileInfo]:
        ...

    def store(self, tile_id: str, info: CachedTileInfo) -> None:
        ...


class MemoryMetadataCache:
    def __init__(self) -> None:
        self._entries: dict[str, CachedTileInfo] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, tile_id: object) -> bool:
        return tile_id in self._entries

    def load(self, tile_id: str) -> Optional[CachedTileInfo]:
        return self._entries.get(tile_id)

    def store(self, tile_id: str, info: CachedTileInfo) -> None:
        self._entries[tile_id] = info


class JsonDirectoryMetadataCache:
    """One ``{tile_id}.cache`` JSON file per tile under ``root``.

    The cache is advisory: read and write errors are logged and treated as
    misses.
    """

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def _path(self, tile_id: str) -> Path:
        return self.root / f"{tile_id}.cache"

    def load(self, tile_id: str) -> Optional[CachedTileInfo]:
        path = self._path(tile_id)
        if not path.is_file():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                raw = json.load(fh)
            return CachedTileInfo(
                geometric_error=float(raw["geometricError"]),
                content_uri=str(raw.get("contentUri", "")),
                cached_time=float(raw.get("cachedTime", 0.0)),
            )
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("failed to read metadata cache entry %s: %s", path, exc)
            return None

    def store(self, tile_id: str, info: CachedTileInfo) -> None:
        path = self._path(tile_id)
        payload = {
            "geometricError": info.geometric_error,
            "contentUri": info.content_uri,
            "cachedTime": info.cached_time or time.time(),
        }
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as fh:
                json.dump(payload, fh)
        except OSError as exc:
            logger.warning("failed to write metadata cache entry %s: %s", path, exc)


__all__ = [
    "CachedTileInfo",
    "JsonDirectoryMetadataCache",
    "MemoryMetadataCache",
    "MetadataCache",
    "SceneRenderer",
    "SubtreeReader",
    "Transport",
    "TransportError",
]
