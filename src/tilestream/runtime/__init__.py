"""Runtime collaborators: transports, URL resolution and cache protocols.

The frame loop lives in `tilestream.runtime.session`; it is not imported
here so the content loader can depend on these interfaces without a cycle.
"""

from .interfaces import (
    CachedTileInfo,
    JsonDirectoryMetadataCache,
    MemoryMetadataCache,
    MetadataCache,
    SceneRenderer,
    SubtreeReader,
    Transport,
    TransportError,
)
from .transports import FileTransport, HttpTransport, TransportSubtreeReader, transport_for
from .urls import UrlResolver

__all__ = [
    "CachedTileInfo",
    "FileTransport",
    "HttpTransport",
    "JsonDirectoryMetadataCache",
    "MemoryMetadataCache",
    "MetadataCache",
    "SceneRenderer",
    "SubtreeReader",
    "Transport",
    "TransportError",
    "TransportSubtreeReader",
    "UrlResolver",
    "transport_for",
]
