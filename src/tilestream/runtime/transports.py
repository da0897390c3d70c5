"""Reference transports: local files and HTTP through ``requests``."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import unquote, urlsplit

import requests

from tilestream.tileset.document import ImplicitTilingSettings
from tilestream.tileset.implicit import Subtree, parse_subtree

from .interfaces import Transport, TransportError

logger = logging.getLogger(__name__)


def _local_path(url: str) -> Path:
    parts = urlsplit(url)
    if parts.scheme == "file":
        return Path(unquote(parts.path))
    return Path(url)


class FileTransport:
    """Reads ``file://`` URLs and plain paths; headers are ignored."""

    async def fetch(self, url: str, headers: Mapping[str, str]) -> bytes:
        path = _local_path(url)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise TransportError(f"cannot read {path}: {exc}") from exc


class HttpTransport:
    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 30.0) -> None:
        self.session = session or requests.Session()
        self.timeout = float(timeout)

    def _get(self, url: str, headers: Mapping[str, str]) -> bytes:
        try:
            response = self.session.get(url, headers=dict(headers), timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        if response.status_code != 200:
            raise TransportError(f"GET {url} returned HTTP {response.status_code}")
        return response.content

    async def fetch(self, url: str, headers: Mapping[str, str]) -> bytes:
        return await asyncio.to_thread(self._get, url, headers)

    def close(self) -> None:
        self.session.close()


def transport_for(url: str, timeout: float = 30.0) -> Transport:
    scheme = urlsplit(url).scheme.lower()
    if scheme in ("http", "https"):
        return HttpTransport(timeout=timeout)
    return FileTransport()


class TransportSubtreeReader:
    """Fetches ``.subtree`` files through a transport and parses them."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    async def read(self, url: str, settings: ImplicitTilingSettings, headers: Mapping[str, str]) -> Subtree:
        data = await self.transport.fetch(url, headers)
        return parse_subtree(data, settings.subdivision_scheme, settings.subtree_levels)


__all__ = ["FileTransport", "HttpTransport", "TransportSubtreeReader", "transport_for"]
