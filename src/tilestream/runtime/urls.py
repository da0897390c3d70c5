"""Content URL resolution.

Relative content URIs resolve against the document that declared them
(the tileset URL by default). Query parameters are shared in both
directions: parameters of the tileset URL (API keys) are appended to every
content URL, and parameters first seen on a content URL (session ids handed
out by a nested document) are remembered and propagated from then on.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

logger = logging.getLogger(__name__)


def with_query_param(url: str, name: str, value: str) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query[name] = value
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def join_url(base: str, uri: str) -> str:
    """``uri`` relative to ``base``; ``/``-prefixed paths resolve against the
    origin for remote bases and against the base directory for local ones."""
    if uri.startswith("/") and not urlsplit(base).netloc:
        return urljoin(base, uri.lstrip("/"))
    return urljoin(base, uri)


class UrlResolver:
    def __init__(self, tileset_url: str, api_key: Optional[str] = None, query_key_name: str = "key") -> None:
        if api_key:
            tileset_url = with_query_param(tileset_url, query_key_name, api_key)
        self.tileset_url = tileset_url
        self.query: dict[str, str] = dict(parse_qsl(urlsplit(tileset_url).query, keep_blank_values=True))

    def resolve(self, uri: str, base_url: Optional[str] = None) -> str:
        full = join_url(base_url or self.tileset_url, uri)
        parts = urlsplit(full)
        params = dict(parse_qsl(parts.query, keep_blank_values=True))
        for key, value in params.items():
            if key not in self.query:
                logger.debug("propagating query parameter %r from %s", key, uri)
                self.query[key] = value
        for key, value in self.query.items():
            params.setdefault(key, value)
        if not params:
            return full
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))


__all__ = ["UrlResolver", "join_url", "with_query_param"]
