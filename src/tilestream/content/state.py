"""Per-tile content load state machine.

``NOTLOADING -> DOWNLOADING -> PARSING -> DOWNLOADED`` with disposal
returning any state to ``NOTLOADING``. Load progress goes through
`Content._transition`, disposal being the only other writer. A transition
is accepted only for the ticket handed out by `Content.begin_load` while
that load's cancel token is live, so a result arriving after disposal
cannot touch the content.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ContentLoadState(enum.Enum):
    NOTLOADING = "notloading"
    DOWNLOADING = "downloading"
    PARSING = "parsing"
    DOWNLOADED = "downloaded"


class FailureKind(enum.Enum):
    TRANSPORT = "transport"
    DECODE = "decode"
    RENDER = "render"


class LoadCancelled(Exception):
    """Raised inside a load task once its content was disposed."""


class CancelToken:
    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise LoadCancelled()


_ALLOWED: dict[ContentLoadState, frozenset[ContentLoadState]] = {
    ContentLoadState.NOTLOADING: frozenset({ContentLoadState.DOWNLOADING}),
    ContentLoadState.DOWNLOADING: frozenset({ContentLoadState.PARSING, ContentLoadState.NOTLOADING}),
    ContentLoadState.PARSING: frozenset({ContentLoadState.DOWNLOADED, ContentLoadState.NOTLOADING}),
    ContentLoadState.DOWNLOADED: frozenset(),
}


class Content:
    """Loadable payload bound to one tile."""

    def __init__(self, uri: str) -> None:
        self.uri = uri
        self.state = ContentLoadState.NOTLOADING
        self.rtc_center: Optional[tuple[float, float, float]] = None
        self.handle: Any = None
        self.failure: Optional[FailureKind] = None
        self.generation = 0
        self.disposed = False
        self._token = CancelToken()

    def __repr__(self) -> str:
        return f"Content(uri={self.uri!r}, state={self.state.name}, generation={self.generation})"

    @property
    def token(self) -> CancelToken:
        return self._token

    @property
    def is_loaded(self) -> bool:
        return self.state is ContentLoadState.DOWNLOADED

    @property
    def in_flight(self) -> bool:
        return self.state in (ContentLoadState.DOWNLOADING, ContentLoadState.PARSING)

    def _transition(self, ticket: Optional[int], target: ContentLoadState) -> bool:
        if self.disposed or self._token.cancelled:
            return False
        if ticket is not None and ticket != self.generation:
            return False
        if target not in _ALLOWED[self.state]:
            logger.debug("rejected %s -> %s for %s", self.state.name, target.name, self.uri)
            return False
        self.state = target
        return True

    def begin_load(self) -> Optional[int]:
        """NOTLOADING -> DOWNLOADING; returns the load ticket, or ``None``
        when the content is not idle."""
        if self.state is not ContentLoadState.NOTLOADING or self.disposed:
            return None
        self.generation += 1
        self._token = CancelToken()
        if not self._transition(self.generation, ContentLoadState.DOWNLOADING):
            return None
        self.failure = None
        return self.generation

    def bytes_received(self, ticket: int) -> bool:
        if self.state is not ContentLoadState.DOWNLOADING:
            return False
        return self._transition(ticket, ContentLoadState.PARSING)

    def publish(self, ticket: int, handle: Any, rtc_center: Optional[tuple[float, float, float]]) -> bool:
        if self.state is not ContentLoadState.PARSING:
            return False
        if not self._transition(ticket, ContentLoadState.DOWNLOADED):
            return False
        self.handle = handle
        self.rtc_center = rtc_center
        return True

    def fail(self, ticket: int, kind: FailureKind) -> bool:
        if not self.in_flight:
            return False
        if not self._transition(ticket, ContentLoadState.NOTLOADING):
            return False
        self.failure = kind
        return True

    def dispose(self) -> Any:
        """Cancel any in-flight load and return the published handle (if
        any) for the caller to release. Further transitions are refused."""
        self._token.cancel()
        self.generation += 1
        handle = self.handle
        self.handle = None
        self.rtc_center = None
        self.state = ContentLoadState.NOTLOADING
        self.disposed = True
        return handle


__all__ = [
    "CancelToken",
    "Content",
    "ContentLoadState",
    "FailureKind",
    "LoadCancelled",
]
