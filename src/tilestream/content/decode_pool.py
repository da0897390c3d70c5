"""Bounded parse concurrency shared by every loader task of a session."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)


class DecodePool:
    """Caps how many payloads are decoded at once.

    The slot is an async context manager so every exit path (success,
    failure, cancellation) releases it exactly once.
    """

    def __init__(self, limit: int = 10) -> None:
        if limit < 1:
            raise ValueError(f"decode pool limit must be >= 1, got {limit}")
        self.limit = int(limit)
        self._sem: Optional[asyncio.Semaphore] = None
        self.active = 0
        self.acquired_total = 0
        self.released_total = 0

    def _semaphore(self) -> asyncio.Semaphore:
        # Created lazily so the pool binds to the loop that first uses it.
        if self._sem is None:
            self._sem = asyncio.Semaphore(self.limit)
        return self._sem

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        sem = self._semaphore()
        await sem.acquire()
        self.active += 1
        self.acquired_total += 1
        try:
            yield
        finally:
            self.active -= 1
            self.released_total += 1
            sem.release()

    def stats(self) -> dict[str, int]:
        return {
            "limit": self.limit,
            "active": self.active,
            "acquired_total": self.acquired_total,
            "released_total": self.released_total,
        }


__all__ = ["DecodePool"]
