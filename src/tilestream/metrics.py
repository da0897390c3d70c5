"""
Download, decode and frame statistics for a tileset session.

Counters: ``tilestream_downloads_started``, ``tilestream_downloads_failed``,
``tilestream_decode_failed``, ``tilestream_tiles_loaded``,
``tilestream_cache_hits`` and ``tilestream_cache_stores``.
Gauges: ``tilestream_pending_tiles`` and ``tilestream_visible_tiles``.
Latency histograms, in milliseconds: ``tilestream_fetch_ms``,
``tilestream_decode_ms`` and ``tilestream_frame_ms``. Histograms keep a
rolling window (``TILESTREAM_METRICS_WINDOW``) for percentiles.

`TilesetSession.snapshot()` embeds `Metrics.snapshot()`.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Mapping, Optional

from tilestream.utils.env import env_int


@dataclass
class _Hist:
    window: int
    values: Deque[float] = field(default_factory=deque)
    last: float = 0.0
    total: float = 0.0
    count: int = 0
    min_v: float = float("inf")
    max_v: float = float("-inf")

    def observe(self, v: float) -> None:
        self.last = float(v)
        if len(self.values) == self.window:
            self.total -= self.values.popleft()
        self.values.append(self.last)
        self.total += self.last
        if self.last < self.min_v:
            self.min_v = self.last
        if self.last > self.max_v:
            self.max_v = self.last
        self.count += 1

    def stats(self) -> Dict[str, float]:
        n = len(self.values)
        if n == 0:
            return {
                "count": 0,
                "last_ms": 0.0,
                "mean_ms": 0.0,
                "p50_ms": 0.0,
                "p90_ms": 0.0,
                "p99_ms": 0.0,
                "min_ms": 0.0,
                "max_ms": 0.0,
            }
        arr: List[float] = sorted(self.values)

        def q(p: float) -> float:
            idx = min(max(int(round(p * (n - 1))), 0), n - 1)
            return arr[idx]

        return {
            "count": self.count,
            "last_ms": self.last,
            "mean_ms": self.total / n,
            "p50_ms": q(0.50),
            "p90_ms": q(0.90),
            "p99_ms": q(0.99),
            "min_ms": self.min_v,
            "max_ms": self.max_v,
        }


class Metrics:
    """Per-session metric store; `snapshot()` returns a JSON-ready dict."""

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        self._window = max(16, env_int("TILESTREAM_METRICS_WINDOW", 512, env))
        self._counters: Dict[str, float] = {}
        self._gauges: Dict[str, float] = {}
        self._hists: Dict[str, _Hist] = {}

    def inc(self, name: str, value: float = 1.0) -> None:
        self._counters[name] = self._counters.get(name, 0.0) + float(value)

    def set(self, name: str, value: float) -> None:
        self._gauges[name] = float(value)

    def observe_ms(self, name: str, value_ms: float) -> None:
        h = self._hists.get(name)
        if h is None:
            h = _Hist(window=self._window, values=deque(maxlen=self._window))
            self._hists[name] = h
        h.observe(float(value_ms))

    def counter(self, name: str) -> float:
        return self._counters.get(name, 0.0)

    def gauge(self, name: str) -> float:
        return self._gauges.get(name, 0.0)

    def snapshot(self) -> Dict[str, object]:
        counters = {k: int(v) if float(v).is_integer() else float(v) for k, v in self._counters.items()}
        return {
            "version": "v1",
            "ts": time.time(),
            "gauges": dict(self._gauges),
            "counters": counters,
            "histograms": {k: v.stats() for k, v in self._hists.items()},
        }


__all__ = ["Metrics"]
