from __future__ import annotations

import pytest

from tilestream.metrics import Metrics


def test_metrics_counters_and_gauges() -> None:
    m = Metrics({})
    m.inc("tilestream_downloads_started")
    m.inc("tilestream_downloads_started", 2)
    m.set("tilestream_pending_tiles", 4)
    snap = m.snapshot()
    assert snap["counters"]["tilestream_downloads_started"] == 3
    assert snap["gauges"]["tilestream_pending_tiles"] == 4.0
    assert m.counter("missing") == 0.0


def test_metrics_histogram_window_rolls() -> None:
    m = Metrics({"TILESTREAM_METRICS_WINDOW": "16"})
    for v in range(20):
        m.observe_ms("tilestream_decode_ms", float(v))
    stats = m.snapshot()["histograms"]["tilestream_decode_ms"]
    assert stats["count"] == 20
    assert stats["last_ms"] == 19.0
    # window holds 4..19
    assert stats["mean_ms"] == pytest.approx(sum(range(4, 20)) / 16)
    assert stats["min_ms"] == 0.0
    assert stats["max_ms"] == 19.0
