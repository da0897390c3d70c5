from __future__ import annotations

import pytest

from tilestream.config.models import SchedulerSettings
from tilestream.content.state import Content, ContentLoadState, FailureKind
from tilestream.geometry import CameraPose
from tilestream.metrics import Metrics
from tilestream.runtime.scheduler import DownloadScheduler
from tilestream.tileset import TileTree, TilesetDocument


def _box(cx: float, cy: float, cz: float, half: float = 1.0) -> dict:
    return {"box": [cx, cy, cz, half, 0, 0, 0, half, 0, 0, 0, half]}


def _tree(centers: list[tuple[float, float, float]]) -> TileTree:
    tree = TileTree()
    children = [
        {"boundingVolume": _box(*c), "geometricError": 1, "content": {"uri": f"t{i}.glb"}}
        for i, c in enumerate(centers)
    ]
    tree.parse_root(
        TilesetDocument.from_json(
            {
                "asset": {"version": "1.0"},
                "root": {"boundingVolume": _box(0, 0, -100, 200), "geometricError": 50, "children": children},
            }
        )
    )
    for tile in tree.walk():
        if tile.content_uri:
            tile.content = Content(tile.content_uri)
    return tree


CAMERA = CameraPose(position=(0.0, 0.0, 0.0), viewport_width=1000, viewport_height=1000, fov_deg=90.0)


def _scheduler(tree: TileTree, **settings):
    spawned: list[tuple[str, int]] = []
    metrics = Metrics()

    def spawn(tile, content, ticket) -> None:
        spawned.append((tile.content_uri, ticket))

    scheduler = DownloadScheduler(tree, spawn, SchedulerSettings(**settings), metrics)
    return scheduler, spawned, metrics


def _children(tree: TileTree):
    return tree.children(tree.root)


def test_admits_up_to_limit_in_distance_order() -> None:
    tree = _tree([(0.0, 0.0, -(10.0 + 5.0 * i)) for i in reversed(range(10))])
    scheduler, spawned, metrics = _scheduler(tree)
    for tile in _children(tree):
        assert scheduler.enqueue(tile)

    admitted = scheduler.process(CAMERA)

    assert len(admitted) == 6
    # nearest first: t9 is at z=-10, t8 at z=-15, ...
    assert [uri for uri, _ in spawned] == ["t9.glb", "t8.glb", "t7.glb", "t6.glb", "t5.glb", "t4.glb"]
    assert all(t.content.state is ContentLoadState.DOWNLOADING for t in admitted)
    assert len(scheduler) == 4
    assert all(t.content.state is ContentLoadState.NOTLOADING for t in scheduler.pending)
    assert scheduler.active_downloads() == 6
    assert metrics.counter("tilestream_downloads_started") == 6
    assert metrics.gauge("tilestream_pending_tiles") == 4


def test_slots_free_up_as_downloads_leave_downloading() -> None:
    tree = _tree([(0.0, 0.0, -(10.0 + 5.0 * i)) for i in range(10)])
    scheduler, spawned, _ = _scheduler(tree)
    for tile in _children(tree):
        scheduler.enqueue(tile)
    admitted = scheduler.process(CAMERA)
    assert scheduler.process(CAMERA) == []

    for tile in admitted[:2]:
        tile.content.bytes_received(tile.content.generation)
    second = scheduler.process(CAMERA)
    assert [t.content_uri for t in second] == ["t6.glb", "t7.glb"]
    assert len(spawned) == 8


def test_enqueue_has_no_duplicates() -> None:
    tree = _tree([(0.0, 0.0, -10.0)])
    scheduler, _, _ = _scheduler(tree)
    (tile,) = _children(tree)
    assert scheduler.enqueue(tile)
    assert not scheduler.enqueue(tile)
    assert len(scheduler) == 1 and tile in scheduler


def test_entries_that_left_notloading_are_dropped() -> None:
    tree = _tree([(0.0, 0.0, -10.0), (0.0, 0.0, -20.0), (0.0, 0.0, -30.0)])
    scheduler, spawned, _ = _scheduler(tree)
    a, b, c = _children(tree)
    for tile in (a, b, c):
        scheduler.enqueue(tile)
    a.content.begin_load()
    b.content = None
    c.content.failure = FailureKind.TRANSPORT

    assert scheduler.process(CAMERA) == []
    assert len(scheduler) == 0
    assert spawned == []


def test_pause_and_resume() -> None:
    tree = _tree([(0.0, 0.0, -10.0)])
    scheduler, spawned, _ = _scheduler(tree)
    scheduler.enqueue(_children(tree)[0])
    scheduler.pause()
    assert scheduler.paused
    assert scheduler.process(CAMERA) == []
    assert len(scheduler) == 1
    scheduler.resume()
    assert len(scheduler.process(CAMERA)) == 1
    assert len(spawned) == 1


def test_compute_entry_score() -> None:
    tree = _tree([(0.0, 0.0, -11.0)])
    scheduler, _, _ = _scheduler(tree)
    (tile,) = _children(tree)
    tile.screen_space_error = 2.0

    entry = scheduler.compute_entry(tile, CAMERA)

    assert entry.distance == pytest.approx(10.0)
    # (2 * 100/10 + 10 * 1.0) boosted tenfold: no ancestor is loaded
    assert entry.score == pytest.approx(300.0)


def test_loaded_ancestor_removes_boost() -> None:
    tree = TileTree()
    tree.parse_root(
        TilesetDocument.from_json(
            {
                "asset": {"version": "1.0"},
                "root": {
                    "boundingVolume": _box(0, 0, -100, 200),
                    "geometricError": 50,
                    "content": {"uri": "root.glb"},
                    "children": [{"boundingVolume": _box(0, 0, -11), "geometricError": 1, "content": {"uri": "c.glb"}}],
                },
            }
        )
    )
    root = tree.root
    root.content = Content("root.glb")
    ticket = root.content.begin_load()
    root.content.bytes_received(ticket)
    root.content.publish(ticket, "scene", None)
    (child,) = tree.children(root)
    child.screen_space_error = 2.0
    scheduler, _, _ = _scheduler(tree)
    assert scheduler.compute_entry(child, CAMERA).score == pytest.approx(30.0)


def test_equal_distance_prefers_higher_error() -> None:
    tree = _tree([(10.0, 0.0, -20.0), (-10.0, 0.0, -20.0)])
    scheduler, spawned, _ = _scheduler(tree, max_simultaneous_downloads=1)
    left, right = _children(tree)
    left.screen_space_error = 1.0
    right.screen_space_error = 4.0
    scheduler.enqueue(left)
    scheduler.enqueue(right)
    scheduler.process(CAMERA)
    assert spawned == [("t1.glb", 1)]


def test_cancel_all_and_discard() -> None:
    tree = _tree([(0.0, 0.0, -10.0), (0.0, 0.0, -20.0)])
    scheduler, _, _ = _scheduler(tree)
    a, b = _children(tree)
    scheduler.enqueue(a)
    scheduler.enqueue(b)
    scheduler.discard(a)
    assert a not in scheduler and b in scheduler
    scheduler.cancel_all()
    assert len(scheduler) == 0
