from __future__ import annotations

import pytest

from tilestream.config.models import SelectionSettings
from tilestream.content.state import Content, ContentLoadState
from tilestream.geometry import CameraPose
from tilestream.runtime.scheduler import DownloadScheduler
from tilestream.runtime.selector import LODSelector
from tilestream.tileset import TileTree, TilesetDocument


def _box(cx: float, cy: float, cz: float, half: float) -> dict:
    return {"box": [cx, cy, cz, half, 0, 0, 0, half, 0, 0, 0, half]}


class FakeHost:
    def __init__(self, tree: TileTree) -> None:
        self.tree = tree
        self.nested: list[str] = []
        self.subtrees: list[str] = []
        self.subtree_busy = False
        self.failed: set[str] = set()
        self.released: list[str] = []

    def request_nested(self, tile) -> bool:
        tile.is_expanding = True
        self.nested.append(tile.content_uri)
        return True

    def request_subtree(self, tile) -> bool:
        if self.subtree_busy:
            return False
        self.subtree_busy = True
        tile.is_expanding = True
        self.subtrees.append(tile.content_uri)
        return True

    def content_failed(self, tile) -> bool:
        return self.tree.tile_id(tile) in self.failed

    def release_tile(self, tile) -> None:
        self.released.append(tile.content_uri)
        self.tree.release_content(tile)


def _setup(root: dict, **settings):
    tree = TileTree()
    tree.parse_root(TilesetDocument.from_json({"asset": {"version": "1.0"}, "root": root}))
    host = FakeHost(tree)
    scheduler = DownloadScheduler(tree, lambda tile, content, ticket: None)
    selector = LODSelector(tree, scheduler, host, SelectionSettings(**settings))
    return tree, host, scheduler, selector


def _family(refine: str = "REPLACE") -> dict:
    # root 1000 units ahead of a camera at the origin; sse = 500 * 4 / 1000 = 2.0
    return {
        "boundingVolume": _box(0, 0, -1010, 10),
        "geometricError": 4,
        "refine": refine,
        "content": {"uri": "root.glb"},
        "children": [
            {"boundingVolume": _box(-5, 0, -1010, 5), "geometricError": 1, "content": {"uri": "left.glb"}},
            {"boundingVolume": _box(5, 0, -1010, 5), "geometricError": 1, "content": {"uri": "right.glb"}},
        ],
    }


def _camera(z: float = 0.0, **kwargs) -> CameraPose:
    kwargs.setdefault("viewport_width", 1000)
    kwargs.setdefault("viewport_height", 1000)
    kwargs.setdefault("fov_deg", 90.0)
    return CameraPose(position=(0.0, 0.0, z), **kwargs)


def _mark_loaded(tile) -> None:
    if tile.content is None:
        tile.content = Content(tile.content_uri)
    ticket = tile.content.begin_load()
    tile.content.bytes_received(ticket)
    tile.content.publish(ticket, "scene", None)


def test_sse_component_perspective_and_cap() -> None:
    _, _, _, selector = _setup(_family())
    assert selector.update_sse_component(_camera()) == pytest.approx(500.0)
    _, _, _, capped = _setup(_family(), max_screen_height_px=500)
    assert capped.update_sse_component(_camera()) == pytest.approx(250.0)


def test_enough_detail_selects_own_content() -> None:
    tree, _, scheduler, selector = _setup(_family(), maximum_screen_space_error=5.0)
    stats = selector.select(_camera())
    root = tree.root
    assert root.screen_space_error == pytest.approx(2.0)
    assert scheduler.pending == [root]
    assert root.content is not None and root.content.state is ContentLoadState.NOTLOADING
    assert selector.visible == {root.id}
    assert stats.selected == 1 and stats.requested == 1
    # children are not visited
    assert stats.visited == 1


def test_insufficient_detail_recurses_instead_of_loading() -> None:
    tree, _, scheduler, selector = _setup(_family(), maximum_screen_space_error=1.0)
    stats = selector.select(_camera())
    root = tree.root
    assert root.screen_space_error == pytest.approx(2.0)
    assert root.content is None
    assert [t.content_uri for t in scheduler.pending] == ["left.glb", "right.glb"]
    assert stats.visited == 3 and stats.selected == 2


def test_add_refinement_keeps_parent_content() -> None:
    tree, _, scheduler, selector = _setup(_family("ADD"), maximum_screen_space_error=1.0)
    selector.select(_camera())
    assert [t.content_uri for t in scheduler.pending] == ["left.glb", "right.glb", "root.glb"]


def test_tiles_behind_or_beyond_margin_are_culled() -> None:
    tree, _, scheduler, selector = _setup(_family())
    stats = selector.select(_camera(forward=(0.0, 0.0, 1.0)))
    assert stats.culled == 1 and len(scheduler) == 0

    stats = selector.select(_camera(z=9000.0))
    assert stats.culled == 1 and len(scheduler) == 0
    assert selector.visible == set()


def test_reselection_does_not_enqueue_twice() -> None:
    _, _, scheduler, selector = _setup(_family())
    selector.select(_camera())
    stats = selector.select(_camera())
    assert stats.requested == 0
    assert len(scheduler) == 1


def test_failed_content_is_not_requested() -> None:
    tree, host, scheduler, selector = _setup(_family())
    host.failed.add(tree.tile_id(tree.root))
    stats = selector.select(_camera())
    assert stats.selected == 1 and stats.requested == 0
    assert len(scheduler) == 0


def test_nested_document_requested_once() -> None:
    root = {
        "boundingVolume": _box(0, 0, -1010, 10),
        "geometricError": 100,
        "children": [{"boundingVolume": _box(0, 0, -1010, 10), "geometricError": 50, "content": {"uri": "sub/tileset.json"}}],
    }
    _, host, _, selector = _setup(root)
    assert selector.select(_camera()).nested_requests == 1
    assert selector.select(_camera()).nested_requests == 0
    assert host.nested == ["sub/tileset.json"]


def test_subtree_request_waits_for_free_slot() -> None:
    root = {
        "boundingVolume": _box(0, 0, -1010, 10),
        "geometricError": 100,
        "implicitTiling": {
            "subdivisionScheme": "QUADTREE",
            "availableLevels": 2,
            "subtreeLevels": 2,
            "subtrees": {"uri": "subtrees/{level}/{x}/{y}.subtree"},
        },
        "content": {"uri": "c/{level}/{x}/{y}.glb"},
    }
    _, host, _, selector = _setup(root)
    host.subtree_busy = True
    assert selector.select(_camera()).subtree_requests == 0
    host.subtree_busy = False
    assert selector.select(_camera()).subtree_requests == 1
    assert host.subtrees == ["subtrees/0/0/0.subtree"]


def test_out_of_view_tiles_are_evicted() -> None:
    tree, host, scheduler, selector = _setup(_family())
    selector.select(_camera())
    root = tree.root
    stats = selector.select(_camera(forward=(0.0, 0.0, 1.0)))
    assert stats.disposed == 1
    assert host.released == ["root.glb"]
    assert root.content is None
    assert selector.visible == set()
    assert len(scheduler) == 0


def test_replace_parent_stays_until_children_load() -> None:
    tree, host, _, selector = _setup(_family(), maximum_screen_space_error=5.0)
    root = tree.root
    selector.select(_camera())
    _mark_loaded(root)

    # closer: root needs refinement, children are requested
    near = _camera(z=-900.0)
    selector.select(near)
    left, right = tree.children(root)
    assert selector.visible == {root.id, left.id, right.id}
    assert root.content is not None

    _mark_loaded(left)
    selector.select(near)
    assert root.content is not None  # right is still loading

    _mark_loaded(right)
    stats = selector.select(near)
    assert stats.disposed == 1
    assert root.content is None
    assert selector.visible == {left.id, right.id}


def test_children_evicted_once_loaded_ancestor_supersedes() -> None:
    tree, host, _, selector = _setup(_family(), maximum_screen_space_error=5.0)
    root = tree.root
    near = _camera(z=-900.0)
    selector.select(near)
    left, right = tree.children(root)
    _mark_loaded(left)
    _mark_loaded(right)

    far = _camera()
    selector.select(far)
    # root requested but not loaded yet: children stay as placeholders
    assert left.content is not None and right.content is not None

    _mark_loaded(root)
    stats = selector.select(far)
    assert stats.disposed == 2
    assert sorted(host.released) == ["left.glb", "right.glb"]
    assert selector.visible == {root.id}


def test_orthographic_screen_space_error() -> None:
    root = {"boundingVolume": {"box": [0, 0, 0, 5, 0, 0, 0, 1, 0, 0, 0, 5]}, "geometricError": 10, "content": {"uri": "a.glb"}}
    tree, _, _, selector = _setup(root)
    camera = CameraPose(
        position=(0.0, 50.0, 0.0),
        forward=(0.0, -1.0, 0.0),
        up=(0.0, 0.0, -1.0),
        viewport_width=1000,
        viewport_height=1000,
        orthographic=True,
        orthographic_size=10.0,
    )
    assert selector.update_sse_component(camera) == pytest.approx(100.0)
    # footprint diagonal 10*sqrt(2) over view diagonal 20*sqrt(2)
    assert selector.screen_space_error(tree.root, camera) == pytest.approx(100.0)


def test_orthographic_error_has_floor() -> None:
    root = {"boundingVolume": _box(0, 0, 0, 1e-4), "geometricError": 10, "content": {"uri": "a.glb"}}
    tree, _, _, selector = _setup(root)
    camera = CameraPose(
        position=(0.0, 50.0, 0.0),
        forward=(0.0, -1.0, 0.0),
        up=(0.0, 0.0, -1.0),
        orthographic=True,
        orthographic_size=10.0,
    )
    selector.update_sse_component(camera)
    assert selector.screen_space_error(tree.root, camera) == pytest.approx(0.5)


def test_distance_floor_avoids_division_by_zero() -> None:
    tree, _, _, selector = _setup(_family())
    inside = _camera(z=-1010.0)
    selector.update_sse_component(inside)
    assert selector.screen_space_error(tree.root, inside) == pytest.approx(500.0 * 4 / 0.1)
