from __future__ import annotations

import pytest

from tilestream.geometry import Bounds, CameraPose


@pytest.fixture
def camera() -> CameraPose:
    return CameraPose(position=(0.0, 0.0, 0.0), forward=(0.0, 0.0, -1.0), up=(0.0, 1.0, 0.0),
                      viewport_width=1000, viewport_height=1000, fov_deg=90.0)


def test_frustum_accepts_box_ahead(camera: CameraPose) -> None:
    assert camera.intersects(Bounds((-1.0, -1.0, -11.0), (1.0, 1.0, -9.0)))


def test_frustum_rejects_box_behind_and_aside(camera: CameraPose) -> None:
    assert not camera.intersects(Bounds((-1.0, -1.0, 9.0), (1.0, 1.0, 11.0)))
    # 90 degree fov: x > |z| is outside
    assert not camera.intersects(Bounds((30.0, -1.0, -11.0), (32.0, 1.0, -9.0)))


def test_frustum_accepts_box_containing_camera(camera: CameraPose) -> None:
    assert camera.intersects(Bounds((-5.0, -5.0, -5.0), (5.0, 5.0, 5.0)))


def test_viewport_point_center_and_edge(camera: CameraPose) -> None:
    assert camera.viewport_point((0.0, 0.0, -10.0)) == pytest.approx((0.5, 0.5))
    assert camera.viewport_point((10.0, 0.0, -10.0)) == pytest.approx((1.0, 0.5))


def test_orthographic_planes() -> None:
    cam = CameraPose(position=(0.0, 100.0, 0.0), forward=(0.0, -1.0, 0.0), up=(0.0, 0.0, -1.0),
                     viewport_width=200, viewport_height=100, orthographic=True, orthographic_size=10.0)
    assert cam.intersects(Bounds((15.0, -1.0, -1.0), (18.0, 1.0, 1.0)))
    assert not cam.intersects(Bounds((25.0, -1.0, -1.0), (28.0, 1.0, 1.0)))
    assert cam.viewport_point((20.0, 0.0, 0.0)) == pytest.approx((1.0, 0.5))


def test_degenerate_up_rejected() -> None:
    with pytest.raises(ValueError):
        CameraPose(position=(0, 0, 0), forward=(0, 1, 0), up=(0, 2, 0))
