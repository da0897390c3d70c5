"""Camera pose and view-volume tests used by tile selection."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from tilestream.geometry.bounds import Bounds

_EPS = 1e-9


def _unit(v: Sequence[float]) -> np.ndarray:
    arr = np.asarray(v, dtype=np.float64)
    n = float(np.linalg.norm(arr))
    if n < _EPS:
        raise ValueError("zero-length direction")
    return arr / n


@dataclass(frozen=True)
class CameraPose:
    """Camera snapshot for one frame.

    ``fov_deg`` is the vertical field of view. ``orthographic_size`` is the
    half-height of the view volume in world units, used when
    ``orthographic`` is set.
    """

    position: tuple[float, float, float]
    forward: tuple[float, float, float] = (0.0, 0.0, -1.0)
    up: tuple[float, float, float] = (0.0, 1.0, 0.0)
    viewport_width: int = 1920
    viewport_height: int = 1080
    fov_deg: float = 60.0
    orthographic: bool = False
    orthographic_size: float = 5.0
    near: float = 0.1
    far: float = 1.0e7
    _basis: tuple[np.ndarray, np.ndarray, np.ndarray] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.viewport_width <= 0 or self.viewport_height <= 0:
            raise ValueError("viewport dimensions must be positive")
        f = _unit(self.forward)
        r = np.cross(f, np.asarray(self.up, dtype=np.float64))
        if float(np.linalg.norm(r)) < _EPS:
            raise ValueError("camera up is parallel to forward")
        r = r / np.linalg.norm(r)
        u = np.cross(r, f)
        object.__setattr__(self, "_basis", (f, r, u))

    @property
    def aspect(self) -> float:
        return float(self.viewport_width) / float(self.viewport_height)

    @property
    def eye(self) -> np.ndarray:
        return np.asarray(self.position, dtype=np.float64)

    @property
    def basis(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(forward, right, up) orthonormal vectors."""
        return self._basis

    def _half_tangents(self) -> tuple[float, float]:
        tan_v = math.tan(math.radians(self.fov_deg) * 0.5)
        return tan_v * self.aspect, tan_v

    def frustum_planes(self) -> list[tuple[np.ndarray, float]]:
        """Six ``(normal, offset)`` planes with normals pointing inward.

        A point ``p`` is inside a plane when ``normal @ p + offset >= 0``.
        """
        f, r, u = self._basis
        eye = self.eye
        planes: list[tuple[np.ndarray, float]] = []
        if self.orthographic:
            half_v = float(self.orthographic_size)
            half_h = half_v * self.aspect
            for axis, half in ((r, half_h), (u, half_v)):
                planes.append((axis, -float(axis @ eye) + half))
                planes.append((-axis, float(axis @ eye) + half))
        else:
            tan_h, tan_v = self._half_tangents()
            for n in (f * tan_h + r, f * tan_h - r, f * tan_v + u, f * tan_v - u):
                n = n / np.linalg.norm(n)
                planes.append((n, -float(n @ eye)))
        planes.append((f, -(float(f @ eye) + self.near)))
        planes.append((-f, float(f @ eye) + self.far))
        return planes

    def intersects(self, bounds: Bounds) -> bool:
        """Conservative frustum/AABB test (positive-vertex per plane)."""
        lo = np.asarray(bounds.minimum)
        hi = np.asarray(bounds.maximum)
        for normal, offset in self.frustum_planes():
            p = np.where(normal >= 0.0, hi, lo)
            if float(normal @ p) + offset < 0.0:
                return False
        return True

    def viewport_point(self, point: Sequence[float]) -> tuple[float, float]:
        """Normalised viewport coordinates, (0.5, 0.5) at the view center."""
        f, r, u = self._basis
        v = np.asarray(point, dtype=np.float64) - self.eye
        if self.orthographic:
            half_v = float(self.orthographic_size)
            half_h = half_v * self.aspect
            x = float(r @ v) / half_h
            y = float(u @ v) / half_v
        else:
            tan_h, tan_v = self._half_tangents()
            depth = max(float(f @ v), _EPS)
            x = float(r @ v) / (depth * tan_h)
            y = float(u @ v) / (depth * tan_v)
        return 0.5 + 0.5 * x, 0.5 + 0.5 * y

    def frustum_ground_diagonal(self, clamp: float) -> float:
        """Diagonal of the orthographic view rectangle, extents clamped."""
        half_v = min(float(self.orthographic_size), clamp)
        half_h = min(float(self.orthographic_size) * self.aspect, clamp)
        return math.hypot(2.0 * half_h, 2.0 * half_v)


__all__ = ["CameraPose"]
