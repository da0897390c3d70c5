"""Axis-aligned bounds used for culling and distance queries."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Bounds:
    minimum: tuple[float, float, float]
    maximum: tuple[float, float, float]

    @classmethod
    def from_points(cls, points: Iterable[Sequence[float]]) -> "Bounds":
        arr = np.asarray(list(points), dtype=np.float64).reshape(-1, 3)
        if arr.shape[0] == 0:
            raise ValueError("cannot build bounds from zero points")
        lo = arr.min(axis=0)
        hi = arr.max(axis=0)
        return cls(tuple(float(v) for v in lo), tuple(float(v) for v in hi))

    @classmethod
    def from_center_extents(cls, center: Sequence[float], extents: Sequence[float]) -> "Bounds":
        c = np.asarray(center, dtype=np.float64)
        e = np.abs(np.asarray(extents, dtype=np.float64))
        return cls(tuple(float(v) for v in c - e), tuple(float(v) for v in c + e))

    @property
    def center(self) -> np.ndarray:
        return (np.asarray(self.minimum) + np.asarray(self.maximum)) * 0.5

    @property
    def extents(self) -> np.ndarray:
        return (np.asarray(self.maximum) - np.asarray(self.minimum)) * 0.5

    @property
    def size(self) -> np.ndarray:
        return np.asarray(self.maximum) - np.asarray(self.minimum)

    def closest_point(self, point: Sequence[float]) -> np.ndarray:
        return np.clip(np.asarray(point, dtype=np.float64), self.minimum, self.maximum)

    def distance_to(self, point: Sequence[float]) -> float:
        p = np.asarray(point, dtype=np.float64)
        return float(np.linalg.norm(self.closest_point(p) - p))

    def contains(self, point: Sequence[float], margin: float = 0.0) -> bool:
        p = np.asarray(point, dtype=np.float64)
        lo = np.asarray(self.minimum) - margin
        hi = np.asarray(self.maximum) + margin
        return bool(np.all(p >= lo) and np.all(p <= hi))


__all__ = ["Bounds"]
