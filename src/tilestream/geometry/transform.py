"""4x4 affine helpers for tile transforms.

Tile-set documents store transforms as 16 numbers in column-major order.
Internally matrices are row-major ``float64`` numpy arrays acting on column
vectors, so ``world = parent @ local``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Optional

import numpy as np

IDENTITY = np.eye(4, dtype=np.float64)
IDENTITY.setflags(write=False)


def from_column_major(values: Optional[Sequence[float]]) -> np.ndarray:
    if values is None:
        return IDENTITY.copy()
    arr = np.asarray(values, dtype=np.float64)
    if arr.shape != (16,):
        raise ValueError(f"transform must have 16 entries, got {arr.size}")
    return arr.reshape(4, 4).T.copy()


def compose(parent: np.ndarray, local: np.ndarray) -> np.ndarray:
    return np.asarray(parent, dtype=np.float64) @ np.asarray(local, dtype=np.float64)


def is_identity(matrix: np.ndarray, atol: float = 1e-12) -> bool:
    return bool(np.allclose(matrix, IDENTITY, atol=atol))


def transform_point(matrix: np.ndarray, point: Sequence[float]) -> np.ndarray:
    p = np.asarray(point, dtype=np.float64)
    return matrix[:3, :3] @ p + matrix[:3, 3]


def transform_vector(matrix: np.ndarray, vector: Sequence[float]) -> np.ndarray:
    return matrix[:3, :3] @ np.asarray(vector, dtype=np.float64)


__all__ = [
    "IDENTITY",
    "compose",
    "from_column_major",
    "is_identity",
    "transform_point",
    "transform_vector",
]
