"""Tile bounding volumes: oriented box, sphere and geographic region."""

from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from tilestream.geometry.bounds import Bounds
from tilestream.geometry.geodesy import RegionToBounds, region_to_ecef_bounds
from tilestream.geometry.transform import transform_point, transform_vector


class BoundingVolumeType(enum.Enum):
    BOX = "box"
    SPHERE = "sphere"
    REGION = "region"


class SubdivisionScheme(enum.Enum):
    QUADTREE = "QUADTREE"
    OCTREE = "OCTREE"

    @property
    def child_count(self) -> int:
        return 8 if self is SubdivisionScheme.OCTREE else 4

    @classmethod
    def parse(cls, value: object) -> "SubdivisionScheme":
        key = str(value or "").strip().upper()
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown subdivision scheme {value!r}") from None


_VALUE_COUNTS = {
    BoundingVolumeType.BOX: 12,
    BoundingVolumeType.SPHERE: 4,
    BoundingVolumeType.REGION: 6,
}


@dataclass(frozen=True)
class BoundingVolume:
    """Tagged bounding volume.

    ``values`` follows the tile-set layout: box is center + x/y/z half-axes,
    sphere is center + radius, region is west/south/east/north radians plus
    minimum and maximum height.
    """

    kind: BoundingVolumeType
    values: tuple[float, ...]

    def __post_init__(self) -> None:
        expected = _VALUE_COUNTS[self.kind]
        if len(self.values) != expected:
            raise ValueError(f"{self.kind.value} volume needs {expected} values, got {len(self.values)}")

    @classmethod
    def box(cls, center: Sequence[float], x_axis: Sequence[float], y_axis: Sequence[float], z_axis: Sequence[float]) -> "BoundingVolume":
        return cls(BoundingVolumeType.BOX, tuple(float(v) for v in (*center, *x_axis, *y_axis, *z_axis)))

    @classmethod
    def sphere(cls, center: Sequence[float], radius: float) -> "BoundingVolume":
        return cls(BoundingVolumeType.SPHERE, tuple(float(v) for v in (*center, radius)))

    @classmethod
    def region(cls, west: float, south: float, east: float, north: float, min_height: float, max_height: float) -> "BoundingVolume":
        return cls(BoundingVolumeType.REGION, tuple(float(v) for v in (west, south, east, north, min_height, max_height)))

    @classmethod
    def from_json(cls, node: Mapping[str, Any]) -> "BoundingVolume":
        if not isinstance(node, Mapping):
            raise ValueError("boundingVolume must be an object")
        # a node may carry several; box is preferred, then region, then sphere
        for kind in (BoundingVolumeType.BOX, BoundingVolumeType.REGION, BoundingVolumeType.SPHERE):
            raw = node.get(kind.value)
            if raw is None:
                continue
            try:
                values = tuple(float(v) for v in raw)
            except (TypeError, ValueError):
                raise ValueError(f"boundingVolume.{kind.value} must be a list of numbers") from None
            return cls(kind, values)
        raise ValueError(f"boundingVolume has no box, region or sphere: {sorted(node)}")

    def to_json(self) -> dict[str, list[float]]:
        return {self.kind.value: list(self.values)}

    # --- box accessors ---------------------------------------------------
    def _axes(self) -> np.ndarray:
        return np.asarray(self.values[3:12], dtype=np.float64).reshape(3, 3)

    @property
    def center(self) -> Optional[np.ndarray]:
        """Cartesian center; ``None`` for regions, which need a geodetic
        conversion first."""
        if self.kind is BoundingVolumeType.REGION:
            return None
        return np.asarray(self.values[:3], dtype=np.float64)

    def transform_by(self, matrix: np.ndarray) -> "BoundingVolume":
        """Return this volume in the frame described by ``matrix``.

        Box: center as a point and half-axes as vectors. Sphere: center only.
        Region: already geographic, returned unchanged.
        """
        if self.kind is BoundingVolumeType.BOX:
            center = transform_point(matrix, self.values[:3])
            axes = [transform_vector(matrix, axis) for axis in self._axes()]
            return BoundingVolume.box(center, *axes)
        if self.kind is BoundingVolumeType.SPHERE:
            center = transform_point(matrix, self.values[:3])
            return BoundingVolume.sphere(center, self.values[3])
        return self

    def child_volume(self, index: int, scheme: SubdivisionScheme) -> "BoundingVolume":
        """Sub-volume ``index`` of the implicit subdivision ``scheme``.

        Child indices follow the Morton order used by implicit tiling: bit 0
        selects the x half, bit 1 the y half and, for octrees, bit 2 the z
        half.
        """
        if not 0 <= index < scheme.child_count:
            raise ValueError(f"child index {index} out of range for {scheme.value}")

        if self.kind is BoundingVolumeType.REGION:
            west, south, east, north, min_h, max_h = self.values
            lon_mid = (west + east) / 2.0
            lat_mid = (south + north) / 2.0
            if index % 2 == 0:
                west, east = west, lon_mid
            else:
                west, east = lon_mid, east
            if index % 4 < 2:
                south, north = south, lat_mid
            else:
                south, north = lat_mid, north
            if scheme is SubdivisionScheme.OCTREE:
                h_mid = (min_h + max_h) / 2.0
                if index > 3:
                    min_h = h_mid
                else:
                    max_h = h_mid
            return BoundingVolume.region(west, south, east, north, min_h, max_h)

        if self.kind is BoundingVolumeType.BOX:
            axes = self._axes()
            x_axis = axes[0] / 2.0
            y_axis = axes[1] / 2.0
            z_axis = axes[2] / 2.0 if scheme is SubdivisionScheme.OCTREE else axes[2].copy()
            center = np.asarray(self.values[:3], dtype=np.float64)
            center = center + (-1.0 if index % 2 == 0 else 1.0) * x_axis
            center = center + (-1.0 if index % 4 < 2 else 1.0) * y_axis
            if scheme is SubdivisionScheme.OCTREE:
                center = center + (1.0 if index > 3 else -1.0) * z_axis
            return BoundingVolume.box(center, x_axis, y_axis, z_axis)

        raise ValueError("sphere volumes cannot be subdivided")

    def to_bounds(self, region_to_bounds: RegionToBounds = region_to_ecef_bounds) -> Bounds:
        """Axis-aligned bounds enclosing the volume."""
        if self.kind is BoundingVolumeType.BOX:
            half = np.abs(self._axes()).sum(axis=0)
            return Bounds.from_center_extents(self.values[:3], half)
        if self.kind is BoundingVolumeType.SPHERE:
            r = abs(self.values[3])
            return Bounds.from_center_extents(self.values[:3], (r, r, r))
        return region_to_bounds(self.values)


__all__ = ["BoundingVolume", "BoundingVolumeType", "SubdivisionScheme"]
