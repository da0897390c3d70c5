"""WGS84 conversion used to turn region volumes into cartesian bounds."""

from __future__ import annotations

import math
from typing import Callable

import numpy as np

from tilestream.geometry.bounds import Bounds

# --- WGS84 constants ---
_WGS84_A = 6378137.0              # semi-major axis (m)
_WGS84_F = 1.0 / 298.257223563    # flattening
_WGS84_E2 = _WGS84_F * (2.0 - _WGS84_F)  # first eccentricity squared

RegionToBounds = Callable[[tuple[float, float, float, float, float, float]], Bounds]


def cartographic_to_ecef(lon_rad: float, lat_rad: float, height_m: float) -> np.ndarray:
    """WGS84 geodetic (radians, metres) to ECEF (x,y,z) metres."""
    sinp = math.sin(lat_rad)
    cosp = math.cos(lat_rad)
    n = _WGS84_A / math.sqrt(1.0 - _WGS84_E2 * sinp * sinp)
    x = (n + height_m) * cosp * math.cos(lon_rad)
    y = (n + height_m) * cosp * math.sin(lon_rad)
    z = (n * (1.0 - _WGS84_E2) + height_m) * sinp
    return np.array([x, y, z], dtype=np.float64)


def region_to_ecef_bounds(region: tuple[float, float, float, float, float, float]) -> Bounds:
    """Bounds enclosing a west/south/east/north/min/max region.

    The surface bulges between corners, so a 3x3 lon/lat grid is sampled at
    both heights.
    """
    west, south, east, north, min_h, max_h = region
    points = []
    for lon in (west, (west + east) * 0.5, east):
        for lat in (south, (south + north) * 0.5, north):
            for h in (min_h, max_h):
                points.append(cartographic_to_ecef(lon, lat, h))
    return Bounds.from_points(points)


__all__ = ["RegionToBounds", "cartographic_to_ecef", "region_to_ecef_bounds"]
