"""Volumes, transforms and camera math for tile selection."""

from .bounding_volume import BoundingVolume, BoundingVolumeType, SubdivisionScheme
from .bounds import Bounds
from .camera import CameraPose

__all__ = [
    "BoundingVolume",
    "BoundingVolumeType",
    "Bounds",
    "CameraPose",
    "SubdivisionScheme",
]
