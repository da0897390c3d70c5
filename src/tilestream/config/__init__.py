"""Shared configuration dataclasses for the streaming core."""

from .logging_policy import LoggingToggles, load_logging_toggles
from .models import (
    CodecSettings,
    SchedulerSettings,
    SelectionSettings,
    TilesetConfig,
    load_tileset_config,
)

__all__ = [
    "CodecSettings",
    "LoggingToggles",
    "SchedulerSettings",
    "SelectionSettings",
    "TilesetConfig",
    "load_logging_toggles",
    "load_tileset_config",
]
