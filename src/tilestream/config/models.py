"""Configuration dataclasses shared across the streaming core."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from tilestream.config.logging_policy import LoggingToggles, load_logging_toggles
from tilestream.utils.env import env_bool, env_choice, env_float, env_int, env_str

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionSettings:
    """Level-of-detail traversal parameters."""

    maximum_screen_space_error: float = 5.0
    in_view_margin: float = 8000.0
    max_screen_height_px: int = 0
    distance_epsilon: float = 0.1
    # orthographic SSE works on ground extents clamped to this size
    ortho_extent_clamp: float = 1000.0


@dataclass(frozen=True)
class SchedulerSettings:
    """Download admission and ranking parameters."""

    max_simultaneous_downloads: int = 6
    max_concurrent_parses: int = 10
    distance_weight: float = 100.0
    center_score: float = 10.0
    unloaded_ancestor_boost: float = 10.0


@dataclass(frozen=True)
class CodecSettings:
    """Container decoding policy."""

    strict_headers: bool = False
    patch_required_extensions: bool = True


@dataclass(frozen=True)
class TilesetConfig:
    """Resolved tileset session configuration."""

    tileset_url: Optional[str] = None
    api_key: Optional[str] = None
    query_key_name: str = "key"
    request_headers: Mapping[str, str] = field(default_factory=dict)
    request_timeout_s: float = 30.0
    selection: SelectionSettings = field(default_factory=SelectionSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    codec: CodecSettings = field(default_factory=CodecSettings)
    logging: LoggingToggles = field(default_factory=LoggingToggles)


def _parse_headers(raw: Optional[str]) -> dict[str, str]:
    """Parse ``Name: value; Other: value`` into a header mapping."""
    headers: dict[str, str] = {}
    if not raw:
        return headers
    for item in raw.split(";"):
        if ":" not in item:
            if item.strip():
                logger.debug("ignoring malformed header entry %r", item)
            continue
        name, value = item.split(":", 1)
        name = name.strip()
        if name:
            headers[name] = value.strip()
    return headers


def load_tileset_config(env: Optional[Mapping[str, str]] = None) -> TilesetConfig:
    """Build a `TilesetConfig` by reading the environment once.

    Invalid numeric values fall back to the defaults; counts are clamped to
    at least one so the scheduler can always make progress.
    """
    env = os.environ if env is None else env

    sel_defaults = SelectionSettings()
    selection = SelectionSettings(
        maximum_screen_space_error=env_float(
            "TILESTREAM_MAX_SSE", sel_defaults.maximum_screen_space_error, env
        ),
        in_view_margin=max(0.0, env_float("TILESTREAM_IN_VIEW_MARGIN", sel_defaults.in_view_margin, env)),
        max_screen_height_px=max(0, env_int("TILESTREAM_MAX_SCREEN_HEIGHT", sel_defaults.max_screen_height_px, env)),
        distance_epsilon=sel_defaults.distance_epsilon,
        ortho_extent_clamp=sel_defaults.ortho_extent_clamp,
    )

    sch_defaults = SchedulerSettings()
    scheduler = SchedulerSettings(
        max_simultaneous_downloads=max(
            1, env_int("TILESTREAM_MAX_DOWNLOADS", sch_defaults.max_simultaneous_downloads, env)
        ),
        max_concurrent_parses=max(1, env_int("TILESTREAM_MAX_PARSES", sch_defaults.max_concurrent_parses, env)),
        distance_weight=env_float("TILESTREAM_DISTANCE_WEIGHT", sch_defaults.distance_weight, env),
        center_score=env_float("TILESTREAM_CENTER_SCORE", sch_defaults.center_score, env),
        unloaded_ancestor_boost=env_float(
            "TILESTREAM_UNLOADED_ANCESTOR_BOOST", sch_defaults.unloaded_ancestor_boost, env
        ),
    )

    policy = env_choice("TILESTREAM_HEADER_POLICY", ("lenient", "strict"), "lenient", env)
    codec = CodecSettings(
        strict_headers=env_bool("TILESTREAM_STRICT_HEADERS", policy == "strict", env),
        patch_required_extensions=env_bool("TILESTREAM_PATCH_REQUIRED", True, env),
    )

    return TilesetConfig(
        tileset_url=env_str("TILESTREAM_TILESET_URL", None, env),
        api_key=env_str("TILESTREAM_API_KEY", None, env),
        query_key_name=env_str("TILESTREAM_QUERY_KEY_NAME", "key", env) or "key",
        request_headers=_parse_headers(env_str("TILESTREAM_HEADERS", None, env)),
        request_timeout_s=max(0.1, env_float("TILESTREAM_REQUEST_TIMEOUT", 30.0, env)),
        selection=selection,
        scheduler=scheduler,
        codec=codec,
        logging=load_logging_toggles(env),
    )
