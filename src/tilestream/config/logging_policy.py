from __future__ import annotations

"""Per-area verbose logging toggles for the streaming core."""

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Optional

from tilestream.utils.env import env_bool, env_str

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoggingToggles:
    log_traversal: bool = False
    log_scheduler: bool = False
    log_codec: bool = False
    log_cache: bool = False


_FLAG_MAP: dict[str, Iterable[str]] = {
    "traversal": ("log_traversal",),
    "scheduler": ("log_scheduler",),
    "codec": ("log_codec",),
    "cache": ("log_cache",),
    "all": ("log_traversal", "log_scheduler", "log_codec", "log_cache"),
}

_ENV_MAP: dict[str, str] = {
    "log_traversal": "TILESTREAM_LOG_TRAVERSAL",
    "log_scheduler": "TILESTREAM_LOG_SCHEDULER",
    "log_codec": "TILESTREAM_LOG_CODEC",
    "log_cache": "TILESTREAM_LOG_CACHE",
}


def _split_flags(raw: Optional[str]) -> set[str]:
    result: set[str] = set()
    if not raw:
        return result
    for item in raw.split(","):
        token = item.strip().lower()
        if token:
            result.add(token)
    return result


def load_logging_toggles(env: Optional[Mapping[str, str]] = None) -> LoggingToggles:
    """Resolve toggles from ``TILESTREAM_DEBUG`` (comma separated areas) and
    the individual ``TILESTREAM_LOG_*`` switches, which win when set."""
    env = os.environ if env is None else env
    flags = _split_flags(env_str("TILESTREAM_DEBUG", None, env))

    kwargs = {name: False for name in _ENV_MAP}
    for flag, attrs in _FLAG_MAP.items():
        if flag in flags:
            for attr in attrs:
                kwargs[attr] = True
    unknown = flags.difference(_FLAG_MAP)
    if unknown:
        logger.debug("ignoring unknown TILESTREAM_DEBUG flags: %s", sorted(unknown))

    for attr, name in _ENV_MAP.items():
        kwargs[attr] = env_bool(name, kwargs[attr], env)
    return LoggingToggles(**kwargs)


__all__ = ["LoggingToggles", "load_logging_toggles"]
