"""Tile content: load state, decode pool and container codecs."""

from .state import CancelToken, Content, ContentLoadState, FailureKind, LoadCancelled

__all__ = [
    "CancelToken",
    "Content",
    "ContentLoadState",
    "FailureKind",
    "LoadCancelled",
]
