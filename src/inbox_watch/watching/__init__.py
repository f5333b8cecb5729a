"""Folder watchers that turn store push signals into bus events."""

from .state import BackoffPolicy, Phase, TargetState, next_backoff, transition
from .watcher import WatcherService

__all__ = [
    "BackoffPolicy",
    "Phase",
    "TargetState",
    "WatcherService",
    "next_backoff",
    "transition",
]
