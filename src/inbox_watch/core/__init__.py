"""Core utilities for configuration, logging, events, and dependency wiring."""

from .config import (
    AccountSettings,
    AlertSettings,
    AppSettings,
    HooksSettings,
    WatcherSettings,
    load_app_settings,
)
from .container import ServiceContainer
from .events import EmailEventBus, EventKind
from .logging import ProtocolLogger, configure_logging

__all__ = [
    "AccountSettings",
    "AlertSettings",
    "AppSettings",
    "EmailEventBus",
    "EventKind",
    "HooksSettings",
    "ProtocolLogger",
    "ServiceContainer",
    "WatcherSettings",
    "configure_logging",
    "load_app_settings",
]
