"""Alert channels: protocol log, desktop, sound and webhook."""

from .desktop import (
    DesktopChannel,
    DesktopNotificationError,
    PlatformSupport,
    check_platform_support,
    sanitize_for_shell,
)
from .notifier import MAX_DESKTOP_PER_MINUTE, Notifier, format_alert_line
from .webhook import build_webhook_body, post_webhook

__all__ = [
    "DesktopChannel",
    "DesktopNotificationError",
    "MAX_DESKTOP_PER_MINUTE",
    "Notifier",
    "PlatformSupport",
    "build_webhook_body",
    "check_platform_support",
    "format_alert_line",
    "post_webhook",
    "sanitize_for_shell",
]
