"""Multi-channel alert dispatcher."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from inbox_watch.core.config import AlertSettings
from inbox_watch.core.interfaces import ProtocolLog
from inbox_watch.core.logging import ProtocolLogger
from inbox_watch.core.models import AlertPayload, EmailAddress, Priority
from inbox_watch.core.ratelimit import WindowCounter

from .desktop import (
    DesktopChannel,
    PlatformSupport,
    check_platform_support,
    sanitize_for_shell,
)
from .webhook import post_webhook

LOGGER = logging.getLogger(__name__)

MAX_DESKTOP_PER_MINUTE = 5

PROTOCOL_LEVEL_BY_PRIORITY: dict[Priority, str] = {
    Priority.URGENT: "alert",
    Priority.HIGH: "warning",
    Priority.NORMAL: "info",
    Priority.LOW: "debug",
}


def format_alert_line(payload: AlertPayload) -> str:
    """Return the protocol log line describing ``payload``."""
    icon = "🚨" if payload.priority is Priority.URGENT else "📧"
    line = (
        f"{icon} [{payload.priority.value.upper()}] "
        f'{payload.sender.display}: "{payload.subject}"'
    )
    if payload.labels:
        line += f" [{', '.join(payload.labels)}]"
    if payload.rule_name:
        line += f" (rule: {payload.rule_name})"
    return line


class Notifier:
    """Route alerts to protocol log, desktop, sound and webhook channels.

    The protocol log always receives the alert. Desktop notifications are
    gated by the urgency threshold (unless forced) and a per-minute cap;
    webhooks by the configured event filter. Channel failures are logged and
    never reach the caller.
    """

    def __init__(
        self,
        settings: AlertSettings,
        protocol_log: ProtocolLog | None = None,
        *,
        desktop: DesktopChannel | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create the dispatcher; call :meth:`start` once an event loop runs."""
        self._settings = settings
        self._log = protocol_log or ProtocolLogger()
        self._desktop = desktop or DesktopChannel()
        self._http_client = http_client
        self._desktop_counter = WindowCounter(MAX_DESKTOP_PER_MINUTE)
        self._webhook_tasks: set[asyncio.Task[bool]] = set()

    # Configuration ------------------------------------------------------------
    def get_config(self) -> AlertSettings:
        """Return the active alert settings."""
        return self._settings

    def update_config(self, **changes: Any) -> AlertSettings:
        """Merge ``changes`` into the settings and return the result."""
        merged = {**self._settings.model_dump(), **changes}
        if merged.get("webhook_url") == "":
            merged["webhook_url"] = None
        self._settings = AlertSettings.model_validate(merged)
        return self._settings

    # Lifecycle ----------------------------------------------------------------
    def start(self) -> None:
        """Start the desktop rate window; requires a running event loop."""
        self._desktop_counter.start()

    def stop(self) -> None:
        """Cancel the rate window and any in-flight webhook deliveries."""
        self._desktop_counter.stop()
        for task in list(self._webhook_tasks):
            task.cancel()
        self._webhook_tasks.clear()

    async def drain(self) -> None:
        """Wait for in-flight webhook deliveries to finish."""
        if self._webhook_tasks:
            await asyncio.gather(*self._webhook_tasks, return_exceptions=True)

    # Dispatch -----------------------------------------------------------------
    async def alert(self, payload: AlertPayload, force_desktop: bool = False) -> None:
        """Dispatch ``payload`` to every eligible channel."""
        settings = self._settings
        priority = Priority(payload.priority)

        self._log.log(
            PROTOCOL_LEVEL_BY_PRIORITY[priority], "notifier", format_alert_line(payload)
        )

        meets_threshold = priority.meets(settings.urgency_threshold)
        if settings.desktop and (meets_threshold or force_desktop):
            await self._send_desktop(payload)

        if settings.webhook_url and priority in settings.webhook_events:
            task = asyncio.create_task(
                post_webhook(
                    settings.webhook_url,
                    payload,
                    self._log,
                    client=self._http_client,
                )
            )
            self._webhook_tasks.add(task)
            task.add_done_callback(self._webhook_done)

    async def _send_desktop(self, payload: AlertPayload) -> bool:
        if not self._desktop_counter.try_acquire():
            LOGGER.debug("Desktop notification cap reached; skipping")
            return False
        label = "Urgent" if payload.priority is Priority.URGENT else "Important"
        title = f"📧 Inbox Watch - {label}"
        sender = sanitize_for_shell(payload.sender.display)
        subject = sanitize_for_shell(payload.subject)
        body = f"From: {sender}\n{subject}"
        play_sound = self._settings.sound and payload.priority is Priority.URGENT
        try:
            await self._desktop.notify(title, body, sound=play_sound)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.debug("Desktop notification failed: %s", exc)
            return False
        return True

    def _webhook_done(self, task: asyncio.Task[bool]) -> None:
        self._webhook_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.log("debug", "notifier", f"Webhook dispatch failed (non-fatal): {exc}")

    # Diagnostics --------------------------------------------------------------
    def check_platform_support(self) -> PlatformSupport:
        """Diagnose desktop tooling for the channel's platform."""
        return check_platform_support(self._desktop.platform)

    async def send_test_notification(self, sound: bool = False) -> tuple[bool, str]:
        """Show a test notification, bypassing threshold and rate limit."""
        sender = EmailAddress(name="Inbox Watch", address="inbox-watch@localhost")
        try:
            await self._desktop.notify(
                "📧 Inbox Watch - Test",
                f"From: {sender.display}\nThis is a test notification.",
                sound=sound,
            )
        except Exception as exc:  # pylint: disable=broad-except
            return False, f"Test notification failed on {self._desktop.platform}: {exc}"
        return True, f"Test notification sent on {self._desktop.platform}."


__all__ = [
    "MAX_DESKTOP_PER_MINUTE",
    "Notifier",
    "PROTOCOL_LEVEL_BY_PRIORITY",
    "format_alert_line",
]
