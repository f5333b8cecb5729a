"""Tests for the introspection tool surface."""

from __future__ import annotations

from pathlib import Path

import pytest

from inbox_watch.alerts import Notifier
from inbox_watch.alerts.desktop import DesktopNotificationError, PlatformSupport
from inbox_watch.core.config import AlertSettings, HooksSettings, load_app_settings
from inbox_watch.core.models import Priority, WatcherStatus
from inbox_watch.tools import (
    configure_alerts,
    format_hooks_config,
    format_notification_setup,
    format_presets,
    format_watcher_status,
    run_test_notification,
)


class StubDesktop:
    platform = "linux"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    async def notify(self, title: str, body: str, *, sound: bool = False) -> None:
        if self.fail:
            raise DesktopNotificationError("no daemon")


def test_watcher_status_lists_targets() -> None:
    text = format_watcher_status(
        [
            WatcherStatus(account="personal", folder="INBOX", connected=True, last_seen_id=41),
            WatcherStatus(account="work", folder="INBOX", connected=False, last_seen_id=0),
        ]
    )
    assert text.startswith("📡 Watcher Status (2 connection(s)):")
    assert "• personal/INBOX: 🟢 connected (last UID: 41)" in text
    assert "• work/INBOX: 🔴 disconnected (last UID: 0)" in text
    assert "not active" in format_watcher_status([])


def test_presets_mark_active() -> None:
    text = format_presets("gtd")
    assert "• Getting Things Done [gtd] ✅ (active)" in text
    assert "• Inbox Zero [inbox-zero]\n" in text


def test_hooks_config_describes_rules_and_alerts() -> None:
    config = HooksSettings.model_validate(
        {
            "on_new_email": "triage",
            "custom_instructions": "Bank mail is urgent",
            "rules": [
                {
                    "name": "boss",
                    "match": {"sender": "*@boss.test", "subject": "review"},
                    "actions": {"labels": ["VIP"], "flag": True, "alert": True},
                }
            ],
            "alerts": {"webhook_url": "https://hooks.example.com"},
        }
    )
    text = format_hooks_config(config)
    assert "Mode:     triage" in text
    assert "Bank mail is urgent" in text
    assert '• "boss": from=*@boss.test & subject=review → labels=[VIP], flag, 🔔 alert' in text
    assert "Webhook:   https://hooks.example.com" in text
    assert "Events:    urgent, high" in text


def test_notification_setup_suggests_enabling_desktop() -> None:
    diag = PlatformSupport(
        platform="linux",
        desktop_tool="notify-send",
        desktop_available=True,
        sound_tool="paplay",
        sound_available=False,
        issues=["paplay was not found on PATH; sound alerts disabled"],
        setup_instructions=["1. Install libnotify."],
    )
    text = format_notification_setup(diag, AlertSettings())
    assert "Supported:   ✅ yes" in text
    assert "• paplay was not found on PATH; sound alerts disabled" in text
    assert "1. Install libnotify." in text
    assert "💡 Tip" in text


def test_configure_alerts_without_changes_reports_current() -> None:
    notifier = Notifier(AlertSettings(), desktop=StubDesktop())  # type: ignore[arg-type]
    assert configure_alerts(notifier).startswith("No changes specified.")


def test_configure_alerts_updates_and_persists(tmp_path: Path) -> None:
    env_file = tmp_path / "alerts.env"
    notifier = Notifier(AlertSettings(), desktop=StubDesktop())  # type: ignore[arg-type]

    text = configure_alerts(
        notifier,
        desktop=True,
        urgency_threshold="urgent",
        webhook_url="https://hooks.example.com/x",
        webhook_events=["urgent"],
        save=True,
        env_file=env_file,
    )

    assert text.startswith("✅ Alerts configuration updated:")
    assert f"💾 Changes saved to {env_file}." in text
    assert notifier.get_config().urgency_threshold is Priority.URGENT

    load_app_settings.cache_clear()
    reloaded = load_app_settings(env_file=env_file, include_environment=False)
    load_app_settings.cache_clear()
    alerts = reloaded.hooks.alerts
    assert alerts.desktop is True
    assert alerts.sound is False
    assert alerts.urgency_threshold is Priority.URGENT
    assert alerts.webhook_url == "https://hooks.example.com/x"
    assert alerts.webhook_events == [Priority.URGENT]


def test_configure_alerts_save_without_env_file() -> None:
    notifier = Notifier(AlertSettings(), desktop=StubDesktop())  # type: ignore[arg-type]
    text = configure_alerts(notifier, sound=True, save=True)
    assert "session only" in text
    assert notifier.get_config().sound is True


@pytest.mark.asyncio
async def test_run_test_notification_outcomes() -> None:
    ok = Notifier(AlertSettings(), desktop=StubDesktop())  # type: ignore[arg-type]
    assert (await run_test_notification(ok)).startswith("✅ Test notification sent on linux.")

    broken = Notifier(AlertSettings(), desktop=StubDesktop(fail=True))  # type: ignore[arg-type]
    text = await run_test_notification(broken)
    assert text.startswith("❌ Test notification failed on linux: no daemon")
    assert "🔧 Troubleshooting:" in text
