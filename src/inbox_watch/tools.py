"""Text tool surface for inspecting and adjusting the watcher at runtime."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from dotenv import set_key

from .alerts.desktop import PlatformSupport
from .alerts.notifier import Notifier
from .core.config import ENV_PREFIX, AlertSettings, HooksSettings
from .core.models import Priority, WatcherStatus
from .intelligence.prompts import TriagePreset, list_presets

LOGGER = logging.getLogger(__name__)


def format_watcher_status(status: Sequence[WatcherStatus]) -> str:
    """Describe every watch target and its connection state."""
    if not status:
        return (
            "Watcher is not active. Enable it with "
            f"{ENV_PREFIX}WATCHER__ENABLED=true"
        )
    lines = [
        f"• {item.account}/{item.folder}: "
        f"{'🟢 connected' if item.connected else '🔴 disconnected'} "
        f"(last UID: {item.last_seen_id})"
        for item in status
    ]
    return f"📡 Watcher Status ({len(status)} connection(s)):\n" + "\n".join(lines)


def format_presets(active: str, presets: Sequence[TriagePreset] | None = None) -> str:
    """List triage presets, marking the active one."""
    entries = []
    for preset in presets if presets is not None else list_presets():
        marker = " ✅ (active)" if preset.id == active else ""
        labels = (
            f"\n     Labels: {', '.join(preset.suggested_labels)}"
            if preset.suggested_labels
            else ""
        )
        entries.append(f"• {preset.name} [{preset.id}]{marker}\n     {preset.description}{labels}")
    return (
        "🎯 Available Hook Presets:\n\n"
        + "\n\n".join(entries)
        + f"\n\nTo change preset, set {ENV_PREFIX}HOOKS__PRESET={active}."
    )


def _format_alerts(alerts: AlertSettings) -> list[str]:
    lines = [
        f"   Desktop:   {'✅ enabled' if alerts.desktop else '❌ disabled'}",
        f"   Sound:     {'✅ enabled' if alerts.sound else '❌ disabled'}",
        f"   Threshold: {alerts.urgency_threshold.value}",
    ]
    if alerts.webhook_url:
        lines.append(f"   Webhook:   {alerts.webhook_url}")
        lines.append(
            f"   Events:    {', '.join(event.value for event in alerts.webhook_events)}"
        )
    else:
        lines.append("   Webhook:   not configured")
    return lines


def format_hooks_config(config: HooksSettings) -> str:
    """Describe mode, preset, rules and alert settings."""
    sections = [
        "⚙️  Hooks Configuration:",
        f"   Mode:     {config.on_new_email}",
        f"   Preset:   {config.preset}",
        f"   Labels:   {'auto-apply' if config.auto_label else 'disabled'}",
        f"   Flags:    {'auto-flag' if config.auto_flag else 'disabled'}",
        f"   Batch:    {config.batch_delay_seconds:g}s delay",
    ]
    if config.custom_instructions:
        indented = config.custom_instructions.replace("\n", "\n   ")
        sections.append(f"\n📝 Custom Instructions:\n   {indented}")

    if config.rules:
        sections.append(f"\n📋 Static Rules ({len(config.rules)}):")
        for rule in config.rules:
            match_parts = [
                f"{name}={value}"
                for name, value in (
                    ("from", rule.match.sender),
                    ("to", rule.match.to),
                    ("subject", rule.match.subject),
                )
                if value
            ]
            action_parts = []
            if rule.actions.labels:
                action_parts.append(f"labels=[{', '.join(rule.actions.labels)}]")
            if rule.actions.flag:
                action_parts.append("flag")
            if rule.actions.mark_read:
                action_parts.append("mark_read")
            if rule.actions.alert:
                action_parts.append("🔔 alert")
            sections.append(
                f'   • "{rule.name}": {" & ".join(match_parts)} → {", ".join(action_parts)}'
            )
    else:
        sections.append("\n📋 Static Rules: none configured")

    sections.append("\n🔔 Alerts:")
    sections.extend(_format_alerts(config.alerts))
    return "\n".join(sections)


def format_notification_setup(diag: PlatformSupport, alerts: AlertSettings) -> str:
    """Render platform diagnostics together with the active alert settings."""
    lines = [
        "🔍 Notification Setup Diagnostics",
        "",
        f"Platform:    {diag.platform}",
        f"Desktop:     {diag.desktop_tool} - "
        f"{'✅ available' if diag.desktop_available else '❌ not found'}",
        f"Sound:       {diag.sound_tool} - "
        f"{'✅ available' if diag.sound_available else '❌ not found'}",
        f"Supported:   {'✅ yes' if diag.supported else '❌ no'}",
    ]
    if diag.issues:
        lines.extend(["", "⚠️  Issues:"])
        lines.extend(f"   • {issue}" for issue in diag.issues)
    lines.extend(["", "📋 Setup Instructions:"])
    lines.extend(f"   {instruction}" for instruction in diag.setup_instructions)
    lines.extend(["", "⚙️  Current Config:"])
    lines.extend(_format_alerts(alerts))
    if not alerts.desktop and diag.supported:
        lines.extend(
            [
                "",
                "💡 Tip: Desktop notifications are supported but disabled.",
                f"   Use configure_alerts or set {ENV_PREFIX}HOOKS__ALERTS__DESKTOP=true.",
            ]
        )
    return "\n".join(lines)


def save_alert_settings(alerts: AlertSettings, env_file: Path | str) -> None:
    """Write ``alerts`` into ``env_file`` as ``INBOX_WATCH_HOOKS__ALERTS__*`` keys."""
    path = Path(env_file)
    path.touch(exist_ok=True)
    prefix = f"{ENV_PREFIX}HOOKS__ALERTS__"
    values = {
        "DESKTOP": str(alerts.desktop).lower(),
        "SOUND": str(alerts.sound).lower(),
        "URGENCY_THRESHOLD": alerts.urgency_threshold.value,
        "WEBHOOK_URL": alerts.webhook_url or "",
        "WEBHOOK_EVENTS": ",".join(event.value for event in alerts.webhook_events),
    }
    for key, value in values.items():
        set_key(path, f"{prefix}{key}", value)


# pylint: disable=too-many-arguments
def configure_alerts(
    notifier: Notifier,
    *,
    desktop: bool | None = None,
    sound: bool | None = None,
    urgency_threshold: Priority | str | None = None,
    webhook_url: str | None = None,
    webhook_events: Sequence[Priority | str] | None = None,
    save: bool = False,
    env_file: Path | str | None = None,
) -> str:
    """Apply runtime alert changes, optionally persisting them to ``env_file``."""
    changes: dict[str, object] = {}
    if desktop is not None:
        changes["desktop"] = desktop
    if sound is not None:
        changes["sound"] = sound
    if urgency_threshold is not None:
        changes["urgency_threshold"] = urgency_threshold
    if webhook_url is not None:
        changes["webhook_url"] = webhook_url
    if webhook_events is not None:
        changes["webhook_events"] = list(webhook_events)

    if not changes:
        return "No changes specified. Current config:\n" + "\n".join(
            _format_alerts(notifier.get_config())
        )

    updated = notifier.update_config(**changes)

    persist_message = ""
    if save:
        if env_file is None:
            persist_message = "\n\n⚠️ No env file configured; changes are active for this session only."
        else:
            try:
                save_alert_settings(updated, env_file)
                persist_message = f"\n\n💾 Changes saved to {env_file}."
            except OSError as exc:
                LOGGER.warning("Could not persist alert settings: %s", exc)
                persist_message = (
                    f"\n\n⚠️ Could not save to config file: {exc}\n"
                    "   Changes are active for this session only."
                )

    return (
        "✅ Alerts configuration updated:\n"
        + "\n".join(_format_alerts(updated))
        + persist_message
    )


async def run_test_notification(notifier: Notifier, sound: bool = False) -> str:
    """Send a test notification and describe the outcome."""
    success, message = await notifier.send_test_notification(sound)
    lines = [f"{'✅' if success else '❌'} {message}"]
    if not success:
        lines.extend(["", "🔧 Troubleshooting:"])
        lines.extend(
            f"   {instruction}"
            for instruction in notifier.check_platform_support().setup_instructions
        )
    return "\n".join(lines)


__all__ = [
    "configure_alerts",
    "format_hooks_config",
    "format_notification_setup",
    "format_presets",
    "format_watcher_status",
    "run_test_notification",
    "save_alert_settings",
]
