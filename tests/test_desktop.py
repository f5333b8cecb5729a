"""Tests for desktop notification helpers."""

from __future__ import annotations

from collections.abc import Sequence

import pytest

from inbox_watch.alerts.desktop import (
    DesktopChannel,
    DesktopNotificationError,
    build_commands,
    check_platform_support,
    sanitize_for_shell,
)


def test_sanitize_strips_quotes_and_controls() -> None:
    assert sanitize_for_shell('Say "hi" to `rm -rf $HOME`\\') == "Say hi to rm -rf HOME"
    assert sanitize_for_shell("line one\nline\ttwo\r") == "line one line two "
    assert sanitize_for_shell("bell\x07 and null\x00") == "bell and null"
    assert sanitize_for_shell("Café ünïcode ✓") == "Café ünïcode ✓"
    assert len(sanitize_for_shell("x" * 500)) == 200


def test_build_commands_per_platform() -> None:
    mac = build_commands("darwin", "Title", "Body", sound=True)
    assert mac == [
        [
            "osascript",
            "-e",
            'display notification "Body" with title "Title" sound name "Glass"',
        ]
    ]

    linux = build_commands("linux", "Title", "Body", sound=False)
    assert linux == [["notify-send", "-u", "normal", "Title", "Body"]]
    linux_sound = build_commands("linux", "Title", "Body", sound=True)
    assert linux_sound[0][:3] == ["notify-send", "-u", "critical"]
    assert linux_sound[1][0] == "paplay"

    windows = build_commands("win32", "Title", "Body", sound=False)
    assert windows[0][0] == "powershell"
    assert "ShowBalloonTip(5000, 'Title', 'Body', 'Info')" in windows[0][2]

    assert build_commands("plan9", "Title", "Body", sound=False) == []


def test_check_platform_support_reports_missing_tools() -> None:
    available = {"notify-send"}
    report = check_platform_support("linux", which=lambda tool: tool if tool in available else None)
    assert report.supported is True
    assert report.desktop_tool == "notify-send"
    assert report.sound_available is False
    assert any("paplay" in issue for issue in report.issues)
    assert report.setup_instructions

    missing = check_platform_support("darwin", which=lambda tool: None)
    assert missing.supported is False
    assert "osascript was not found on PATH" in missing.issues

    unknown = check_platform_support("plan9", which=lambda tool: tool)
    assert unknown.supported is False
    assert unknown.desktop_tool == "none"


class RecordingRunner:
    def __init__(self, fail_on: str | None = None) -> None:
        self.commands: list[list[str]] = []
        self.fail_on = fail_on

    async def __call__(self, argv: Sequence[str]) -> None:
        self.commands.append(list(argv))
        if argv[0] == self.fail_on:
            raise DesktopNotificationError(f"{argv[0]} failed")


@pytest.mark.asyncio
async def test_channel_sanitizes_title_and_tolerates_sound_failure() -> None:
    runner = RecordingRunner(fail_on="paplay")
    channel = DesktopChannel(platform="linux", runner=runner)

    await channel.notify('Alert "now"', "From: a\nHi", sound=True)

    assert runner.commands[0] == ["notify-send", "-u", "critical", "Alert now", "From: a\nHi"]
    assert runner.commands[1][0] == "paplay"


@pytest.mark.asyncio
async def test_channel_raises_when_primary_command_fails() -> None:
    channel = DesktopChannel(platform="linux", runner=RecordingRunner(fail_on="notify-send"))
    with pytest.raises(DesktopNotificationError):
        await channel.notify("Title", "Body")


@pytest.mark.asyncio
async def test_channel_rejects_unsupported_platform() -> None:
    channel = DesktopChannel(platform="plan9", runner=RecordingRunner())
    with pytest.raises(DesktopNotificationError):
        await channel.notify("Title", "Body")
