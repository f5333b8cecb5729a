"""Desktop and sound notifications through native OS commands."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import sys
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)

COMMAND_TIMEOUT_SECONDS = 5.0
LINUX_SOUND_FILE = "/usr/share/sounds/freedesktop/stereo/message-new-instant.oga"

_UNSAFE_CHARS = re.compile(r"[\\\"'`$]")
_WHITESPACE_CONTROLS = re.compile(r"[\n\r\t]")
_NON_PRINTABLE = re.compile(r"[^\x20-\x7E\u00A0-\uFFFF]")

CommandRunner = Callable[[Sequence[str]], Awaitable[None]]


class DesktopNotificationError(RuntimeError):
    """Raised when a notification command fails or times out."""


def sanitize_for_shell(text: str) -> str:
    """Strip quoting and control characters so ``text`` is safe in a command."""
    cleaned = _UNSAFE_CHARS.sub("", text)
    cleaned = _WHITESPACE_CONTROLS.sub(" ", cleaned)
    cleaned = _NON_PRINTABLE.sub("", cleaned)
    return cleaned[:200]


async def run_command(
    argv: Sequence[str], timeout: float = COMMAND_TIMEOUT_SECONDS
) -> None:
    """Execute ``argv`` without a shell, killing it after ``timeout`` seconds."""
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        raise DesktopNotificationError(f"Unable to run {argv[0]}: {exc}") from exc
    try:
        returncode = await asyncio.wait_for(process.wait(), timeout)
    except TimeoutError as exc:
        process.kill()
        await process.wait()
        raise DesktopNotificationError(f"{argv[0]} timed out") from exc
    if returncode != 0:
        raise DesktopNotificationError(f"{argv[0]} exited with status {returncode}")


def build_commands(
    platform: str, title: str, body: str, *, sound: bool
) -> list[list[str]]:
    """Return the command vectors that show a notification on ``platform``."""
    if platform == "darwin":
        sound_clause = ' sound name "Glass"' if sound else ""
        script = f'display notification "{body}" with title "{title}"{sound_clause}'
        return [["osascript", "-e", script]]
    if platform.startswith("linux"):
        urgency = "critical" if sound else "normal"
        commands = [["notify-send", "-u", urgency, title, body]]
        if sound:
            commands.append(["paplay", LINUX_SOUND_FILE])
        return commands
    if platform == "win32":
        script = (
            "[System.Reflection.Assembly]::LoadWithPartialName('System.Windows.Forms'); "
            "$n = New-Object System.Windows.Forms.NotifyIcon; "
            "$n.Icon = [System.Drawing.SystemIcons]::Information; "
            "$n.Visible = $true; "
            f"$n.ShowBalloonTip(5000, '{title}', '{body}', 'Info')"
        )
        return [["powershell", "-Command", script]]
    return []


@dataclass(slots=True)
class PlatformSupport:
    """Diagnostic report about desktop notification tooling."""

    platform: str
    desktop_tool: str
    desktop_available: bool
    sound_tool: str
    sound_available: bool
    issues: list[str] = field(default_factory=list)
    setup_instructions: list[str] = field(default_factory=list)

    @property
    def supported(self) -> bool:
        """Whether desktop notifications can be shown at all."""
        return self.desktop_available


_PLATFORM_TOOLS = {
    "darwin": ("osascript", "afplay"),
    "linux": ("notify-send", "paplay"),
    "win32": ("powershell", "powershell"),
}

_SETUP_INSTRUCTIONS = {
    "darwin": [
        "1. Open System Settings > Notifications.",
        "2. Allow notifications for Script Editor (osascript) or your terminal.",
        "3. Disable Focus modes that suppress banners.",
    ],
    "linux": [
        "1. Install libnotify (e.g. `sudo apt install libnotify-bin`).",
        "2. Ensure a notification daemon is running in your desktop session.",
        "3. Install pulseaudio-utils for sound alerts (`paplay`).",
    ],
    "win32": [
        "1. Open Settings > System > Notifications.",
        "2. Enable notifications for PowerShell.",
        "3. Turn off Focus assist for alerts to appear.",
    ],
}


def check_platform_support(
    platform: str | None = None,
    which: Callable[[str], str | None] = shutil.which,
) -> PlatformSupport:
    """Report whether the tools needed for desktop alerts are installed."""
    platform = platform or sys.platform
    key = "linux" if platform.startswith("linux") else platform
    desktop_tool, sound_tool = _PLATFORM_TOOLS.get(key, ("none", "none"))
    desktop_available = desktop_tool != "none" and which(desktop_tool) is not None
    sound_available = sound_tool != "none" and which(sound_tool) is not None

    issues: list[str] = []
    if key not in _PLATFORM_TOOLS:
        issues.append(f"Platform '{platform}' has no supported notification command")
    else:
        if not desktop_available:
            issues.append(f"{desktop_tool} was not found on PATH")
        if not sound_available:
            issues.append(f"{sound_tool} was not found on PATH; sound alerts disabled")

    return PlatformSupport(
        platform=platform,
        desktop_tool=desktop_tool,
        desktop_available=desktop_available,
        sound_tool=sound_tool,
        sound_available=sound_available,
        issues=issues,
        setup_instructions=list(
            _SETUP_INSTRUCTIONS.get(key, ["Desktop notifications are unavailable."])
        ),
    )


class DesktopChannel:
    """Shows sanitised desktop notifications for the current platform."""

    def __init__(
        self, platform: str | None = None, runner: CommandRunner = run_command
    ) -> None:
        """Bind the channel to ``platform`` and a command runner."""
        self.platform = platform or sys.platform
        self._runner = runner

    async def notify(self, title: str, body: str, *, sound: bool = False) -> None:
        """Show a notification; raise :class:`DesktopNotificationError` on failure."""
        commands = build_commands(
            self.platform,
            sanitize_for_shell(title),
            body,
            sound=sound,
        )
        if not commands:
            raise DesktopNotificationError(
                f"Desktop notifications are unsupported on {self.platform}"
            )
        primary, *extras = commands
        await self._runner(primary)
        for command in extras:
            try:
                await self._runner(command)
            except DesktopNotificationError as exc:
                LOGGER.debug("Optional notification command failed: %s", exc)


__all__ = [
    "COMMAND_TIMEOUT_SECONDS",
    "CommandRunner",
    "DesktopChannel",
    "DesktopNotificationError",
    "PlatformSupport",
    "build_commands",
    "check_platform_support",
    "run_command",
    "sanitize_for_shell",
]
