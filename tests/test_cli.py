"""Tests for the command-line entry point."""

from __future__ import annotations

import asyncio

import pytest

from inbox_watch.alerts import Notifier
from inbox_watch.cli import _run_watch, build_container, build_parser, execute
from inbox_watch.core.config import AppSettings, load_app_settings
from inbox_watch.core.events import EmailEventBus
from inbox_watch.intelligence import HooksService
from inbox_watch.watching import WatcherService


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    load_app_settings.cache_clear()


def test_parser_defaults_to_info() -> None:
    args = build_parser().parse_args([])
    assert args.command == "info"
    assert args.desktop is None

    args = build_parser().parse_args(["configure-alerts", "--no-desktop", "--threshold", "normal"])
    assert args.desktop is False
    assert args.threshold == "normal"


def test_container_shares_bus_and_notifier() -> None:
    settings = AppSettings.model_validate(
        {
            "accounts": [{"name": "personal", "username": "me", "password": "pw"}],
            "watcher": {"enabled": True},
        }
    )
    container = build_container(settings)

    hooks = container.resolve("hooks")
    watcher = container.resolve("watcher")

    assert isinstance(hooks, HooksService)
    assert isinstance(watcher, WatcherService)
    assert isinstance(container.resolve("bus"), EmailEventBus)
    assert hooks.get_notifier() is container.resolve("notifier")
    assert isinstance(container.resolve("notifier"), Notifier)
    assert container.resolve("sampling_client") is None


def test_info_command_prints_accounts(capsys: pytest.CaptureFixture[str]) -> None:
    settings = AppSettings.model_validate(
        {"accounts": [{"name": "personal", "username": "me@example.com"}]}
    )
    execute(build_parser().parse_args(["info"]), settings)

    out = capsys.readouterr().out
    assert "Account personal: me@example.com@imap.gmail.com:993" in out
    assert "Hook mode: notify (preset: inbox-zero)" in out


def test_watch_command_exits_when_disabled(capsys: pytest.CaptureFixture[str]) -> None:
    settings = load_app_settings(include_environment=False)
    execute(build_parser().parse_args(["watch"]), settings)
    assert "Watcher is disabled" in capsys.readouterr().out


def test_presets_command(capsys: pytest.CaptureFixture[str]) -> None:
    settings = load_app_settings(include_environment=False)
    execute(build_parser().parse_args(["presets"]), settings)
    assert "[inbox-zero] ✅ (active)" in capsys.readouterr().out


class OfflineStore:
    def __init__(self) -> None:
        self.attempts = 0
        self.closed = False

    async def connect(self, account: object) -> object:
        self.attempts += 1
        raise OSError("offline")

    async def mutate(self, account: str, folder: str, message_id: str, mutation: object) -> None:
        raise AssertionError("no mutations expected")

    async def close(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_watch_starts_notifier_and_closes_store_on_exit() -> None:
    settings = AppSettings.model_validate(
        {"watcher": {"enabled": True}, "accounts": [{"name": "personal"}]}
    )
    container = build_container(settings)
    store = OfflineStore()
    container.register_instance("store", store)
    counter = container.resolve("notifier")._desktop_counter  # pylint: disable=protected-access

    task = asyncio.create_task(_run_watch(container))
    for _ in range(100):
        await asyncio.sleep(0.01)
        if store.attempts:
            break

    assert counter.running is True
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert counter.running is False
    assert store.closed is True
