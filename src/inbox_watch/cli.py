"""Command-line entry point for Inbox Watch."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from inbox_watch.alerts import Notifier
from inbox_watch.core import (
    AppSettings,
    EmailEventBus,
    ProtocolLogger,
    ServiceContainer,
    configure_logging,
    load_app_settings,
)
from inbox_watch.core.interfaces import ClientCapabilities
from inbox_watch.intelligence import HooksService, OllamaSamplingClient
from inbox_watch.tools import (
    configure_alerts,
    format_hooks_config,
    format_notification_setup,
    format_presets,
    format_watcher_status,
    run_test_notification,
)
from inbox_watch.transport import ImapMailStore
from inbox_watch.watching import WatcherService

LOGGER = logging.getLogger(__name__)


class LoggingResourceNotifier:
    """Resource notifier used when no agent session is attached."""

    async def send_resource_updated(self, uri: str) -> None:
        """Record the resource change."""
        LOGGER.debug("Resource updated: %s", uri)


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Inbox Watch mailbox monitor")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=[
            "info",
            "watch",
            "presets",
            "hooks",
            "check-notifications",
            "test-notification",
            "configure-alerts",
        ],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--sound",
        action="store_true",
        help="Play a sound with the test notification.",
    )
    parser.add_argument(
        "--desktop",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable or disable desktop alerts (configure-alerts).",
    )
    parser.add_argument(
        "--alert-sound",
        dest="alert_sound",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable or disable sound for urgent alerts (configure-alerts).",
    )
    parser.add_argument(
        "--threshold",
        choices=["urgent", "high", "normal", "low"],
        default=None,
        help="Minimum priority for desktop alerts (configure-alerts).",
    )
    parser.add_argument(
        "--webhook-url",
        dest="webhook_url",
        default=None,
        help="Webhook endpoint; pass an empty string to disable (configure-alerts).",
    )
    parser.add_argument(
        "--webhook-events",
        dest="webhook_events",
        default=None,
        help="Comma separated priorities forwarded to the webhook (configure-alerts).",
    )
    parser.add_argument(
        "--save",
        action="store_true",
        help="Persist configure-alerts changes into the env file.",
    )
    return parser


def build_container(settings: AppSettings) -> ServiceContainer:
    """Register every long-lived component of the watch pipeline."""
    container = ServiceContainer()
    container.register_instance("settings", settings)
    container.register("protocol_log", lambda _c: ProtocolLogger())
    container.register("bus", lambda _c: EmailEventBus())
    container.register(
        "store",
        lambda c: ImapMailStore(
            c.resolve("settings").accounts,
            poll_interval=c.resolve("settings").watcher.poll_interval_seconds,
        ),
    )
    container.register(
        "notifier",
        lambda c: Notifier(c.resolve("settings").hooks.alerts, c.resolve("protocol_log")),
    )
    container.register(
        "sampling_client",
        lambda c: (
            OllamaSamplingClient(c.resolve("settings").llm)
            if c.resolve("settings").llm.enabled
            else None
        ),
    )
    container.register("resource_notifier", lambda _c: LoggingResourceNotifier())
    container.register(
        "hooks",
        lambda c: HooksService(
            c.resolve("settings").hooks,
            c.resolve("store"),
            c.resolve("bus"),
            c.resolve("protocol_log"),
            notifier=c.resolve("notifier"),
            resource_notifier=c.resolve("resource_notifier"),
            sampling_client=c.resolve("sampling_client"),
        ),
    )
    container.register(
        "watcher",
        lambda c: WatcherService(
            c.resolve("settings").watcher,
            c.resolve("settings").accounts,
            c.resolve("store"),
            c.resolve("bus"),
            c.resolve("protocol_log"),
        ),
    )
    return container


def execute(args: argparse.Namespace, settings: AppSettings) -> None:
    """Execute the requested CLI command."""
    command = args.command
    if command == "info":
        _print_info(settings)
    elif command == "watch":
        try:
            asyncio.run(_run_watch(build_container(settings)))
        except KeyboardInterrupt:
            print("Watcher stopped.")
    elif command == "presets":
        print(format_presets(settings.hooks.preset))
    elif command == "hooks":
        print(format_hooks_config(settings.hooks))
    elif command == "check-notifications":
        notifier = Notifier(settings.hooks.alerts)
        print(format_notification_setup(notifier.check_platform_support(), settings.hooks.alerts))
    elif command == "test-notification":
        notifier = Notifier(settings.hooks.alerts)
        print(asyncio.run(run_test_notification(notifier, sound=args.sound)))
    elif command == "configure-alerts":
        notifier = Notifier(settings.hooks.alerts)
        events = (
            [item.strip() for item in args.webhook_events.split(",") if item.strip()]
            if args.webhook_events is not None
            else None
        )
        print(
            configure_alerts(
                notifier,
                desktop=args.desktop,
                sound=args.alert_sound,
                urgency_threshold=args.threshold,
                webhook_url=args.webhook_url,
                webhook_events=events,
                save=args.save,
                env_file=args.env_file,
            )
        )


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    execute(args, settings)


def _print_info(settings: AppSettings) -> None:
    """Summarise the configured accounts and hook mode."""
    print("Inbox Watch is ready. Configure accounts and hooks to get started.")
    if not settings.accounts:
        print("Accounts: none configured")
    for account in settings.accounts:
        print(f"Account {account.name}: {account.username or '-'}@{account.host}:{account.port}")
    print(f"Watched folders: {', '.join(settings.watcher.folders)}")
    print(f"Watcher enabled: {'yes' if settings.watcher.enabled else 'no'}")
    print(f"Hook mode: {settings.hooks.on_new_email} (preset: {settings.hooks.preset})")
    print(f"Classification: {'enabled' if settings.llm.enabled else 'disabled'}")


async def _run_watch(container: ServiceContainer) -> None:
    """Start the pipeline and keep it running until cancelled."""
    settings: AppSettings = container.resolve("settings")
    if not settings.watcher.enabled:
        print("Watcher is disabled. Set INBOX_WATCH_WATCHER__ENABLED=true to start it.")
        return
    if not settings.accounts:
        print("No accounts configured; nothing to watch.")
        return

    hooks: HooksService = container.resolve("hooks")
    watcher: WatcherService = container.resolve("watcher")
    notifier: Notifier = container.resolve("notifier")
    store: ImapMailStore = container.resolve("store")

    hooks.start(ClientCapabilities(sampling=settings.llm.enabled))
    notifier.start()
    try:
        await watcher.start()
        print(format_watcher_status(watcher.get_status()))
        await asyncio.Event().wait()
    finally:
        await watcher.stop()
        hooks.stop()
        await notifier.drain()
        notifier.stop()
        await store.close()


__all__ = ["LoggingResourceNotifier", "build_container", "build_parser", "execute", "main"]


if __name__ == "__main__":
    main()
