"""Push-subscribed folder watchers with per-target reconnect handling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..core.config import AccountSettings, WatcherSettings
from ..core.events import EmailEventBus, EventKind
from ..core.interfaces import (
    Closed,
    ItemCountDecreased,
    ItemCountIncreased,
    MailStore,
    ProtocolLog,
    StoreConnection,
    StoreSignal,
    Subscription,
)
from ..core.logging import ProtocolLogger
from ..core.models import (
    EmailArrivedEvent,
    MessagesExpungedEvent,
    WatchTarget,
    WatcherStatus,
)
from .state import (
    BackoffPolicy,
    ConnectFailed,
    Connected,
    ConnectionClosed,
    FetchCompleted,
    FetchFailed,
    ItemsArrived,
    Phase,
    RetryDue,
    StopRequested,
    TargetState,
    WatchEvent,
    initial_state,
    transition,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _TargetRuntime:
    """Live resources owned by one watch target."""

    target: WatchTarget
    account: AccountSettings
    state: TargetState
    inbox: asyncio.Queue[StoreSignal] = field(default_factory=asyncio.Queue)
    first_attempt: asyncio.Event = field(default_factory=asyncio.Event)
    connection: StoreConnection | None = None
    subscription: Subscription | None = None
    task: asyncio.Task[None] | None = None
    pump: asyncio.Task[None] | None = None


class WatcherService:
    """Maintain one push subscription per (account, folder) pair.

    Each target runs in its own task and consumes store signals from its own
    inbox, so fetches and reconnects for a target never overlap while
    different targets proceed independently.
    """

    def __init__(
        self,
        settings: WatcherSettings,
        accounts: Sequence[AccountSettings],
        store: MailStore,
        bus: EmailEventBus,
        protocol_log: ProtocolLog | None = None,
    ) -> None:
        """Prepare the watcher; nothing connects until :meth:`start`."""
        self._settings = settings
        self._accounts = list(accounts)
        self._store = store
        self._bus = bus
        self._log = protocol_log or ProtocolLogger()
        self._policy = BackoffPolicy(
            initial_seconds=settings.initial_backoff_seconds,
            max_seconds=settings.max_backoff_seconds,
            max_consecutive_failures=settings.max_consecutive_failures,
        )
        self._targets: dict[str, _TargetRuntime] = {}

    # Public API ---------------------------------------------------------------
    async def start(self) -> None:
        """Start a watcher for every configured pair and await first connects."""
        if not self._settings.enabled:
            LOGGER.debug("Watcher disabled; not starting")
            return

        started: list[_TargetRuntime] = []
        for account in self._accounts:
            for folder in self._settings.folders:
                target = WatchTarget(account=account.name, folder=folder)
                if target.key in self._targets:
                    continue
                runtime = _TargetRuntime(
                    target=target,
                    account=account,
                    state=initial_state(self._policy),
                )
                self._targets[target.key] = runtime
                runtime.task = asyncio.create_task(
                    self._run(runtime), name=f"watch:{target.key}"
                )
                started.append(runtime)

        await asyncio.gather(
            *(runtime.first_attempt.wait() for runtime in started)
        )

    async def stop(self) -> None:
        """Stop every target, releasing holds and connections best-effort."""
        runtimes = list(self._targets.values())
        self._targets.clear()
        for runtime in runtimes:
            self._apply(runtime, StopRequested())
            for task in (runtime.task, runtime.pump):
                if task is not None and not task.done():
                    task.cancel()
        tasks = [
            task
            for runtime in runtimes
            for task in (runtime.task, runtime.pump)
            if task is not None
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.gather(
            *(self._release(runtime) for runtime in runtimes), return_exceptions=True
        )

    def get_status(self) -> list[WatcherStatus]:
        """Return a snapshot of every configured target."""
        return [
            WatcherStatus(
                account=runtime.target.account,
                folder=runtime.target.folder,
                connected=runtime.state.connected,
                last_seen_id=runtime.state.last_seen,
            )
            for runtime in self._targets.values()
        ]

    # Target loop --------------------------------------------------------------
    async def _run(self, runtime: _TargetRuntime) -> None:
        try:
            while runtime.state.phase is not Phase.STOPPED:
                phase = runtime.state.phase
                if phase is Phase.CONNECTING:
                    await self._connect(runtime)
                    runtime.first_attempt.set()
                elif phase is Phase.RECONNECTING:
                    await self._wait_for_retry(runtime)
                else:
                    await self._listen(runtime)
        finally:
            runtime.first_attempt.set()

    async def _connect(self, runtime: _TargetRuntime) -> None:
        target = runtime.target
        try:
            runtime.connection = await self._store.connect(runtime.account)
            runtime.subscription = await runtime.connection.subscribe(target.folder)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            self._log.log(
                "warning",
                "watcher",
                f"IDLE connect failed for {target.account}/{target.folder}: {exc}",
            )
            await self._release(runtime)
            self._apply(runtime, ConnectFailed(error=str(exc)))
            self._report_if_stopped(runtime)
            return

        runtime.inbox = asyncio.Queue()
        self._apply(runtime, Connected(next_id=runtime.subscription.next_id))
        runtime.pump = asyncio.create_task(
            self._pump(runtime.subscription, runtime.inbox),
            name=f"watch-signals:{target.key}",
        )
        self._log.log(
            "info",
            "watcher",
            f"IDLE started: {target.account}/{target.folder} "
            f"(uid > {runtime.state.last_seen})",
        )

    async def _wait_for_retry(self, runtime: _TargetRuntime) -> None:
        delay = runtime.state.backoff_seconds
        target = runtime.target
        self._log.log(
            "info",
            "watcher",
            f"Reconnecting {target.account}/{target.folder} in {delay:g}s",
        )
        await asyncio.sleep(delay)
        self._apply(runtime, RetryDue())

    async def _listen(self, runtime: _TargetRuntime) -> None:
        signal = await runtime.inbox.get()
        if isinstance(signal, ItemCountIncreased):
            self._apply(runtime, ItemsArrived())
            await self._fetch_new(runtime)
        elif isinstance(signal, ItemCountDecreased):
            self._bus.emit(
                EventKind.EMAIL_EXPUNGE,
                MessagesExpungedEvent(
                    account=runtime.target.account,
                    folder=runtime.target.folder,
                    count=signal.removed,
                ),
            )
        elif isinstance(signal, Closed):
            target = runtime.target
            LOGGER.info(
                "Connection closed for %s/%s: %s",
                target.account,
                target.folder,
                signal.reason,
            )
            await self._release(runtime)
            self._apply(runtime, ConnectionClosed())
            self._report_if_stopped(runtime)

    async def _fetch_new(self, runtime: _TargetRuntime) -> None:
        connection = runtime.connection
        target = runtime.target
        last_seen = runtime.state.last_seen
        if connection is None:
            self._apply(runtime, FetchFailed(error="not connected"))
            return
        try:
            summaries = await connection.fetch_summaries(last_seen + 1)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            self._log.log("warning", "watcher", f"Failed to fetch new emails: {exc}")
            self._apply(runtime, FetchFailed(error=str(exc)))
            return

        fresh = [summary for summary in summaries if int(summary.id) > last_seen]
        max_id = max((int(summary.id) for summary in fresh), default=None)
        self._apply(runtime, FetchCompleted(max_id=max_id))
        if not fresh:
            return

        self._bus.emit(
            EventKind.EMAIL_NEW,
            EmailArrivedEvent(
                account=target.account, folder=target.folder, messages=tuple(fresh)
            ),
        )
        self._log.log(
            "info",
            "watcher",
            f"📬 {len(fresh)} new email(s) in {target.account}/{target.folder}",
        )

    # Internal helpers ---------------------------------------------------------
    def _apply(self, runtime: _TargetRuntime, event: WatchEvent) -> None:
        runtime.state = transition(runtime.state, event, self._policy)

    def _report_if_stopped(self, runtime: _TargetRuntime) -> None:
        if runtime.state.phase is Phase.STOPPED:
            target = runtime.target
            self._log.log(
                "error",
                "watcher",
                f"Giving up on {target.account}/{target.folder} after "
                f"{runtime.state.consecutive_failures} consecutive failures",
            )

    @staticmethod
    async def _pump(
        subscription: Subscription, inbox: asyncio.Queue[StoreSignal]
    ) -> None:
        """Move push signals from the store into the target inbox."""
        try:
            async for signal in subscription.events():
                inbox.put_nowait(signal)
                if isinstance(signal, Closed):
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            inbox.put_nowait(Closed(reason=str(exc)))
            return
        inbox.put_nowait(Closed(reason="subscription ended"))

    @staticmethod
    async def _release(runtime: _TargetRuntime) -> None:
        """Drop the folder hold and connection, ignoring errors."""
        pump, runtime.pump = runtime.pump, None
        if pump is not None and not pump.done() and pump is not asyncio.current_task():
            pump.cancel()
        subscription, runtime.subscription = runtime.subscription, None
        connection, runtime.connection = runtime.connection, None
        if subscription is not None:
            try:
                await subscription.release()
            except Exception:  # pylint: disable=broad-except
                LOGGER.debug("Releasing folder hold raised; ignoring during shutdown")
        if connection is not None:
            try:
                await connection.close()
            except Exception:  # pylint: disable=broad-except
                LOGGER.debug("Closing store connection raised; ignoring during shutdown")


__all__ = ["WatcherService"]
