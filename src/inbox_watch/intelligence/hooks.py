"""Batching triage engine reacting to new-mail events."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from inbox_watch.alerts.notifier import Notifier
from inbox_watch.core.config import HookRule, HooksSettings
from inbox_watch.core.events import EmailEventBus, EventKind
from inbox_watch.core.interfaces import (
    AddLabels,
    ClientCapabilities,
    MailStore,
    MarkRead,
    ModelPreferences,
    Mutation,
    ProtocolLog,
    ResourceNotifier,
    SamplingClient,
    SamplingError,
    SamplingMessage,
    SetFlag,
)
from inbox_watch.core.logging import ProtocolLogger
from inbox_watch.core.models import (
    AlertPayload,
    BatchItem,
    EmailArrivedEvent,
    Priority,
    TriageResult,
)
from inbox_watch.core.ratelimit import WindowCounter

from .prompts import build_triage_prompt, get_preset
from .rules import matching_rules
from .triage import parse_triage_response

LOGGER = logging.getLogger(__name__)

MAX_SAMPLING_PER_MINUTE = 10
TRIAGE_MAX_TOKENS = 1000
TRIAGE_MODEL_PREFERENCES = ModelPreferences(
    hints=("fast",), speed_priority=0.8, intelligence_priority=0.5
)


class HooksService:
    """Coalesce new-mail events into batches and triage or announce them.

    Arrivals are collected until ``batch_delay_seconds`` after the first one
    of a burst. A flush swaps the pending batch out before doing any I/O, so
    mail arriving meanwhile lands in the next batch. In ``triage`` mode with a
    negotiated sampling capability each batch is classified in one model call,
    limited to :data:`MAX_SAMPLING_PER_MINUTE`; every failure on that path
    falls back to plain notification.
    """

    # pylint: disable=too-many-instance-attributes,too-many-arguments
    def __init__(
        self,
        settings: HooksSettings,
        store: MailStore,
        bus: EmailEventBus,
        protocol_log: ProtocolLog | None = None,
        *,
        notifier: Notifier | None = None,
        resource_notifier: ResourceNotifier | None = None,
        sampling_client: SamplingClient | None = None,
    ) -> None:
        """Wire the engine to its collaborators; nothing runs until ``start``."""
        self._settings = settings
        self._store = store
        self._bus = bus
        self._log = protocol_log or ProtocolLogger()
        self._notifier = notifier
        self._resource_notifier = resource_notifier
        self._sampling_client = sampling_client
        self._sampling_supported = False
        self._running = False
        self._pending: list[BatchItem] = []
        self._flush_handle: asyncio.TimerHandle | None = None
        self._flush_tasks: set[asyncio.Task[None]] = set()
        self._rate = WindowCounter(MAX_SAMPLING_PER_MINUTE)

    # Accessors ----------------------------------------------------------------
    def get_hooks_config(self) -> HooksSettings:
        """Return the active hooks settings including current alert settings."""
        if self._notifier is None:
            return self._settings
        return self._settings.model_copy(update={"alerts": self._notifier.get_config()})

    def get_notifier(self) -> Notifier | None:
        """Return the alert dispatcher wired into the engine, if any."""
        return self._notifier

    @property
    def sampling_supported(self) -> bool:
        """Whether the calling agent advertised the classification call."""
        return self._sampling_supported

    @property
    def pending_count(self) -> int:
        """Number of messages waiting for the next flush."""
        return len(self._pending)

    # Lifecycle ----------------------------------------------------------------
    def start(self, capabilities: ClientCapabilities) -> None:
        """Subscribe to new-mail events unless the mode is ``none``."""
        self._sampling_supported = capabilities.sampling is True
        mode = self._settings.on_new_email
        if mode == "none" or self._running:
            return

        self._bus.on(EventKind.EMAIL_NEW, self._on_new_email)
        self._rate.start()
        self._running = True
        self._log.log(
            "info",
            "hooks",
            f"Hooks active: mode={mode}, "
            f"sampling={'yes' if self._sampling_supported else 'no'}",
        )

    def stop(self) -> None:
        """Cancel timers and in-flight flushes, drop the batch, unsubscribe."""
        self._running = False
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self._pending = []
        self._rate.stop()
        for task in list(self._flush_tasks):
            task.cancel()
        self._flush_tasks.clear()
        self._bus.off(EventKind.EMAIL_NEW, self._on_new_email)

    # Event handling + batching -------------------------------------------------
    def _on_new_email(self, event: EmailArrivedEvent) -> None:
        if not self._running:
            return
        self._pending.extend(
            BatchItem(account=event.account, folder=event.folder, message=message)
            for message in event.messages
        )
        if self._flush_handle is None:
            loop = asyncio.get_running_loop()
            self._flush_handle = loop.call_later(
                self._settings.batch_delay_seconds, self._flush_due
            )

    def _flush_due(self) -> None:
        self._flush_handle = None
        if not self._running:
            return
        task = asyncio.create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_finished)

    def _flush_finished(self, task: asyncio.Task[None]) -> None:
        self._flush_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Batch flush failed: %s", exc, exc_info=exc)

    def take_pending(self) -> list[BatchItem]:
        """Swap the pending batch for an empty one and return the old batch."""
        batch, self._pending = self._pending, []
        return batch

    async def flush(self) -> None:
        """Process everything collected so far."""
        batch = self.take_pending()
        if not batch:
            return

        await self._send_resource_updates(batch)
        await self._apply_rules(batch)

        if self._settings.on_new_email == "triage" and self._sampling_supported:
            await self._triage_batch(batch)
        else:
            await self._notify_batch(batch)

    # Resource subscription notifications ----------------------------------------
    async def _send_resource_updates(self, batch: Sequence[BatchItem]) -> None:
        notifier = self._resource_notifier
        if notifier is None:
            return
        accounts = dict.fromkeys(item.account for item in batch)
        uris = [
            uri
            for account in accounts
            for uri in (f"email://{account}/unread", f"email://{account}/mailboxes")
        ]
        results = await asyncio.gather(
            *(notifier.send_resource_updated(uri) for uri in uris),
            return_exceptions=True,
        )
        for uri, result in zip(uris, results):
            if isinstance(result, Exception):
                LOGGER.debug("Resource update for %s failed: %s", uri, result)

    # Notify mode ----------------------------------------------------------------
    async def _notify_batch(self, batch: Sequence[BatchItem]) -> None:
        for item in batch:
            message = item.message
            self._log.log(
                "info",
                "hooks",
                f"📬 New email in {item.account}/{item.folder}: "
                f'"{message.subject}" from {message.sender.address}',
            )

    # Static rules -----------------------------------------------------------------
    async def _apply_rules(self, batch: Sequence[BatchItem]) -> None:
        if not self._settings.rules:
            return
        for item in batch:
            for rule in matching_rules(self._settings.rules, item.message):
                await self._apply_rule(item, rule)

    async def _apply_rule(self, item: BatchItem, rule: HookRule) -> None:
        actions = rule.actions
        if actions.labels:
            await self._add_labels(item, tuple(actions.labels))
        mutations: list[Mutation] = []
        if actions.flag:
            mutations.append(SetFlag())
        if actions.mark_read:
            mutations.append(MarkRead())
        for mutation in mutations:
            await self._mutate(item, mutation)

        self._log.log(
            "info",
            "hooks",
            f'📋 Rule "{rule.name}" matched "{item.message.subject}"',
        )
        if actions.alert:
            await self._dispatch_alert(
                AlertPayload(
                    account=item.account,
                    sender=item.message.sender,
                    subject=item.message.subject,
                    priority=Priority.HIGH,
                    labels=tuple(actions.labels),
                    rule_name=rule.name,
                ),
                force_desktop=True,
            )

    # Triage mode -------------------------------------------------------------------
    async def _triage_batch(self, batch: Sequence[BatchItem]) -> None:
        if not self._rate.try_acquire():
            self._log.log(
                "warning", "hooks", "Sampling rate limit reached; falling back to notify"
            )
            await self._notify_batch(batch)
            return

        preset = get_preset(self._settings.preset)
        prompt = build_triage_prompt(
            batch,
            preset=preset,
            custom_instructions=self._settings.custom_instructions,
        )
        try:
            client = self._sampling_client
            if client is None:
                raise SamplingError("Sampling client not available")
            result = await client.create_message(
                [SamplingMessage(role="user", text=prompt)],
                max_tokens=TRIAGE_MAX_TOKENS,
                model_preferences=TRIAGE_MODEL_PREFERENCES,
            )
            text = result.text if result.model else ""
            results = parse_triage_response(text, len(batch))
        except Exception as exc:  # pylint: disable=broad-except
            self._log.log(
                "warning", "hooks", f"Sampling failed: {exc}; falling back to notify"
            )
            await self._notify_batch(batch)
            return

        await self._apply_triage_results(batch, results)

    async def _apply_triage_results(
        self, batch: Sequence[BatchItem], results: Sequence[TriageResult]
    ) -> None:
        padded = list(results) + [TriageResult()] * (len(batch) - len(results))
        outcomes = await asyncio.gather(
            *(
                self._apply_single_triage(item, triage)
                for item, triage in zip(batch, padded)
            ),
            return_exceptions=True,
        )
        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                LOGGER.error(
                    "Applying triage to email %s failed: %s", item.message.id, outcome
                )

    async def _apply_single_triage(self, item: BatchItem, triage: TriageResult) -> None:
        message = item.message
        labels = triage.labels or ()

        if self._settings.auto_label and labels:
            await self._add_labels(item, tuple(labels))

        if self._settings.auto_flag and triage.flag:
            await self._mutate(item, SetFlag())

        priority = triage.priority or Priority.NORMAL
        label_str = f" → labels: {', '.join(labels)}" if labels else ""
        flag_str = " ⭐" if triage.flag else ""
        self._log.log(
            "info",
            "hooks",
            f'📬 [{priority.value}] "{message.subject}" from '
            f"{message.sender.address}{flag_str}{label_str}",
        )
        if triage.action:
            self._log.log("info", "hooks", f"   Action: {triage.action}")

        preset_id = self._settings.preset
        await self._dispatch_alert(
            AlertPayload(
                account=item.account,
                sender=message.sender,
                subject=message.subject,
                priority=priority,
                labels=tuple(labels),
                rule_name=preset_id if preset_id != "none" else None,
            )
        )

    # Side effects ------------------------------------------------------------------
    async def _add_labels(self, item: BatchItem, labels: tuple[str, ...]) -> None:
        if len(labels) > 1 and await self._mutate(item, AddLabels(labels=labels), quiet=True):
            return
        # A single rejected keyword fails the combined store; retry each alone.
        for label in labels:
            await self._mutate(item, AddLabels(labels=(label,)))

    async def _mutate(
        self, item: BatchItem, mutation: Mutation, *, quiet: bool = False
    ) -> bool:
        try:
            await self._store.mutate(item.account, item.folder, item.message.id, mutation)
        except Exception as exc:  # pylint: disable=broad-except
            if quiet:
                LOGGER.debug("Mutation %r on email %s failed: %s", mutation, item.message.id, exc)
                return False
            if isinstance(mutation, AddLabels):
                detail = (
                    f'Could not add label "{", ".join(mutation.labels)}" '
                    f"to email {item.message.id}"
                )
            elif isinstance(mutation, SetFlag):
                detail = f"Could not flag email {item.message.id}"
            else:
                detail = f"Could not mark email {item.message.id} as read"
            self._log.log("warning", "hooks", f"{detail}: {exc}")
            return False
        return True

    async def _dispatch_alert(
        self, payload: AlertPayload, *, force_desktop: bool = False
    ) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.alert(payload, force_desktop=force_desktop)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Alert dispatch failed for %s: %s", payload.subject, exc)


__all__ = [
    "HooksService",
    "MAX_SAMPLING_PER_MINUTE",
    "TRIAGE_MAX_TOKENS",
    "TRIAGE_MODEL_PREFERENCES",
]
