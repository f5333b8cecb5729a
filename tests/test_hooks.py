"""Tests for the batching triage engine."""

# pylint: disable=protected-access

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime, timezone

import pytest

from inbox_watch.core.config import HooksSettings
from inbox_watch.core.events import EmailEventBus, EventKind
from inbox_watch.core.interfaces import (
    AddLabels,
    ClientCapabilities,
    MarkRead,
    ModelPreferences,
    Mutation,
    SamplingMessage,
    SamplingResult,
    SetFlag,
)
from inbox_watch.core.models import (
    AlertPayload,
    EmailAddress,
    EmailArrivedEvent,
    MessageSummary,
    Priority,
)
from inbox_watch.intelligence import MAX_SAMPLING_PER_MINUTE, HooksService


def _message(uid: int, subject: str | None = None) -> MessageSummary:
    return MessageSummary(
        id=str(uid),
        subject=subject or f"Subject {uid}",
        sender=EmailAddress(name="Alice", address="alice@example.com"),
        recipients=(EmailAddress(name=None, address="me@example.com"),),
        date=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


def _event(*uids: int, account: str = "personal") -> EmailArrivedEvent:
    return EmailArrivedEvent(
        account=account, folder="INBOX", messages=tuple(_message(uid) for uid in uids)
    )


class RecordingStore:
    def __init__(self, fail: bool = False, reject: Sequence[str] = ()) -> None:
        self.fail = fail
        self.reject = set(reject)
        self.mutations: list[tuple[str, str, str, Mutation]] = []

    async def connect(self, account: object) -> object:
        raise AssertionError("engine must not open watcher connections")

    async def mutate(
        self, account: str, folder: str, message_id: str, mutation: Mutation
    ) -> None:
        if self.fail:
            raise RuntimeError("store offline")
        if isinstance(mutation, AddLabels) and self.reject.intersection(mutation.labels):
            raise RuntimeError("keyword rejected")
        self.mutations.append((account, folder, message_id, mutation))


class RecordingLog:
    def __init__(self) -> None:
        self.entries: list[tuple[str, str, str]] = []

    def log(self, level: str, source: str, message: str) -> None:
        self.entries.append((level, source, message))

    def messages(self, prefix: str) -> list[str]:
        return [message for _level, _source, message in self.entries if message.startswith(prefix)]


class RecordingNotifier:
    def __init__(self) -> None:
        self.alerts: list[tuple[AlertPayload, bool]] = []

    async def alert(self, payload: AlertPayload, force_desktop: bool = False) -> None:
        self.alerts.append((payload, force_desktop))

    def get_config(self) -> object:
        raise AssertionError("not used")


class RecordingResources:
    def __init__(self) -> None:
        self.uris: list[str] = []

    async def send_resource_updated(self, uri: str) -> None:
        self.uris.append(uri)


class StubSamplingClient:
    def __init__(self, text: str = "[]", model: str | None = "stub-model") -> None:
        self.text = text
        self.model = model
        self.calls: list[tuple[Sequence[SamplingMessage], int, ModelPreferences | None]] = []
        self.error: Exception | None = None

    async def create_message(
        self,
        messages: Sequence[SamplingMessage],
        *,
        max_tokens: int,
        model_preferences: ModelPreferences | None = None,
    ) -> SamplingResult:
        self.calls.append((messages, max_tokens, model_preferences))
        if self.error is not None:
            raise self.error
        return SamplingResult(model=self.model, text=self.text)


def _hooks(
    bus: EmailEventBus,
    *,
    store: RecordingStore | None = None,
    log: RecordingLog | None = None,
    notifier: RecordingNotifier | None = None,
    sampling: StubSamplingClient | None = None,
    resources: RecordingResources | None = None,
    **settings: object,
) -> HooksService:
    values: dict[str, object] = {"batch_delay_seconds": 60.0}
    values.update(settings)
    return HooksService(
        HooksSettings.model_validate(values),
        store or RecordingStore(),
        bus,
        log or RecordingLog(),
        notifier=notifier,  # type: ignore[arg-type]
        resource_notifier=resources,
        sampling_client=sampling,
    )


@pytest.mark.asyncio
async def test_arrivals_within_window_flush_once() -> None:
    bus = EmailEventBus()
    log = RecordingLog()
    hooks = _hooks(bus, log=log, batch_delay_seconds=0.05)
    hooks.start(ClientCapabilities())
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(1))
        bus.emit(EventKind.EMAIL_NEW, _event(2))
        bus.emit(EventKind.EMAIL_NEW, _event(3, account="work"))
        assert hooks.pending_count == 3

        await asyncio.sleep(0.2)

        assert hooks.pending_count == 0
        assert log.messages("📬 New email in") == [
            '📬 New email in personal/INBOX: "Subject 1" from alice@example.com',
            '📬 New email in personal/INBOX: "Subject 2" from alice@example.com',
            '📬 New email in work/INBOX: "Subject 3" from alice@example.com',
        ]
    finally:
        hooks.stop()


@pytest.mark.asyncio
async def test_mode_none_never_subscribes() -> None:
    bus = EmailEventBus()
    hooks = _hooks(bus, on_new_email="none")
    hooks.start(ClientCapabilities(sampling=True))

    assert bus.listener_count(EventKind.EMAIL_NEW) == 0
    bus.emit(EventKind.EMAIL_NEW, _event(1))
    assert hooks.pending_count == 0
    hooks.stop()


@pytest.mark.asyncio
async def test_triage_flags_and_alerts_urgent_message() -> None:
    bus = EmailEventBus()
    store = RecordingStore()
    notifier = RecordingNotifier()
    log = RecordingLog()
    sampling = StubSamplingClient('[{"priority":"urgent","flag":true}]')
    hooks = _hooks(
        bus,
        store=store,
        log=log,
        notifier=notifier,
        sampling=sampling,
        on_new_email="triage",
        auto_flag=True,
    )
    hooks.start(ClientCapabilities(sampling=True))
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(1))
        await hooks.flush()
    finally:
        hooks.stop()

    assert store.mutations == [("personal", "INBOX", "1", SetFlag())]
    assert len(notifier.alerts) == 1
    payload, forced = notifier.alerts[0]
    assert payload.priority is Priority.URGENT
    assert payload.rule_name == "inbox-zero"
    assert forced is False
    assert log.messages("📬 [urgent]") == [
        '📬 [urgent] "Subject 1" from alice@example.com ⭐'
    ]

    messages, max_tokens, preferences = sampling.calls[0]
    assert max_tokens == 1000
    assert preferences == ModelPreferences(
        hints=("fast",), speed_priority=0.8, intelligence_priority=0.5
    )
    assert messages[0].role == "user"
    assert "Subject 1" in messages[0].text


@pytest.mark.asyncio
async def test_auto_label_applies_suggested_labels() -> None:
    bus = EmailEventBus()
    store = RecordingStore()
    log = RecordingLog()
    sampling = StubSamplingClient(
        '[{"priority":"low","labels":["News","Later"],"action":"Archive"}]'
    )
    hooks = _hooks(
        bus, store=store, log=log, sampling=sampling, on_new_email="triage", auto_label=True
    )
    hooks.start(ClientCapabilities(sampling=True))
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(5))
        await hooks.flush()
    finally:
        hooks.stop()

    assert store.mutations == [("personal", "INBOX", "5", AddLabels(labels=("News", "Later")))]
    assert '📬 [low] "Subject 5" from alice@example.com → labels: News, Later' in log.messages("📬")
    assert "   Action: Archive" in log.messages("   Action")


@pytest.mark.asyncio
async def test_rate_limit_exhausted_falls_back_to_notify() -> None:
    bus = EmailEventBus()
    store = RecordingStore()
    log = RecordingLog()
    sampling = StubSamplingClient('[{"priority":"urgent","flag":true}]')
    hooks = _hooks(
        bus, store=store, log=log, sampling=sampling, on_new_email="triage", auto_flag=True
    )
    hooks.start(ClientCapabilities(sampling=True))
    try:
        for _ in range(MAX_SAMPLING_PER_MINUTE):
            assert hooks._rate.try_acquire()
        bus.emit(EventKind.EMAIL_NEW, _event(1, 2, 3, 4))
        await hooks.flush()
    finally:
        hooks.stop()

    assert sampling.calls == []
    assert store.mutations == []
    assert len(log.messages("📬 New email in")) == 4
    assert ("warning", "hooks", "Sampling rate limit reached; falling back to notify") in log.entries


@pytest.mark.asyncio
async def test_triage_without_capability_notifies() -> None:
    bus = EmailEventBus()
    log = RecordingLog()
    sampling = StubSamplingClient()
    hooks = _hooks(bus, log=log, sampling=sampling, on_new_email="triage")
    hooks.start(ClientCapabilities(sampling=False))
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(1))
        await hooks.flush()
    finally:
        hooks.stop()

    assert sampling.calls == []
    assert len(log.messages("📬 New email in")) == 1


@pytest.mark.asyncio
async def test_sampling_error_falls_back_to_notify() -> None:
    bus = EmailEventBus()
    log = RecordingLog()
    notifier = RecordingNotifier()
    sampling = StubSamplingClient()
    sampling.error = RuntimeError("model offline")
    hooks = _hooks(bus, log=log, notifier=notifier, sampling=sampling, on_new_email="triage")
    hooks.start(ClientCapabilities(sampling=True))
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(1, 2))
        await hooks.flush()
    finally:
        hooks.stop()

    assert ("warning", "hooks", "Sampling failed: model offline; falling back to notify") in log.entries
    assert len(log.messages("📬 New email in")) == 2
    assert notifier.alerts == []


@pytest.mark.asyncio
async def test_empty_model_reply_defaults_to_normal_priority() -> None:
    bus = EmailEventBus()
    store = RecordingStore()
    notifier = RecordingNotifier()
    sampling = StubSamplingClient('[{"priority":"urgent","flag":true}]', model=None)
    hooks = _hooks(
        bus,
        store=store,
        notifier=notifier,
        sampling=sampling,
        on_new_email="triage",
        auto_flag=True,
        preset="none",
    )
    hooks.start(ClientCapabilities(sampling=True))
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(1, 2))
        await hooks.flush()
    finally:
        hooks.stop()

    assert store.mutations == []
    assert [payload.priority for payload, _forced in notifier.alerts] == [
        Priority.NORMAL,
        Priority.NORMAL,
    ]
    assert all(payload.rule_name is None for payload, _forced in notifier.alerts)


@pytest.mark.asyncio
async def test_arrivals_during_flush_go_to_next_batch() -> None:
    bus = EmailEventBus()
    sampling = StubSamplingClient('[{"priority":"normal"}]')
    hooks = _hooks(bus, sampling=sampling, on_new_email="triage")

    original = sampling.create_message

    async def create_message(messages, *, max_tokens, model_preferences=None):  # type: ignore[no-untyped-def]
        bus.emit(EventKind.EMAIL_NEW, _event(99))
        return await original(
            messages, max_tokens=max_tokens, model_preferences=model_preferences
        )

    sampling.create_message = create_message  # type: ignore[method-assign]
    hooks.start(ClientCapabilities(sampling=True))
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(1))
        await hooks.flush()

        assert hooks.pending_count == 1
        assert "Subject 99" not in sampling.calls[0][0][0].text
        assert hooks.take_pending()[0].message.id == "99"
    finally:
        hooks.stop()


@pytest.mark.asyncio
async def test_stop_drops_pending_and_prevents_scheduling() -> None:
    bus = EmailEventBus()
    log = RecordingLog()
    hooks = _hooks(bus, log=log, batch_delay_seconds=0.05)
    hooks.start(ClientCapabilities())
    bus.emit(EventKind.EMAIL_NEW, _event(1))

    hooks.stop()
    assert hooks.pending_count == 0
    assert bus.listener_count(EventKind.EMAIL_NEW) == 0

    hooks._on_new_email(_event(2))
    await asyncio.sleep(0.15)

    assert hooks.pending_count == 0
    assert log.messages("📬") == []


@pytest.mark.asyncio
async def test_static_rule_labels_and_forces_alert() -> None:
    bus = EmailEventBus()
    store = RecordingStore()
    notifier = RecordingNotifier()
    log = RecordingLog()
    hooks = _hooks(
        bus,
        store=store,
        notifier=notifier,
        log=log,
        rules=[
            {
                "name": "alice",
                "match": {"sender": "*@example.com"},
                "actions": {"labels": ["Friends"], "mark_read": True, "alert": True},
            }
        ],
    )
    hooks.start(ClientCapabilities())
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(3))
        await hooks.flush()
    finally:
        hooks.stop()

    assert store.mutations == [
        ("personal", "INBOX", "3", AddLabels(labels=("Friends",))),
        ("personal", "INBOX", "3", MarkRead()),
    ]
    payload, forced = notifier.alerts[0]
    assert forced is True
    assert payload.priority is Priority.HIGH
    assert payload.rule_name == "alice"
    assert payload.labels == ("Friends",)
    assert '📋 Rule "alice" matched "Subject 3"' in log.messages("📋")
    assert len(log.messages("📬 New email in")) == 1


@pytest.mark.asyncio
async def test_mutation_failures_are_logged_and_do_not_stop_alerts() -> None:
    bus = EmailEventBus()
    store = RecordingStore(fail=True)
    notifier = RecordingNotifier()
    log = RecordingLog()
    sampling = StubSamplingClient('[{"priority":"high","flag":true,"labels":["X"]}]')
    hooks = _hooks(
        bus,
        store=store,
        notifier=notifier,
        log=log,
        sampling=sampling,
        on_new_email="triage",
        auto_flag=True,
        auto_label=True,
    )
    hooks.start(ClientCapabilities(sampling=True))
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(8))
        await hooks.flush()
    finally:
        hooks.stop()

    warnings = [message for level, _source, message in log.entries if level == "warning"]
    assert 'Could not add label "X" to email 8: store offline' in warnings
    assert "Could not flag email 8: store offline" in warnings
    assert notifier.alerts[0][0].priority is Priority.HIGH


@pytest.mark.asyncio
async def test_resource_updates_sent_once_per_account() -> None:
    bus = EmailEventBus()
    resources = RecordingResources()
    hooks = _hooks(bus, resources=resources)
    hooks.start(ClientCapabilities())
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(1, 2))
        bus.emit(EventKind.EMAIL_NEW, _event(3, account="work"))
        await hooks.flush()
    finally:
        hooks.stop()

    assert resources.uris == [
        "email://personal/unread",
        "email://personal/mailboxes",
        "email://work/unread",
        "email://work/mailboxes",
    ]


@pytest.mark.asyncio
async def test_rejected_label_does_not_block_the_others() -> None:
    bus = EmailEventBus()
    store = RecordingStore(reject=["Bad"])
    log = RecordingLog()
    sampling = StubSamplingClient('[{"flag":true,"labels":["News","Bad","Later"]}]')
    hooks = _hooks(
        bus,
        store=store,
        log=log,
        sampling=sampling,
        on_new_email="triage",
        auto_flag=True,
        auto_label=True,
    )
    hooks.start(ClientCapabilities(sampling=True))
    try:
        bus.emit(EventKind.EMAIL_NEW, _event(6))
        await hooks.flush()
    finally:
        hooks.stop()

    assert [mutation for *_rest, mutation in store.mutations] == [
        AddLabels(labels=("News",)),
        AddLabels(labels=("Later",)),
        SetFlag(),
    ]
    warnings = [message for level, _source, message in log.entries if level == "warning"]
    assert warnings == ['Could not add label "Bad" to email 6: keyword rejected']
