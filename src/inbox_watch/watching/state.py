"""Per-target watcher state and its transition function."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum


class Phase(StrEnum):
    """Lifecycle phases of a watch target."""

    CONNECTING = "connecting"
    IDLE = "idle"
    NOTIFYING = "notifying"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


@dataclass(slots=True, frozen=True)
class Connected:
    """Connection, authentication and folder subscription succeeded."""

    next_id: int


@dataclass(slots=True, frozen=True)
class ConnectFailed:
    """Any step of connecting failed."""

    error: str


@dataclass(slots=True, frozen=True)
class ItemsArrived:
    """The store signalled that the folder grew."""


@dataclass(slots=True, frozen=True)
class FetchCompleted:
    """Summaries were fetched; ``max_id`` is the highest id seen, if any."""

    max_id: int | None


@dataclass(slots=True, frozen=True)
class FetchFailed:
    """Fetching summaries failed; the range will be retried."""

    error: str


@dataclass(slots=True, frozen=True)
class ConnectionClosed:
    """The store connection dropped."""


@dataclass(slots=True, frozen=True)
class RetryDue:
    """The reconnect delay elapsed."""


@dataclass(slots=True, frozen=True)
class StopRequested:
    """The watcher is shutting the target down."""


WatchEvent = (
    Connected
    | ConnectFailed
    | ItemsArrived
    | FetchCompleted
    | FetchFailed
    | ConnectionClosed
    | RetryDue
    | StopRequested
)


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """Exponential reconnect delays for one target."""

    initial_seconds: float = 1.0
    max_seconds: float = 60.0
    max_consecutive_failures: int | None = None


@dataclass(slots=True, frozen=True)
class TargetState:
    """Immutable snapshot of a single watch target."""

    phase: Phase
    last_seen: int
    backoff_seconds: float
    consecutive_failures: int = 0

    @property
    def connected(self) -> bool:
        """Whether a live subscription backs this target."""
        return self.phase in (Phase.IDLE, Phase.NOTIFYING)


def initial_state(policy: BackoffPolicy) -> TargetState:
    """Return the state a target starts in."""
    return TargetState(
        phase=Phase.CONNECTING, last_seen=0, backoff_seconds=policy.initial_seconds
    )


def next_backoff(current: float, maximum: float) -> float:
    """Double ``current`` without exceeding ``maximum``."""
    return min(current * 2, maximum)


def _failed(state: TargetState, policy: BackoffPolicy) -> TargetState:
    failures = state.consecutive_failures + 1
    limit = policy.max_consecutive_failures
    phase = Phase.STOPPED if limit is not None and failures >= limit else Phase.RECONNECTING
    return replace(state, phase=phase, consecutive_failures=failures)


# pylint: disable=too-many-return-statements
def transition(
    state: TargetState, event: WatchEvent, policy: BackoffPolicy
) -> TargetState:
    """Return the state following ``event``; unexpected events leave it unchanged."""
    if state.phase is Phase.STOPPED:
        return state
    if isinstance(event, StopRequested):
        return replace(state, phase=Phase.STOPPED)

    if isinstance(event, Connected):
        if state.phase is not Phase.CONNECTING:
            return state
        # Re-derive from the store so the gap while offline is not re-announced.
        baseline = max(event.next_id - 1, 0)
        return replace(
            state,
            phase=Phase.IDLE,
            last_seen=max(state.last_seen, baseline),
            backoff_seconds=policy.initial_seconds,
            consecutive_failures=0,
        )
    if isinstance(event, ConnectFailed):
        if state.phase is not Phase.CONNECTING:
            return state
        return _failed(state, policy)
    if isinstance(event, ConnectionClosed):
        if not state.connected:
            return state
        return _failed(state, policy)
    if isinstance(event, RetryDue):
        if state.phase is not Phase.RECONNECTING:
            return state
        return replace(
            state,
            phase=Phase.CONNECTING,
            backoff_seconds=next_backoff(state.backoff_seconds, policy.max_seconds),
        )
    if isinstance(event, ItemsArrived):
        if state.phase is not Phase.IDLE:
            return state
        return replace(state, phase=Phase.NOTIFYING)
    if isinstance(event, FetchCompleted):
        if state.phase is not Phase.NOTIFYING:
            return state
        last_seen = state.last_seen
        if event.max_id is not None:
            last_seen = max(last_seen, event.max_id)
        return replace(state, phase=Phase.IDLE, last_seen=last_seen)
    if isinstance(event, FetchFailed):
        if state.phase is not Phase.NOTIFYING:
            return state
        return replace(state, phase=Phase.IDLE)
    return state


__all__ = [
    "BackoffPolicy",
    "ConnectFailed",
    "Connected",
    "ConnectionClosed",
    "FetchCompleted",
    "FetchFailed",
    "ItemsArrived",
    "Phase",
    "RetryDue",
    "StopRequested",
    "TargetState",
    "WatchEvent",
    "initial_state",
    "next_backoff",
    "transition",
]
