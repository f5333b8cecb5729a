"""Protocol interfaces for decoupling components from their collaborators."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .config import AccountSettings
from .models import MessageSummary


class StoreError(RuntimeError):
    """Raised when the mail store cannot complete an operation."""


class SamplingError(RuntimeError):
    """Raised when the external classification call fails."""


# Store push signals ----------------------------------------------------------
@dataclass(slots=True, frozen=True)
class ItemCountIncreased:
    """The folder now holds more messages than before."""

    count: int


@dataclass(slots=True, frozen=True)
class ItemCountDecreased:
    """Messages were expunged from the folder."""

    removed: int


@dataclass(slots=True, frozen=True)
class Closed:
    """The connection backing a subscription is gone."""

    reason: str | None = None


StoreSignal = ItemCountIncreased | ItemCountDecreased | Closed


# Mutations -------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class AddLabels:
    """Attach labels (keywords) to a message in one store command."""

    labels: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class SetFlag:
    """Mark a message as flagged."""


@dataclass(slots=True, frozen=True)
class MarkRead:
    """Mark a message as seen."""


Mutation = AddLabels | SetFlag | MarkRead


class Subscription(Protocol):
    """Exclusive push subscription on a single folder."""

    next_id: int

    def events(self) -> AsyncIterator[StoreSignal]:
        """Yield push signals until the subscription is closed."""
        raise NotImplementedError

    async def release(self) -> None:
        """Release the folder hold."""
        raise NotImplementedError


class StoreConnection(Protocol):
    """Authenticated connection to a mail store."""

    async def subscribe(self, folder: str) -> Subscription:
        """Hold ``folder`` and register for arrival notifications."""
        raise NotImplementedError

    async def fetch_summaries(self, from_id: int) -> Sequence[MessageSummary]:
        """Return summaries for messages with sequence id ``>= from_id``."""
        raise NotImplementedError

    async def mutate(self, folder: str, message_id: str, mutation: Mutation) -> None:
        """Apply a label or flag change to a message."""
        raise NotImplementedError

    async def close(self) -> None:
        """Terminate the connection."""
        raise NotImplementedError


class MailStore(Protocol):
    """Factory for store connections plus one-shot mutation helper."""

    async def connect(self, account: AccountSettings) -> StoreConnection:
        """Open and authenticate a new connection for ``account``."""
        raise NotImplementedError

    async def mutate(
        self, account: str, folder: str, message_id: str, mutation: Mutation
    ) -> None:
        """Apply ``mutation`` to a message outside any watcher connection."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release sessions held for mutations."""
        raise NotImplementedError


# Reasoning call --------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class ClientCapabilities:
    """Capabilities negotiated once with the calling agent."""

    sampling: bool = False


@dataclass(slots=True, frozen=True)
class SamplingMessage:
    """Role-tagged text message sent to the reasoning call."""

    role: str
    text: str


@dataclass(slots=True, frozen=True)
class ModelPreferences:
    """Model selection hints forwarded with a sampling request."""

    hints: tuple[str, ...] = ()
    speed_priority: float | None = None
    intelligence_priority: float | None = None


@dataclass(slots=True, frozen=True)
class SamplingResult:
    """Text returned by the reasoning call."""

    model: str | None
    text: str
    extra: dict[str, object] = field(default_factory=dict)


class SamplingClient(Protocol):
    """Single request/response reasoning call."""

    async def create_message(
        self,
        messages: Sequence[SamplingMessage],
        *,
        max_tokens: int,
        model_preferences: ModelPreferences | None = None,
    ) -> SamplingResult:
        """Return the model's reply to ``messages``."""
        raise NotImplementedError


class ResourceNotifier(Protocol):
    """Pushes resource-changed notifications to the surrounding layer."""

    async def send_resource_updated(self, uri: str) -> None:
        """Signal that the resource at ``uri`` changed."""
        raise NotImplementedError


class ProtocolLog(Protocol):
    """Severity-tagged log channel visible to the calling agent."""

    def log(self, level: str, source: str, message: str) -> None:
        """Record ``message`` from ``source`` at protocol severity ``level``."""
        raise NotImplementedError


__all__ = [
    "AddLabels",
    "ClientCapabilities",
    "Closed",
    "ItemCountDecreased",
    "ItemCountIncreased",
    "MailStore",
    "MarkRead",
    "ModelPreferences",
    "Mutation",
    "ProtocolLog",
    "ResourceNotifier",
    "SamplingClient",
    "SamplingError",
    "SamplingMessage",
    "SamplingResult",
    "SetFlag",
    "StoreConnection",
    "StoreError",
    "StoreSignal",
    "Subscription",
]
