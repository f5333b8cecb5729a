"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class Priority(StrEnum):
    """Urgency levels assigned to messages, strictly ordered low to urgent."""

    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Numeric position in the total order (low=1 ... urgent=4)."""
        return _PRIORITY_RANK[self]

    def meets(self, threshold: Priority) -> bool:
        """Return ``True`` when this priority is at or above ``threshold``."""
        return self.rank >= Priority(threshold).rank


_PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.NORMAL: 2,
    Priority.HIGH: 3,
    Priority.URGENT: 4,
}


@dataclass(slots=True, frozen=True)
class EmailAddress:
    """Display name and address pair."""

    name: str | None
    address: str

    @property
    def display(self) -> str:
        """Return the name when known, otherwise the address."""
        return self.name or self.address


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True, frozen=True)
class MessageSummary:
    """Header-level summary of a newly arrived message."""

    id: str
    subject: str
    sender: EmailAddress
    recipients: tuple[EmailAddress, ...]
    date: datetime
    seen: bool = False
    flagged: bool = False
    answered: bool = False
    has_attachments: bool = False
    labels: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class EmailArrivedEvent:
    """New messages detected in one account folder."""

    account: str
    folder: str
    messages: tuple[MessageSummary, ...]


@dataclass(slots=True, frozen=True)
class MessagesExpungedEvent:
    """Messages removed from one account folder."""

    account: str
    folder: str
    count: int


@dataclass(slots=True, frozen=True)
class WatchTarget:
    """Identity of a watched (account, folder) pair."""

    account: str
    folder: str

    @property
    def key(self) -> str:
        """Composite key used to index per-target state."""
        return f"{self.account}:{self.folder}"


@dataclass(slots=True, frozen=True)
class BatchItem:
    """Message awaiting triage, tagged with its origin."""

    account: str
    folder: str
    message: MessageSummary


@dataclass(slots=True, frozen=True)
class TriageResult:
    """Classification for one message; ``None`` fields carry no opinion."""

    priority: Priority | None = None
    labels: tuple[str, ...] | None = None
    flag: bool | None = None
    action: str | None = None


@dataclass(slots=True, frozen=True)
class AlertPayload:
    """Alert request routed to the notification channels."""

    account: str
    sender: EmailAddress
    subject: str
    priority: Priority
    labels: tuple[str, ...] = field(default_factory=tuple)
    rule_name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "priority", Priority(self.priority))
        object.__setattr__(self, "labels", tuple(self.labels))


@dataclass(slots=True, frozen=True)
class WatcherStatus:
    """Read-only snapshot of one watch target."""

    account: str
    folder: str
    connected: bool
    last_seen_id: int


__all__ = [
    "AlertPayload",
    "BatchItem",
    "EmailAddress",
    "EmailArrivedEvent",
    "MessageSummary",
    "MessagesExpungedEvent",
    "Priority",
    "TriageResult",
    "WatchTarget",
    "WatcherStatus",
]
