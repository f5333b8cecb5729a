"""IMAP transport adapter implementing the mail store interface."""

from __future__ import annotations

import asyncio
import imaplib
import logging
import re
import ssl
import threading
from collections.abc import AsyncIterator, Callable, Sequence
from datetime import UTC, datetime
from email.parser import BytesHeaderParser
from email.policy import default as default_policy
from email.utils import getaddresses, parsedate_to_datetime
from typing import TypeVar

from ..core.config import AccountSettings
from ..core.interfaces import (
    AddLabels,
    Closed,
    ItemCountDecreased,
    ItemCountIncreased,
    MarkRead,
    Mutation,
    SetFlag,
    StoreError,
    StoreSignal,
)
from ..core.models import EmailAddress, MessageSummary

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_FLAGS = frozenset(
    {"\\Seen", "\\Answered", "\\Flagged", "\\Deleted", "\\Draft", "\\Recent", "\\*"}
)
SUMMARY_FETCH_ITEMS = (
    "(UID FLAGS BODYSTRUCTURE BODY.PEEK[HEADER.FIELDS (FROM TO CC SUBJECT DATE)])"
)

_UID_PATTERN = re.compile(rb"UID (\d+)")
_FLAGS_PATTERN = re.compile(rb"FLAGS \(([^)]*)\)")
_UIDNEXT_PATTERN = re.compile(rb"UIDNEXT (\d+)")
_KEYWORD_UNSAFE = re.compile(r"[^A-Za-z0-9_\-.$/]")

MIN_COMMAND_TIMEOUT = 30.0


class ImapError(StoreError):
    """Wrap low level IMAP errors with additional context."""


def _quote_mailbox(name: str) -> str:
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _keyword_for(label: str) -> str:
    """Turn a free-form label into a valid IMAP keyword."""
    keyword = _KEYWORD_UNSAFE.sub("_", label.strip())
    return keyword or "_"


def _decode_addresses(values: Sequence[str]) -> tuple[EmailAddress, ...]:
    return tuple(
        EmailAddress(name=name or None, address=address)
        for name, address in getaddresses(list(values))
        if address or name
    )


def build_summary(meta: bytes, header_bytes: bytes) -> MessageSummary | None:
    """Build a :class:`MessageSummary` from one ``UID FETCH`` response entry."""
    uid_match = _UID_PATTERN.search(meta)
    if uid_match is None:
        return None
    flags_match = _FLAGS_PATTERN.search(meta)
    flags = (
        {flag.decode(errors="replace") for flag in flags_match.group(1).split()}
        if flags_match
        else set()
    )

    headers = BytesHeaderParser(policy=default_policy).parsebytes(header_bytes)
    senders = _decode_addresses(headers.get_all("From", []))
    recipients = _decode_addresses(
        [*headers.get_all("To", []), *headers.get_all("Cc", [])]
    )
    date_value = headers.get("Date")
    try:
        sent_at = parsedate_to_datetime(str(date_value)) if date_value else None
    except (TypeError, ValueError):
        sent_at = None

    subject = str(headers.get("Subject") or "").strip()
    return MessageSummary(
        id=uid_match.group(1).decode(),
        subject=subject or "(no subject)",
        sender=senders[0] if senders else EmailAddress(name=None, address=""),
        recipients=recipients,
        date=sent_at or datetime.now(tz=UTC),
        seen="\\Seen" in flags,
        flagged="\\Flagged" in flags,
        answered="\\Answered" in flags,
        has_attachments=b'"ATTACHMENT"' in meta.upper(),
        labels=tuple(sorted(flag for flag in flags if flag not in SYSTEM_FLAGS)),
    )


def _parse_fetch_response(
    fetch_data: list[tuple[bytes, bytes] | bytes | None],
) -> list[MessageSummary]:
    """Extract summaries from ``imaplib`` response chunks."""
    summaries: list[MessageSummary] = []
    for entry in fetch_data:
        if isinstance(entry, tuple) and len(entry) == 2:
            summary = build_summary(entry[0], entry[1])
            if summary is not None:
                summaries.append(summary)
    return summaries


def command_timeout(poll_interval: float) -> float:
    """Socket timeout for a session polled every ``poll_interval`` seconds."""
    return max(poll_interval, MIN_COMMAND_TIMEOUT)


def _open_connection(
    account: AccountSettings, timeout: float | None = None
) -> imaplib.IMAP4:
    """Connect and authenticate synchronously."""
    if account.username is None or account.password is None:
        raise ImapError(f"IMAP credentials are not configured for {account.name}")
    try:
        if account.use_ssl:
            context = ssl.create_default_context()
            if not account.verify_ssl:
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
            LOGGER.debug("Connecting to IMAP host %s:%s via SSL", account.host, account.port)
            connection: imaplib.IMAP4 = imaplib.IMAP4_SSL(
                account.host, account.port, ssl_context=context, timeout=timeout
            )
        else:
            LOGGER.debug(
                "Connecting to IMAP host %s:%s without SSL", account.host, account.port
            )
            connection = imaplib.IMAP4(account.host, account.port, timeout=timeout)

        LOGGER.debug("Authenticating as %s using %s", account.username, account.auth)
        if account.auth == "oauth2":
            token = f"user={account.username}\x01auth=Bearer {account.password}\x01\x01"
            connection.authenticate("XOAUTH2", lambda _challenge: token.encode())
        else:
            connection.login(account.username, account.password)
    except (imaplib.IMAP4.error, OSError) as exc:  # pragma: no cover - network dependent
        raise ImapError(f"Failed to connect to IMAP server {account.host}") from exc
    return connection


class ImapSubscription:
    """Folder hold that reports ``EXISTS`` changes seen by keepalive polls."""

    def __init__(
        self,
        connection: ImapConnection,
        folder: str,
        *,
        next_id: int,
        exists: int,
        poll_interval: float,
    ) -> None:
        """Track the selected folder from its initial ``EXISTS`` count."""
        self._connection = connection
        self.folder = folder
        self.next_id = next_id
        self._exists = exists
        self._poll_interval = poll_interval
        self._released = False

    async def events(self) -> AsyncIterator[StoreSignal]:
        """Yield count changes until the connection fails or is released."""
        while not self._released:
            await asyncio.sleep(self._poll_interval)
            if self._released:
                return
            try:
                count, removed = await self._connection.poll()
            except StoreError as exc:
                yield Closed(reason=str(exc))
                return
            if removed:
                self._exists = max(self._exists - removed, 0)
                yield ItemCountDecreased(removed=removed)
            if count is not None and count > self._exists:
                self._exists = count
                yield ItemCountIncreased(count=count)
            elif count is not None:
                self._exists = count

    async def release(self) -> None:
        """Stop polling and unselect the folder if the session is idle."""
        if self._released:
            return
        self._released = True
        await self._connection.unselect()


class ImapConnection:
    """Authenticated IMAP session driven from the event loop.

    ``imaplib`` is blocking, so every command runs in a worker thread and a
    lock serialises commands issued by the poll loop and by fetches. Each
    command is bounded by ``timeout``; teardown never queues behind a command
    that is still on the wire.
    """

    def __init__(
        self,
        raw: imaplib.IMAP4,
        *,
        poll_interval: float = 30.0,
        timeout: float | None = None,
    ) -> None:
        """Wrap an authenticated ``imaplib`` connection."""
        self._raw = raw
        self._lock = threading.Lock()
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._folder: str | None = None

    @property
    def busy(self) -> bool:
        """Whether a command currently holds the session."""
        return self._lock.locked()

    async def _call(self, func: Callable[[imaplib.IMAP4], T]) -> T:
        def locked() -> T:
            with self._lock:
                try:
                    return func(self._raw)
                except (imaplib.IMAP4.error, OSError) as exc:
                    raise ImapError(str(exc) or type(exc).__name__) from exc

        try:
            return await asyncio.wait_for(asyncio.to_thread(locked), self._timeout)
        except TimeoutError as exc:
            raise ImapError(f"IMAP command timed out after {self._timeout:g}s") from exc

    async def subscribe(self, folder: str) -> ImapSubscription:
        """Select ``folder`` and resolve its next UID."""

        def select(raw: imaplib.IMAP4) -> tuple[int, int]:
            status, data = raw.select(_quote_mailbox(folder))
            if status != "OK":
                raise ImapError(f"Unable to select mailbox '{folder}'")
            exists = int(data[0]) if data and data[0] else 0
            _, uidnext_data = raw.response("UIDNEXT")
            if uidnext_data and uidnext_data[-1] is not None:
                return int(uidnext_data[-1]), exists
            status, status_data = raw.status(_quote_mailbox(folder), "(UIDNEXT)")
            match = _UIDNEXT_PATTERN.search(status_data[0] or b"") if status == "OK" else None
            if match is None:
                raise ImapError(f"Server did not report UIDNEXT for '{folder}'")
            return int(match.group(1)), exists

        next_id, exists = await self._call(select)
        self._folder = folder
        LOGGER.debug("Selected %s (UIDNEXT %s, EXISTS %s)", folder, next_id, exists)
        return ImapSubscription(
            self,
            folder,
            next_id=next_id,
            exists=exists,
            poll_interval=self._poll_interval,
        )

    async def poll(self) -> tuple[int | None, int]:
        """Send ``NOOP`` and return the latest ``EXISTS`` count and expunges."""

        def noop(raw: imaplib.IMAP4) -> tuple[int | None, int]:
            status, _ = raw.noop()
            if status != "OK":
                raise ImapError("NOOP rejected by server")
            _, expunged = raw.response("EXPUNGE")
            _, exists = raw.response("EXISTS")
            removed = sum(1 for item in expunged or [] if item is not None)
            count = int(exists[-1]) if exists and exists[-1] is not None else None
            return count, removed

        return await self._call(noop)

    async def fetch_summaries(self, from_id: int) -> list[MessageSummary]:
        """Return summaries for messages whose UID is at least ``from_id``."""

        def fetch(raw: imaplib.IMAP4) -> list[MessageSummary]:
            status, data = raw.uid("SEARCH", None, f"UID {from_id}:*")  # type: ignore[arg-type]
            if status != "OK":
                raise ImapError("Failed to search for message UIDs")
            uids = data[0].split() if data and data[0] else []
            # "n:*" always matches the last message, even below ``from_id``.
            wanted = [uid.decode() for uid in uids if int(uid) >= from_id]
            if not wanted:
                return []
            status, fetch_data = raw.uid("FETCH", ",".join(wanted), SUMMARY_FETCH_ITEMS)
            if status != "OK":
                raise ImapError("Failed to fetch message summaries")
            return _parse_fetch_response(fetch_data)

        return await self._call(fetch)

    async def mutate(self, folder: str, message_id: str, mutation: Mutation) -> None:
        """Apply ``mutation`` to the message with UID ``message_id``."""
        if isinstance(mutation, AddLabels):
            flags = list(dict.fromkeys(_keyword_for(label) for label in mutation.labels))
        elif isinstance(mutation, SetFlag):
            flags = ["\\Flagged"]
        elif isinstance(mutation, MarkRead):
            flags = ["\\Seen"]
        else:
            raise ImapError(f"Unsupported mutation {mutation!r}")
        if not flags:
            return

        def store(raw: imaplib.IMAP4) -> None:
            if self._folder != folder:
                status, _ = raw.select(_quote_mailbox(folder))
                if status != "OK":
                    raise ImapError(f"Unable to select mailbox '{folder}'")
                self._folder = folder
            status, _ = raw.uid(
                "STORE", message_id, "+FLAGS.SILENT", f"({' '.join(flags)})"
            )
            if status != "OK":
                raise ImapError(f"Failed to update flags on UID {message_id}")

        await self._call(store)

    async def unselect(self) -> None:
        """Leave the selected folder, unless a command is still running."""

        def close_folder(raw: imaplib.IMAP4) -> None:
            if raw.state == "SELECTED":
                raw.close()

        self._folder = None
        if self.busy:
            LOGGER.debug("IMAP session busy; skipping folder close")
            return
        try:
            await self._call(close_folder)
        except StoreError as exc:
            LOGGER.debug("Closing selected folder failed: %s", exc)

    async def close(self) -> None:
        """Log out, or drop the socket when a command is stuck on it."""

        def logout(raw: imaplib.IMAP4) -> None:
            try:
                raw.logout()
            except (imaplib.IMAP4.error, OSError):  # pragma: no cover
                LOGGER.debug("IMAP logout raised; suppressing during shutdown")

        if not self.busy:
            try:
                await self._call(logout)
                return
            except StoreError as exc:
                LOGGER.debug("IMAP logout failed: %s", exc)
        # Shutting the socket down wakes the worker thread blocked on a read.
        try:
            self._raw.shutdown()
        except OSError as exc:
            LOGGER.debug("IMAP socket shutdown raised: %s", exc)


class ImapMailStore:
    """Mail store opening one IMAP session per watch target.

    Label and flag mutations share one cached session per account. A lock
    per account queues concurrent mutations on that session, so a burst of
    triage results costs a single login.
    """

    def __init__(
        self,
        accounts: Sequence[AccountSettings],
        *,
        poll_interval: float = 30.0,
        timeout: float | None = None,
    ) -> None:
        """Index ``accounts`` by name for mutations."""
        self._accounts = {account.name: account for account in accounts}
        self._poll_interval = poll_interval
        self._timeout = timeout if timeout is not None else command_timeout(poll_interval)
        self._sessions: dict[str, ImapConnection] = {}
        self._session_locks: dict[str, asyncio.Lock] = {}

    async def connect(self, account: AccountSettings) -> ImapConnection:
        """Open and authenticate a session for ``account``."""
        raw = await asyncio.to_thread(_open_connection, account, self._timeout)
        return ImapConnection(raw, poll_interval=self._poll_interval, timeout=self._timeout)

    async def mutate(
        self, account: str, folder: str, message_id: str, mutation: Mutation
    ) -> None:
        """Apply ``mutation`` through the account's shared session.

        A cached session that fails is dropped and the mutation is retried
        once on a fresh login.
        """
        settings = self._accounts.get(account)
        if settings is None:
            raise ImapError(f"Unknown account '{account}'")
        lock = self._session_locks.setdefault(account, asyncio.Lock())
        async with lock:
            for attempt in (1, 2):
                reused = account in self._sessions
                if not reused:
                    self._sessions[account] = await self.connect(settings)
                connection = self._sessions[account]
                try:
                    await connection.mutate(folder, message_id, mutation)
                    return
                except StoreError as exc:
                    await self._drop_session(account)
                    if not reused or attempt == 2:
                        raise
                    LOGGER.debug("Shared IMAP session for %s failed: %s", account, exc)

    async def close(self) -> None:
        """Log out of every shared mutation session."""
        for account in list(self._sessions):
            await self._drop_session(account)

    async def _drop_session(self, account: str) -> None:
        connection = self._sessions.pop(account, None)
        if connection is not None:
            await connection.close()


__all__ = [
    "ImapConnection",
    "ImapError",
    "ImapMailStore",
    "ImapSubscription",
    "MIN_COMMAND_TIMEOUT",
    "SYSTEM_FLAGS",
    "build_summary",
    "command_timeout",
]
