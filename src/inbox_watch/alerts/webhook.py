"""JSON webhook delivery for alerts."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from inbox_watch.core.interfaces import ProtocolLog
from inbox_watch.core.models import AlertPayload

LOGGER = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 5.0


def build_webhook_body(
    payload: AlertPayload, *, now: datetime | None = None
) -> dict[str, Any]:
    """Return the JSON document posted for ``payload``."""
    timestamp = (now or datetime.now(tz=UTC)).isoformat()
    return {
        "event": f"email.{payload.priority.value}",
        "account": payload.account,
        "sender": {"name": payload.sender.name, "address": payload.sender.address},
        "subject": payload.subject,
        "priority": payload.priority.value,
        "labels": list(payload.labels),
        "rule": payload.rule_name,
        "timestamp": timestamp,
    }


async def post_webhook(
    url: str,
    payload: AlertPayload,
    protocol_log: ProtocolLog,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = WEBHOOK_TIMEOUT_SECONDS,
) -> bool:
    """POST ``payload`` to ``url``; return ``True`` on a 2xx response.

    Failures are reported on the protocol log and never raised.
    """
    body = build_webhook_body(payload)
    http = client or httpx.AsyncClient()
    try:
        response = await http.post(url, json=body, timeout=timeout)
    except httpx.HTTPError as exc:
        LOGGER.debug("Webhook POST to %s failed: %s", url, exc)
        protocol_log.log("debug", "notifier", "Webhook dispatch failed (non-fatal)")
        return False
    finally:
        if client is None:
            await http.aclose()

    if not response.is_success:
        protocol_log.log(
            "warning", "notifier", f"Webhook returned {response.status_code}"
        )
        return False
    return True


__all__ = ["WEBHOOK_TIMEOUT_SECONDS", "build_webhook_body", "post_webhook"]
