"""Parsing and sanitising of model triage responses."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from inbox_watch.core.models import Priority, TriageResult

LOGGER = logging.getLogger(__name__)

MAX_LABELS = 5
MAX_ACTION_LENGTH = 200

_FENCE_PATTERN = re.compile(r"```(?:json)?\n?")
_PRIORITIES = {item.value for item in Priority}


def sanitize_triage_result(raw: Any) -> TriageResult:
    """Coerce one decoded JSON value into a valid :class:`TriageResult`."""
    if isinstance(raw, TriageResult):
        raw = {
            "priority": raw.priority,
            "labels": list(raw.labels) if raw.labels is not None else None,
            "flag": raw.flag,
            "action": raw.action,
        }
    if not isinstance(raw, dict):
        return TriageResult()

    priority_value = raw.get("priority")
    priority = (
        Priority(priority_value)
        if isinstance(priority_value, str) and priority_value in _PRIORITIES
        else None
    )

    labels_value = raw.get("labels")
    labels = (
        tuple(item for item in labels_value if isinstance(item, str))[:MAX_LABELS]
        if isinstance(labels_value, list)
        else None
    )

    flag_value = raw.get("flag")
    flag = flag_value if isinstance(flag_value, bool) else None

    action_value = raw.get("action")
    action = (
        action_value[:MAX_ACTION_LENGTH] if isinstance(action_value, str) else None
    )

    return TriageResult(priority=priority, labels=labels, flag=flag, action=action)


def parse_triage_response(text: str, expected_count: int) -> list[TriageResult]:
    """Return exactly ``expected_count`` results parsed from ``text``.

    Code fences are stripped before decoding. A JSON array is matched to the
    batch positionally, a single object counts as a one-element array, and
    anything that cannot be decoded yields empty results.
    """
    results: list[TriageResult] = []
    cleaned = _FENCE_PATTERN.sub("", text or "").strip()
    try:
        parsed = json.loads(cleaned)
    except (ValueError, TypeError, RecursionError) as exc:
        LOGGER.debug("Triage response was not valid JSON: %s", exc)
        parsed = None

    if isinstance(parsed, list):
        results = [sanitize_triage_result(item) for item in parsed[:expected_count]]
    elif isinstance(parsed, dict):
        results = [sanitize_triage_result(parsed)][:expected_count]

    while len(results) < expected_count:
        results.append(TriageResult())
    return results


__all__ = [
    "MAX_ACTION_LENGTH",
    "MAX_LABELS",
    "parse_triage_response",
    "sanitize_triage_result",
]
