"""Static triage rules evaluated before any model call."""

from __future__ import annotations

from collections.abc import Sequence
from fnmatch import fnmatchcase

from inbox_watch.core.config import HookRule, RuleMatch
from inbox_watch.core.models import MessageSummary


def _pattern_matches(pattern: str, candidates: Sequence[str]) -> bool:
    needle = pattern.lower()
    wildcard = any(char in needle for char in "*?[")
    for candidate in candidates:
        value = candidate.lower()
        if wildcard and fnmatchcase(value, needle):
            return True
        if not wildcard and needle in value:
            return True
    return False


def rule_matches(match: RuleMatch, message: MessageSummary) -> bool:
    """Return ``True`` when every pattern set on ``match`` fits ``message``.

    Patterns are case-insensitive substrings, or shell-style globs when they
    contain ``*``, ``?`` or ``[``. A match with no patterns never fires.
    """
    checks: list[tuple[str, list[str]]] = []
    if match.sender:
        sender = message.sender
        checks.append((match.sender, [sender.address, sender.name or ""]))
    if match.to:
        checks.append((match.to, [recipient.address for recipient in message.recipients]))
    if match.subject:
        checks.append((match.subject, [message.subject]))
    if not checks:
        return False
    return all(_pattern_matches(pattern, values) for pattern, values in checks)


def matching_rules(rules: Sequence[HookRule], message: MessageSummary) -> list[HookRule]:
    """Return the rules firing for ``message`` in configuration order."""
    return [rule for rule in rules if rule_matches(rule.match, message)]


__all__ = ["matching_rules", "rule_matches"]
