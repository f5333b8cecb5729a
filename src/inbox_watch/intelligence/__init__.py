"""Batch triage of new mail, optionally assisted by a language model."""

from inbox_watch.core.interfaces import SamplingError

from .hooks import MAX_SAMPLING_PER_MINUTE, HooksService
from .llm import OllamaSamplingClient
from .prompts import PRESETS, TriagePreset, build_triage_prompt, list_presets
from .rules import matching_rules, rule_matches
from .triage import parse_triage_response, sanitize_triage_result

__all__ = [
    "HooksService",
    "MAX_SAMPLING_PER_MINUTE",
    "OllamaSamplingClient",
    "PRESETS",
    "SamplingError",
    "TriagePreset",
    "build_triage_prompt",
    "list_presets",
    "matching_rules",
    "parse_triage_response",
    "rule_matches",
    "sanitize_triage_result",
]
