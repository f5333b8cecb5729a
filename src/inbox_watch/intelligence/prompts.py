"""Prompt templates and presets for batch email triage."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from textwrap import dedent

from inbox_watch.core.models import BatchItem


@dataclass(slots=True, frozen=True)
class TriagePreset:
    """Named triage style adding instructions and suggested labels."""

    id: str
    name: str
    description: str
    instructions: str
    suggested_labels: tuple[str, ...] = ()


PRESETS: dict[str, TriagePreset] = {
    preset.id: preset
    for preset in (
        TriagePreset(
            id="inbox-zero",
            name="Inbox Zero",
            description="Aggressively categorise so the inbox can be emptied quickly.",
            instructions=(
                "Favour archiving-oriented labels. Mark only time-sensitive "
                "messages that need a reply today as urgent or high."
            ),
            suggested_labels=("Newsletter", "Receipt", "Notification", "Action", "Waiting"),
        ),
        TriagePreset(
            id="gtd",
            name="Getting Things Done",
            description="Sort messages into GTD contexts.",
            instructions=(
                "Label each message with the GTD bucket it belongs to. Flag "
                "messages that are a next action."
            ),
            suggested_labels=("Next-Action", "Waiting-For", "Someday", "Reference"),
        ),
        TriagePreset(
            id="priority-only",
            name="Priority Only",
            description="Only assign priorities; never suggest labels.",
            instructions="Return an empty labels array for every message.",
        ),
        TriagePreset(
            id="none",
            name="None",
            description="No preset instructions; rely on custom instructions only.",
            instructions="",
        ),
    )
}


def get_preset(preset_id: str) -> TriagePreset:
    """Return the preset with ``preset_id``, falling back to ``none``."""
    return PRESETS.get(preset_id, PRESETS["none"])


def list_presets() -> list[TriagePreset]:
    """Return every known preset in declaration order."""
    return list(PRESETS.values())


def format_email_summary(item: BatchItem, index: int) -> str:
    """Render one batched message for the triage request."""
    message = item.message
    flag_icons = "".join(
        (
            "⭐" if message.flagged else "",
            "👁️" if message.seen else "🆕",
            "📎" if message.has_attachments else "",
        )
    )
    return (
        f"[{index + 1}] From: {message.sender.display}\n"
        f"    Subject: {message.subject}\n"
        f"    Date: {message.date.isoformat()}\n"
        f"    Flags: {flag_icons}"
    )


def build_triage_prompt(
    items: Sequence[BatchItem],
    *,
    preset: TriagePreset | None = None,
    custom_instructions: str | None = None,
) -> str:
    """Compose a JSON-only triage request covering every batched message."""
    summaries = "\n\n".join(
        format_email_summary(item, index) for index, item in enumerate(items)
    )
    guidance: list[str] = []
    if preset is not None and preset.instructions:
        guidance.append(preset.instructions)
    if preset is not None and preset.suggested_labels:
        guidance.append(f"Preferred labels: {', '.join(preset.suggested_labels)}")
    if custom_instructions:
        guidance.append(custom_instructions.strip())
    guidance_block = "\n".join(guidance)

    prompt = f"""
    You are an email triage assistant. Analyze these {len(items)} new email(s) and
    respond with a JSON array (one object per email, in order). Each object should have:
    - "priority": "urgent" | "high" | "normal" | "low"
    - "labels": string[] (suggested labels, e.g. ["Meeting", "Finance"])
    - "flag": boolean (true if urgent/important)
    - "action": string (brief description of suggested action)
    """
    text = dedent(prompt).strip()
    if guidance_block:
        text = f"{text}\n\n{guidance_block}"
    return (
        f"{text}\n\nEmails:\n{summaries}\n\n"
        "Respond ONLY with the JSON array, no markdown or extra text."
    )


__all__ = [
    "PRESETS",
    "TriagePreset",
    "build_triage_prompt",
    "format_email_summary",
    "get_preset",
    "list_presets",
]
