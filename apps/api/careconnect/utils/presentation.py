"""Presentation helpers for connection payloads and thread text.

Redaction helpers back the entitlement gate: they keep enough shape for a
gated provider to recognise that a request exists without revealing who
sent it or what it says.
"""

from __future__ import annotations

import re


_WHITESPACE_RE = re.compile(r"\s+")

REDACTED_SUFFIX = "***"
TEXT_PREVIEW_LENGTH = 20

# (cancel label, request phrase) per next-step type
NEXT_STEP_LABELS: dict[str, tuple[str, str]] = {
    "call": ("Request a call", "would like to request a phone call"),
    "consultation": ("Request a consultation", "would like to request a consultation"),
    "visit": ("Request a home visit", "would like to request a home visit"),
}


def redact_name(value: str | None) -> str:
    """Keep the first letter of each whitespace token.

    Examples:
        "Jane Smith" -> "J*** S***"
        "Sunrise Senior Living" -> "S*** S*** L***"
    """
    if value is None:
        return ""
    tokens = [t for t in _WHITESPACE_RE.split(value.strip()) if t]
    return " ".join(f"{token[0]}{REDACTED_SUFFIX}" for token in tokens)


def redact_text(value: str | None) -> str:
    """Preview the first 20 characters, or mask short text entirely."""
    if not value:
        return ""
    if len(value) <= TEXT_PREVIEW_LENGTH:
        return "*" * len(value)
    return value[:TEXT_PREVIEW_LENGTH] + "..."


def next_step_request_text(display_name: str, step_type: str, note: str | None) -> str:
    """Thread text for a new next-step request, quoting the note when present."""
    _, phrase = NEXT_STEP_LABELS[step_type]
    text = f"{display_name} {phrase}."
    if note:
        text += f' "{note}"'
    return text


def next_step_cancel_text(display_name: str, step_type: str | None) -> str:
    label = NEXT_STEP_LABELS.get(step_type or "", ("request", ""))[0]
    return f"{display_name} cancelled the {label.lower()}"
