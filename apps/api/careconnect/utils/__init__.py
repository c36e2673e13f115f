"""Utility modules."""

from careconnect.utils.presentation import (
    next_step_cancel_text,
    next_step_request_text,
    redact_name,
    redact_text,
)

__all__ = [
    # Presentation
    "redact_name",
    "redact_text",
    "next_step_request_text",
    "next_step_cancel_text",
]
