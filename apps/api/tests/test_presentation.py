"""Tests for redaction and thread text helpers."""

from careconnect.utils.presentation import (
    next_step_cancel_text,
    next_step_request_text,
    redact_name,
    redact_text,
)


def test_redact_name_keeps_first_letter_of_each_token():
    assert redact_name("Jane Smith") == "J*** S***"
    assert redact_name("  Mary   Ann  Lee ") == "M*** A*** L***"
    assert redact_name("Cher") == "C***"


def test_redact_name_empty():
    assert redact_name("") == ""
    assert redact_name(None) == ""


def test_redact_text_previews_long_text():
    note = "Looking for help with mom"  # 25 chars
    assert len(note) == 25
    assert redact_text(note) == note[:20] + "..."


def test_redact_text_masks_short_text():
    assert redact_text("Hi there") == "********"
    assert redact_text("x" * 20) == "*" * 20
    assert redact_text("") == ""
    assert redact_text(None) == ""


def test_next_step_request_text():
    assert (
        next_step_request_text("Jane Smith", "call", None)
        == "Jane Smith would like to request a phone call."
    )
    assert (
        next_step_request_text("Jane Smith", "visit", "Weekends only")
        == 'Jane Smith would like to request a home visit. "Weekends only"'
    )


def test_next_step_cancel_text():
    assert next_step_cancel_text("Jane Smith", "call") == "Jane Smith cancelled the request a call"
    assert (
        next_step_cancel_text("Jane Smith", "consultation")
        == "Jane Smith cancelled the request a consultation"
    )
