"""Tests for structured logging helpers."""

from careconnect.core.structured_logging import build_log_context


def test_build_log_context_includes_only_provided_fields():
    context = build_log_context(
        account_id="account-1",
        profile_id="profile-1",
        connection_id="connection-1",
        request_id="req-1",
        route="/connections",
        method="GET",
    )

    assert context == {
        "account_id": "account-1",
        "profile_id": "profile-1",
        "connection_id": "connection-1",
        "request_id": "req-1",
        "route": "/connections",
        "method": "GET",
    }


def test_build_log_context_ignores_empty_fields():
    context = build_log_context(
        account_id="",
        profile_id=None,
        request_id="req-1",
    )

    assert context == {"request_id": "req-1"}
