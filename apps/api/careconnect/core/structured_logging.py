"""Structured logging helpers (contact-safe)."""

from typing import Any


def build_log_context(
    *,
    account_id: str | None = None,
    profile_id: str | None = None,
    connection_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict carrying identifiers only, never names or message text."""
    context: dict[str, Any] = {}
    if account_id:
        context["account_id"] = account_id
    if profile_id:
        context["profile_id"] = profile_id
    if connection_id:
        context["connection_id"] = connection_id
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
