"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    org_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
    execution_id: str | None = None,
    rule_id: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict.

    Only identifiers go in here: never message text, names or phone numbers.
    """
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = org_id
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    if execution_id:
        context["execution_id"] = execution_id
    if rule_id:
        context["rule_id"] = rule_id
    return context
