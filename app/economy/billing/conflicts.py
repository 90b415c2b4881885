from __future__ import annotations

from collections.abc import Iterable

from app.economy.billing.errors import SubscriptionConflictError
from app.economy.billing.types import ConflictDecision

BLOCKING_TYPES: dict[str, frozenset[str]] = {
    "bundle": frozenset({"content", "chat", "bundle"}),
    "content": frozenset({"content", "bundle"}),
    "chat": frozenset({"chat", "bundle"}),
}
REASON_BY_TYPE: dict[str, str] = {
    "content": "ALREADY_SUBSCRIBED_CONTENT",
    "chat": "ALREADY_SUBSCRIBED_CHAT",
    "bundle": "ALREADY_SUBSCRIBED_BUNDLE",
}


def _reason_order(requested_type: str) -> tuple[str, ...]:
    # Bundle first, then the requested slot, then the remaining one.
    if requested_type == "chat":
        return ("bundle", "chat", "content")
    return ("bundle", "content", "chat")


def resolve_conflict(existing_types: Iterable[str], requested_type: str) -> ConflictDecision:
    blocking = BLOCKING_TYPES.get(requested_type)
    if blocking is None:
        raise ValueError(f"unknown subscription type: {requested_type}")

    held = set(existing_types) & blocking
    if not held:
        return ConflictDecision(allowed=True)
    for candidate in _reason_order(requested_type):
        if candidate in held:
            return ConflictDecision(allowed=False, reason=REASON_BY_TYPE[candidate])
    return ConflictDecision(allowed=False, reason=REASON_BY_TYPE[requested_type])


def ensure_no_conflict(existing_types: Iterable[str], requested_type: str) -> None:
    decision = resolve_conflict(existing_types, requested_type)
    if not decision.allowed:
        raise SubscriptionConflictError(decision.reason or REASON_BY_TYPE[requested_type])
