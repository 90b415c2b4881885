"""Read-time access decision for a fan against one creator resource.

Pure: callers load state, the gate decides. Decrementing message packs
happens in the action handlers (see ``sessions.py``), never here.
"""

from __future__ import annotations

from decimal import Decimal

from app.economy.billing.catalog import TOKENS_PER_GBP
from app.economy.entitlements.constants import (
    LOW_MESSAGE_THRESHOLD,
    RESOURCES,
    WARNING_LAST_MESSAGE,
    WARNING_NO_MESSAGES,
)
from app.economy.entitlements.types import (
    Entitlement,
    EntitlementInput,
    MessageSessionView,
    UnlockOption,
)

GRANTING_TYPES: dict[str, frozenset[str]] = {
    "chat": frozenset({"chat", "bundle"}),
    "content": frozenset({"content", "bundle"}),
}


def format_tokens_as_gbp(tokens: int) -> str:
    amount = (Decimal(int(tokens)) / Decimal(TOKENS_PER_GBP)).quantize(Decimal("0.01"))
    return f"£{amount}"


def warning_for_remaining(remaining: int) -> str:
    if remaining <= 0:
        return WARNING_NO_MESSAGES
    if remaining == 1:
        return WARNING_LAST_MESSAGE
    return f"{remaining} messages remaining"


SUBSCRIBE_LABELS: dict[str, str] = {
    "chat": "Subscribe for unlimited chat",
    "content": "Subscribe to see exclusive content",
}


def _subscribe_option(resource: str) -> UnlockOption:
    label = SUBSCRIBE_LABELS[resource]
    return UnlockOption(kind="subscribe", label=label, recommended=True)


def _pack_options(data: EntitlementInput, *, only_smallest: bool) -> list[UnlockOption]:
    packs = sorted(data.message_packs, key=lambda pack: pack.messages)
    if only_smallest:
        packs = packs[:1]
    return [
        UnlockOption(
            kind="message_pack",
            label=pack.label,
            messages=pack.messages,
            token_cost=pack.cost_tokens,
            cost_display=format_tokens_as_gbp(pack.cost_tokens),
            affordable=None if data.caller_id is None else data.token_balance >= pack.cost_tokens,
        )
        for pack in packs
    ]


def _usable_session(data: EntitlementInput) -> MessageSessionView | None:
    session = data.message_session
    if session is None or session.status not in ("active", "exhausted"):
        return None
    if session.expires_at is not None and session.expires_at <= data.now_utc:
        return None
    return session


def _unmetered(access_type: str, *, resource: str, subscription_id=None) -> Entitlement:
    return Entitlement(
        has_access=True,
        access_type=access_type,
        can_send_message=resource == "chat",
        messages_remaining=None,
        requires_unlock=False,
        subscription_id=subscription_id,
    )


def evaluate_entitlement(data: EntitlementInput) -> Entitlement:
    if data.resource not in RESOURCES:
        raise ValueError(f"unknown resource: {data.resource}")

    if data.caller_id is None:
        options = [
            UnlockOption(kind="login", label="Log in to continue"),
            _subscribe_option(data.resource),
        ]
        if data.resource == "chat":
            options.extend(_pack_options(data, only_smallest=True))
        return Entitlement(
            has_access=False,
            access_type="guest",
            can_send_message=False,
            messages_remaining=None,
            requires_unlock=True,
            unlock_options=tuple(options),
        )

    if data.creator_owner_id is not None and data.caller_id == data.creator_owner_id:
        return _unmetered("owner", resource=data.resource)
    if data.is_admin:
        return _unmetered("admin", resource=data.resource)

    granting = GRANTING_TYPES[data.resource]
    for subscription in data.subscriptions:
        if subscription.status == "active" and subscription.subscription_type in granting:
            return _unmetered(
                "subscription",
                resource=data.resource,
                subscription_id=subscription.id,
            )

    session = _usable_session(data) if data.resource == "chat" else None
    if session is not None and session.status == "active" and session.messages_remaining > 0:
        remaining = session.messages_remaining
        is_low = remaining <= LOW_MESSAGE_THRESHOLD
        return Entitlement(
            has_access=True,
            access_type="session",
            can_send_message=True,
            messages_remaining=remaining,
            requires_unlock=False,
            is_low_messages=is_low,
            warning_message=warning_for_remaining(remaining) if is_low else None,
            session_id=session.id,
        )

    options = [_subscribe_option(data.resource)]
    if data.resource == "chat":
        options.extend(_pack_options(data, only_smallest=False))
    exhausted = session is not None
    return Entitlement(
        has_access=False,
        access_type="none",
        can_send_message=False,
        messages_remaining=0 if exhausted else None,
        requires_unlock=True,
        unlock_options=tuple(options),
        is_low_messages=exhausted,
        warning_message=WARNING_NO_MESSAGES if exhausted else None,
        session_id=session.id if session is not None else None,
    )
