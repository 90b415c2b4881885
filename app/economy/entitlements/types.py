from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from app.economy.billing.catalog import MESSAGE_PACKS, MessagePackSpec


@dataclass(frozen=True, slots=True)
class SubscriptionView:
    id: UUID
    subscription_type: str
    status: str


@dataclass(frozen=True, slots=True)
class MessageSessionView:
    id: UUID
    messages_remaining: int
    status: str
    expires_at: datetime | None


@dataclass(frozen=True, slots=True)
class EntitlementInput:
    resource: str
    caller_id: UUID | None
    creator_owner_id: UUID | None
    now_utc: datetime
    is_admin: bool = False
    token_balance: int = 0
    subscriptions: tuple[SubscriptionView, ...] = ()
    message_session: MessageSessionView | None = None
    message_packs: tuple[MessagePackSpec, ...] = MESSAGE_PACKS


@dataclass(frozen=True, slots=True)
class UnlockOption:
    kind: str
    label: str
    recommended: bool = False
    messages: int | None = None
    token_cost: int | None = None
    cost_display: str | None = None
    affordable: bool | None = None


@dataclass(frozen=True, slots=True)
class Entitlement:
    has_access: bool
    access_type: str
    can_send_message: bool
    messages_remaining: int | None
    requires_unlock: bool
    unlock_options: tuple[UnlockOption, ...] = ()
    is_low_messages: bool = False
    warning_message: str | None = None
    subscription_id: UUID | None = None
    session_id: UUID | None = None
    extras: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class MessageSessionResult:
    session_id: UUID
    messages_remaining: int
    status: str
    token_balance: int | None = None
    idempotent_replay: bool = False
