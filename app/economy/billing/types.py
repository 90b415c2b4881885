from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Recurrence:
    interval: str
    interval_count: int


@dataclass(frozen=True, slots=True)
class PriceQuote:
    amount_minor: int
    currency: str
    base_amount_minor: int
    base_currency: str
    recurrence: Recurrence


@dataclass(frozen=True, slots=True)
class ConflictDecision:
    allowed: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class FeeSplit:
    gross_amount: int
    platform_fee: int
    net_amount: int


@dataclass(slots=True)
class CheckoutResult:
    checkout_url: str
    session_id: str
    quote: PriceQuote | None = None
    amount_minor: int = 0
    currency: str = ""


@dataclass(slots=True)
class CancelResult:
    subscription_id: UUID
    status: str
    idempotent_replay: bool


@dataclass(slots=True)
class HandlerOutcome:
    """Result of applying a single provider event."""

    status: str
    detail: str | None = None
    subscription_id: UUID | None = None
    transaction_id: UUID | None = None
    extras: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class EventProcessingResult:
    event_id: str
    event_type: str
    status: str
    outcome: HandlerOutcome | None = None
