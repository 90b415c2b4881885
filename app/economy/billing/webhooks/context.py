from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from app.services.payment_gateway import PaymentGateway


@dataclass(slots=True)
class WebhookContext:
    event_id: str
    event_type: str
    now_utc: datetime
    gateway: PaymentGateway
    unknown_status_fallback: str = "past_due"
    # Sent by the processor after the event transaction commits.
    pending_alerts: list[tuple[str, dict[str, object]]] = field(default_factory=list)
    # Provider subscriptions to set cancel_at_period_end on once the transaction commits.
    pending_cancellations: list[str] = field(default_factory=list)


def object_ref(value: object) -> str | None:
    """Provider references arrive either as an id string or as an expanded object."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict):
        ref = value.get("id")
        if isinstance(ref, str) and ref:
            return ref
    return None


def positive_int(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value
