from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from app.economy.billing.types import HandlerOutcome

from .checkout_completed import handle_checkout_session_completed
from .context import WebhookContext
from .invoices import handle_invoice_paid
from .refunds import handle_charge_refunded
from .subscription_lifecycle import handle_subscription_deleted, handle_subscription_updated

EventHandler = Callable[
    [AsyncSession, Mapping[str, object], WebhookContext],
    Awaitable[HandlerOutcome],
]

EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_session_completed,
    "invoice.paid": handle_invoice_paid,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "charge.refunded": handle_charge_refunded,
}


def get_event_handler(event_type: str) -> EventHandler | None:
    return EVENT_HANDLERS.get(event_type)
