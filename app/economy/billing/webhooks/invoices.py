from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.transactions_repo import TransactionsRepo
from app.economy.billing.errors import InvalidEventPayloadError
from app.economy.billing.service.ledger import record_transaction
from app.economy.billing.types import HandlerOutcome

from .context import WebhookContext, object_ref, positive_int

logger = structlog.get_logger(__name__)

RETIRED_STATUSES = frozenset({"cancelled", "expired"})


def invoice_subscription_ref(invoice: Mapping[str, object]) -> str | None:
    direct = object_ref(invoice.get("subscription"))
    if direct is not None:
        return direct
    # Newer API versions nest the subscription under the invoice parent.
    parent = invoice.get("parent")
    if isinstance(parent, dict):
        details = parent.get("subscription_details")
        if isinstance(details, dict):
            return object_ref(details.get("subscription"))
    return None


def invoice_payment_intent(invoice: Mapping[str, object]) -> str | None:
    direct = object_ref(invoice.get("payment_intent"))
    if direct is not None:
        return direct
    # Newer API versions list the settled payments instead of a top-level intent.
    payments = invoice.get("payments")
    data = payments.get("data") if isinstance(payments, dict) else None
    for entry in data if isinstance(data, list) else []:
        payment = entry.get("payment") if isinstance(entry, dict) else None
        if isinstance(payment, dict):
            ref = object_ref(payment.get("payment_intent"))
            if ref is not None:
                return ref
    return None


def invoice_period(invoice: Mapping[str, object]) -> tuple[datetime, datetime] | None:
    """Latest service window billed by the invoice lines."""
    lines = invoice.get("lines")
    data = lines.get("data") if isinstance(lines, dict) else None
    best: tuple[int, int] | None = None
    for line in data if isinstance(data, list) else []:
        period = line.get("period") if isinstance(line, dict) else None
        if not isinstance(period, dict):
            continue
        start = positive_int(period.get("start"))
        end = positive_int(period.get("end"))
        if start is None or end is None or end <= start:
            continue
        if best is None or end > best[1]:
            best = (start, end)
    if best is None:
        return None
    return (
        datetime.fromtimestamp(best[0], tz=timezone.utc),
        datetime.fromtimestamp(best[1], tz=timezone.utc),
    )


async def handle_invoice_paid(
    session: AsyncSession,
    invoice: Mapping[str, object],
    ctx: WebhookContext,
) -> HandlerOutcome:
    invoice_id = object_ref(invoice.get("id"))
    if invoice_id is None:
        raise InvalidEventPayloadError("invoice without id")
    external_subscription_id = invoice_subscription_ref(invoice)
    if external_subscription_id is None:
        return HandlerOutcome(status="ignored", detail="invoice_not_for_subscription")

    subscription = await SubscriptionsRepo.get_by_external_id_for_update(
        session, external_subscription_id
    )
    if subscription is None:
        logger.info(
            "invoice_paid_subscription_missing",
            event_id=ctx.event_id,
            external_subscription_id=external_subscription_id,
            invoice_id=invoice_id,
        )
        return HandlerOutcome(status="skipped", detail="subscription_not_found")

    period_advanced = False
    window = invoice_period(invoice)
    if window is not None and window[1] > subscription.current_period_end:
        subscription.current_period_start, subscription.current_period_end = window
        period_advanced = True

    status_changed = False
    if subscription.status not in RETIRED_STATUSES and subscription.status != "active":
        subscription.status = "active"
        status_changed = True

    if period_advanced or status_changed:
        subscription.updated_at = ctx.now_utc

    transaction_created = False
    amount_paid = positive_int(invoice.get("amount_paid"))
    payment_intent = invoice_payment_intent(invoice)
    already_recorded = await TransactionsRepo.get_first_by_external_ids_for_update(
        session,
        [invoice_id, payment_intent or ""],
    )
    if amount_paid is not None and already_recorded is None:
        currency = invoice.get("currency")
        _, transaction_created = await record_transaction(
            session,
            user_id=subscription.subscriber_id,
            creator_id=subscription.creator_id,
            transaction_type="subscription",
            gross_amount=amount_paid,
            currency=currency if isinstance(currency, str) and currency else subscription.currency,
            external_transaction_id=invoice_id,
            completed_at=ctx.now_utc,
            subscription_id=subscription.id,
            description="Subscription renewal",
            payment_intent_id=payment_intent,
        )
    await session.flush()

    logger.info(
        "invoice_paid_applied",
        event_id=ctx.event_id,
        external_subscription_id=external_subscription_id,
        invoice_id=invoice_id,
        period_advanced=period_advanced,
        status=subscription.status,
        transaction_created=transaction_created,
    )
    changed = period_advanced or status_changed or transaction_created
    return HandlerOutcome(
        status="applied" if changed else "duplicate",
        subscription_id=subscription.id,
    )
