from __future__ import annotations

from collections.abc import Mapping

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.economy.billing.errors import InvalidEventPayloadError
from app.economy.billing.service.ledger import refund_transaction
from app.economy.billing.types import HandlerOutcome

from .context import WebhookContext, object_ref

logger = structlog.get_logger(__name__)


async def handle_charge_refunded(
    session: AsyncSession,
    charge: Mapping[str, object],
    ctx: WebhookContext,
) -> HandlerOutcome:
    charge_id = object_ref(charge.get("id"))
    if charge_id is None:
        raise InvalidEventPayloadError("charge without id")
    if charge.get("refunded") is False:
        return HandlerOutcome(status="skipped", detail="partial_refund")

    payment_intent = object_ref(charge.get("payment_intent"))
    references = [
        ref
        for ref in (payment_intent, object_ref(charge.get("invoice")), charge_id)
        if ref is not None
    ]
    transaction, changed = await refund_transaction(
        session,
        payment_references=references,
        now_utc=ctx.now_utc,
        payment_intent_id=payment_intent,
    )
    if transaction is None and payment_intent is not None:
        # Renewal rows are keyed by invoice and newer charges no longer carry one.
        invoice_id = await ctx.gateway.find_invoice_for_payment_intent(
            payment_intent_id=payment_intent
        )
        if invoice_id is not None and invoice_id not in references:
            transaction, changed = await refund_transaction(
                session,
                payment_references=[invoice_id],
                now_utc=ctx.now_utc,
            )
    if transaction is None:
        logger.info("charge_refunded_ledger_missing", event_id=ctx.event_id, charge_id=charge_id)
        return HandlerOutcome(status="skipped", detail="transaction_not_found")

    logger.info(
        "charge_refunded_applied",
        event_id=ctx.event_id,
        charge_id=charge_id,
        transaction_id=str(transaction.id),
        changed=changed,
    )
    return HandlerOutcome(
        status="applied" if changed else "duplicate",
        transaction_id=transaction.id,
    )
