from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from uuid import uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscriptions import Subscription
from app.db.repo.creators_repo import CreatorsRepo
from app.db.repo.post_purchases_repo import PostPurchasesRepo
from app.db.repo.pricing_sources_repo import PricingSourcesRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.users_repo import UsersRepo
from app.economy.billing.catalog import get_token_pack
from app.economy.billing.conflicts import resolve_conflict
from app.economy.billing.constants import (
    LIVE_SUBSCRIPTION_STATUSES,
    NOTIFICATION_NEW_SUBSCRIBER,
    NOTIFICATION_TIP,
    PERIOD_FALLBACK_LENGTH,
    SUBSCRIBER_COUNT_TYPES,
    SUBSCRIPTION_TYPE_LABELS,
)
from app.economy.billing.currency import minor_to_decimal
from app.economy.billing.errors import (
    InvalidEventPayloadError,
    LedgerReferenceError,
    ProviderUnavailableError,
)
from app.economy.billing.metadata import (
    PpvCheckoutMetadata,
    SubscriptionCheckoutMetadata,
    TipCheckoutMetadata,
    TokenPurchaseMetadata,
    parse_metadata,
)
from app.economy.billing.service.ledger import credit_tokens, record_transaction
from app.economy.billing.service.notifications import enqueue_creator_notification
from app.economy.billing.types import HandlerOutcome

from .context import WebhookContext, object_ref, positive_int

logger = structlog.get_logger(__name__)

CheckoutHandler = Callable[
    [AsyncSession, Mapping[str, object], Mapping[str, object], WebhookContext],
    Awaitable[HandlerOutcome],
]


def checkout_payment_reference(checkout: Mapping[str, object]) -> str:
    """Ledger key of a checkout: invoice, else payment intent, else the session itself."""
    reference = (
        object_ref(checkout.get("invoice"))
        or object_ref(checkout.get("payment_intent"))
        or object_ref(checkout.get("id"))
    )
    if reference is None:
        raise InvalidEventPayloadError("checkout session carries no payment reference")
    return reference


def _checkout_currency(checkout: Mapping[str, object]) -> str:
    currency = checkout.get("currency")
    return currency.lower() if isinstance(currency, str) and currency else "gbp"


def _required_amount(checkout: Mapping[str, object]) -> int:
    amount = positive_int(checkout.get("amount_total"))
    if amount is None:
        raise InvalidEventPayloadError("checkout session has no positive amount_total")
    return amount


async def _resolve_window(
    ctx: WebhookContext,
    *,
    external_subscription_id: str,
    billing_period: str,
) -> tuple[datetime, datetime]:
    try:
        window = await ctx.gateway.retrieve_subscription_window(
            external_subscription_id=external_subscription_id
        )
    except ProviderUnavailableError:
        logger.warning(
            "provider_subscription_window_unavailable",
            event_id=ctx.event_id,
            external_subscription_id=external_subscription_id,
        )
        window = None
    if window is not None:
        return window.current_period_start, window.current_period_end
    return ctx.now_utc, ctx.now_utc + PERIOD_FALLBACK_LENGTH[billing_period]


async def _create_subscription_row(
    session: AsyncSession,
    *,
    meta: SubscriptionCheckoutMetadata,
    external_subscription_id: str,
    amount_total: int,
    currency: str,
    ctx: WebhookContext,
) -> Subscription:
    # Resolved before any row lock is taken.
    period_start, period_end = await _resolve_window(
        ctx,
        external_subscription_id=external_subscription_id,
        billing_period=meta.billing_period,
    )

    if await UsersRepo.get_by_id_for_update(session, meta.user_id) is None:
        raise LedgerReferenceError(f"unknown subscriber {meta.user_id}")
    if await CreatorsRepo.get_by_id(session, meta.creator_id) is None:
        raise LedgerReferenceError(f"unknown creator {meta.creator_id}")

    tier_id = meta.tier_uuid
    if tier_id is not None and await PricingSourcesRepo.get_tier(session, tier_id) is None:
        logger.warning("checkout_tier_missing", event_id=ctx.event_id, tier_id=str(tier_id))
        tier_id = None
    model_id = meta.model_uuid
    if model_id is not None and await PricingSourcesRepo.get_model(session, model_id) is None:
        logger.warning("checkout_model_missing", event_id=ctx.event_id, model_id=str(model_id))
        model_id = None

    live = await SubscriptionsRepo.list_live_for_pair(
        session,
        subscriber_id=meta.user_id,
        creator_id=meta.creator_id,
        statuses=LIVE_SUBSCRIPTION_STATUSES,
        for_update=True,
    )
    decision = resolve_conflict((row.subscription_type for row in live), meta.subscription_type)

    subscription = await SubscriptionsRepo.create(
        session,
        subscription=Subscription(
            id=uuid4(),
            subscriber_id=meta.user_id,
            creator_id=meta.creator_id,
            subscription_type=meta.subscription_type,
            tier_id=tier_id,
            model_id=model_id,
            billing_period=meta.billing_period,
            status="active" if decision.allowed else "cancelled",
            started_at=ctx.now_utc,
            current_period_start=period_start,
            current_period_end=period_end,
            cancelled_at=None if decision.allowed else ctx.now_utc,
            price_paid=minor_to_decimal(amount_total),
            currency=currency,
            external_subscription_id=external_subscription_id,
            counted_subscriber=False,
            created_at=ctx.now_utc,
            updated_at=ctx.now_utc,
        ),
    )

    if not decision.allowed:
        # A concurrent checkout already holds the slot; the paid duplicate is wound down after commit.
        ctx.pending_cancellations.append(external_subscription_id)
        ctx.pending_alerts.append(
            (
                "billing_duplicate_slot_checkout",
                {
                    "event_id": ctx.event_id,
                    "subscription_id": str(subscription.id),
                    "external_subscription_id": external_subscription_id,
                    "reason": decision.reason,
                },
            )
        )
        logger.warning(
            "subscription_checkout_slot_conflict",
            event_id=ctx.event_id,
            external_subscription_id=external_subscription_id,
            reason=decision.reason,
        )
        return subscription

    if meta.subscription_type in SUBSCRIBER_COUNT_TYPES:
        await CreatorsRepo.increment_subscriber_count(session, creator_id=meta.creator_id)
        subscription.counted_subscriber = True

    await enqueue_creator_notification(
        session,
        event_type=NOTIFICATION_NEW_SUBSCRIBER,
        creator_id=meta.creator_id,
        dedupe_key=external_subscription_id,
        payload={
            "subscriber_id": str(meta.user_id),
            "subscription_id": str(subscription.id),
            "subscription_type": meta.subscription_type,
            "billing_period": meta.billing_period,
        },
    )
    await session.flush()
    return subscription


async def _handle_subscription_checkout(
    session: AsyncSession,
    checkout: Mapping[str, object],
    metadata: Mapping[str, object],
    ctx: WebhookContext,
) -> HandlerOutcome:
    meta = parse_metadata(SubscriptionCheckoutMetadata, metadata)
    external_subscription_id = object_ref(checkout.get("subscription"))
    if external_subscription_id is None:
        raise InvalidEventPayloadError("subscription checkout without subscription id")

    amount_total = positive_int(checkout.get("amount_total")) or 0
    currency = _checkout_currency(checkout)

    subscription = await SubscriptionsRepo.get_by_external_id_for_update(
        session, external_subscription_id
    )
    created = subscription is None
    if subscription is None:
        subscription = await _create_subscription_row(
            session,
            meta=meta,
            external_subscription_id=external_subscription_id,
            amount_total=amount_total,
            currency=currency,
            ctx=ctx,
        )

    transaction_created = False
    transaction_id = None
    if amount_total > 0:
        transaction, transaction_created = await record_transaction(
            session,
            user_id=meta.user_id,
            creator_id=meta.creator_id,
            transaction_type="subscription",
            gross_amount=amount_total,
            currency=currency,
            external_transaction_id=checkout_payment_reference(checkout),
            completed_at=ctx.now_utc,
            payment_intent_id=object_ref(checkout.get("payment_intent")),
            subscription_id=subscription.id,
            description=f"New {SUBSCRIPTION_TYPE_LABELS[meta.subscription_type]} subscription",
        )
        transaction_id = transaction.id

    logger.info(
        "subscription_checkout_applied",
        event_id=ctx.event_id,
        external_subscription_id=external_subscription_id,
        subscription_id=str(subscription.id),
        created=created,
        transaction_created=transaction_created,
    )
    return HandlerOutcome(
        status="applied" if created or transaction_created else "duplicate",
        subscription_id=subscription.id,
        transaction_id=transaction_id,
    )


async def _handle_tip_checkout(
    session: AsyncSession,
    checkout: Mapping[str, object],
    metadata: Mapping[str, object],
    ctx: WebhookContext,
) -> HandlerOutcome:
    meta = parse_metadata(TipCheckoutMetadata, metadata)
    amount_total = _required_amount(checkout)
    payment_reference = checkout_payment_reference(checkout)
    currency = _checkout_currency(checkout)

    transaction, created = await record_transaction(
        session,
        user_id=meta.user_id,
        creator_id=meta.creator_id,
        transaction_type="tip",
        gross_amount=amount_total,
        currency=currency,
        external_transaction_id=payment_reference,
        completed_at=ctx.now_utc,
        payment_intent_id=object_ref(checkout.get("payment_intent")),
        description=meta.message or "Tip",
    )
    if created:
        await enqueue_creator_notification(
            session,
            event_type=NOTIFICATION_TIP,
            creator_id=meta.creator_id,
            dedupe_key=payment_reference,
            payload={
                "fan_id": str(meta.user_id),
                "transaction_id": str(transaction.id),
                "amount_minor": amount_total,
                "currency": currency,
                "message": meta.message,
            },
        )
    return HandlerOutcome(
        status="applied" if created else "duplicate",
        transaction_id=transaction.id,
    )


async def _handle_ppv_checkout(
    session: AsyncSession,
    checkout: Mapping[str, object],
    metadata: Mapping[str, object],
    ctx: WebhookContext,
) -> HandlerOutcome:
    meta = parse_metadata(PpvCheckoutMetadata, metadata)
    transaction, created = await record_transaction(
        session,
        user_id=meta.user_id,
        creator_id=meta.creator_id,
        transaction_type="ppv",
        gross_amount=_required_amount(checkout),
        currency=_checkout_currency(checkout),
        external_transaction_id=checkout_payment_reference(checkout),
        completed_at=ctx.now_utc,
        payment_intent_id=object_ref(checkout.get("payment_intent")),
        post_id=meta.post_id,
        description="Pay-per-view unlock",
    )
    unlocked = await PostPurchasesRepo.create_if_absent(
        session,
        post_id=meta.post_id,
        buyer_id=meta.user_id,
        creator_id=meta.creator_id,
        transaction_id=transaction.id,
        created_at=ctx.now_utc,
    )
    return HandlerOutcome(
        status="applied" if created or unlocked else "duplicate",
        transaction_id=transaction.id,
    )


async def _handle_token_purchase_checkout(
    session: AsyncSession,
    checkout: Mapping[str, object],
    metadata: Mapping[str, object],
    ctx: WebhookContext,
) -> HandlerOutcome:
    meta = parse_metadata(TokenPurchaseMetadata, metadata)
    pack = get_token_pack(meta.pack_code)
    if pack is None or pack.tokens != meta.tokens:
        raise InvalidEventPayloadError(f"token pack mismatch: {meta.pack_code}")

    payment_reference = checkout_payment_reference(checkout)
    balance_after, created = await credit_tokens(
        session,
        user_id=meta.user_id,
        amount=meta.tokens,
        entry_type="TOKEN_PURCHASE",
        idempotency_key=f"token_purchase:{payment_reference}",
        now_utc=ctx.now_utc,
        metadata={
            "pack_code": pack.pack_code,
            "payment_reference": payment_reference,
            "amount_total": checkout.get("amount_total"),
            "currency": _checkout_currency(checkout),
        },
    )
    return HandlerOutcome(
        status="applied" if created else "duplicate",
        extras={"balance_after": balance_after},
    )


CHECKOUT_TYPE_HANDLERS: dict[str, CheckoutHandler] = {
    "subscription": _handle_subscription_checkout,
    "tip": _handle_tip_checkout,
    "ppv": _handle_ppv_checkout,
    "token_purchase": _handle_token_purchase_checkout,
}


async def handle_checkout_session_completed(
    session: AsyncSession,
    checkout: Mapping[str, object],
    ctx: WebhookContext,
) -> HandlerOutcome:
    raw_metadata = checkout.get("metadata")
    metadata: Mapping[str, object] = raw_metadata if isinstance(raw_metadata, dict) else {}
    checkout_type = metadata.get("type")
    handler = CHECKOUT_TYPE_HANDLERS.get(checkout_type) if isinstance(checkout_type, str) else None
    if handler is None:
        return HandlerOutcome(status="ignored", detail=f"checkout type {checkout_type!r}")

    if checkout.get("payment_status") == "unpaid":
        return HandlerOutcome(status="skipped", detail="payment_pending")
    return await handler(session, checkout, metadata, ctx)
