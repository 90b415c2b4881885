from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscriptions import Subscription
from app.db.repo.creators_repo import CreatorsRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.economy.billing.conflicts import resolve_conflict
from app.economy.billing.constants import LIVE_SUBSCRIPTION_STATUSES
from app.economy.billing.errors import InvalidEventPayloadError
from app.economy.billing.types import HandlerOutcome

from .context import WebhookContext, object_ref, positive_int

logger = structlog.get_logger(__name__)

PROVIDER_STATUS_MAP: dict[str, str] = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "incomplete": "past_due",
    "canceled": "cancelled",
    "incomplete_expired": "cancelled",
}


def map_provider_status(provider_status: object, *, fallback: str) -> str:
    if isinstance(provider_status, str) and provider_status in PROVIDER_STATUS_MAP:
        return PROVIDER_STATUS_MAP[provider_status]
    logger.warning("provider_subscription_status_unknown", provider_status=provider_status)
    return fallback


def _provider_period_end(provider_subscription: Mapping[str, object]) -> datetime | None:
    raw_end = positive_int(provider_subscription.get("current_period_end"))
    if raw_end is None:
        items = provider_subscription.get("items")
        data = items.get("data") if isinstance(items, dict) else None
        if isinstance(data, list) and data and isinstance(data[0], dict):
            raw_end = positive_int(data[0].get("current_period_end"))
    if raw_end is None:
        return None
    return datetime.fromtimestamp(raw_end, tz=timezone.utc)


async def _slot_is_free(session: AsyncSession, subscription: Subscription) -> bool:
    live = await SubscriptionsRepo.list_live_for_pair(
        session,
        subscriber_id=subscription.subscriber_id,
        creator_id=subscription.creator_id,
        statuses=LIVE_SUBSCRIPTION_STATUSES,
        for_update=True,
    )
    others = [row.subscription_type for row in live if row.id != subscription.id]
    return resolve_conflict(others, subscription.subscription_type).allowed


async def handle_subscription_updated(
    session: AsyncSession,
    provider_subscription: Mapping[str, object],
    ctx: WebhookContext,
) -> HandlerOutcome:
    external_subscription_id = object_ref(provider_subscription.get("id"))
    if external_subscription_id is None:
        raise InvalidEventPayloadError("subscription event without id")

    subscription = await SubscriptionsRepo.get_by_external_id_for_update(
        session, external_subscription_id
    )
    if subscription is None:
        return HandlerOutcome(status="skipped", detail="subscription_not_found")
    if subscription.status == "expired":
        return HandlerOutcome(
            status="skipped",
            detail="subscription_expired",
            subscription_id=subscription.id,
        )

    target = map_provider_status(
        provider_subscription.get("status"),
        fallback=ctx.unknown_status_fallback,
    )
    previous = subscription.status
    cancel_pending = bool(provider_subscription.get("cancel_at_period_end"))

    if target in LIVE_SUBSCRIPTION_STATUSES and previous == "cancelled":
        if cancel_pending:
            target = "cancelled"
        elif not await _slot_is_free(session, subscription):
            logger.warning(
                "subscription_reactivation_blocked",
                event_id=ctx.event_id,
                external_subscription_id=external_subscription_id,
            )
            target = "cancelled"

    changed = False
    if target != previous:
        subscription.status = target
        if target == "cancelled":
            subscription.cancelled_at = subscription.cancelled_at or ctx.now_utc
        elif previous == "cancelled":
            subscription.cancelled_at = None
        changed = True

    period_end = _provider_period_end(provider_subscription)
    if period_end is not None and period_end > subscription.current_period_end:
        subscription.current_period_end = period_end
        changed = True

    if changed:
        subscription.updated_at = ctx.now_utc
        await session.flush()

    logger.info(
        "subscription_updated_applied",
        event_id=ctx.event_id,
        external_subscription_id=external_subscription_id,
        previous_status=previous,
        status=subscription.status,
        provider_status=provider_subscription.get("status"),
    )
    return HandlerOutcome(
        status="applied" if changed else "duplicate",
        subscription_id=subscription.id,
    )


async def handle_subscription_deleted(
    session: AsyncSession,
    provider_subscription: Mapping[str, object],
    ctx: WebhookContext,
) -> HandlerOutcome:
    external_subscription_id = object_ref(provider_subscription.get("id"))
    if external_subscription_id is None:
        raise InvalidEventPayloadError("subscription event without id")

    subscription = await SubscriptionsRepo.get_by_external_id_for_update(
        session, external_subscription_id
    )
    if subscription is None:
        return HandlerOutcome(status="skipped", detail="subscription_not_found")
    if subscription.status == "expired":
        return HandlerOutcome(status="duplicate", subscription_id=subscription.id)

    subscription.status = "expired"
    subscription.cancelled_at = subscription.cancelled_at or ctx.now_utc
    subscription.updated_at = ctx.now_utc
    if subscription.counted_subscriber:
        await CreatorsRepo.decrement_subscriber_count(session, creator_id=subscription.creator_id)
        subscription.counted_subscriber = False
    await session.flush()

    logger.info(
        "subscription_expired",
        event_id=ctx.event_id,
        external_subscription_id=external_subscription_id,
        subscription_id=str(subscription.id),
    )
    return HandlerOutcome(status="applied", subscription_id=subscription.id)
