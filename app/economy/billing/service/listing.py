from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.repo.creators_repo import CreatorsRepo
from app.db.repo.pricing_sources_repo import PricingSourcesRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.economy.billing.errors import BillingValidationError

LIST_VIEW_STATUSES: dict[str, tuple[str, ...] | None] = {
    "active": ("active", "past_due"),
    "expired": ("cancelled", "expired"),
    "all": None,
}


@dataclass(slots=True)
class SubscriptionSummary:
    id: UUID
    creator_id: UUID
    creator_display_name: str | None
    subscription_type: str
    billing_period: str
    status: str
    tier_id: UUID | None
    tier_name: str | None
    price_paid: Decimal
    currency: str
    current_period_end: datetime
    cancelled_at: datetime | None


async def list_subscriptions(
    session: AsyncSession,
    *,
    subscriber_id: UUID,
    view: str,
) -> list[SubscriptionSummary]:
    if view not in LIST_VIEW_STATUSES:
        raise BillingValidationError(f"unknown list view: {view}")

    rows = await SubscriptionsRepo.list_for_subscriber(
        session,
        subscriber_id=subscriber_id,
        statuses=LIST_VIEW_STATUSES[view],
    )
    creators = {
        creator.id: creator
        for creator in await CreatorsRepo.list_by_ids(session, [row.creator_id for row in rows])
    }
    tiers = {
        tier.id: tier
        for tier in await PricingSourcesRepo.list_tiers_by_ids(
            session, [row.tier_id for row in rows if row.tier_id is not None]
        )
    }

    summaries: list[SubscriptionSummary] = []
    for row in rows:
        creator = creators.get(row.creator_id)
        tier = tiers.get(row.tier_id) if row.tier_id is not None else None
        summaries.append(
            SubscriptionSummary(
                id=row.id,
                creator_id=row.creator_id,
                creator_display_name=creator.display_name if creator is not None else None,
                subscription_type=row.subscription_type,
                billing_period=row.billing_period,
                status=row.status,
                tier_id=row.tier_id,
                tier_name=tier.name if tier is not None else None,
                price_paid=row.price_paid,
                currency=row.currency,
                current_period_end=row.current_period_end,
                cancelled_at=row.cancelled_at,
            )
        )
    return summaries
