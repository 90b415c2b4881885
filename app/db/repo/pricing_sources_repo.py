from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.creator_models import CreatorModel
from app.db.models.subscription_tiers import SubscriptionTier


class PricingSourcesRepo:
    @staticmethod
    async def get_tier(session: AsyncSession, tier_id: UUID) -> SubscriptionTier | None:
        return await session.get(SubscriptionTier, tier_id)

    @staticmethod
    async def get_model(session: AsyncSession, model_id: UUID) -> CreatorModel | None:
        return await session.get(CreatorModel, model_id)

    @staticmethod
    async def get_cheapest_active_tier(
        session: AsyncSession,
        *,
        creator_id: UUID,
    ) -> SubscriptionTier | None:
        stmt = (
            select(SubscriptionTier)
            .where(
                SubscriptionTier.creator_id == creator_id,
                SubscriptionTier.is_active.is_(True),
            )
            .order_by(SubscriptionTier.price_monthly.asc(), SubscriptionTier.created_at.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_cheapest_priced_model(
        session: AsyncSession,
        *,
        creator_id: UUID,
    ) -> CreatorModel | None:
        stmt = (
            select(CreatorModel)
            .where(
                CreatorModel.creator_id == creator_id,
                CreatorModel.is_active.is_(True),
                CreatorModel.subscription_price.is_not(None),
            )
            .order_by(CreatorModel.subscription_price.asc(), CreatorModel.created_at.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_tiers_by_ids(
        session: AsyncSession,
        tier_ids: Sequence[UUID],
    ) -> list[SubscriptionTier]:
        ids = tuple(set(tier_ids))
        if not ids:
            return []
        stmt = select(SubscriptionTier).where(SubscriptionTier.id.in_(ids))
        result = await session.execute(stmt)
        return list(result.scalars().all())
