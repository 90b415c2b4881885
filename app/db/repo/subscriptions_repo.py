from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscriptions import Subscription

LIVE_STATUSES: tuple[str, ...] = ("active", "past_due")


class SubscriptionsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, subscription_id: UUID) -> Subscription | None:
        return await session.get(Subscription, subscription_id)

    @staticmethod
    async def get_by_id_for_update(
        session: AsyncSession,
        subscription_id: UUID,
    ) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.id == subscription_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_external_id_for_update(
        session: AsyncSession,
        external_subscription_id: str,
    ) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.external_subscription_id == external_subscription_id)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_live_for_pair(
        session: AsyncSession,
        *,
        subscriber_id: UUID,
        creator_id: UUID,
        statuses: Sequence[str] = LIVE_STATUSES,
        for_update: bool = False,
    ) -> list[Subscription]:
        stmt = select(Subscription).where(
            Subscription.subscriber_id == subscriber_id,
            Subscription.creator_id == creator_id,
            Subscription.status.in_(tuple(statuses)),
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_for_subscriber(
        session: AsyncSession,
        *,
        subscriber_id: UUID,
        statuses: Sequence[str] | None = None,
    ) -> list[Subscription]:
        stmt = select(Subscription).where(Subscription.subscriber_id == subscriber_id)
        if statuses is not None:
            stmt = stmt.where(Subscription.status.in_(tuple(statuses)))
        stmt = stmt.order_by(Subscription.created_at.desc(), Subscription.id.desc())
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def create(session: AsyncSession, *, subscription: Subscription) -> Subscription:
        session.add(subscription)
        await session.flush()
        return subscription

    @staticmethod
    async def count_active_past_period_end(
        session: AsyncSession,
        *,
        now_utc: datetime,
        grace_seconds: int,
    ) -> int:
        overdue_seconds = func.extract("epoch", now_utc - Subscription.current_period_end)
        stmt = select(func.count(Subscription.id)).where(
            Subscription.status == "active",
            overdue_seconds >= max(0, int(grace_seconds)),
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_active_past_period_end(
        session: AsyncSession,
        *,
        now_utc: datetime,
        grace_seconds: int,
        limit: int,
    ) -> list[Subscription]:
        overdue_seconds = func.extract("epoch", now_utc - Subscription.current_period_end)
        stmt = (
            select(Subscription)
            .where(
                Subscription.status == "active",
                overdue_seconds >= max(0, int(grace_seconds)),
            )
            .order_by(Subscription.current_period_end.asc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
