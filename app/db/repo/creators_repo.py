from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.creators import Creator


class CreatorsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, creator_id: UUID) -> Creator | None:
        return await session.get(Creator, creator_id)

    @staticmethod
    async def list_by_ids(session: AsyncSession, creator_ids: Sequence[UUID]) -> list[Creator]:
        ids = tuple(set(creator_ids))
        if not ids:
            return []
        stmt = select(Creator).where(Creator.id.in_(ids))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def increment_subscriber_count(session: AsyncSession, *, creator_id: UUID) -> int:
        stmt = (
            update(Creator)
            .where(Creator.id == creator_id)
            .values(subscriber_count=Creator.subscriber_count + 1)
            .returning(Creator.id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0

    @staticmethod
    async def decrement_subscriber_count(session: AsyncSession, *, creator_id: UUID) -> int:
        stmt = (
            update(Creator)
            .where(Creator.id == creator_id)
            .values(
                subscriber_count=case(
                    (Creator.subscriber_count > 0, Creator.subscriber_count - 1),
                    else_=0,
                )
            )
            .returning(Creator.id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0
