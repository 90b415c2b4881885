from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.post_purchases import PostPurchase


class PostPurchasesRepo:
    @staticmethod
    async def create_if_absent(
        session: AsyncSession,
        *,
        post_id: UUID,
        buyer_id: UUID,
        creator_id: UUID,
        transaction_id: UUID,
        created_at: datetime,
    ) -> bool:
        stmt = (
            postgresql_insert(PostPurchase)
            .values(
                id=uuid4(),
                post_id=post_id,
                buyer_id=buyer_id,
                creator_id=creator_id,
                transaction_id=transaction_id,
                created_at=created_at,
            )
            .on_conflict_do_nothing(constraint="uq_post_purchases_post_buyer")
            .returning(PostPurchase.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
