from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.transactions import Transaction


class TransactionsRepo:
    @staticmethod
    async def get_by_external_id(
        session: AsyncSession,
        external_transaction_id: str,
    ) -> Transaction | None:
        stmt = select(Transaction).where(
            Transaction.external_transaction_id == external_transaction_id
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_first_by_external_ids_for_update(
        session: AsyncSession,
        external_transaction_ids: Sequence[str],
    ) -> Transaction | None:
        """Return the row matching the earliest id in the given preference order."""
        candidates = [value for value in external_transaction_ids if value]
        if not candidates:
            return None
        stmt = (
            select(Transaction)
            .where(Transaction.external_transaction_id.in_(candidates))
            .with_for_update()
        )
        result = await session.execute(stmt)
        by_external_id = {row.external_transaction_id: row for row in result.scalars().all()}
        for candidate in candidates:
            if candidate in by_external_id:
                return by_external_id[candidate]
        return None

    @staticmethod
    async def get_by_payment_intent_for_update(
        session: AsyncSession,
        payment_intent_id: str,
    ) -> Transaction | None:
        stmt = (
            select(Transaction)
            .where(Transaction.payment_intent_id == payment_intent_id)
            .order_by(Transaction.completed_at.desc())
            .limit(1)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(session: AsyncSession, *, transaction: Transaction) -> Transaction:
        session.add(transaction)
        await session.flush()
        return transaction

    @staticmethod
    async def count_subscription_entries(
        session: AsyncSession,
        *,
        subscription_id: UUID,
    ) -> int:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.subscription_id == subscription_id
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_unbalanced(session: AsyncSession) -> int:
        stmt = select(func.count(Transaction.id)).where(
            or_(
                Transaction.gross_amount != Transaction.platform_fee + Transaction.net_amount,
                Transaction.net_amount < 0,
                Transaction.platform_fee < 0,
            )
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_refunded_missing_timestamp(session: AsyncSession) -> int:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.status == "refunded",
            Transaction.refunded_at.is_(None),
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)
