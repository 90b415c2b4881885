from __future__ import annotations

from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.ledger_entries import LedgerEntry
from app.db.models.users import User


class LedgerRepo:
    @staticmethod
    async def get_by_idempotency_key(
        session: AsyncSession, idempotency_key: str
    ) -> LedgerEntry | None:
        stmt = select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(session: AsyncSession, *, entry: LedgerEntry) -> LedgerEntry:
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    async def sum_signed_amount(session: AsyncSession, *, user_id: UUID) -> int:
        signed_amount = case(
            (LedgerEntry.direction == "CREDIT", LedgerEntry.amount),
            else_=-LedgerEntry.amount,
        )
        stmt = select(func.coalesce(func.sum(signed_amount), 0)).where(
            LedgerEntry.user_id == user_id
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_wallet_mismatches(
        session: AsyncSession,
        *,
        limit: int,
    ) -> list[dict[str, object]]:
        signed_amount = case(
            (LedgerEntry.direction == "CREDIT", LedgerEntry.amount),
            else_=-LedgerEntry.amount,
        )
        ledger_totals = (
            select(
                LedgerEntry.user_id.label("user_id"),
                func.sum(signed_amount).label("ledger_balance"),
            )
            .group_by(LedgerEntry.user_id)
            .subquery()
        )
        ledger_balance = func.coalesce(ledger_totals.c.ledger_balance, 0)
        stmt = (
            select(User.id, User.token_balance, ledger_balance)
            .outerjoin(ledger_totals, ledger_totals.c.user_id == User.id)
            .where(User.token_balance != ledger_balance)
            .order_by(User.id.asc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return [
            {
                "user_id": str(user_id),
                "token_balance": int(token_balance),
                "ledger_balance": int(balance or 0),
            }
            for user_id, token_balance, balance in result.all()
        ]
