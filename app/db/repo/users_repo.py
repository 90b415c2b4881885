from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.users import User


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: UUID) -> User | None:
        return await session.get(User, user_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, user_id: UUID) -> User | None:
        stmt = select(User).where(User.id == user_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_billing_customer_id(
        session: AsyncSession,
        billing_customer_id: str,
    ) -> User | None:
        stmt = select(User).where(User.billing_customer_id == billing_customer_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_by_ids(
        session: AsyncSession,
        user_ids: Sequence[UUID],
    ) -> list[User]:
        ids = tuple(set(user_ids))
        if not ids:
            return []
        stmt = select(User).where(User.id.in_(ids))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def set_billing_customer_id(
        session: AsyncSession,
        *,
        user_id: UUID,
        billing_customer_id: str,
    ) -> int:
        stmt = (
            update(User)
            .where(User.id == user_id, User.billing_customer_id.is_(None))
            .values(billing_customer_id=billing_customer_id)
            .returning(User.id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0

    @staticmethod
    async def set_token_balance(
        session: AsyncSession,
        *,
        user_id: UUID,
        token_balance: int,
    ) -> int:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(token_balance=token_balance)
            .returning(User.id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0
