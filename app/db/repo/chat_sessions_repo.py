from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.chat_sessions import ChatSession


class ChatSessionsRepo:
    @staticmethod
    async def get_active(
        session: AsyncSession,
        *,
        user_id: UUID,
        creator_id: UUID,
    ) -> ChatSession | None:
        stmt = select(ChatSession).where(
            ChatSession.user_id == user_id,
            ChatSession.creator_id == creator_id,
            ChatSession.status == "active",
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active_for_update(
        session: AsyncSession,
        *,
        user_id: UUID,
        creator_id: UUID,
    ) -> ChatSession | None:
        stmt = (
            select(ChatSession)
            .where(
                ChatSession.user_id == user_id,
                ChatSession.creator_id == creator_id,
                ChatSession.status == "active",
            )
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(session: AsyncSession, *, chat_session: ChatSession) -> ChatSession:
        session.add(chat_session)
        await session.flush()
        return chat_session

    @staticmethod
    async def list_expired_active(
        session: AsyncSession,
        *,
        now_utc: datetime,
        limit: int,
    ) -> list[ChatSession]:
        stmt = (
            select(ChatSession)
            .where(
                ChatSession.status == "active",
                ChatSession.expires_at.is_not(None),
                ChatSession.expires_at <= now_utc,
            )
            .order_by(ChatSession.expires_at.asc())
            .limit(max(1, int(limit)))
            .with_for_update(skip_locked=True)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def get_latest(
        session: AsyncSession,
        *,
        user_id: UUID,
        creator_id: UUID,
    ) -> ChatSession | None:
        stmt = (
            select(ChatSession)
            .where(ChatSession.user_id == user_id, ChatSession.creator_id == creator_id)
            .order_by(ChatSession.created_at.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
