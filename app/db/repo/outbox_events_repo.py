from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.outbox_events import OutboxEvent


class OutboxEventsRepo:
    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        event_type: str,
        payload: dict[str, object],
        status: str,
        dedupe_key: str | None = None,
    ) -> bool:
        stmt = (
            postgresql_insert(OutboxEvent)
            .values(
                event_type=event_type,
                payload=payload,
                status=status,
                dedupe_key=dedupe_key,
            )
            .on_conflict_do_nothing(index_elements=[OutboxEvent.dedupe_key])
            .returning(OutboxEvent.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def list_pending_for_update(
        session: AsyncSession,
        *,
        event_types: tuple[str, ...],
        limit: int,
    ) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.status == "PENDING",
                OutboxEvent.event_type.in_(event_types),
            )
            .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
            .limit(max(1, int(limit)))
            .with_for_update(skip_locked=True)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def mark_sent(session: AsyncSession, *, event_id: int) -> int:
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id)
            .values(status="SENT", attempts=OutboxEvent.attempts + 1, sent_at=func.now())
            .returning(OutboxEvent.id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0

    @staticmethod
    async def mark_attempt_failed(
        session: AsyncSession,
        *,
        event_id: int,
        max_attempts: int,
    ) -> int:
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id)
            .values(
                attempts=OutboxEvent.attempts + 1,
                status=case(
                    (OutboxEvent.attempts + 1 >= max(1, int(max_attempts)), "FAILED"),
                    else_=OutboxEvent.status,
                ),
            )
            .returning(OutboxEvent.id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0

    @staticmethod
    async def delete_created_before(
        session: AsyncSession,
        *,
        cutoff_utc: datetime,
        limit: int,
    ) -> int:
        resolved_limit = max(1, int(limit))
        candidate_ids = (
            select(OutboxEvent.id)
            .where(OutboxEvent.created_at < cutoff_utc, OutboxEvent.status != "PENDING")
            .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
            .limit(resolved_limit)
            .scalar_subquery()
        )
        stmt = (
            delete(OutboxEvent).where(OutboxEvent.id.in_(candidate_ids)).returning(OutboxEvent.id)
        )
        result = await session.execute(stmt)
        return len(list(result.scalars()))
