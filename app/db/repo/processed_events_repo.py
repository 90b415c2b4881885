from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.processed_events import ProcessedEvent


class ProcessedEventsRepo:
    @staticmethod
    async def get_by_event_id(session: AsyncSession, event_id: str) -> ProcessedEvent | None:
        return await session.get(ProcessedEvent, event_id)

    @staticmethod
    async def try_create_processing_slot(
        session: AsyncSession,
        *,
        event_id: str,
        event_type: str,
    ) -> bool:
        stmt = (
            postgresql_insert(ProcessedEvent)
            .values(
                event_id=event_id,
                event_type=event_type,
                status="PROCESSING",
                attempts=1,
                received_at=func.now(),
                updated_at=func.now(),
            )
            .on_conflict_do_nothing(index_elements=[ProcessedEvent.event_id])
            .returning(ProcessedEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def try_reclaim_processing_slot(
        session: AsyncSession,
        *,
        event_id: str,
        processing_ttl_seconds: int,
    ) -> bool:
        processing_age_seconds = func.extract("epoch", func.now() - ProcessedEvent.updated_at)
        stmt = (
            update(ProcessedEvent)
            .where(
                ProcessedEvent.event_id == event_id,
                (ProcessedEvent.status == "FAILED")
                | (
                    (ProcessedEvent.status == "PROCESSING")
                    & (processing_age_seconds >= max(1, int(processing_ttl_seconds)))
                ),
            )
            .values(
                status="PROCESSING",
                attempts=ProcessedEvent.attempts + 1,
                updated_at=func.now(),
            )
            .returning(ProcessedEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def mark_processed(session: AsyncSession, *, event_id: str) -> int:
        stmt = (
            update(ProcessedEvent)
            .where(ProcessedEvent.event_id == event_id)
            .values(status="PROCESSED", last_error=None, payload=None, updated_at=func.now())
            .returning(ProcessedEvent.event_id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0

    @staticmethod
    async def record_failure(
        session: AsyncSession,
        *,
        event_id: str,
        event_type: str,
        error: str,
        payload: dict[str, object] | None,
    ) -> int:
        """Upsert a FAILED row and return the accumulated attempt count."""
        stmt = (
            postgresql_insert(ProcessedEvent)
            .values(
                event_id=event_id,
                event_type=event_type,
                status="FAILED",
                attempts=1,
                last_error=error,
                payload=payload,
                received_at=func.now(),
                updated_at=func.now(),
            )
            .on_conflict_do_update(
                index_elements=[ProcessedEvent.event_id],
                set_={
                    "status": "FAILED",
                    "attempts": ProcessedEvent.attempts + 1,
                    "last_error": error,
                    "payload": payload,
                    "updated_at": func.now(),
                },
            )
            .returning(ProcessedEvent.attempts)
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_failed(session: AsyncSession) -> int:
        stmt = select(func.count(ProcessedEvent.event_id)).where(ProcessedEvent.status == "FAILED")
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_failed(session: AsyncSession, *, limit: int) -> list[dict[str, object]]:
        stmt = (
            select(
                ProcessedEvent.event_id,
                ProcessedEvent.event_type,
                ProcessedEvent.attempts,
                ProcessedEvent.last_error,
            )
            .where(ProcessedEvent.status == "FAILED")
            .order_by(ProcessedEvent.updated_at.asc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return [
            {
                "event_id": str(event_id),
                "event_type": str(event_type),
                "attempts": int(attempts),
                "last_error": last_error,
            }
            for event_id, event_type, attempts, last_error in result.all()
        ]

    @staticmethod
    async def delete_processed_before(
        session: AsyncSession,
        *,
        cutoff_utc: datetime,
        limit: int,
    ) -> int:
        resolved_limit = max(1, int(limit))
        candidate_ids = (
            select(ProcessedEvent.event_id)
            .where(
                ProcessedEvent.status == "PROCESSED",
                ProcessedEvent.updated_at < cutoff_utc,
            )
            .order_by(ProcessedEvent.updated_at.asc())
            .limit(resolved_limit)
            .scalar_subquery()
        )
        stmt = (
            delete(ProcessedEvent)
            .where(ProcessedEvent.event_id.in_(candidate_ids))
            .returning(ProcessedEvent.event_id)
        )
        result = await session.execute(stmt)
        return len(list(result.scalars()))
