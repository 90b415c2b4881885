from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.repo.outbox_events_repo import OutboxEventsRepo


async def enqueue_creator_notification(
    session: AsyncSession,
    *,
    event_type: str,
    creator_id: UUID,
    dedupe_key: str,
    payload: dict[str, object],
) -> bool:
    return await OutboxEventsRepo.create(
        session,
        event_type=event_type,
        payload={"creator_id": str(creator_id), **payload},
        status="PENDING",
        dedupe_key=f"{event_type}:{dedupe_key}",
    )
