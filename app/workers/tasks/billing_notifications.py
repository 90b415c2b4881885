from __future__ import annotations

import httpx
import structlog

from app.core.config import get_settings
from app.db.repo.outbox_events_repo import OutboxEventsRepo
from app.db.session import SessionLocal
from app.economy.billing.constants import NOTIFICATION_EVENT_TYPES
from app.services.alerts import send_ops_alert
from app.services.billing_reliability import build_notification_body
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)

ALERT_NOTIFICATION_DELIVERY_FAILED = "billing_notification_delivery_failed"


async def dispatch_creator_notifications_async(*, batch_size: int | None = None) -> dict[str, int]:
    settings = get_settings()
    webhook_url = settings.notifications_webhook_url.strip()
    summary = {"examined": 0, "sent": 0, "failed": 0, "dead_lettered": 0}
    if not webhook_url:
        logger.info("creator_notifications_dispatch_skipped", reason="webhook_url_not_configured")
        return summary

    resolved_batch_size = max(1, min(1000, int(batch_size or settings.notifications_batch_size)))
    max_attempts = max(1, int(settings.notifications_max_attempts))
    dead_lettered: list[dict[str, object]] = []

    async with SessionLocal.begin() as session:
        events = await OutboxEventsRepo.list_pending_for_update(
            session,
            event_types=NOTIFICATION_EVENT_TYPES,
            limit=resolved_batch_size,
        )
        summary["examined"] = len(events)
        async with httpx.AsyncClient(timeout=settings.notifications_timeout_seconds) as client:
            for event in events:
                body = build_notification_body(
                    event_id=event.id,
                    event_type=event.event_type,
                    payload=event.payload,
                    created_at_iso=event.created_at.isoformat() if event.created_at else None,
                )
                try:
                    response = await client.post(webhook_url, json=body)
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    summary["failed"] += 1
                    await OutboxEventsRepo.mark_attempt_failed(
                        session,
                        event_id=event.id,
                        max_attempts=max_attempts,
                    )
                    logger.warning(
                        "creator_notification_delivery_failed",
                        outbox_event_id=event.id,
                        event_type=event.event_type,
                        attempts=event.attempts + 1,
                        error_type=type(exc).__name__,
                    )
                    if event.attempts + 1 >= max_attempts:
                        summary["dead_lettered"] += 1
                        dead_lettered.append(
                            {"outbox_event_id": event.id, "event_type": event.event_type}
                        )
                    continue

                await OutboxEventsRepo.mark_sent(session, event_id=event.id)
                summary["sent"] += 1

    if dead_lettered:
        await send_ops_alert(
            event=ALERT_NOTIFICATION_DELIVERY_FAILED,
            payload={"events": dead_lettered, "max_attempts": max_attempts},
        )
    logger.info("creator_notifications_dispatch_finished", **summary)
    return summary


@celery_app.task(name="app.workers.tasks.billing_notifications.dispatch_creator_notifications")
def dispatch_creator_notifications(batch_size: int | None = None) -> dict[str, int]:
    return run_async_job(
        dispatch_creator_notifications_async(batch_size=batch_size),
        job_name="dispatch_creator_notifications",
    )
