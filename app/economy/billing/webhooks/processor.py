from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.repo.processed_events_repo import ProcessedEventsRepo
from app.db.session import SessionLocal
from app.economy.billing.errors import (
    BillingError,
    DuplicateEventError,
    InvalidEventPayloadError,
    PersistenceFailureError,
    ProviderUnavailableError,
)
from app.economy.billing.types import EventProcessingResult
from app.services.alerts import send_ops_alert
from app.services.payment_gateway import PaymentGateway

from .context import WebhookContext
from .registry import get_event_handler

logger = structlog.get_logger(__name__)

_CLAIM_CREATED = "created"
_CLAIM_RECLAIMED = "reclaimed"
_CLAIM_DUPLICATE = "duplicate"
_CLAIM_IN_FLIGHT = "in_flight"

ALERT_WEBHOOK_FAILURES = "billing_webhook_failures_exceeded"
ALERT_DUPLICATE_CANCEL_FAILED = "billing_duplicate_slot_cancel_failed"


class EventInFlightError(PersistenceFailureError):
    code = "E_EVENT_IN_FLIGHT"


async def _run_pending_cancellations(ctx: WebhookContext) -> None:
    for external_subscription_id in ctx.pending_cancellations:
        try:
            await ctx.gateway.cancel_at_period_end(external_subscription_id=external_subscription_id)
        except ProviderUnavailableError:
            logger.warning(
                "duplicate_slot_cancel_failed",
                event_id=ctx.event_id,
                external_subscription_id=external_subscription_id,
            )
            await send_ops_alert(
                event=ALERT_DUPLICATE_CANCEL_FAILED,
                payload={
                    "event_id": ctx.event_id,
                    "external_subscription_id": external_subscription_id,
                },
            )


def _event_identity(event: Mapping[str, object]) -> tuple[str, str, Mapping[str, object]]:
    event_id = event.get("id")
    event_type = event.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise InvalidEventPayloadError("event without id")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidEventPayloadError("event without type")
    data = event.get("data")
    event_object = data.get("object") if isinstance(data, dict) else None
    if not isinstance(event_object, dict):
        raise InvalidEventPayloadError("event without data.object")
    return event_id, event_type, event_object


async def _claim_event(
    session: AsyncSession,
    *,
    event_id: str,
    event_type: str,
    processing_ttl_seconds: int,
) -> str:
    if await ProcessedEventsRepo.try_create_processing_slot(
        session,
        event_id=event_id,
        event_type=event_type,
    ):
        return _CLAIM_CREATED
    if await ProcessedEventsRepo.try_reclaim_processing_slot(
        session,
        event_id=event_id,
        processing_ttl_seconds=processing_ttl_seconds,
    ):
        return _CLAIM_RECLAIMED

    existing = await ProcessedEventsRepo.get_by_event_id(session, event_id)
    if existing is not None and existing.status == "PROCESSED":
        return _CLAIM_DUPLICATE
    return _CLAIM_IN_FLIGHT


async def _record_failure(
    *,
    event_id: str,
    event_type: str,
    event: Mapping[str, object],
    exc: Exception,
    alert_threshold: int,
) -> None:
    try:
        async with SessionLocal.begin() as session:
            attempts = await ProcessedEventsRepo.record_failure(
                session,
                event_id=event_id,
                event_type=event_type,
                error=f"{type(exc).__name__}: {exc}"[:2000],
                payload=dict(event),
            )
    except Exception:
        logger.exception(
            "provider_event_failure_record_failed",
            event_id=event_id,
            event_type=event_type,
        )
        return

    logger.error(
        "provider_event_processing_failed",
        event_id=event_id,
        event_type=event_type,
        attempts=attempts,
        error_type=type(exc).__name__,
    )
    if attempts == max(1, int(alert_threshold)):
        await send_ops_alert(
            event=ALERT_WEBHOOK_FAILURES,
            payload={
                "event_id": event_id,
                "event_type": event_type,
                "attempts": attempts,
                "error_type": type(exc).__name__,
            },
        )


async def process_provider_event(
    event: Mapping[str, object],
    *,
    gateway: PaymentGateway,
    now_utc: datetime | None = None,
) -> EventProcessingResult:
    """Apply one verified provider event inside a single transaction."""
    event_id, event_type, event_object = _event_identity(event)
    handler = get_event_handler(event_type)
    if handler is None:
        logger.info("provider_event_ignored", event_id=event_id, event_type=event_type)
        return EventProcessingResult(event_id=event_id, event_type=event_type, status="ignored")

    settings = get_settings()
    ctx = WebhookContext(
        event_id=event_id,
        event_type=event_type,
        now_utc=now_utc or datetime.now(timezone.utc),
        gateway=gateway,
        unknown_status_fallback=settings.billing_unknown_status_fallback,
    )

    try:
        async with SessionLocal.begin() as session:
            claim = await _claim_event(
                session,
                event_id=event_id,
                event_type=event_type,
                processing_ttl_seconds=settings.webhook_processing_ttl_seconds,
            )
            if claim == _CLAIM_DUPLICATE:
                raise DuplicateEventError
            if claim == _CLAIM_IN_FLIGHT:
                raise EventInFlightError(f"event {event_id} is being processed")
            if claim == _CLAIM_RECLAIMED:
                logger.info("provider_event_reclaimed", event_id=event_id, event_type=event_type)

            outcome = await handler(session, event_object, ctx)
            await ProcessedEventsRepo.mark_processed(session, event_id=event_id)
    except DuplicateEventError:
        logger.info("provider_event_duplicate", event_id=event_id, event_type=event_type)
        return EventProcessingResult(event_id=event_id, event_type=event_type, status="duplicate")
    except EventInFlightError:
        logger.warning("provider_event_in_flight", event_id=event_id, event_type=event_type)
        raise
    except Exception as exc:
        await _record_failure(
            event_id=event_id,
            event_type=event_type,
            event=event,
            exc=exc,
            alert_threshold=settings.webhook_failure_alert_threshold,
        )
        if isinstance(exc, BillingError):
            raise
        raise PersistenceFailureError(f"event {event_id} could not be applied") from exc

    await _run_pending_cancellations(ctx)
    for alert_event, alert_payload in ctx.pending_alerts:
        await send_ops_alert(event=alert_event, payload=alert_payload)

    logger.info(
        "provider_event_processed",
        event_id=event_id,
        event_type=event_type,
        outcome=outcome.status,
        detail=outcome.detail,
    )
    return EventProcessingResult(
        event_id=event_id,
        event_type=event_type,
        status="processed",
        outcome=outcome,
    )
