from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from app.core.config import get_settings
from app.db.repo.ledger_repo import LedgerRepo
from app.db.repo.outbox_events_repo import OutboxEventsRepo
from app.db.repo.processed_events_repo import ProcessedEventsRepo
from app.db.repo.reconciliation_runs_repo import ReconciliationRunsRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.transactions_repo import TransactionsRepo
from app.db.session import SessionLocal
from app.economy.entitlements.sessions import expire_message_sessions
from app.services.alerts import send_ops_alert
from app.services.billing_reliability import (
    ReconciliationSnapshot,
    compute_reconciliation_diff,
    reconciliation_status,
)
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)

ALERT_RECONCILIATION_DIFF = "billing_reconciliation_diff_detected"
SAMPLE_LIMIT = 20


async def run_billing_reconciliation_async() -> dict[str, object]:
    settings = get_settings()
    started_at = datetime.now(timezone.utc)
    grace_seconds = max(0, int(settings.reconciliation_period_grace_seconds))

    async with SessionLocal.begin() as session:
        wallet_mismatches = await LedgerRepo.list_wallet_mismatches(session, limit=SAMPLE_LIMIT)
        failed_events = await ProcessedEventsRepo.list_failed(session, limit=SAMPLE_LIMIT)
        snapshot = ReconciliationSnapshot(
            wallet_mismatch_count=len(wallet_mismatches),
            failed_event_count=await ProcessedEventsRepo.count_failed(session),
            overdue_active_count=await SubscriptionsRepo.count_active_past_period_end(
                session,
                now_utc=started_at,
                grace_seconds=grace_seconds,
            ),
            unbalanced_transaction_count=await TransactionsRepo.count_unbalanced(session),
            refunded_missing_timestamp_count=await TransactionsRepo.count_refunded_missing_timestamp(
                session
            ),
        )
        overdue = await SubscriptionsRepo.list_active_past_period_end(
            session,
            now_utc=started_at,
            grace_seconds=grace_seconds,
            limit=SAMPLE_LIMIT,
        )
        diff_count = compute_reconciliation_diff(snapshot)
        status = reconciliation_status(diff_count)
        details: dict[str, object] = {
            "wallet_mismatches": wallet_mismatches,
            "failed_events": failed_events,
            "overdue_subscriptions": [
                {
                    "subscription_id": str(row.id),
                    "external_subscription_id": row.external_subscription_id,
                    "current_period_end": row.current_period_end.isoformat(),
                }
                for row in overdue
            ],
        }
        await ReconciliationRunsRepo.create(
            session,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            snapshot=snapshot,
            diff_count=diff_count,
            status=status,
            details=details,
        )

    result: dict[str, object] = {
        "wallet_mismatch_count": snapshot.wallet_mismatch_count,
        "failed_event_count": snapshot.failed_event_count,
        "overdue_active_count": snapshot.overdue_active_count,
        "unbalanced_transaction_count": snapshot.unbalanced_transaction_count,
        "refunded_missing_timestamp_count": snapshot.refunded_missing_timestamp_count,
        "diff_count": diff_count,
        "status": status,
    }
    if diff_count > 0:
        await send_ops_alert(event=ALERT_RECONCILIATION_DIFF, payload={**result, **details})
        logger.warning("billing_reconciliation_diff_detected", **result)
    else:
        logger.info("billing_reconciliation_finished", **result)
    return result


async def purge_processed_events_async(*, batch_size: int = 5000, max_batches: int = 20) -> dict[str, int]:
    settings = get_settings()
    retention_days = max(1, min(3650, int(settings.processed_events_retention_days)))
    cutoff_utc = datetime.now(timezone.utc) - timedelta(days=retention_days)
    resolved_batch_size = max(1, min(50000, int(batch_size)))

    processed_deleted = 0
    outbox_deleted = 0
    for _ in range(max(1, int(max_batches))):
        async with SessionLocal.begin() as session:
            deleted = await ProcessedEventsRepo.delete_processed_before(
                session,
                cutoff_utc=cutoff_utc,
                limit=resolved_batch_size,
            )
        processed_deleted += deleted
        if deleted < resolved_batch_size:
            break

    for _ in range(max(1, int(max_batches))):
        async with SessionLocal.begin() as session:
            deleted = await OutboxEventsRepo.delete_created_before(
                session,
                cutoff_utc=cutoff_utc,
                limit=resolved_batch_size,
            )
        outbox_deleted += deleted
        if deleted < resolved_batch_size:
            break

    result = {
        "retention_days": retention_days,
        "processed_events_deleted": processed_deleted,
        "outbox_events_deleted": outbox_deleted,
    }
    logger.info("processed_events_purge_finished", **result)
    return result


async def expire_message_sessions_async(*, batch_size: int = 500) -> dict[str, int]:
    async with SessionLocal.begin() as session:
        expired = await expire_message_sessions(
            session,
            now_utc=datetime.now(timezone.utc),
            limit=batch_size,
        )
    result = {"expired_sessions": expired}
    logger.info("message_sessions_expiry_finished", **result)
    return result


@celery_app.task(name="app.workers.tasks.billing_reconciliation.run_billing_reconciliation")
def run_billing_reconciliation() -> dict[str, object]:
    return run_async_job(run_billing_reconciliation_async(), job_name="billing_reconciliation")


@celery_app.task(name="app.workers.tasks.billing_reconciliation.purge_processed_events")
def purge_processed_events(batch_size: int = 5000) -> dict[str, int]:
    return run_async_job(
        purge_processed_events_async(batch_size=batch_size),
        job_name="purge_processed_events",
    )


@celery_app.task(name="app.workers.tasks.billing_reconciliation.expire_message_sessions")
def expire_message_sessions_task(batch_size: int = 500) -> dict[str, int]:
    return run_async_job(
        expire_message_sessions_async(batch_size=batch_size),
        job_name="expire_message_sessions",
    )
