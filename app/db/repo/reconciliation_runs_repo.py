from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.reconciliation_runs import ReconciliationRun
from app.services.billing_reliability import ReconciliationSnapshot


class ReconciliationRunsRepo:
    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        started_at: datetime,
        finished_at: datetime,
        snapshot: ReconciliationSnapshot,
        diff_count: int,
        status: str,
        details: dict[str, object],
    ) -> ReconciliationRun:
        run = ReconciliationRun(
            started_at=started_at,
            finished_at=finished_at,
            status=status,
            diff_count=diff_count,
            wallet_mismatch_count=snapshot.wallet_mismatch_count,
            failed_event_count=snapshot.failed_event_count,
            overdue_active_count=snapshot.overdue_active_count,
            unbalanced_transaction_count=snapshot.unbalanced_transaction_count,
            refunded_missing_timestamp_count=snapshot.refunded_missing_timestamp_count,
            samples=details,
        )
        session.add(run)
        await session.flush()
        return run
