from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class ReconciliationRun(Base):
    __tablename__ = "reconciliation_runs"
    __table_args__ = (
        CheckConstraint("status IN ('OK','DIFF')", name="ck_reconciliation_runs_status"),
        CheckConstraint("diff_count >= 0", name="ck_reconciliation_runs_diff_non_negative"),
        Index("idx_reconciliation_runs_started_at", "started_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(8), nullable=False)
    diff_count: Mapped[int] = mapped_column(Integer, nullable=False)
    wallet_mismatch_count: Mapped[int] = mapped_column(Integer, nullable=False)
    failed_event_count: Mapped[int] = mapped_column(Integer, nullable=False)
    overdue_active_count: Mapped[int] = mapped_column(Integer, nullable=False)
    unbalanced_transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    refunded_missing_timestamp_count: Mapped[int] = mapped_column(Integer, nullable=False)
    samples: Mapped[dict[str, object]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
