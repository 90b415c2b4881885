"""b2_billing_reliability_and_append_only

Revision ID: 6c2f1d8e3b21
Revises: 5b1e0c7d2a10
Create Date: 2026-10-06 09:30:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "6c2f1d8e3b21"
down_revision: str | None = "5b1e0c7d2a10"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "processed_events",
        sa.Column("event_id", sa.String(128), primary_key=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('PROCESSING','PROCESSED','FAILED')",
            name="ck_processed_events_status",
        ),
    )
    op.create_index("idx_processed_events_received_at", "processed_events", ["received_at"])
    op.create_index(
        "idx_processed_events_failed",
        "processed_events",
        ["updated_at"],
        postgresql_where=sa.text("status = 'FAILED'"),
    )

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("dedupe_key", sa.String(160), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('PENDING','SENT','FAILED')", name="ck_outbox_events_status"),
        sa.UniqueConstraint("dedupe_key", name="uq_outbox_events_dedupe_key"),
    )
    op.create_index(
        "idx_outbox_events_pending",
        "outbox_events",
        ["created_at"],
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "reconciliation_runs",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(8), nullable=False),
        sa.Column("diff_count", sa.Integer(), nullable=False),
        sa.Column("wallet_mismatch_count", sa.Integer(), nullable=False),
        sa.Column("failed_event_count", sa.Integer(), nullable=False),
        sa.Column("overdue_active_count", sa.Integer(), nullable=False),
        sa.Column("unbalanced_transaction_count", sa.Integer(), nullable=False),
        sa.Column("refunded_missing_timestamp_count", sa.Integer(), nullable=False),
        sa.Column(
            "samples",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.CheckConstraint("status IN ('OK','DIFF')", name="ck_reconciliation_runs_status"),
        sa.CheckConstraint("diff_count >= 0", name="ck_reconciliation_runs_diff_non_negative"),
    )
    op.create_index("idx_reconciliation_runs_started_at", "reconciliation_runs", ["started_at"])

    op.execute(
        """
        CREATE OR REPLACE FUNCTION fn_transactions_refund_only()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF TG_OP = 'DELETE' THEN
                RAISE EXCEPTION 'transactions is append-only';
            END IF;
            IF OLD.status = 'completed'
                AND NEW.status = 'refunded'
                AND NEW.refunded_at IS NOT NULL
                AND (
                    NEW.id, NEW.user_id, NEW.creator_id, NEW.transaction_type,
                    NEW.gross_amount, NEW.platform_fee, NEW.net_amount, NEW.currency,
                    NEW.external_transaction_id, NEW.subscription_id, NEW.post_id,
                    NEW.completed_at
                ) IS NOT DISTINCT FROM (
                    OLD.id, OLD.user_id, OLD.creator_id, OLD.transaction_type,
                    OLD.gross_amount, OLD.platform_fee, OLD.net_amount, OLD.currency,
                    OLD.external_transaction_id, OLD.subscription_id, OLD.post_id,
                    OLD.completed_at
                )
            THEN
                RETURN NEW;
            END IF;
            RAISE EXCEPTION 'transactions only allow completed -> refunded';
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_transactions_refund_only
        BEFORE UPDATE OR DELETE ON transactions
        FOR EACH ROW
        EXECUTE FUNCTION fn_transactions_refund_only();
        """
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION fn_ledger_entries_append_only()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'ledger_entries is append-only';
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_ledger_entries_append_only
        BEFORE UPDATE OR DELETE ON ledger_entries
        FOR EACH ROW
        EXECUTE FUNCTION fn_ledger_entries_append_only();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_ledger_entries_append_only ON ledger_entries;")
    op.execute("DROP FUNCTION IF EXISTS fn_ledger_entries_append_only();")
    op.execute("DROP TRIGGER IF EXISTS trg_transactions_refund_only ON transactions;")
    op.execute("DROP FUNCTION IF EXISTS fn_transactions_refund_only();")

    op.drop_index("idx_reconciliation_runs_started_at", table_name="reconciliation_runs")
    op.drop_table("reconciliation_runs")

    op.drop_index("idx_outbox_events_pending", table_name="outbox_events")
    op.drop_table("outbox_events")

    op.drop_index("idx_processed_events_failed", table_name="processed_events")
    op.drop_index("idx_processed_events_received_at", table_name="processed_events")
    op.drop_table("processed_events")
