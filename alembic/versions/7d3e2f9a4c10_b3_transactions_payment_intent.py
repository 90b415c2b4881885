"""b3_transactions_payment_intent

Revision ID: 7d3e2f9a4c10
Revises: 6c2f1d8e3b21
Create Date: 2026-10-19 10:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "7d3e2f9a4c10"
down_revision: str | None = "6c2f1d8e3b21"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


_REFUND_ONLY_FUNCTION = """
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
            NEW.completed_at{new_extra}
        ) IS NOT DISTINCT FROM (
            OLD.id, OLD.user_id, OLD.creator_id, OLD.transaction_type,
            OLD.gross_amount, OLD.platform_fee, OLD.net_amount, OLD.currency,
            OLD.external_transaction_id, OLD.subscription_id, OLD.post_id,
            OLD.completed_at{old_extra}
        )
    THEN
        RETURN NEW;
    END IF;
    RAISE EXCEPTION 'transactions only allow completed -> refunded';
END;
$$;
"""


def upgrade() -> None:
    op.add_column(
        "transactions",
        sa.Column("payment_intent_id", sa.String(128), nullable=True),
    )
    op.create_index(
        "idx_transactions_payment_intent",
        "transactions",
        ["payment_intent_id"],
        postgresql_where=sa.text("payment_intent_id IS NOT NULL"),
    )
    op.execute(
        _REFUND_ONLY_FUNCTION.format(
            new_extra=", NEW.payment_intent_id",
            old_extra=", OLD.payment_intent_id",
        )
    )


def downgrade() -> None:
    op.execute(_REFUND_ONLY_FUNCTION.format(new_extra="", old_extra=""))
    op.drop_index("idx_transactions_payment_intent", table_name="transactions")
    op.drop_column("transactions", "payment_intent_id")
