"""b1_creator_billing_core_schema

Revision ID: 5b1e0c7d2a10
Revises:
Create Date: 2026-10-06 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5b1e0c7d2a10"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _uuid(name: str, *, nullable: bool = False, primary_key: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        nullable=nullable,
        primary_key=primary_key,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid("id", primary_key=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("country_code", sa.String(2), nullable=True),
        sa.Column("token_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("billing_customer_id", sa.String(64), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.CheckConstraint("token_balance >= 0", name="ck_users_token_balance_non_negative"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("billing_customer_id", name="uq_users_billing_customer_id"),
    )
    op.create_index("idx_users_created_at", "users", ["created_at"])

    op.create_table(
        "creators",
        _uuid("id", primary_key=True),
        _uuid("user_id"),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("subscriber_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.CheckConstraint("subscriber_count >= 0", name="ck_creators_subscriber_count_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("user_id", name="uq_creators_user_id"),
    )

    op.create_table(
        "subscription_tiers",
        _uuid("id", primary_key=True),
        _uuid("creator_id"),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("price_monthly", sa.Integer(), nullable=False),
        sa.Column("price_3_month", sa.Integer(), nullable=True),
        sa.Column("price_yearly", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.CheckConstraint("price_monthly > 0", name="ck_subscription_tiers_price_monthly_positive"),
        sa.CheckConstraint(
            "price_3_month IS NULL OR price_3_month > 0",
            name="ck_subscription_tiers_price_3_month_positive",
        ),
        sa.CheckConstraint(
            "price_yearly IS NULL OR price_yearly > 0",
            name="ck_subscription_tiers_price_yearly_positive",
        ),
        sa.ForeignKeyConstraint(["creator_id"], ["creators.id"]),
    )
    op.create_index(
        "idx_subscription_tiers_creator_active",
        "subscription_tiers",
        ["creator_id", "is_active"],
    )

    op.create_table(
        "creator_models",
        _uuid("id", primary_key=True),
        _uuid("creator_id"),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("subscription_price", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.CheckConstraint(
            "subscription_price IS NULL OR subscription_price > 0",
            name="ck_creator_models_subscription_price_positive",
        ),
        sa.ForeignKeyConstraint(["creator_id"], ["creators.id"]),
    )
    op.create_index("idx_creator_models_creator", "creator_models", ["creator_id"])

    op.create_table(
        "subscriptions",
        _uuid("id", primary_key=True),
        _uuid("subscriber_id"),
        _uuid("creator_id"),
        sa.Column("subscription_type", sa.String(16), nullable=False),
        _uuid("tier_id", nullable=True),
        _uuid("model_id", nullable=True),
        sa.Column("billing_period", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("price_paid", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'gbp'")),
        sa.Column("external_subscription_id", sa.String(128), nullable=False),
        sa.Column(
            "counted_subscriber",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "subscription_type IN ('content','chat','bundle')",
            name="ck_subscriptions_type",
        ),
        sa.CheckConstraint(
            "billing_period IN ('monthly','3_month','yearly')",
            name="ck_subscriptions_billing_period",
        ),
        sa.CheckConstraint(
            "status IN ('active','past_due','cancelled','expired')",
            name="ck_subscriptions_status",
        ),
        sa.CheckConstraint("price_paid >= 0", name="ck_subscriptions_price_paid_non_negative"),
        sa.ForeignKeyConstraint(["subscriber_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["creator_id"], ["creators.id"]),
        sa.ForeignKeyConstraint(["tier_id"], ["subscription_tiers.id"]),
        sa.ForeignKeyConstraint(["model_id"], ["creator_models.id"]),
        sa.UniqueConstraint(
            "external_subscription_id",
            name="uq_subscriptions_external_subscription_id",
        ),
    )
    op.create_index(
        "idx_subscriptions_subscriber_creator",
        "subscriptions",
        ["subscriber_id", "creator_id"],
    )
    op.create_index("idx_subscriptions_creator_status", "subscriptions", ["creator_id", "status"])
    op.create_index("idx_subscriptions_period_end", "subscriptions", ["current_period_end"])
    op.create_index(
        "uq_subscriptions_live_content_slot",
        "subscriptions",
        ["subscriber_id", "creator_id"],
        unique=True,
        postgresql_where=sa.text(
            "status IN ('active','past_due') AND subscription_type IN ('content','bundle')"
        ),
    )
    op.create_index(
        "uq_subscriptions_live_chat_slot",
        "subscriptions",
        ["subscriber_id", "creator_id"],
        unique=True,
        postgresql_where=sa.text(
            "status IN ('active','past_due') AND subscription_type IN ('chat','bundle')"
        ),
    )

    op.create_table(
        "transactions",
        _uuid("id", primary_key=True),
        _uuid("user_id"),
        _uuid("creator_id"),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("gross_amount", sa.Integer(), nullable=False),
        sa.Column("platform_fee", sa.Integer(), nullable=False),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("external_transaction_id", sa.String(128), nullable=False),
        _uuid("subscription_id", nullable=True),
        _uuid("post_id", nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "transaction_type IN ('subscription','tip','ppv')",
            name="ck_transactions_type",
        ),
        sa.CheckConstraint("status IN ('completed','refunded')", name="ck_transactions_status"),
        sa.CheckConstraint("gross_amount > 0", name="ck_transactions_gross_positive"),
        sa.CheckConstraint("platform_fee >= 0", name="ck_transactions_fee_non_negative"),
        sa.CheckConstraint("net_amount >= 0", name="ck_transactions_net_non_negative"),
        sa.CheckConstraint(
            "gross_amount = platform_fee + net_amount",
            name="ck_transactions_balanced_split",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["creator_id"], ["creators.id"]),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"]),
        sa.UniqueConstraint(
            "external_transaction_id",
            name="uq_transactions_external_transaction_id",
        ),
    )
    op.create_index("idx_transactions_user_completed", "transactions", ["user_id", "completed_at"])
    op.create_index(
        "idx_transactions_creator_completed",
        "transactions",
        ["creator_id", "completed_at"],
    )
    op.create_index("idx_transactions_subscription", "transactions", ["subscription_id"])

    op.create_table(
        "post_purchases",
        _uuid("id", primary_key=True),
        _uuid("post_id"),
        _uuid("buyer_id"),
        _uuid("creator_id"),
        _uuid("transaction_id"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["creator_id"], ["creators.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.UniqueConstraint("post_id", "buyer_id", name="uq_post_purchases_post_buyer"),
    )

    op.create_table(
        "chat_sessions",
        _uuid("id", primary_key=True),
        _uuid("user_id"),
        _uuid("creator_id"),
        sa.Column("messages_purchased", sa.Integer(), nullable=False),
        sa.Column("messages_remaining", sa.Integer(), nullable=False),
        sa.Column("cost_tokens", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("messages_purchased > 0", name="ck_chat_sessions_purchased_positive"),
        sa.CheckConstraint(
            "messages_remaining >= 0",
            name="ck_chat_sessions_remaining_non_negative",
        ),
        sa.CheckConstraint(
            "status IN ('active','exhausted','expired')",
            name="ck_chat_sessions_status",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["creator_id"], ["creators.id"]),
    )
    op.create_index(
        "uq_chat_sessions_active_user_creator",
        "chat_sessions",
        ["user_id", "creator_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        _uuid("user_id"),
        sa.Column("entry_type", sa.String(32), nullable=False),
        sa.Column("direction", sa.String(8), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
        sa.CheckConstraint(
            "entry_type IN ('TOKEN_PURCHASE','SESSION_PURCHASE')",
            name="ck_ledger_entries_entry_type",
        ),
        sa.CheckConstraint("direction IN ('CREDIT','DEBIT')", name="ck_ledger_entries_direction"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("idempotency_key", name="uq_ledger_entries_idempotency_key"),
    )
    op.create_index("idx_ledger_user_created", "ledger_entries", ["user_id", "created_at"])
    op.create_index("idx_ledger_type", "ledger_entries", ["entry_type"])


def downgrade() -> None:
    op.drop_index("idx_ledger_type", table_name="ledger_entries")
    op.drop_index("idx_ledger_user_created", table_name="ledger_entries")
    op.drop_table("ledger_entries")

    op.drop_index("uq_chat_sessions_active_user_creator", table_name="chat_sessions")
    op.drop_table("chat_sessions")

    op.drop_table("post_purchases")

    op.drop_index("idx_transactions_subscription", table_name="transactions")
    op.drop_index("idx_transactions_creator_completed", table_name="transactions")
    op.drop_index("idx_transactions_user_completed", table_name="transactions")
    op.drop_table("transactions")

    op.drop_index("uq_subscriptions_live_chat_slot", table_name="subscriptions")
    op.drop_index("uq_subscriptions_live_content_slot", table_name="subscriptions")
    op.drop_index("idx_subscriptions_period_end", table_name="subscriptions")
    op.drop_index("idx_subscriptions_creator_status", table_name="subscriptions")
    op.drop_index("idx_subscriptions_subscriber_creator", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index("idx_creator_models_creator", table_name="creator_models")
    op.drop_table("creator_models")

    op.drop_index("idx_subscription_tiers_creator_active", table_name="subscription_tiers")
    op.drop_table("subscription_tiers")

    op.drop_table("creators")

    op.drop_index("idx_users_created_at", table_name="users")
    op.drop_table("users")
