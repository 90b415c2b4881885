from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('subscription','tip','ppv')",
            name="ck_transactions_type",
        ),
        CheckConstraint("status IN ('completed','refunded')", name="ck_transactions_status"),
        CheckConstraint("gross_amount > 0", name="ck_transactions_gross_positive"),
        CheckConstraint("platform_fee >= 0", name="ck_transactions_fee_non_negative"),
        CheckConstraint("net_amount >= 0", name="ck_transactions_net_non_negative"),
        CheckConstraint(
            "gross_amount = platform_fee + net_amount",
            name="ck_transactions_balanced_split",
        ),
        Index("idx_transactions_user_completed", "user_id", "completed_at"),
        Index("idx_transactions_creator_completed", "creator_id", "completed_at"),
        Index("idx_transactions_subscription", "subscription_id"),
        Index(
            "idx_transactions_payment_intent",
            "payment_intent_id",
            postgresql_where=text("payment_intent_id IS NOT NULL"),
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    creator_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("creators.id"),
        nullable=False,
    )
    transaction_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    gross_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    net_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    external_transaction_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    payment_intent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subscription_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("subscriptions.id"),
        nullable=True,
    )
    post_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
