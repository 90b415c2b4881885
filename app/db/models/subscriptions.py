from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "subscription_type IN ('content','chat','bundle')",
            name="ck_subscriptions_type",
        ),
        CheckConstraint(
            "billing_period IN ('monthly','3_month','yearly')",
            name="ck_subscriptions_billing_period",
        ),
        CheckConstraint(
            "status IN ('active','past_due','cancelled','expired')",
            name="ck_subscriptions_status",
        ),
        CheckConstraint("price_paid >= 0", name="ck_subscriptions_price_paid_non_negative"),
        Index("idx_subscriptions_subscriber_creator", "subscriber_id", "creator_id"),
        Index("idx_subscriptions_creator_status", "creator_id", "status"),
        Index("idx_subscriptions_period_end", "current_period_end"),
        Index(
            "uq_subscriptions_live_content_slot",
            "subscriber_id",
            "creator_id",
            unique=True,
            postgresql_where=text(
                "status IN ('active','past_due') AND subscription_type IN ('content','bundle')"
            ),
        ),
        Index(
            "uq_subscriptions_live_chat_slot",
            "subscriber_id",
            "creator_id",
            unique=True,
            postgresql_where=text(
                "status IN ('active','past_due') AND subscription_type IN ('chat','bundle')"
            ),
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    subscriber_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    creator_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("creators.id"),
        nullable=False,
    )
    subscription_type: Mapped[str] = mapped_column(String(16), nullable=False)
    tier_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("subscription_tiers.id"),
        nullable=True,
    )
    model_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("creator_models.id"),
        nullable=True,
    )
    billing_period: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    current_period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    price_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default=text("'gbp'"))
    external_subscription_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    counted_subscriber: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
