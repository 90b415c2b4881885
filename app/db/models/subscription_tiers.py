from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Text, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class SubscriptionTier(Base):
    __tablename__ = "subscription_tiers"
    __table_args__ = (
        CheckConstraint("price_monthly > 0", name="ck_subscription_tiers_price_monthly_positive"),
        CheckConstraint(
            "price_3_month IS NULL OR price_3_month > 0",
            name="ck_subscription_tiers_price_3_month_positive",
        ),
        CheckConstraint(
            "price_yearly IS NULL OR price_yearly > 0",
            name="ck_subscription_tiers_price_yearly_positive",
        ),
        Index("idx_subscription_tiers_creator_active", "creator_id", "is_active"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    creator_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("creators.id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    price_monthly: Mapped[int] = mapped_column(Integer, nullable=False)
    price_3_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price_yearly: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
