from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Text, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class CreatorModel(Base):
    __tablename__ = "creator_models"
    __table_args__ = (
        CheckConstraint(
            "subscription_price IS NULL OR subscription_price > 0",
            name="ck_creator_models_subscription_price_positive",
        ),
        Index("idx_creator_models_creator", "creator_id"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    creator_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("creators.id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    subscription_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
