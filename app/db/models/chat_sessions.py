from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class ChatSession(Base):
    __tablename__ = "chat_sessions"
    __table_args__ = (
        CheckConstraint("messages_purchased > 0", name="ck_chat_sessions_purchased_positive"),
        CheckConstraint("messages_remaining >= 0", name="ck_chat_sessions_remaining_non_negative"),
        CheckConstraint(
            "status IN ('active','exhausted','expired')",
            name="ck_chat_sessions_status",
        ),
        Index(
            "uq_chat_sessions_active_user_creator",
            "user_id",
            "creator_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
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
    messages_purchased: Mapped[int] = mapped_column(Integer, nullable=False)
    messages_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
