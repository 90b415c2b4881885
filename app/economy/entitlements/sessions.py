from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.chat_sessions import ChatSession
from app.db.repo.chat_sessions_repo import ChatSessionsRepo
from app.db.repo.creators_repo import CreatorsRepo
from app.economy.billing.catalog import get_message_pack
from app.economy.billing.errors import BillingValidationError, MessageSessionNotFoundError
from app.economy.billing.service.ledger import debit_tokens
from app.economy.entitlements.constants import MESSAGE_SESSION_TTL
from app.economy.entitlements.types import MessageSessionResult

logger = structlog.get_logger(__name__)


async def purchase_message_session(
    session: AsyncSession,
    *,
    user_id: UUID,
    creator_id: UUID,
    messages: int,
    idempotency_key: str,
    now_utc: datetime,
) -> MessageSessionResult:
    pack = get_message_pack(messages)
    if pack is None:
        raise BillingValidationError(f"unknown message pack: {messages}", code="E_PACK_NOT_FOUND")

    creator = await CreatorsRepo.get_by_id(session, creator_id)
    if creator is None:
        raise BillingValidationError("creator not found", code="E_CREATOR_NOT_FOUND")
    if creator.user_id == user_id:
        raise BillingValidationError("cannot pay yourself", code="E_SELF_PURCHASE")

    balance, created = await debit_tokens(
        session,
        user_id=user_id,
        amount=pack.cost_tokens,
        entry_type="SESSION_PURCHASE",
        idempotency_key=f"session_purchase:{idempotency_key}",
        now_utc=now_utc,
        metadata={"creator_id": str(creator_id), "messages": pack.messages},
    )

    chat_session = await ChatSessionsRepo.get_active_for_update(
        session,
        user_id=user_id,
        creator_id=creator_id,
    )
    if not created:
        if chat_session is None:
            raise MessageSessionNotFoundError
        return MessageSessionResult(
            session_id=chat_session.id,
            messages_remaining=chat_session.messages_remaining,
            status=chat_session.status,
            token_balance=balance,
            idempotent_replay=True,
        )

    expires_at = now_utc + MESSAGE_SESSION_TTL
    if chat_session is not None and (
        chat_session.expires_at is not None and chat_session.expires_at <= now_utc
    ):
        chat_session.status = "expired"
        await session.flush()
        chat_session = None

    if chat_session is None:
        chat_session = await ChatSessionsRepo.create(
            session,
            chat_session=ChatSession(
                id=uuid4(),
                user_id=user_id,
                creator_id=creator_id,
                messages_purchased=pack.messages,
                messages_remaining=pack.messages,
                cost_tokens=pack.cost_tokens,
                status="active",
                expires_at=expires_at,
                created_at=now_utc,
            ),
        )
    else:
        chat_session.messages_purchased += pack.messages
        chat_session.messages_remaining += pack.messages
        chat_session.cost_tokens += pack.cost_tokens
        chat_session.expires_at = expires_at

    logger.info(
        "message_session_purchased",
        user_id=str(user_id),
        creator_id=str(creator_id),
        messages=pack.messages,
        cost_tokens=pack.cost_tokens,
        messages_remaining=chat_session.messages_remaining,
    )
    return MessageSessionResult(
        session_id=chat_session.id,
        messages_remaining=chat_session.messages_remaining,
        status=chat_session.status,
        token_balance=balance,
    )


async def consume_message(
    session: AsyncSession,
    *,
    user_id: UUID,
    creator_id: UUID,
    now_utc: datetime,
) -> MessageSessionResult:
    chat_session = await ChatSessionsRepo.get_active_for_update(
        session,
        user_id=user_id,
        creator_id=creator_id,
    )
    if chat_session is None or chat_session.messages_remaining <= 0:
        raise MessageSessionNotFoundError
    if chat_session.expires_at is not None and chat_session.expires_at <= now_utc:
        raise MessageSessionNotFoundError

    chat_session.messages_remaining -= 1
    chat_session.last_message_at = now_utc
    if chat_session.messages_remaining == 0:
        chat_session.status = "exhausted"
        logger.info(
            "message_session_exhausted",
            user_id=str(user_id),
            creator_id=str(creator_id),
            session_id=str(chat_session.id),
        )

    return MessageSessionResult(
        session_id=chat_session.id,
        messages_remaining=chat_session.messages_remaining,
        status=chat_session.status,
    )


async def expire_message_sessions(
    session: AsyncSession,
    *,
    now_utc: datetime,
    limit: int,
) -> int:
    expired = await ChatSessionsRepo.list_expired_active(session, now_utc=now_utc, limit=limit)
    for chat_session in expired:
        chat_session.status = "expired"
    return len(expired)
