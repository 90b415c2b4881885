from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID, uuid4

from fastapi import APIRouter, Request

from app.db.session import SessionLocal
from app.economy.billing.errors import BillingError
from app.economy.entitlements.sessions import consume_message, purchase_message_session
from app.economy.entitlements.types import MessageSessionResult

from .billing_helpers import raise_billing_http_error, require_caller_id
from .billing_models import MessageSessionPurchaseRequest, MessageSessionResponse

router = APIRouter(tags=["chat"])


def _as_response(result: MessageSessionResult) -> MessageSessionResponse:
    return MessageSessionResponse(
        session_id=result.session_id,
        messages_remaining=result.messages_remaining,
        status=result.status,
        token_balance=result.token_balance,
        idempotent_replay=result.idempotent_replay,
    )


@router.post("/chat/{creator_id}/sessions", response_model=MessageSessionResponse)
async def purchase_session(
    creator_id: UUID,
    payload: MessageSessionPurchaseRequest,
    request: Request,
) -> MessageSessionResponse:
    user_id = require_caller_id(request)
    idempotency_key = payload.idempotency_key or uuid4().hex
    try:
        async with SessionLocal.begin() as session:
            result = await purchase_message_session(
                session,
                user_id=user_id,
                creator_id=creator_id,
                messages=payload.messages,
                idempotency_key=f"{user_id}:{idempotency_key}",
                now_utc=datetime.now(timezone.utc),
            )
    except BillingError as exc:
        raise_billing_http_error(exc, route="purchase_message_session")

    return _as_response(result)


@router.post("/chat/{creator_id}/messages/consume", response_model=MessageSessionResponse)
async def consume(creator_id: UUID, request: Request) -> MessageSessionResponse:
    user_id = require_caller_id(request)
    try:
        async with SessionLocal.begin() as session:
            result = await consume_message(
                session,
                user_id=user_id,
                creator_id=creator_id,
                now_utc=datetime.now(timezone.utc),
            )
    except BillingError as exc:
        raise_billing_http_error(exc, route="consume_message")

    return _as_response(result)
