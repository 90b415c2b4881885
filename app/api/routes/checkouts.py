from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from app.db.session import SessionLocal
from app.economy.billing.errors import BillingError
from app.economy.billing.service import BillingService
from app.economy.billing.types import CheckoutResult
from app.services.payment_gateway import get_payment_gateway

from .billing_helpers import raise_billing_http_error, require_caller_id
from .billing_models import CheckoutResponse, TipCheckoutRequest, TokenCheckoutRequest

router = APIRouter(tags=["checkout"])


def _as_response(result: CheckoutResult) -> CheckoutResponse:
    return CheckoutResponse(
        checkout_url=result.checkout_url,
        session_id=result.session_id,
        amount_minor=result.amount_minor,
        currency=result.currency,
    )


@router.post("/tips", response_model=CheckoutResponse)
async def create_tip(payload: TipCheckoutRequest, request: Request) -> CheckoutResponse:
    user_id = require_caller_id(request)
    gateway = get_payment_gateway()
    try:
        async with SessionLocal.begin() as session:
            result = await BillingService.create_tip_checkout(
                session,
                gateway,
                user_id=user_id,
                creator_id=payload.creator_id,
                amount_minor=payload.amount_minor,
                message=payload.message,
                now_utc=datetime.now(timezone.utc),
            )
    except BillingError as exc:
        raise_billing_http_error(exc, route="create_tip")

    return _as_response(result)


@router.post("/tokens/checkout", response_model=CheckoutResponse)
async def create_token_checkout(
    payload: TokenCheckoutRequest,
    request: Request,
) -> CheckoutResponse:
    user_id = require_caller_id(request)
    gateway = get_payment_gateway()
    try:
        async with SessionLocal.begin() as session:
            result = await BillingService.create_token_pack_checkout(
                session,
                gateway,
                user_id=user_id,
                pack_code=payload.pack_code,
                now_utc=datetime.now(timezone.utc),
            )
    except BillingError as exc:
        raise_billing_http_error(exc, route="create_token_checkout")

    return _as_response(result)
