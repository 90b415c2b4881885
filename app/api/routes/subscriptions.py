from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Query, Request

from app.db.session import SessionLocal
from app.economy.billing.errors import BillingError
from app.economy.billing.service import BillingService
from app.services.payment_gateway import get_payment_gateway

from .billing_helpers import raise_billing_http_error, require_caller_id
from .billing_models import (
    CheckoutResponse,
    SubscriptionCancelResponse,
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionSummaryResponse,
)

router = APIRouter(tags=["subscriptions"])


@router.post("/subscriptions", response_model=CheckoutResponse)
async def create_subscription(
    payload: SubscriptionCreateRequest,
    request: Request,
) -> CheckoutResponse:
    subscriber_id = require_caller_id(request)
    gateway = get_payment_gateway()
    try:
        async with SessionLocal.begin() as session:
            result = await BillingService.create_subscription_checkout(
                session,
                gateway,
                subscriber_id=subscriber_id,
                creator_id=payload.creator_id,
                tier_id=payload.tier_id,
                billing_period=payload.billing_period,
                subscription_type=payload.subscription_type,
                now_utc=datetime.now(timezone.utc),
            )
    except BillingError as exc:
        raise_billing_http_error(exc, route="create_subscription")

    return CheckoutResponse(
        checkout_url=result.checkout_url,
        session_id=result.session_id,
        amount_minor=result.amount_minor,
        currency=result.currency,
    )


@router.get("/subscriptions", response_model=SubscriptionListResponse)
async def list_subscriptions(
    request: Request,
    view: Literal["active", "expired", "all"] = Query(default="active", alias="type"),
) -> SubscriptionListResponse:
    subscriber_id = require_caller_id(request)
    try:
        async with SessionLocal.begin() as session:
            summaries = await BillingService.list_subscriptions(
                session,
                subscriber_id=subscriber_id,
                view=view,
            )
    except BillingError as exc:
        raise_billing_http_error(exc, route="list_subscriptions")

    return SubscriptionListResponse(
        subscriptions=[
            SubscriptionSummaryResponse(
                id=summary.id,
                creator_id=summary.creator_id,
                creator_name=summary.creator_display_name,
                subscription_type=summary.subscription_type,
                billing_period=summary.billing_period,
                status=summary.status,
                tier_id=summary.tier_id,
                tier_name=summary.tier_name,
                price_paid=summary.price_paid,
                currency=summary.currency,
                current_period_end=summary.current_period_end,
                cancelled_at=summary.cancelled_at,
            )
            for summary in summaries
        ]
    )


@router.delete("/subscriptions", response_model=SubscriptionCancelResponse)
async def cancel_subscription(
    request: Request,
    subscription_id: UUID = Query(alias="id"),
) -> SubscriptionCancelResponse:
    subscriber_id = require_caller_id(request)
    gateway = get_payment_gateway()
    try:
        async with SessionLocal.begin() as session:
            result = await BillingService.cancel_subscription(
                session,
                gateway,
                subscriber_id=subscriber_id,
                subscription_id=subscription_id,
                now_utc=datetime.now(timezone.utc),
            )
    except BillingError as exc:
        raise_billing_http_error(exc, route="cancel_subscription")

    return SubscriptionCancelResponse(
        subscription_id=result.subscription_id,
        status=result.status,
        idempotent_replay=result.idempotent_replay,
    )
