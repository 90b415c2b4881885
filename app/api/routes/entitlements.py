from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Query, Request

from app.db.session import SessionLocal
from app.economy.billing.errors import BillingError
from app.economy.entitlements.service import EntitlementService

from .billing_helpers import optional_caller_id, raise_billing_http_error
from .billing_models import EntitlementResponse, UnlockOptionResponse

router = APIRouter(tags=["entitlements"])


@router.get("/entitlements/{creator_id}", response_model=EntitlementResponse)
async def get_entitlement(
    creator_id: UUID,
    request: Request,
    resource: Literal["chat", "content"] = Query(default="chat"),
) -> EntitlementResponse:
    try:
        async with SessionLocal() as session:
            entitlement = await EntitlementService.check_access(
                session,
                creator_id=creator_id,
                caller_id=optional_caller_id(request),
                resource=resource,
                now_utc=datetime.now(timezone.utc),
            )
    except BillingError as exc:
        raise_billing_http_error(exc, route="get_entitlement")

    return EntitlementResponse(
        has_access=entitlement.has_access,
        access_type=entitlement.access_type,
        can_send_message=entitlement.can_send_message,
        messages_remaining=entitlement.messages_remaining,
        requires_unlock=entitlement.requires_unlock,
        unlock_options=[
            UnlockOptionResponse(
                kind=option.kind,
                label=option.label,
                recommended=option.recommended,
                messages=option.messages,
                token_cost=option.token_cost,
                cost_display=option.cost_display,
                affordable=option.affordable,
            )
            for option in entitlement.unlock_options
        ],
        is_low_messages=entitlement.is_low_messages,
        warning_message=entitlement.warning_message,
    )
