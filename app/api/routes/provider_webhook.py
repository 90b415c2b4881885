from __future__ import annotations

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from app.economy.billing.errors import (
    BillingError,
    InvalidEventPayloadError,
    SignatureInvalidError,
)
from app.economy.billing.webhooks import process_provider_event
from app.services.payment_gateway import get_payment_gateway

router = APIRouter(tags=["webhooks"])
logger = structlog.get_logger(__name__)


@router.post("/webhooks/provider")
async def provider_webhook(request: Request) -> JSONResponse:
    gateway = get_payment_gateway()
    payload = await request.body()
    try:
        event = gateway.construct_event(
            payload=payload,
            sig_header=request.headers.get("Stripe-Signature"),
        )
    except SignatureInvalidError as exc:
        logger.warning("provider_webhook_invalid_signature", reason=str(exc))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"code": exc.code},
        )
    except InvalidEventPayloadError as exc:
        logger.warning("provider_webhook_invalid_payload", reason=str(exc))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"code": exc.code},
        )

    try:
        result = await process_provider_event(event, gateway=gateway)
    except BillingError as exc:
        return JSONResponse(
            status_code=exc.http_status if exc.http_status >= 400 else 500,
            content={"code": exc.code},
        )

    return JSONResponse(status_code=status.HTTP_200_OK, content={"status": result.status})
