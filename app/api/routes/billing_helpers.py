from __future__ import annotations

from typing import NoReturn
from uuid import UUID

import structlog
from fastapi import HTTPException, Request

from app.economy.billing.errors import BillingError

logger = structlog.get_logger(__name__)

CALLER_ID_HEADER = "X-User-Id"


def optional_caller_id(request: Request) -> UUID | None:
    raw = (request.headers.get(CALLER_ID_HEADER) or "").strip()
    if not raw:
        return None
    try:
        return UUID(raw)
    except ValueError:
        return None


def require_caller_id(request: Request) -> UUID:
    caller_id = optional_caller_id(request)
    if caller_id is None:
        raise HTTPException(status_code=401, detail={"code": "E_UNAUTHENTICATED"})
    return caller_id


def raise_billing_http_error(exc: BillingError, *, route: str) -> NoReturn:
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "billing_request_rejected",
        route=route,
        code=exc.code,
        http_status=exc.http_status,
        error_type=type(exc).__name__,
    )
    raise HTTPException(status_code=exc.http_status, detail={"code": exc.code}) from exc
