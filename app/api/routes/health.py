from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text

from app.core.config import get_settings
from app.db.session import SessionLocal
from app.workers.celery_app import celery_app

router = APIRouter(tags=["health"])


def _ok(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"status": "ok"}
    if extra:
        payload.update(extra)
    return payload


def _failed(error: str) -> dict[str, str]:
    return {"status": "failed", "error": error}


async def _check_database() -> dict[str, Any]:
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _ok()
    except Exception as exc:
        return _failed(str(exc))


async def _check_redis() -> dict[str, Any]:
    redis_client: Redis | None = None
    try:
        redis_client = Redis.from_url(get_settings().redis_url)
        if await redis_client.ping() is not True:
            return _failed("unexpected redis ping response")
        return _ok()
    except Exception as exc:
        return _failed(str(exc))
    finally:
        if redis_client is not None:
            await redis_client.aclose()


def _check_notification_workers_sync() -> dict[str, Any]:
    try:
        inspector = celery_app.control.inspect(timeout=1.0)
        replies = inspector.ping() if inspector is not None else None
        if not replies:
            return _failed("no celery workers responded to ping")
        return _ok({"workers": len(replies)})
    except Exception as exc:
        return _failed(str(exc))


def _check_payment_provider() -> dict[str, Any]:
    settings = get_settings()
    missing = [
        name
        for name, value in (
            ("STRIPE_SECRET_KEY", settings.stripe_secret_key),
            ("STRIPE_WEBHOOK_SECRET", settings.stripe_webhook_secret),
        )
        if not value
    ]
    if missing:
        return _failed(f"missing configuration: {', '.join(missing)}")
    return _ok()


async def _collect_readiness_checks() -> dict[str, dict[str, Any]]:
    database, redis, workers = await asyncio.gather(
        _check_database(),
        _check_redis(),
        asyncio.to_thread(_check_notification_workers_sync),
    )
    return {
        "database": database,
        "redis": redis,
        "celery": workers,
        "payment_provider": _check_payment_provider(),
    }


def _all_ok(checks: dict[str, dict[str, Any]]) -> bool:
    return all(check.get("status") == "ok" for check in checks.values())


@router.get("/health")
async def health() -> JSONResponse:
    database = await _check_database()
    is_healthy = database["status"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ok" if is_healthy else "degraded", "checks": {"database": database}},
    )


@router.get("/ready")
async def ready() -> JSONResponse:
    checks = await _collect_readiness_checks()
    is_ready = _all_ok(checks)
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if is_ready else "not_ready", "checks": checks},
    )
