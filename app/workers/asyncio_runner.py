from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

import structlog

from app.db.session import dispose_engine

T = TypeVar("T")

logger = structlog.get_logger(__name__)


async def _run_billing_job(job_name: str, awaitable: Awaitable[T]) -> T:
    # Pooled asyncpg connections are bound to the loop that opened them.
    await dispose_engine()
    started = time.monotonic()
    with structlog.contextvars.bound_contextvars(billing_job=job_name):
        try:
            return await awaitable
        except Exception:
            logger.exception("billing_job_failed", elapsed_ms=int((time.monotonic() - started) * 1000))
            raise
        finally:
            await dispose_engine()


def run_async_job(awaitable: Awaitable[T], *, job_name: str) -> T:
    return asyncio.run(_run_billing_job(job_name, awaitable))
