from __future__ import annotations

import pytest
from sqlalchemy import text

from app.core.config import get_settings
from app.core.integration_db_safety import assert_safe_integration_db
from app.db.session import engine

TRUNCATE_TABLES = (
    "post_purchases",
    "transactions",
    "chat_sessions",
    "subscriptions",
    "creator_models",
    "subscription_tiers",
    "creators",
    "ledger_entries",
    "processed_events",
    "outbox_events",
    "reconciliation_runs",
    "users",
)

TRUNCATE_SQL = f"TRUNCATE TABLE {', '.join(TRUNCATE_TABLES)} RESTART IDENTITY CASCADE"


@pytest.fixture(scope="session", autouse=True)
def guard_integration_db_target() -> None:
    assert_safe_integration_db(
        engine.url.render_as_string(hide_password=False),
        app_env=get_settings().app_env,
    )


@pytest.fixture(autouse=True)
async def cleanup_db() -> None:
    await engine.dispose()

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:  # pragma: no cover - environment-dependent
        pytest.skip(f"Postgres is required for integration tests: {exc}")

    async with engine.begin() as conn:
        await conn.execute(text(TRUNCATE_SQL))

    yield

    await engine.dispose()
