from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.engine import URL, make_url

TEST_DB_NAME_RE = re.compile(r"(^|_)test(_|$)", re.IGNORECASE)
LOCAL_DB_HOSTS = frozenset(
    {
        "localhost",
        "127.0.0.1",
        "::1",
        "postgres",
        "creator_billing_postgres",
    }
)
PRODUCTION_ENVS = frozenset({"prod", "production"})


@dataclass(frozen=True, slots=True)
class IntegrationDbSafetyResult:
    is_safe: bool
    reason: str
    database_name: str
    host: str


def _is_postgres(url: URL) -> bool:
    return url.get_backend_name() == "postgresql"


def _names_test_database(url: URL) -> bool:
    return TEST_DB_NAME_RE.search((url.database or "").strip()) is not None


def _is_local_host(url: URL) -> bool:
    return (url.host or "").strip().lower() in LOCAL_DB_HOSTS


SAFETY_CHECKS: tuple[tuple[Callable[[URL], bool], str], ...] = (
    (_is_postgres, "integration tests run only against PostgreSQL"),
    (_names_test_database, "database name must contain a 'test' segment"),
    (_is_local_host, "host is not a local integration-test host"),
)


def assess_integration_db_safety(
    database_url: str,
    *,
    app_env: str = "test",
) -> IntegrationDbSafetyResult:
    url = make_url(database_url)
    db_name = (url.database or "").strip()
    host = (url.host or "").strip().lower()

    if app_env.strip().lower() in PRODUCTION_ENVS:
        return IntegrationDbSafetyResult(False, f"APP_ENV is '{app_env}'", db_name, host)

    for check, reason in SAFETY_CHECKS:
        if not check(url):
            return IntegrationDbSafetyResult(False, reason, db_name, host)
    return IntegrationDbSafetyResult(True, "ok", db_name, host)


def assert_safe_integration_db(database_url: str, *, app_env: str = "test") -> None:
    result = assess_integration_db_safety(database_url, app_env=app_env)
    if result.is_safe:
        return
    raise RuntimeError(
        "Refusing to truncate billing tables for integration tests: "
        f"{result.reason} (database='{result.database_name}', host='{result.host}'). "
        "Point DATABASE_URL at a local database such as 'creator_billing_test'."
    )
