from __future__ import annotations

import re
from dataclasses import dataclass

from sqlalchemy.engine import URL, make_url

TEST_DB_NAME_RE = re.compile(r"test", re.IGNORECASE)
ALLOWED_LOCAL_HOSTS = frozenset(
    {
        "localhost",
        "127.0.0.1",
        "::1",
        "postgres",
        "quiz_live_postgres",
    }
)
PRODUCTION_ENVS = frozenset({"prod", "production"})


@dataclass(frozen=True, slots=True)
class IntegrationDbSafetyResult:
    is_safe: bool
    reason: str
    database_name: str
    host: str


def _violation(parsed: URL, *, db_name: str, host: str, app_env: str | None) -> str | None:
    if app_env is not None and app_env.strip().lower() in PRODUCTION_ENVS:
        return "APP_ENV points at production."
    if parsed.get_backend_name() != "postgresql":
        return "Live room integration tests run only against PostgreSQL."
    if not db_name:
        return "Database name is empty."
    if TEST_DB_NAME_RE.search(db_name) is None:
        return "Database name must clearly indicate a test database (contain 'test')."
    if host not in ALLOWED_LOCAL_HOSTS:
        return "Host is not in allowed local integration-test hosts."
    return None


def assess_integration_db_safety(database_url: str, *, app_env: str | None = None) -> IntegrationDbSafetyResult:
    parsed = make_url(database_url)
    db_name = (parsed.database or "").strip()
    host = (parsed.host or "").strip().lower()
    reason = _violation(parsed, db_name=db_name, host=host, app_env=app_env)
    return IntegrationDbSafetyResult(
        is_safe=reason is None,
        reason=reason or "ok",
        database_name=db_name,
        host=host,
    )


def assert_safe_integration_db(database_url: str, *, app_env: str | None = None) -> None:
    result = assess_integration_db_safety(database_url, app_env=app_env)
    if result.is_safe:
        return

    raise RuntimeError(
        "Refusing to run live room integration tests with destructive TRUNCATE.\n"
        f"Reason: {result.reason}\n"
        f"Resolved DB: name='{result.database_name}' host='{result.host}'\n"
        "Required: use a dedicated local PostgreSQL test DB, e.g. 'quiz_live_test'."
    )
