from __future__ import annotations

import re
from dataclasses import dataclass

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

LOCAL_TEST_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "postgres", "loyalty_postgres"})
TEST_DATABASE_NAME_RE = re.compile(r"(^|_)test(_|$)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class IntegrationDbTarget:
    backend: str
    host: str
    database_name: str

    def skip_reason(self) -> str | None:
        if self.backend != "postgresql":
            return f"row-lock tests need PostgreSQL, DATABASE_URL points at {self.backend}"
        if TEST_DATABASE_NAME_RE.search(self.database_name) is None:
            return f"database {self.database_name!r} is not named as a test database"
        if self.host not in LOCAL_TEST_HOSTS:
            return f"host {self.host!r} is not a local test host"
        return None


def parse_integration_db_target(database_url: str) -> IntegrationDbTarget:
    parsed = make_url(database_url)
    return IntegrationDbTarget(
        backend=parsed.get_backend_name(),
        host=(parsed.host or "").strip().lower(),
        database_name=(parsed.database or "").strip(),
    )


def integration_db_skip_reason(database_url: str) -> str | None:
    """Why the table-truncating integration suite must not run against this URL, or None."""
    try:
        target = parse_integration_db_target(database_url)
    except ArgumentError:
        return "DATABASE_URL is not a valid database URL"
    return target.skip_reason()
