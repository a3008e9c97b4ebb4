"""Test configuration and fixtures."""

from __future__ import annotations

import pytest
from sqlalchemy import Engine

from tests.utils.db_helper import create_schema, create_test_engine


@pytest.fixture(autouse=True)
def _hermetic_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep .env files and developer overrides out of tests."""
    monkeypatch.setenv("MEMSYNC_SKIP_DOTENV", "1")
    monkeypatch.setenv("MEMSYNC_PLAIN", "1")
    monkeypatch.delenv("MEMSYNC_ELIGIBILITY_FILE", raising=False)
    monkeypatch.delenv("MEMSYNC_INITIAL_STATUS", raising=False)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite with the full schema (claimed_at present)."""
    engine = create_test_engine()
    with engine.begin() as conn:
        create_schema(conn)
    return engine


@pytest.fixture
def legacy_engine() -> Engine:
    """In-memory SQLite before the claimed_at migration has run."""
    engine = create_test_engine()
    with engine.begin() as conn:
        create_schema(conn, claimed_at=False)
    return engine
