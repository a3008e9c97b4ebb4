"""End-to-end reconciliation against SQLite through SqlMembershipStore."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from sqlalchemy import Engine, create_engine, text

from memsync.report import summarize
from memsync.store import SetupError, SqlMembershipStore
from memsync.sync import create_membership_applications, reconcile_memberships
from tests.utils.db_helper import (
    application_counts,
    create_schema,
    seed_application,
    seed_user,
)

if TYPE_CHECKING:
    from pathlib import Path


def _seed_example(engine: Engine) -> None:
    with engine.begin() as conn:
        seed_user(conn, 1, role="teacher")
        seed_user(conn, 2, role="guest")
        seed_user(conn, 3, role="teacher")
        seed_application(conn, 1)


def test_example_scenario_on_sqlite(db_engine: Engine) -> None:
    _seed_example(db_engine)

    tally = create_membership_applications(db_engine)

    assert (tally.created, tally.already_existing, tally.ineligible, tally.failed) == (
        1,
        1,
        1,
        0,
    )
    with db_engine.connect() as conn:
        assert application_counts(conn) == {1: 1, 3: 1}
        status = conn.execute(
            text("SELECT status FROM membership_applications WHERE user_id = 3")
        ).scalar()
    assert status == "pending"


def test_idempotent_and_never_duplicates(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        for uid in range(1, 6):
            seed_user(conn, uid, role="teacher" if uid % 2 else "guest")

    first = create_membership_applications(db_engine)
    runs = [create_membership_applications(db_engine) for _ in range(3)]

    assert first.created == 3
    for later in runs:
        assert later.created == 0
        assert later.already_existing == first.created

    with db_engine.connect() as conn:
        counts = application_counts(conn)
    assert counts == {1: 1, 3: 1, 5: 1}


def test_existing_rows_are_not_mutated(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        seed_user(conn, 1)
        seed_application(conn, 1, status="rejected")
        before = conn.execute(text("SELECT * FROM membership_applications")).fetchall()

    create_membership_applications(db_engine)

    with db_engine.connect() as conn:
        after = conn.execute(text("SELECT * FROM membership_applications")).fetchall()
    assert before == after


def test_same_result_with_or_without_claimed_at(
    db_engine: Engine, legacy_engine: Engine
) -> None:
    _seed_example(db_engine)
    _seed_example(legacy_engine)

    with_column = summarize(create_membership_applications(db_engine))
    without_column = summarize(create_membership_applications(legacy_engine))

    assert with_column == without_column
    with legacy_engine.connect() as conn:
        assert application_counts(conn) == {1: 1, 3: 1}


def test_stale_read_resolved_by_unique_constraint(db_engine: Engine) -> None:
    """Another process inserted after our read: counted as already existing."""
    _seed_example(db_engine)
    store = SqlMembershipStore(db_engine)

    with patch.object(store, "list_applications", return_value=[]):
        tally = reconcile_memberships(store)

    assert tally.created == 1
    assert tally.already_existing == 1
    assert tally.failed == 0
    with db_engine.connect() as conn:
        assert application_counts(conn) == {1: 1, 3: 1}


def test_missing_users_table_is_setup_error() -> None:
    engine = create_engine("sqlite:///:memory:")
    with pytest.raises(SetupError):
        create_membership_applications(engine)


def test_reads_database_url_from_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    db_url = f"sqlite:///{tmp_path / 'members.db'}"
    engine = create_engine(db_url)
    with engine.begin() as conn:
        create_schema(conn)
        seed_user(conn, 1)
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("MEMSYNC_INITIAL_STATUS", "approved")

    tally = create_membership_applications()

    assert tally.created == 1
    with engine.connect() as conn:
        status = conn.execute(text("SELECT status FROM membership_applications")).scalar()
    assert status == "approved"
