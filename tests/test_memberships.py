"""Tests for reviewer operations on membership applications."""

from __future__ import annotations

import pytest
from sqlalchemy import Engine, text

from memsync.memberships import (
    approve_application,
    create_application,
    list_pending,
    reject_application,
)
from tests.utils.db_helper import application_counts, seed_user


@pytest.fixture
def seeded(db_engine: Engine) -> Engine:
    with db_engine.begin() as conn:
        seed_user(conn, 1)
        seed_user(conn, 2)
        conn.execute(
            text("""
            INSERT INTO membership_applications (id, user_id, association_id, status)
            VALUES (10, 1, 5, 'pending'), (11, 2, 6, 'pending')
            """)
        )
    return db_engine


def test_list_pending_with_user_details(seeded: Engine) -> None:
    with seeded.connect() as conn:
        rows = list_pending(conn)
        only_six = list_pending(conn, association_id=6)

    assert {r["id"] for r in rows} == {10, 11}
    assert rows[0]["user_email"].endswith("@example.com")
    assert [r["id"] for r in only_six] == [11]


def test_approve_moves_pending_to_approved(seeded: Engine) -> None:
    with seeded.begin() as conn:
        result = approve_application(conn, 10, approved_by=99)

    assert result == {
        "application_id": 10,
        "user_id": 1,
        "association_id": 5,
        "status": "approved",
    }
    with seeded.connect() as conn:
        row = conn.execute(
            text(
                "SELECT status, reviewed_by, reviewed_at FROM membership_applications "
                "WHERE id = 10"
            )
        ).fetchone()
        assert [r["id"] for r in list_pending(conn)] == [11]
    assert row is not None
    assert row[0] == "approved"
    assert row[1] == 99
    assert row[2] is not None


def test_reject_records_reason(seeded: Engine) -> None:
    with seeded.begin() as conn:
        result = reject_application(conn, 11, rejected_by=99, reason="Not a member")

    assert result["status"] == "rejected"
    assert result["reason"] == "Not a member"
    with seeded.connect() as conn:
        reason = conn.execute(
            text("SELECT rejection_reason FROM membership_applications WHERE id = 11")
        ).scalar()
    assert reason == "Not a member"


def test_processed_application_cannot_be_reviewed_again(seeded: Engine) -> None:
    with seeded.begin() as conn:
        approve_application(conn, 10, approved_by=99)

    with seeded.begin() as conn, pytest.raises(ValueError, match="already processed"):
        reject_application(conn, 10, rejected_by=99, reason="late")


def test_unknown_application_raises(seeded: Engine) -> None:
    with seeded.begin() as conn, pytest.raises(ValueError, match="not found"):
        approve_application(conn, 404, approved_by=1)


def test_reject_requires_reason(seeded: Engine) -> None:
    with seeded.begin() as conn, pytest.raises(ValueError, match="reason"):
        reject_application(conn, 10, rejected_by=1, reason="  ")


def test_approve_assigns_association_to_user_without_one(seeded: Engine) -> None:
    with seeded.begin() as conn:
        approve_application(conn, 10, approved_by=99)

    with seeded.connect() as conn:
        association_id = conn.execute(
            text("SELECT association_id FROM users WHERE id = 1")
        ).scalar()
    assert association_id == 5


def test_approve_keeps_existing_user_association(seeded: Engine) -> None:
    with seeded.begin() as conn:
        conn.execute(text("UPDATE users SET association_id = 3 WHERE id = 2"))
        approve_application(conn, 11, approved_by=99)

    with seeded.connect() as conn:
        association_id = conn.execute(
            text("SELECT association_id FROM users WHERE id = 2")
        ).scalar()
    assert association_id == 3


def test_reject_leaves_user_association_unset(seeded: Engine) -> None:
    with seeded.begin() as conn:
        reject_application(conn, 10, rejected_by=99, reason="Not a member")

    with seeded.connect() as conn:
        association_id = conn.execute(
            text("SELECT association_id FROM users WHERE id = 1")
        ).scalar()
    assert association_id is None


def test_create_application_returns_existing_id(seeded: Engine) -> None:
    with seeded.begin() as conn:
        application_id = create_application(conn, 1, 5)

    assert application_id == 10
    with seeded.connect() as conn:
        assert application_counts(conn) == {1: 1, 2: 1}


def test_create_application_inserts_pending_row(seeded: Engine) -> None:
    with seeded.begin() as conn:
        seed_user(conn, 3)
        application_id = create_application(conn, 3, 8)
        again = create_application(conn, 3, 8)

    assert again == application_id
    with seeded.connect() as conn:
        row = conn.execute(
            text(
                "SELECT user_id, association_id, status "
                "FROM membership_applications WHERE id = :id"
            ),
            {"id": application_id},
        ).fetchone()
    assert row is not None
    assert tuple(row) == (3, 8, "pending")
