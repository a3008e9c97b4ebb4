"""Schema guard tests to keep schema.sql aligned with the reconciliation contract."""

from __future__ import annotations

import re
from pathlib import Path

SCHEMA_PATH = Path(__file__).parent.parent / "memsync" / "schema.sql"


def _table_def(name: str) -> str:
    schema_content = SCHEMA_PATH.read_text(encoding="utf-8")
    pattern = rf"CREATE TABLE IF NOT EXISTS {name}\s*\((.*?)\);"
    match = re.search(pattern, schema_content, re.DOTALL | re.IGNORECASE)
    assert match, f"Could not find {name} table definition in schema.sql"
    return match.group(1)


def test_applications_unique_per_user() -> None:
    """The UNIQUE constraint on user_id is the only concurrency control.

    Without it, two concurrent passes could both insert for the same user.
    """
    table_def = _table_def("membership_applications")

    inline_unique = re.search(
        r"\buser_id\s+INTEGER\s+NOT\s+NULL\s+UNIQUE\b", table_def, re.IGNORECASE
    )
    table_unique = re.search(r"UNIQUE\s*\(\s*user_id\s*\)", table_def, re.IGNORECASE)

    assert inline_unique or table_unique, (
        "membership_applications.user_id must be UNIQUE NOT NULL"
    )


def test_applications_reference_users() -> None:
    table_def = _table_def("membership_applications")
    assert re.search(r"REFERENCES\s+users\s*\(\s*id\s*\)", table_def, re.IGNORECASE)


def test_claimed_at_left_to_migrations() -> None:
    """Base schema omits claimed_at so `memsync migrate` stays meaningful."""
    table_def = _table_def("membership_applications")
    assert "claimed_at" not in table_def


def test_sync_events_table_present() -> None:
    table_def = _table_def("sync_events")
    for column in ("event_type", "success", "row_counts", "started_at", "finished_at"):
        assert re.search(rf"^\s*{column}\b", table_def, re.MULTILINE), column
