"""Additive, idempotent schema migrations."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import inspect, text

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

ADDED = "added"
ALREADY_PRESENT = "already present"


@dataclass(frozen=True)
class ColumnMigration:
    table: str
    column: str
    ddl_type: str


@dataclass(frozen=True)
class MigrationResult:
    table: str
    column: str
    status: str


MIGRATIONS: tuple[ColumnMigration, ...] = (
    ColumnMigration("membership_applications", "claimed_at", "DATETIME"),
)


def apply_schema(conn: Connection, schema_path: Path = SCHEMA_PATH) -> None:
    """Create tables and indexes from schema.sql (IF NOT EXISTS throughout)."""
    for statement in schema_path.read_text(encoding="utf-8").split(";"):
        # Drop comment-only lines so a chunk with just comments is skipped
        sql = "\n".join(
            line for line in statement.splitlines() if not line.strip().startswith("--")
        ).strip()
        if sql:
            conn.execute(text(sql))


def add_column_if_missing(
    conn: Connection, table: str, column: str, ddl_type: str
) -> bool:
    """Add a nullable column unless it already exists.

    Returns:
        True if the column was added, False if it was already present

    Raises:
        ValueError: If the table does not exist
    """
    insp = inspect(conn)
    if not insp.has_table(table):
        msg = f"Table not found: {table}"
        raise ValueError(msg)

    existing = {col["name"] for col in insp.get_columns(table)}
    if column in existing:
        return False

    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl_type}"))
    return True


def run_migrations(
    conn: Connection, migrations: tuple[ColumnMigration, ...] = MIGRATIONS
) -> list[MigrationResult]:
    """Apply every column migration; re-runs report 'already present'."""
    results = []
    for migration in migrations:
        added = add_column_if_missing(
            conn, migration.table, migration.column, migration.ddl_type
        )
        results.append(
            MigrationResult(
                migration.table, migration.column, ADDED if added else ALREADY_PRESENT
            )
        )
    return results
