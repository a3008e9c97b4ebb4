"""Audit trail of reconciliation runs in sync_events."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection


def record_sync_event(
    conn: Connection,
    summary: dict[str, Any] | None,
    *,
    started_at: str,
    finished_at: str,
    error: str | None = None,
) -> None:
    """Insert one 'sync' row; summary is None when the pass never ran."""
    if summary is not None:
        row_counts = json.dumps(summary)
        success = summary.get("failed", 0) == 0 and error is None
    else:
        row_counts = json.dumps({"error": error or "Exception during sync"})
        success = False

    conn.execute(
        text("""
            INSERT INTO sync_events (
                event_type, success, row_counts, started_at, finished_at
            )
            VALUES (:event_type, :success, :row_counts, :started_at, :finished_at)
        """),
        {
            "event_type": "sync",
            "success": success,
            "row_counts": row_counts,
            "started_at": started_at,
            "finished_at": finished_at,
        },
    )


def latest_sync_event(conn: Connection) -> dict[str, Any] | None:
    row = conn.execute(
        text("""
            SELECT event_type, success, row_counts, started_at, finished_at
            FROM sync_events
            ORDER BY id DESC
            LIMIT 1
        """)
    ).fetchone()
    if row is None:
        return None
    return {
        "event_type": row[0],
        "success": bool(row[1]),
        "row_counts": json.loads(row[2]),
        "started_at": row[3],
        "finished_at": row[4],
    }
