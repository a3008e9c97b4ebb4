"""Operations on single membership applications, outside the reconciliation pass."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

logger = logging.getLogger(__name__)


def list_pending(
    conn: Connection, association_id: int | None = None
) -> list[dict[str, Any]]:
    """Pending applications with applicant details, newest first."""
    query = text("""
        SELECT ma.id, ma.user_id, ma.association_id, ma.status, ma.created_at,
               u.name AS user_name, u.email AS user_email
        FROM membership_applications ma
        JOIN users u ON u.id = ma.user_id
        WHERE ma.status = 'pending'
          AND (:association_id IS NULL OR ma.association_id = :association_id)
        ORDER BY ma.created_at DESC, ma.id DESC
    """)
    rows = conn.execute(query, {"association_id": association_id}).mappings().all()
    return [dict(row) for row in rows]


def _review(
    conn: Connection,
    application_id: int,
    *,
    status: str,
    reviewed_by: int,
    reason: str | None = None,
) -> dict[str, Any]:
    row = conn.execute(
        text("""
            SELECT user_id, association_id FROM membership_applications
            WHERE id = :id AND status = 'pending'
        """),
        {"id": application_id},
    ).fetchone()
    if row is None:
        msg = f"Membership application not found or already processed: {application_id}"
        raise ValueError(msg)

    conn.execute(
        text("""
            UPDATE membership_applications
            SET status = :status,
                reviewed_by = :reviewed_by,
                reviewed_at = :reviewed_at,
                rejection_reason = :reason
            WHERE id = :id AND status = 'pending'
        """),
        {
            "id": application_id,
            "status": status,
            "reviewed_by": reviewed_by,
            "reviewed_at": datetime.now(UTC).isoformat(),
            "reason": reason,
        },
    )
    return {
        "application_id": application_id,
        "user_id": row[0],
        "association_id": row[1],
        "status": status,
    }


def approve_application(
    conn: Connection, application_id: int, approved_by: int
) -> dict[str, Any]:
    """Approve a pending application.

    A user without an association_id takes the application's association,
    in the same transaction as the approval.

    Raises:
        ValueError: If the application is missing or no longer pending
    """
    result = _review(conn, application_id, status="approved", reviewed_by=approved_by)
    if result["association_id"] is not None:
        conn.execute(
            text("""
                UPDATE users SET association_id = :association_id
                WHERE id = :user_id AND association_id IS NULL
            """),
            {
                "association_id": result["association_id"],
                "user_id": result["user_id"],
            },
        )
    return result


def reject_application(
    conn: Connection, application_id: int, rejected_by: int, reason: str
) -> dict[str, Any]:
    """Reject a pending application with a reason.

    Raises:
        ValueError: If the reason is blank, or the application is missing
            or no longer pending
    """
    if not reason.strip():
        msg = "Rejection reason cannot be empty"
        raise ValueError(msg)
    result = _review(
        conn,
        application_id,
        status="rejected",
        reviewed_by=rejected_by,
        reason=reason,
    )
    result["reason"] = reason
    return result


def create_application(
    conn: Connection,
    user_id: int,
    association_id: int | None = None,
    *,
    status: str = "pending",
) -> int:
    """Create the application for one user, or return the one it already has.

    Used when an account is created, outside the reconciliation pass.

    Returns:
        Id of the user's application
    """
    lookup = text("SELECT id FROM membership_applications WHERE user_id = :user_id")
    existing = conn.execute(lookup, {"user_id": user_id}).scalar()
    if existing is not None:
        logger.info(
            "Membership application already exists for user %s: %s",
            user_id,
            existing,
        )
        return int(existing)

    conn.execute(
        text("""
            INSERT INTO membership_applications (user_id, association_id, status)
            VALUES (:user_id, :association_id, :status)
        """),
        {"user_id": user_id, "association_id": association_id, "status": status},
    )
    new_id = conn.execute(lookup, {"user_id": user_id}).scalar_one()
    logger.info("Created membership application %s for user %s", new_id, user_id)
    return int(new_id)
