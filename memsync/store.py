"""Schema accessor for users and membership_applications.

Reads select only the columns that actually exist, so optional columns
added by migrations (claimed_at, status, association...) can be present
or not without changing behaviour. Each insert runs in its own
transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

USERS_TABLE = "users"
APPLICATIONS_TABLE = "membership_applications"

USER_OPTIONAL_COLUMNS = (
    "email",
    "name",
    "role",
    "status",
    "association",
    "association_id",
    "created_at",
)
APPLICATION_OPTIONAL_COLUMNS = ("association_id", "status", "created_at", "claimed_at")


class MembershipSyncError(Exception):
    """Base class for membership reconciliation errors."""


class SetupError(MembershipSyncError):
    """Source tables cannot be read at all; fatal for the whole pass."""


class ConstraintViolationError(MembershipSyncError):
    """An application for this user already exists (uniqueness on user_id)."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"Membership application already exists for user {user_id}")
        self.user_id = user_id


class RowWriteError(MembershipSyncError):
    """Unexpected failure writing a single application row."""

    def __init__(self, user_id: int, cause: Exception) -> None:
        super().__init__(f"Failed to write application for user {user_id}: {cause}")
        self.user_id = user_id
        self.cause = cause


@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str | None = None
    name: str | None = None
    role: Any = None
    status: Any = None
    association: Any = None
    association_id: Any = None
    created_at: str | None = None


@dataclass(frozen=True)
class ApplicationRecord:
    id: int
    user_id: int
    association_id: int | None = None
    status: str | None = None
    created_at: str | None = None
    claimed_at: str | None = None


def _is_unique_violation(exc: IntegrityError) -> bool:
    """Tell a uniqueness violation apart from FK/NOT NULL/CHECK failures."""
    orig = exc.orig
    # sqlite3 (3.11+) exposes the symbolic name; psycopg exposes SQLSTATE
    if getattr(orig, "sqlite_errorname", None) == "SQLITE_CONSTRAINT_UNIQUE":
        return True
    if getattr(orig, "sqlstate", None) == "23505":
        return True
    message = str(orig).lower()
    return "unique" in message or "duplicate key" in message


class SqlMembershipStore:
    """SQLAlchemy-backed accessor, constructed once and injected into the engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> SqlMembershipStore:
        """Open a store for a database URL.

        Raises:
            SetupError: If the URL cannot be turned into an engine
        """
        try:
            engine = create_engine(database_url)
        except (SQLAlchemyError, ValueError) as e:
            msg = f"Cannot open database {database_url}: {e}"
            raise SetupError(msg) from e
        return cls(engine)

    def columns(self, table: str) -> set[str]:
        """Return column names of a table, empty when the table is missing."""
        with self.engine.connect() as conn:
            insp = inspect(conn)
            if not insp.has_table(table):
                return set()
            return {col["name"] for col in insp.get_columns(table)}

    def has_column(self, table: str, column: str) -> bool:
        """Whether a table exists and has the column."""
        return column in self.columns(table)

    def _readable_columns(
        self, table: str, required: tuple[str, ...], optional: tuple[str, ...]
    ) -> list[str]:
        try:
            present = self.columns(table)
        except SQLAlchemyError as e:
            msg = f"Cannot inspect table {table}: {e}"
            raise SetupError(msg) from e

        if not present:
            msg = f"Table not found: {table}"
            raise SetupError(msg)

        missing = [col for col in required if col not in present]
        if missing:
            msg = f"Table {table} is missing required column(s): {', '.join(missing)}"
            raise SetupError(msg)

        return [*required, *(col for col in optional if col in present)]

    def _select(self, table: str, cols: list[str]) -> list[dict[str, Any]]:
        query = text(f"SELECT {', '.join(cols)} FROM {table} ORDER BY id")  # noqa: S608
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as e:
            msg = f"Cannot read table {table}: {e}"
            raise SetupError(msg) from e
        return [dict(row) for row in rows]

    def list_users(self) -> list[UserRecord]:
        """Return all users ordered by id.

        Raises:
            SetupError: If the users table is missing or unreadable
        """
        cols = self._readable_columns(USERS_TABLE, ("id",), USER_OPTIONAL_COLUMNS)
        return [UserRecord(**row) for row in self._select(USERS_TABLE, cols)]

    def list_applications(self) -> list[ApplicationRecord]:
        """Return all membership applications ordered by id.

        claimed_at is read only when the column exists.

        Raises:
            SetupError: If the applications table is missing or unreadable
        """
        cols = self._readable_columns(
            APPLICATIONS_TABLE, ("id", "user_id"), APPLICATION_OPTIONAL_COLUMNS
        )
        return [
            ApplicationRecord(**row) for row in self._select(APPLICATIONS_TABLE, cols)
        ]

    def application_user_ids(self) -> set[int]:
        """Set of user ids that already own an application.

        Raises:
            SetupError: If the applications table is missing or unreadable
        """
        return {app.user_id for app in self.list_applications()}

    def insert_application(
        self,
        user_id: int,
        initial_status: str,
        *,
        association_id: int | None = None,
    ) -> int:
        """Insert one application row in its own transaction.

        Args:
            user_id: Owning user id
            initial_status: Status of the new row (normally 'pending')
            association_id: Optional association the membership is for

        Returns:
            Id of the inserted application

        Raises:
            ConstraintViolationError: If the user already has an application
            RowWriteError: On any other database failure
        """
        insert = """
            INSERT INTO membership_applications (user_id, association_id, status)
            VALUES (:user_id, :association_id, :status)
        """
        returning = self.engine.dialect.insert_returning
        if returning:
            insert += " RETURNING id"

        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    text(insert),
                    {
                        "user_id": user_id,
                        "association_id": association_id,
                        "status": initial_status,
                    },
                )
                new_id = result.scalar_one() if returning else result.lastrowid
                # Some drivers report 0 or None instead of the generated key
                if not new_id:
                    new_id = conn.execute(
                        text(
                            "SELECT id FROM membership_applications "
                            "WHERE user_id = :user_id"
                        ),
                        {"user_id": user_id},
                    ).scalar_one()
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise ConstraintViolationError(user_id) from e
            raise RowWriteError(user_id, e) from e
        except SQLAlchemyError as e:
            raise RowWriteError(user_id, e) from e

        return int(new_id)
