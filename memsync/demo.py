"""Demo data loader for offline/deterministic demonstrations."""

import json
from pathlib import Path

from sqlalchemy import Connection, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from memsync.migrate import apply_schema

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "demo"


def create_demo_engine() -> Engine:
    """Create an in-memory SQLite engine with the canonical schema applied."""
    # One shared connection so every transaction sees the same memory database
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    with engine.begin() as conn:
        conn.execute(text("PRAGMA foreign_keys = ON"))
        apply_schema(conn)

    return engine


def load_demo_fixtures(conn: Connection, fixtures_dir: Path = FIXTURES_DIR) -> None:
    """Load demo users and pre-existing applications."""
    users_file = fixtures_dir / "users.json"
    if users_file.exists():
        users = json.loads(users_file.read_text(encoding="utf-8"))
        for user in users:
            conn.execute(
                text("""
                INSERT INTO users
                (id, email, name, role, status, association, association_id)
                VALUES (:id, :email, :name, :role, :status, :association,
                        :association_id)
                """),
                user,
            )

    applications_file = fixtures_dir / "membership_applications.json"
    if applications_file.exists():
        applications = json.loads(applications_file.read_text(encoding="utf-8"))
        for application in applications:
            conn.execute(
                text("""
                INSERT INTO membership_applications (user_id, association_id, status)
                VALUES (:user_id, :association_id, :status)
                """),
                application,
            )
