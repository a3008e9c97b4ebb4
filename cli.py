#!/usr/bin/env python3
"""CLI interface for membership application reconciliation."""

import importlib.util
import json
import platform
import sys
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Any

import typer
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from memsync.config import (
    configure_logging,
    get_database_url,
    get_initial_status,
    load_env,
    plain_output,
)
from memsync.demo import create_demo_engine, load_demo_fixtures
from memsync.events import record_sync_event
from memsync.health import health_status
from memsync.memberships import (
    approve_application,
    create_application,
    list_pending,
    reject_application,
)
from memsync.migrate import apply_schema, run_migrations
from memsync.report import exit_code_for, format_summary, summarize
from memsync.store import SetupError, SqlMembershipStore
from memsync.sync import reconcile_memberships

app = typer.Typer(
    name="memsync",
    help="Membership sync - create missing membership applications for users",
    no_args_is_help=True,
)


def _mark_success() -> str:
    """Return success indicator (emoji or plain text based on MEMSYNC_PLAIN)."""
    return "" if plain_output() else "✅"


def _mark_error() -> str:
    """Return error indicator (emoji or plain text based on MEMSYNC_PLAIN)."""
    return "" if plain_output() else "❌"


@app.callback()
def _setup() -> None:
    load_env()
    configure_logging()


def _ensure_sqlite_dir(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(database_url)
    database = url.database
    if url.get_backend_name() != "sqlite" or not database or database == ":memory:":
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


def _engine() -> Engine:
    database_url = get_database_url()
    _ensure_sqlite_dir(database_url)
    return create_engine(database_url)


@app.command("init-db")
def init_db() -> None:
    """Initialize database schema from memsync/schema.sql."""
    try:
        with _engine().begin() as conn:
            apply_schema(conn)
        typer.echo(f"{_mark_success()} Database schema initialized successfully")
    except SQLAlchemyError as e:
        typer.echo(f"{_mark_error()} Database error: {e}", err=True)
        raise typer.Exit(1) from e


@app.command("migrate")
def migrate() -> None:
    """Apply additive column migrations (safe to re-run)."""
    try:
        with _engine().begin() as conn:
            results = run_migrations(conn)
    except (SQLAlchemyError, ValueError) as e:
        typer.echo(f"{_mark_error()} Migration failed: {e}", err=True)
        raise typer.Exit(1) from e

    for r in results:
        typer.echo(f"{r.table}.{r.column}: {r.status}")


def _deadline(timeout: float | None) -> Callable[[], bool] | None:
    if timeout is None:
        return None
    expires = time.monotonic() + timeout
    return lambda: time.monotonic() >= expires


def _write_summary(out: str, summary: dict[str, Any]) -> None:
    out_path = Path(out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w") as f:
        json.dump(summary, f, indent=2)


def _log_sync_event(
    engine: Engine,
    summary: dict[str, Any] | None,
    timestamps: dict[str, str],
    error: str | None,
) -> None:
    """Record the run in sync_events; a failure here only warns."""
    try:
        with engine.begin() as conn:
            record_sync_event(
                conn,
                summary,
                started_at=timestamps["started_at"],
                finished_at=timestamps["finished_at"],
                error=error,
            )
    except SQLAlchemyError as log_error:
        typer.echo(f"WARNING: sync event logging failed: {log_error}", err=True)


@app.command("sync")
def sync(
    out: Annotated[
        str | None,
        typer.Option("--out", help="Write the JSON summary to this file"),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", min=0, help="Stop cleanly after N seconds"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option("--status", help="Initial status for created applications"),
    ] = None,
) -> None:
    """Create missing membership applications for every eligible user."""
    try:
        engine = _engine()
    except (SQLAlchemyError, ValueError) as e:
        typer.echo(f"{_mark_error()} Cannot open database: {e}", err=True)
        raise typer.Exit(1) from e

    store = SqlMembershipStore(engine)
    initial_status = status or get_initial_status()

    started_at = datetime.now(UTC).isoformat()
    summary: dict[str, Any] | None = None
    error: str | None = None

    try:
        tally = reconcile_memberships(
            store, initial_status=initial_status, should_stop=_deadline(timeout)
        )
        summary = summarize(tally)
    except SetupError as e:
        error = str(e)
        typer.echo(f"{_mark_error()} Membership sync failed: {e}", err=True)
        raise typer.Exit(1) from e
    finally:
        # Always record the run (success or failure) for the audit trail
        finished_at = datetime.now(UTC).isoformat()
        _log_sync_event(
            engine,
            summary,
            {"started_at": started_at, "finished_at": finished_at},
            error,
        )

    for line in format_summary(tally):
        typer.echo(line)
    if out:
        _write_summary(out, summarize(tally))
        typer.echo(f"Results written to {out}")

    if tally.cancelled:
        typer.echo("WARNING: pass cancelled before all users were processed", err=True)

    code = exit_code_for(tally)
    if code:
        typer.echo(
            f"{_mark_error()} Membership sync finished with {tally.failed} failure(s)",
            err=True,
        )
        raise typer.Exit(code)
    typer.echo(f"{_mark_success()} Membership sync completed successfully")


@app.command("list-pending")
def list_pending_cmd(
    association_id: Annotated[
        int | None,
        typer.Option("--association-id", help="Only this association"),
    ] = None,
    json_out: Annotated[bool, typer.Option("--json", help="Output JSON")] = False,
) -> None:
    """List pending membership applications."""
    try:
        with _engine().begin() as conn:
            rows = list_pending(conn, association_id)
    except SQLAlchemyError as e:
        typer.echo(f"{_mark_error()} Failed to list applications: {e}", err=True)
        raise typer.Exit(1) from e

    if json_out:
        typer.echo(json.dumps(rows, indent=2, default=str))
        return
    if not rows:
        typer.echo("No pending membership applications.")
        return
    for r in rows:
        typer.echo(
            f"{r['id']} | user {r['user_id']} ({r['user_email']}) | "
            f"association {r['association_id']} | {r['created_at']}"
        )


@app.command("create-application")
def create_application_cmd(
    user_id: Annotated[int, typer.Option("--user-id", help="Applicant user id")],
    association_id: Annotated[
        int | None,
        typer.Option("--association-id", help="Association applied to"),
    ] = None,
) -> None:
    """Create the membership application for one user (no-op if it exists)."""
    try:
        with _engine().begin() as conn:
            application_id = create_application(conn, user_id, association_id)
        typer.echo(
            f"{_mark_success()} Membership application {application_id} "
            f"for user {user_id}"
        )
    except SQLAlchemyError as e:
        typer.echo(f"{_mark_error()} Failed to create application: {e}", err=True)
        raise typer.Exit(1) from e


@app.command("approve")
def approve(
    application_id: Annotated[int, typer.Option("--id", help="Application id")],
    approved_by: Annotated[int, typer.Option("--by", help="Reviewer user id")],
) -> None:
    """Approve a pending membership application."""
    try:
        with _engine().begin() as conn:
            approve_application(conn, application_id, approved_by)
        typer.echo(f"{_mark_success()} Approved application {application_id}")
    except (SQLAlchemyError, ValueError) as e:
        typer.echo(f"{_mark_error()} Approval failed: {e}", err=True)
        raise typer.Exit(1) from e


@app.command("reject")
def reject(
    application_id: Annotated[int, typer.Option("--id", help="Application id")],
    rejected_by: Annotated[int, typer.Option("--by", help="Reviewer user id")],
    reason: Annotated[str, typer.Option("--reason", help="Rejection reason")],
) -> None:
    """Reject a pending membership application."""
    try:
        with _engine().begin() as conn:
            reject_application(conn, application_id, rejected_by, reason)
        typer.echo(f"{_mark_success()} Rejected application {application_id}")
    except (SQLAlchemyError, ValueError) as e:
        typer.echo(f"{_mark_error()} Rejection failed: {e}", err=True)
        raise typer.Exit(1) from e


@app.command("check-schema")
def check_schema() -> None:
    """Show tables and the columns reconciliation reads."""
    try:
        engine = _engine()
        with engine.connect() as conn:
            insp = inspect(conn)
            tables = sorted(insp.get_table_names())
            typer.echo(f"Tables: {', '.join(tables) or '(none)'}")
            for table in ("users", "membership_applications"):
                if table not in tables:
                    typer.echo(f"{_mark_error()} {table} table does not exist")
                    continue
                cols = [col["name"] for col in insp.get_columns(table)]
                typer.echo(f"{table}: {', '.join(cols)}")
        if "membership_applications" in tables:
            store = SqlMembershipStore(engine)
            has_claimed = store.has_column("membership_applications", "claimed_at")
            state = "present" if has_claimed else "absent (run `memsync migrate`)"
            typer.echo(f"claimed_at: {state}")
    except SQLAlchemyError as e:
        typer.echo(f"{_mark_error()} Database error: {e}", err=True)
        raise typer.Exit(1) from e


@app.command("health")
def health() -> None:
    """Print a liveness status payload."""
    typer.echo(json.dumps(health_status()))


@app.command("demo")
def demo() -> None:
    """Run the sync twice against in-memory fixture data."""
    try:
        engine = create_demo_engine()
        with engine.begin() as conn:
            load_demo_fixtures(conn)
        typer.echo(f"{_mark_success()} Demo database initialized with fixtures")

        store = SqlMembershipStore(engine)
        for label in ("First pass", "Second pass"):
            tally = reconcile_memberships(store)
            typer.echo(f"\n{label}:")
            for line in format_summary(tally):
                typer.echo(f"  {line}")

        with engine.connect() as conn:
            total = conn.execute(
                text("SELECT COUNT(*) FROM membership_applications")
            ).scalar()
        typer.echo(f"\nApplications in database: {total}")
    except (SetupError, SQLAlchemyError) as e:
        typer.echo(f"{_mark_error()} Demo failed: {e}", err=True)
        raise typer.Exit(1) from e


def _check_dependency(module_name: str) -> bool:
    """Check if a module is available without importing it."""
    return importlib.util.find_spec(module_name) is not None


def _check_python_version() -> bool:
    """Check Python version requirement."""
    py_version = sys.version_info
    version_str = f"{py_version.major}.{py_version.minor}.{py_version.micro}"
    typer.echo(f"Python version: {version_str}")
    if py_version < (3, 11):
        typer.echo(f"{_mark_error()} Python 3.11+ required, found {version_str}")
        return False
    typer.echo(f"{_mark_success()} Python version OK")
    return True


def _display_url(database_url: str) -> str:
    """Database URL with any password masked."""
    try:
        return make_url(database_url).render_as_string(hide_password=True)
    except ArgumentError:
        return "(unparseable URL)"


def _check_database() -> bool:
    """Check the database connection and that both tables exist."""
    typer.echo(f"Database URL: {_display_url(get_database_url())}")
    try:
        store = SqlMembershipStore(_engine())
        store.list_users()
        store.list_applications()
    except (SetupError, SQLAlchemyError) as e:
        typer.echo(f"{_mark_error()} Database check failed: {e}")
        return False
    else:
        typer.echo(f"{_mark_success()} Database and tables OK")
        return True


def _check_dependencies() -> bool:
    """Check Python package dependencies."""
    if all(_check_dependency(m) for m in ("sqlalchemy", "typer", "yaml", "dotenv")):
        typer.echo(f"{_mark_success()} Core dependencies available")
        return True
    typer.echo(f"{_mark_error()} Missing core dependencies")
    return False


@app.command("doctor")
def doctor() -> None:
    """Run preflight checks for dependencies and configuration."""
    typer.echo("🔍 Running system preflight checks...\n")
    typer.echo(f"Platform: {platform.system()} {platform.release()}")

    checks = [
        _check_python_version(),
        _check_dependencies(),
        _check_database(),
    ]

    typer.echo()
    if all(checks):
        typer.echo(f"{_mark_success()} All checks passed! Ready for memsync sync")
    else:
        typer.echo(f"{_mark_error()} Some checks failed. See errors above.")
        typer.echo("\nTo create the schema:")
        typer.echo("  memsync init-db && memsync migrate")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
