"""Environment-driven settings and logging setup."""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite:///data/memsync.db"
DEFAULT_INITIAL_STATUS = "pending"
SERVICE_NAME = "memsync"


def load_env() -> None:
    """Load .env unless MEMSYNC_SKIP_DOTENV=1 (hermetic tests/CI)."""
    if os.getenv("MEMSYNC_SKIP_DOTENV") != "1":
        load_dotenv(override=False)  # Never override already-set env


def get_database_url() -> str:
    return os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


def get_initial_status() -> str:
    return os.getenv("MEMSYNC_INITIAL_STATUS") or DEFAULT_INITIAL_STATUS


def get_eligibility_file() -> str | None:
    return os.getenv("MEMSYNC_ELIGIBILITY_FILE") or None


def plain_output() -> bool:
    return os.getenv("MEMSYNC_PLAIN") == "1"


def configure_logging(*, level: int | str | None = None, force: bool = False) -> None:
    """Initialise the root logger once with a terse CLI format.

    Level defaults to MEMSYNC_LOG_LEVEL, then WARNING so that CLI output
    stays limited to the summary unless asked for.
    """
    if level is None:
        level = os.getenv("MEMSYNC_LOG_LEVEL", "WARNING").upper()

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
