"""Liveness probe payload; never touches the reconciliation engine."""

from __future__ import annotations

from datetime import UTC, datetime

from memsync.config import SERVICE_NAME


def health_status(now: datetime | None = None) -> dict[str, str]:
    if now is None:
        now = datetime.now(UTC)
    return {"status": "ok", "timestamp": now.isoformat(), "service": SERVICE_NAME}
