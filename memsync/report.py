"""Outcome tally and summary for a reconciliation pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Outcome(Enum):
    CREATED = "created"
    ALREADY_EXISTING = "already_existing"
    INELIGIBLE = "ineligible"
    FAILED = "failed"


@dataclass
class SyncTally:
    created: int = 0
    already_existing: int = 0
    ineligible: int = 0
    failed: int = 0
    failed_user_ids: list[int] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.created + self.already_existing + self.ineligible + self.failed

    def record(self, outcome: Outcome, user_id: int) -> None:
        """Count one user's outcome; failed ids are kept for retry."""
        if outcome is Outcome.CREATED:
            self.created += 1
        elif outcome is Outcome.ALREADY_EXISTING:
            self.already_existing += 1
        elif outcome is Outcome.INELIGIBLE:
            self.ineligible += 1
        else:
            self.failed += 1
            self.failed_user_ids.append(user_id)


def summarize(tally: SyncTally) -> dict[str, Any]:
    """Plain, JSON-serialisable summary of a pass."""
    return {
        "created": tally.created,
        "already_existing": tally.already_existing,
        "ineligible": tally.ineligible,
        "failed": tally.failed,
        "failed_user_ids": list(tally.failed_user_ids),
        "cancelled": tally.cancelled,
        "total": tally.total,
    }


def format_summary(tally: SyncTally) -> list[str]:
    """Human-readable summary lines for CLI output."""
    lines = [
        f"Created: {tally.created}",
        f"Already existing: {tally.already_existing}",
        f"Ineligible: {tally.ineligible}",
        f"Failed: {tally.failed}",
    ]
    if tally.failed_user_ids:
        ids = ", ".join(str(uid) for uid in tally.failed_user_ids)
        lines.append(f"Failed user ids (safe to re-run): {ids}")
    if tally.cancelled:
        lines.append(f"Pass cancelled after {tally.total} user(s); re-run to finish")
    return lines


def exit_code_for(tally: SyncTally) -> int:
    """0 unless some rows failed to write."""
    return 1 if tally.failed else 0
