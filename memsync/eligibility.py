"""Eligibility classification: which users must own a membership application."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

import yaml

from memsync.config import get_eligibility_file
from memsync.store import SetupError

if TYPE_CHECKING:
    from memsync.store import UserRecord

DEFAULT_RULES_PATH = Path(__file__).parent / "eligibility.yaml"


class Eligibility(Enum):
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"


@dataclass(frozen=True)
class EligibilityRules:
    eligible_roles: frozenset[str]
    blocked_statuses: frozenset[str] = frozenset()
    require_association: bool = False


def _normalize_names(values: Any) -> frozenset[str]:  # noqa: ANN401
    if not isinstance(values, list):
        return frozenset()
    return frozenset(v.strip().lower() for v in values if isinstance(v, str))


def load_rules(path: str | Path | None = None) -> EligibilityRules:
    """Load eligibility rules from YAML.

    Args:
        path: Rules file; defaults to MEMSYNC_ELIGIBILITY_FILE, then the
            packaged eligibility.yaml

    Raises:
        SetupError: If the file cannot be read, is not valid YAML or does
            not contain a mapping
    """
    rules_path = str(path or get_eligibility_file() or DEFAULT_RULES_PATH)
    try:
        return _load_rules_file(rules_path)
    except (OSError, yaml.YAMLError, ValueError) as e:
        msg = f"Cannot load eligibility rules from {rules_path}: {e}"
        raise SetupError(msg) from e


@lru_cache(maxsize=8)
def _load_rules_file(path: str) -> EligibilityRules:
    rules_path = Path(path)
    data = yaml.safe_load(rules_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        msg = f"Eligibility rules must be a mapping: {rules_path}"
        raise ValueError(msg)

    raw = cast(dict[str, Any], data)
    return EligibilityRules(
        eligible_roles=_normalize_names(raw.get("eligible_roles")),
        blocked_statuses=_normalize_names(raw.get("blocked_statuses")),
        require_association=bool(raw.get("require_association", False)),
    )


def _parse_association_list(raw: Any) -> list[int]:  # noqa: ANN401
    """Positive integer ids from the JSON text in users.association."""
    if not isinstance(raw, str) or not raw.strip():
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    # bool is an int subclass; true/false in the JSON are not ids
    return [
        v for v in parsed if isinstance(v, int) and not isinstance(v, bool) and v > 0
    ]


def resolve_association_id(user: UserRecord) -> int | None:
    """Association recorded on a new application for this user.

    association_id wins; otherwise the first valid id of the JSON list.
    """
    assoc_id = user.association_id
    if isinstance(assoc_id, int) and not isinstance(assoc_id, bool) and assoc_id > 0:
        return assoc_id
    ids = _parse_association_list(user.association)
    return ids[0] if ids else None


def classify(user: UserRecord, rules: EligibilityRules) -> Eligibility:
    """Classify a user as eligible or ineligible for a membership application.

    Pure and deterministic. Missing or malformed fields never raise; they
    classify the user as ineligible.
    """
    role = user.role
    if not isinstance(role, str) or not role.strip():
        return Eligibility.INELIGIBLE
    if role.strip().lower() not in rules.eligible_roles:
        return Eligibility.INELIGIBLE

    status = user.status
    if status is not None:
        if not isinstance(status, str):
            return Eligibility.INELIGIBLE
        if status.strip().lower() in rules.blocked_statuses:
            return Eligibility.INELIGIBLE

    if rules.require_association and resolve_association_id(user) is None:
        return Eligibility.INELIGIBLE

    return Eligibility.ELIGIBLE
