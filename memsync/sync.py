"""Membership reconciliation: make sure every eligible user owns one application.

The pass is append-only and safe to re-run. Concurrent passes rely on the
UNIQUE constraint on membership_applications.user_id; there is no
engine-side locking.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Protocol

from memsync.config import get_database_url, get_initial_status
from memsync.eligibility import (
    Eligibility,
    classify,
    load_rules,
    resolve_association_id,
)
from memsync.report import Outcome, SyncTally
from memsync.store import (
    ConstraintViolationError,
    RowWriteError,
    SqlMembershipStore,
    UserRecord,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


class MembershipStore(Protocol):
    """Storage operations the reconciliation pass needs."""

    def list_users(self) -> list[UserRecord]: ...

    def application_user_ids(self) -> set[int]: ...

    def insert_application(
        self,
        user_id: int,
        initial_status: str,
        *,
        association_id: int | None = None,
    ) -> int: ...


def _sync_user(
    store: MembershipStore,
    user: UserRecord,
    existing: set[int],
    *,
    classifier: Callable[[UserRecord], Eligibility],
    initial_status: str,
) -> Outcome:
    if classifier(user) is not Eligibility.ELIGIBLE:
        return Outcome.INELIGIBLE

    if user.id in existing:
        return Outcome.ALREADY_EXISTING

    try:
        app_id = store.insert_application(
            user.id, initial_status, association_id=resolve_association_id(user)
        )
    except ConstraintViolationError:
        # Another process inserted between our read and this write
        logger.debug("Application for user %s appeared concurrently", user.id)
        existing.add(user.id)
        return Outcome.ALREADY_EXISTING
    except RowWriteError as e:
        logger.warning("Failed to create application for user %s: %s", user.id, e)
        return Outcome.FAILED

    existing.add(user.id)
    logger.info("Created membership application %s for user %s", app_id, user.id)
    return Outcome.CREATED


def reconcile_memberships(
    store: MembershipStore,
    *,
    classifier: Callable[[UserRecord], Eligibility] | None = None,
    initial_status: str = "pending",
    should_stop: Callable[[], bool] | None = None,
) -> SyncTally:
    """Run one reconciliation pass over all users.

    Args:
        store: Accessor for users and membership_applications
        classifier: Eligibility predicate; defaults to the YAML rules, loaded
            once before the first user is classified
        initial_status: Status given to created applications
        should_stop: Checked before each user; when it returns True the
            pass stops and the partial tally is returned

    Returns:
        Tally of created, already-existing, ineligible and failed users

    Raises:
        SetupError: If the eligibility rules, users or applications cannot
            be read
    """
    if classifier is None:
        classifier = partial(classify, rules=load_rules())

    users = store.list_users()
    existing = store.application_user_ids()
    logger.info(
        "Reconciling %d user(s) against %d existing application(s)",
        len(users),
        len(existing),
    )

    tally = SyncTally()
    for user in users:
        if should_stop is not None and should_stop():
            tally.cancelled = True
            logger.warning("Reconciliation cancelled after %d user(s)", tally.total)
            break

        outcome = _sync_user(
            store,
            user,
            existing,
            classifier=classifier,
            initial_status=initial_status,
        )
        tally.record(outcome, user.id)

    logger.info(
        "Reconciliation finished: created=%d already_existing=%d "
        "ineligible=%d failed=%d",
        tally.created,
        tally.already_existing,
        tally.ineligible,
        tally.failed,
    )
    return tally


def create_membership_applications(
    engine: Engine | None = None,
    *,
    should_stop: Callable[[], bool] | None = None,
) -> SyncTally:
    """Create missing membership applications for the configured database.

    Without an engine the store is opened from DATABASE_URL. Setup
    failures propagate as SetupError.
    """
    if engine is None:
        store = SqlMembershipStore.from_url(get_database_url())
    else:
        store = SqlMembershipStore(engine)

    return reconcile_memberships(
        store, initial_status=get_initial_status(), should_stop=should_stop
    )
