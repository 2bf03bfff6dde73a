# Overview: Locking and retry helpers shared by every mutating service.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..config import setting
from ..extensions import db
from ..models import Bedroom


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def lock_bedrooms(bedroom_ids) -> list[int]:
    """
    Take write locks on the given rooms for the rest of the transaction.

    Bumps occupancy_version with an UPDATE, which every backend treats as a
    write lock (row lock on PostgreSQL/MySQL, reserved database lock on
    SQLite). A concurrent transaction assigning any of the same rooms blocks
    here until this one commits or rolls back, then re-reads fresh occupancy.

    Ids are locked in ascending order so two transactions touching
    overlapping room sets cannot deadlock.

    Returns:
        The sorted list of locked ids.
    """
    ids = sorted({int(b) for b in bedroom_ids if b is not None})
    if not ids:
        return ids
    lock_for_update(db.session.query(Bedroom.id).filter(Bedroom.id.in_(ids))).all()
    db.session.query(Bedroom).filter(Bedroom.id.in_(ids)).update(
        {Bedroom.occupancy_version: Bedroom.occupancy_version + 1},
        synchronize_session=False,
    )
    return ids


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, serialization failures)
    and StaleDataError (optimistic locking conflicts). The session is rolled
    back before each retry so func always starts from a clean transaction.
    """
    if attempts is None:
        attempts = setting("RETRY_ATTEMPTS")
    if backoff_base is None:
        backoff_base = setting("RETRY_BACKOFF_BASE")

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Retrying after concurrency failure (attempt %s/%s): %s",
                attempt + 1, attempts, exc,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
