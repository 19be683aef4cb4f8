# Overview: Locking, atomic-unit and retry helpers shared by every posting path.

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager, ExitStack
from typing import Iterable

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_account_lock_registry: dict[int, threading.RLock] = {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Callers order the query by primary key so locks are always taken in the
    same order. Locked rows are re-read even when already in the session.
    """
    return query.with_for_update().populate_existing()


def _lock_for_account(account_id: int) -> threading.RLock:
    with _registry_guard:
        lock = _account_lock_registry.get(account_id)
        if lock is None:
            lock = threading.RLock()
            _account_lock_registry[account_id] = lock
        return lock


@contextmanager
def account_locks(account_ids: Iterable[int]):
    """
    Hold in-process locks for every account touched by a posting.

    Locks are acquired in ascending account id order, so two postings over
    overlapping accounts can never wait on each other in a cycle. They are
    re-entrant: a thread already holding an account may post to it again.
    Hold them until the session has committed.
    """
    ordered = sorted({int(a) for a in account_ids if a is not None})
    with ExitStack() as stack:
        for account_id in ordered:
            lock = _lock_for_account(account_id)
            lock.acquire()
            stack.callback(lock.release)
        yield ordered


@contextmanager
def atomic(session):
    """
    One all-or-nothing unit of work.

    Commits when the block finishes; rolls back on any exception (including
    KeyboardInterrupt) and re-raises it. Nothing partially written survives.
    """
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise


def run_with_retry(func, session, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). `func` must be safe to re-run from the
    start: the session is rolled back before every retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency failure (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
