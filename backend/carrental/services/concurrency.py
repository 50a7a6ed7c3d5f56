# Overview: Service-layer operations for concurrency; row locks, keyed locks and bounded retries.

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Hashable, Iterator

from flask import current_app
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransientError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The keyed locks below cover SQLite within a single process.
    """
    return query.with_for_update()


class KeyedLocks:
    """
    One mutex per entity key, e.g. ("car", 7).

    Requests touching different cars never contend. Entries are reference
    counted and dropped once no request holds or waits on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, list] = {}

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: Hashable, timeout: float) -> Iterator[None]:
        # Sorted acquisition order: two requests sharing keys can never deadlock
        ordered = sorted(set(keys))
        acquired = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                if not lock.acquire(timeout=timeout):
                    self._checkin(key)
                    raise TransientError(
                        f"Timed out after {timeout}s waiting for {key[0]} {key[1]}",
                        rule="lock_timeout",
                    )
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


entity_locks = KeyedLocks()


@contextmanager
def serialized(*keys: Hashable) -> Iterator[None]:
    """Hold the keyed locks for `keys`, bounded by RENT_LOCK_TIMEOUT_SECONDS."""
    timeout = current_app.config.get("RENT_LOCK_TIMEOUT_SECONDS", 10.0)
    with entity_locks.hold(*keys, timeout=timeout):
        yield


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, busy timeouts), pool
    checkout timeouts and StaleDataError (optimistic locking conflicts).
    Once attempts are exhausted the failure surfaces as TransientError.
    Any other exception rolls the session back and propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("STORAGE_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("STORAGE_RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, PoolTimeoutError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise TransientError(
                    "Storage is busy, please retry",
                    rule="storage_retry_exhausted",
                    attempts=attempts,
                ) from exc
            logger.warning("Retrying storage operation (attempt %s/%s): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise TransientError("Storage operation was not attempted", rule="storage_retry_exhausted", attempts=attempts)
