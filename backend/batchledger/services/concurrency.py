# Overview: Locking and retry primitives shared by every batch-quantity write path.

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import AllocationTimeout

logger = logging.getLogger(__name__)

EXTENSION_KEY = "batchledger.line_locks"


class LineLockRegistry:
    """
    One re-entrant lock per inventory line (store_id, product_id).

    Serializes read-plan-write sequences for a line inside this process.
    Row locks (SELECT ... FOR UPDATE) and the batch version_id column cover
    writers in other processes. Different lines never share a lock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[int, int], threading.RLock] = {}

    def get(self, store_id: int, product_id: int) -> threading.RLock:
        key = (int(store_id), int(product_id))
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock


def init_line_locks(app) -> LineLockRegistry:
    registry = LineLockRegistry()
    app.extensions[EXTENSION_KEY] = registry
    return registry


def _registry() -> LineLockRegistry:
    registry = current_app.extensions.get(EXTENSION_KEY)
    if registry is None:
        registry = init_line_locks(current_app)
    return registry


@contextmanager
def line_lock(store_id: int, product_id: int, *, timeout: float | None = None):
    """
    Hold the exclusive lock for one inventory line.

    Raises AllocationTimeout when the lock is not acquired within
    BATCH_LOCK_TIMEOUT_SECONDS. Re-entrant for the owning thread.
    """
    if timeout is None:
        timeout = float(current_app.config.get("BATCH_LOCK_TIMEOUT_SECONDS", 5.0))

    lock = _registry().get(store_id, product_id)
    if not lock.acquire(timeout=timeout):
        logger.warning(
            "Timed out after %.2fs waiting for inventory line store=%s product=%s",
            timeout, store_id, product_id,
        )
        raise AllocationTimeout(
            f"Could not lock inventory line store={store_id} product={product_id} within {timeout}s"
        )
    try:
        yield
    finally:
        lock.release()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    populate_existing() makes the identity map pick up the locked row state.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged. Exhausted retries surface as
    AllocationTimeout; nothing was committed in that case.
    """
    if attempts is None:
        attempts = int(current_app.config.get("BATCH_RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(current_app.config.get("BATCH_RETRY_BACKOFF_SECONDS", 0.1))

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("Giving up after %d attempts: %s", attempts, exc)
                raise AllocationTimeout(
                    f"Transaction could not be committed after {attempts} attempts"
                ) from exc
            logger.info("Retrying after concurrency conflict (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise AllocationTimeout("Transaction was not attempted (attempts < 1)")
