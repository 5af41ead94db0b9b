# Overview: Row locks, per-product advisory locks and retry helpers shared by the stock services.

from __future__ import annotations

import threading
import time
from contextlib import ExitStack, contextmanager
from typing import Iterable, Iterator

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from stockroom.errors import Timeout


# Products share a fixed pool of locks, product_id % LOCK_STRIPES picks one.
LOCK_STRIPES = 1024
_stripes = tuple(threading.RLock() for _ in range(LOCK_STRIPES))


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _stripe_of(product_id: int) -> int:
    return product_id % LOCK_STRIPES


@contextmanager
def product_locks(product_ids: Iterable[int], *, timeout: float | None = None) -> Iterator[list[int]]:
    """
    Hold the advisory lock of every given product for the duration of the block.

    Products hash onto a fixed set of stripes, so memory stays bounded no
    matter how many products pass through. Stripes are taken once each, in
    ascending stripe order, so two workflows can never deadlock. They are
    re-entrant: a workflow holding a product's lock may call apply_movement,
    which takes it again.

    Yields the product ids in ascending order. Raises Timeout when a lock
    cannot be acquired within `timeout` seconds (default STOCK_LOCK_TIMEOUT).
    """
    if timeout is None:
        timeout = current_app.config.get("STOCK_LOCK_TIMEOUT", 5)
    ordered = sorted({int(pid) for pid in product_ids})

    stripes: dict[int, int] = {}
    for pid in ordered:
        stripes.setdefault(_stripe_of(pid), pid)

    with ExitStack() as stack:
        for stripe in sorted(stripes):
            lock = _stripes[stripe]
            if not lock.acquire(timeout=timeout):
                pid = stripes[stripe]
                raise Timeout(
                    f"Timed out waiting for stock lock on product {pid}",
                    details={"productId": pid},
                )
            stack.callback(lock.release)
        yield ordered


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Only for self-contained units of work:
    the session is rolled back between attempts.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
