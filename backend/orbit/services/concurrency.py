# Overview: Service-layer operations for concurrency; encapsulates business logic and database work.

from __future__ import annotations

import time
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..time_utils import utcnow


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
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


def compare_and_swap_status(
    model,
    row_id: str,
    *,
    expected: Iterable,
    new_status,
    guard=None,
    values: dict | None = None,
) -> int:
    """
    Move a row to new_status only if its status is still one of `expected`.

    Issues a single UPDATE ... WHERE id = :id AND status IN (:expected)
    [AND guard]. The guard is the storage-level write predicate from
    policy_service, so the database refuses the write even if the caller
    skipped the Python checks.

    Returns the number of rows affected (0 or 1). Does NOT commit: the
    caller decides between commit and rollback.
    """
    expected = list(expected)
    stmt = (
        update(model)
        .where(model.id == row_id, model.status.in_(expected))
        .values(status=new_status, updated_at=utcnow(), **(values or {}))
        .execution_options(synchronize_session=False)
    )
    if guard is not None:
        stmt = stmt.where(guard)

    result = db.session.execute(stmt)
    return result.rowcount
