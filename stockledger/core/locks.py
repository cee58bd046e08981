"""
Per-summary exclusive locks

Uploads for one summary are serialized; uploads for different dates run in parallel.
The in-process lock covers worker threads of one server, the row lock covers
several server processes sharing a PostgreSQL database.
"""
import threading
import logging
from contextlib import contextmanager
from typing import Dict

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .exceptions import ConcurrentUpdateError, SummaryNotFoundError

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_summary_locks: Dict[int, threading.Lock] = {}


def _lock_for(summary_id: int) -> threading.Lock:
    with _registry_guard:
        lock = _summary_locks.get(summary_id)
        if lock is None:
            lock = threading.Lock()
            _summary_locks[summary_id] = lock
        return lock


@contextmanager
def summary_lock(db: Session, summary_id: int):
    """
    Hold the summary exclusively for normalize+apply+persist.

    Fails fast with ConcurrentUpdateError instead of waiting.
    """
    from stockledger.models.summary import DailySummary

    lock = _lock_for(summary_id)
    if not lock.acquire(blocking=False):
        raise ConcurrentUpdateError(
            f"Summary {summary_id} is being updated by another request; retry shortly"
        )
    try:
        query = db.query(DailySummary).filter(DailySummary.id == summary_id)
        if db.get_bind().dialect.name == "postgresql":
            try:
                summary = query.with_for_update(nowait=True).first()
            except OperationalError as e:
                db.rollback()
                logger.warning(f"Row lock on summary {summary_id} refused: {e}")
                raise ConcurrentUpdateError(
                    f"Summary {summary_id} is locked by another process; retry shortly"
                ) from e
        else:
            summary = query.first()
        if summary is None:
            raise SummaryNotFoundError(summary_id)
        yield summary
    finally:
        lock.release()
