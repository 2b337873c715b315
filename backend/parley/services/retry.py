"""
Store commit helpers and the caller-side retry for transient store failures.

Services call commit() instead of db.commit() so that driver I/O errors and
optimistic-version clashes surface uniformly as TransientStoreError.  Routes
wrap a whole read-authorize-mutate sequence in run_with_store_retry(); the
session is rolled back between attempts so each retry re-reads fresh state
and the authorization decision is re-evaluated against it.
"""

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from parley.config import settings
from parley.core.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def commit(db: Session) -> None:
    try:
        db.commit()
    except (StaleDataError, OperationalError) as exc:
        db.rollback()
        raise TransientStoreError("The store is busy, please retry") from exc


def run_with_store_retry(db: Session, operation: Callable[..., T], *args, **kwargs) -> T:
    """
    Run operation(*args, **kwargs), retrying on TransientStoreError.

    Only TransientStoreError is retried; authorization and validation errors
    propagate on the first attempt.  After the last attempt the original
    TransientStoreError is re-raised.
    """
    retrying = Retrying(
        stop=stop_after_attempt(settings.STORE_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, max=0.5),
        retry=retry_if_exception_type(TransientStoreError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            try:
                return operation(*args, **kwargs)
            except TransientStoreError:
                db.rollback()
                db.expire_all()
                raise
    raise AssertionError("unreachable")  # Retrying(reraise=True) always returns or raises
