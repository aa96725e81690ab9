# Overview: Transaction helpers shared by every mutating service operation.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for read-modify-write of stock and balances.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; version_id_col still catches
    lost updates there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute one unit of work, retrying on concurrency failures.

    func must do all its reads, checks and writes and commit at the end.
    Any exception rolls the session back before it propagates, so a failed
    operation never leaves partial state in the session.

    - OperationalError (locks, deadlocks) and StaleDataError (optimistic
      version conflict) are retried with exponential backoff.
    - Once retries are exhausted, or on any other SQLAlchemyError, a
      StorageError is raised.
    - Domain errors (BodegaError) propagate unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error("Giving up after %d attempts: %s", attempts, exc)
                raise StorageError(
                    "Storage is busy, please retry",
                    [{"attempts": attempts, "cause": type(exc).__name__}],
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Storage failure")
            raise StorageError("Storage failure", [{"cause": type(exc).__name__}]) from exc
        except Exception:
            db.session.rollback()
            raise
