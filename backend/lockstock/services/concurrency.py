# Overview: Row locking and contention retry for write transactions.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking (SELECT ... FOR UPDATE).

    NOTE: SQLite ignores FOR UPDATE (it serializes writers instead); PostgreSQL
    and MySQL honor it. version_id_col on the locked models covers the gap.
    """
    return query.with_for_update()


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Run func() as one unit of work, retrying on store contention.

    func must stage its writes and commit at the end. Retries happen only for
    OperationalError (locks, deadlocks) and StaleDataError (optimistic version
    conflict); the session is rolled back before each retry so func re-reads
    current rows and re-validates. Any other exception (including every
    LockstockError) rolls back and propagates unchanged.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            if has_app_context():
                current_app.logger.warning(
                    "write contention (%s), retry %d/%d", type(exc).__name__, attempt + 1, attempts - 1
                )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
