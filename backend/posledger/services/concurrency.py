# Overview: Transaction boundaries and row locking for ledger mutations.

from __future__ import annotations

from contextlib import contextmanager

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def unit_of_work():
    """
    Run a multi-step ledger mutation as one database transaction.

    Commits when the block exits normally. Any exception rolls back every
    step taken inside the block and is re-raised unchanged; there is no
    retry. Services flush inside the block when they need generated ids.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
