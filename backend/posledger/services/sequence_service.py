# Overview: Global invoice number allocation shared by every Sale variant.

from __future__ import annotations

from sqlalchemy import func, update

from ..extensions import db
from ..models import InvoiceSequence, Sale


SEQUENCE_ROW_ID = 1


def ensure_invoice_sequence() -> InvoiceSequence:
    """
    Return the sequence row, creating it past the highest stored invoice.

    Safe to call repeatedly (idempotent). Does not commit.
    """
    seq = db.session.get(InvoiceSequence, SEQUENCE_ROW_ID)
    if seq is not None:
        return seq

    highest = db.session.query(func.max(Sale.invoice_no)).scalar() or 0
    seq = InvoiceSequence(id=SEQUENCE_ROW_ID, next_number=highest + 1)
    db.session.add(seq)
    db.session.flush()
    return seq


def next_invoice_number() -> int:
    """
    Allocate the next invoice number inside the caller's unit of work.

    The UPDATE takes a row lock on databases that support it, so concurrent
    checkouts and debt collections serialize on the counter. The number is
    released back only if the whole transaction rolls back.
    """
    ensure_invoice_sequence()

    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.id == SEQUENCE_ROW_ID)
        .values(next_number=InvoiceSequence.next_number + 1)
    )
    db.session.execute(stmt)
    current = (
        db.session.query(InvoiceSequence.next_number)
        .filter_by(id=SEQUENCE_ROW_ID)
        .scalar()
    )
    return current - 1


def reset_invoice_sequence(next_number: int) -> None:
    """Point the counter at next_number (used after a backup restore). No commit."""
    seq = ensure_invoice_sequence()
    seq.next_number = next_number
    db.session.flush()
