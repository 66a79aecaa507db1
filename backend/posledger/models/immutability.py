"""
ORM-level append-only enforcement for the audit tables.

Stock movements, price history, adjustment records and payment events are
never edited once written; corrections are new rows (a compensating movement,
a new price entry). The listeners below reject ORM updates and deletes of
those rows. Bulk statements issued by the backup restore path bypass ORM
events on purpose: restore replaces the whole data set.
"""

from __future__ import annotations

from sqlalchemy import event

from .inventory import StockMovement, PriceHistory, StockAdjustment
from .purchasing import PurchasePayment
from .customers import CustomerPayment


APPEND_ONLY_MODELS = (
    StockMovement,
    PriceHistory,
    StockAdjustment,
    PurchasePayment,
    CustomerPayment,
)


class ImmutableRecordError(Exception):
    """Raised when code tries to modify an append-only ledger row."""


def _reject_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"{type(target).__name__} {target.id} is append-only and cannot be modified"
    )


def _reject_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"{type(target).__name__} {target.id} is append-only and cannot be deleted"
    )


def register_immutability_listeners() -> None:
    for model in APPEND_ONLY_MODELS:
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)
