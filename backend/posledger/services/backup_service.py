# Overview: Service-layer operations for JSON backup export and full restore.

"""
Backup / Restore

FORMAT:
    {"version": 1, "exported_at": "...Z", "data": {"<table>": [row, ...]}}

Rows are plain column dicts; datetimes are ISO strings. Users and login
sessions are not part of a backup: restore keeps the current accounts and
points rows whose user no longer exists at the restoring actor.

RESTORE runs in one unit of work:
1. delete every ledger table, children before parents
2. insert every table, parents before children, keeping row ids
3. give restored sales fresh invoice numbers 1..N in creation order and
   move the invoice sequence past the last one

Deletes and inserts are bulk statements, so the append-only listeners on
movements, price history and payments do not fire for a restore.
"""

from __future__ import annotations

import logging

from sqlalchemy import Date, DateTime, insert

from ..extensions import db
from ..errors import ValidationError
from ..models import (
    Customer,
    CustomerPayment,
    PriceHistory,
    Product,
    Purchase,
    PurchaseItem,
    PurchasePayment,
    Sale,
    SaleItem,
    SalesReturn,
    SalesReturnItem,
    StockAdjustment,
    StockMovement,
    Supplier,
    User,
)
from ..models.sales import format_invoice_number
from posledger.time_utils import utcnow, to_utc_z, to_iso_date, parse_iso_datetime, parse_iso_date
from .auth_service import require_actor
from .concurrency import unit_of_work
from .customer_service import ensure_walk_in_customer
from .permission_service import require_permission
from .sequence_service import reset_invoice_sequence


logger = logging.getLogger(__name__)

BACKUP_VERSION = 1

# Parents before children; deletes walk this list backwards
BACKUP_MODELS = (
    Supplier,
    Customer,
    Product,
    PriceHistory,
    Purchase,
    PurchaseItem,
    PurchasePayment,
    Sale,
    SaleItem,
    SalesReturn,
    SalesReturnItem,
    CustomerPayment,
    StockAdjustment,
    StockMovement,
)

USER_COLUMNS = ("user_id", "voided_by_user_id")


def _serialize_value(column, value):
    if value is None:
        return None
    if isinstance(column.type, DateTime):
        # full precision; created_at orders FIFO debt settlement and invoices
        return value.isoformat(timespec="microseconds") + "Z"
    if isinstance(column.type, Date):
        return to_iso_date(value)
    return value


def _deserialize_value(column, value):
    if value is None:
        return None
    if isinstance(column.type, DateTime):
        return parse_iso_datetime(value)
    if isinstance(column.type, Date):
        return parse_iso_date(value)
    return value


def _export_table(model) -> list[dict]:
    columns = list(model.__table__.columns)
    rows = db.session.execute(model.__table__.select().order_by(model.__table__.c.id)).mappings()
    return [
        {column.name: _serialize_value(column, row[column.name]) for column in columns}
        for row in rows
    ]


def export_backup() -> dict:
    """Snapshot every ledger table. Read-only."""
    return {
        "version": BACKUP_VERSION,
        "exported_at": to_utc_z(utcnow()),
        "data": {model.__tablename__: _export_table(model) for model in BACKUP_MODELS},
    }


def _restore_rows(model, rows, *, known_user_ids: set, actor_id: int) -> list[dict]:
    columns = {column.name: column for column in model.__table__.columns}
    restored = []
    for row in rows:
        if not isinstance(row, dict):
            raise ValidationError(f"Invalid row in {model.__tablename__}")
        values = {
            name: _deserialize_value(columns[name], value)
            for name, value in row.items()
            if name in columns
        }
        for name in USER_COLUMNS:
            if name in columns and values.get(name) is not None and values[name] not in known_user_ids:
                values[name] = actor_id
        restored.append(values)
    return restored


def _renumber_sales(rows: list[dict]) -> int:
    """Assign invoice numbers 1..N by creation order; returns the next free number."""
    ordered = sorted(rows, key=lambda r: (r.get("created_at") or utcnow(), r.get("id") or 0))
    next_number = 1
    for row in ordered:
        row["invoice_no"] = next_number
        row["sale_number"] = format_invoice_number(next_number)
        next_number += 1
    return next_number


def restore_backup(backup: dict, *, actor_id: int) -> dict:
    """
    Replace every ledger table with the backup's contents.

    Raises:
        AuthenticationError: no actor
        AuthorizationError: actor lacks backup.restore
        ValidationError: malformed backup
    """
    actor = require_actor(actor_id)
    require_permission(actor, "backup", "restore")

    if not isinstance(backup, dict) or not isinstance(backup.get("data"), dict):
        raise ValidationError("Invalid backup file format")
    version = backup.get("version", BACKUP_VERSION)
    if version != BACKUP_VERSION:
        raise ValidationError(f"Unsupported backup version {version}")

    data = backup["data"]
    known_user_ids = {row[0] for row in db.session.query(User.id).all()}

    prepared = {}
    for model in BACKUP_MODELS:
        rows = data.get(model.__tablename__) or []
        if not isinstance(rows, list):
            raise ValidationError(f"Invalid table {model.__tablename__} in backup")
        prepared[model] = _restore_rows(model, rows, known_user_ids=known_user_ids, actor_id=actor.id)

    next_invoice = _renumber_sales(prepared[Sale])

    with unit_of_work():
        for model in reversed(BACKUP_MODELS):
            db.session.execute(model.__table__.delete())

        for model in BACKUP_MODELS:
            if prepared[model]:
                db.session.execute(insert(model.__table__), prepared[model])

        reset_invoice_sequence(next_invoice)

    db.session.expire_all()
    walk_in = ensure_walk_in_customer()

    counts = {model.__tablename__: len(prepared[model]) for model in BACKUP_MODELS}
    logger.info("Backup restored by user %s: %s", actor.id, counts)
    return {
        "counts": counts,
        "next_invoice_no": next_invoice,
        "walk_in_customer_id": walk_in.id,
    }
