# Overview: Service-layer operations for suppliers.

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import NotFoundError, StateError, ValidationError
from ..models import Purchase, PurchasePayment, Supplier
from .auth_service import require_actor
from .concurrency import lock_for_update, unit_of_work


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"name", "phone", "company_name", "is_active"}


def get_supplier(supplier_id: int, *, lock: bool = False) -> Supplier:
    query = db.session.query(Supplier).filter_by(id=supplier_id)
    if lock:
        query = lock_for_update(query)
    supplier = query.first()
    if supplier is None:
        raise NotFoundError("Supplier", supplier_id)
    return supplier


def create_supplier(
    *,
    actor_id: int,
    name: str,
    phone: str | None = None,
    company_name: str | None = None,
) -> Supplier:
    require_actor(actor_id)
    if not name or not name.strip():
        raise ValidationError("Supplier name is required")

    with unit_of_work():
        supplier = Supplier(name=name.strip(), phone=phone, company_name=company_name)
        db.session.add(supplier)
    return supplier


def update_supplier(supplier_id: int, *, actor_id: int, **fields) -> Supplier:
    """Edit supplier master data. The credit balance belongs to the purchase lifecycle."""
    require_actor(actor_id)

    if "credit_balance_cents" in fields:
        raise ValidationError("Supplier credit changes only through purchases and payments")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
    if "name" in fields:
        if not fields["name"] or not fields["name"].strip():
            raise ValidationError("Supplier name is required")
        fields["name"] = fields["name"].strip()
    if "is_active" in fields and not isinstance(fields["is_active"], bool):
        raise ValidationError("is_active must be true or false")

    with unit_of_work():
        supplier = get_supplier(supplier_id, lock=True)
        for key, value in fields.items():
            setattr(supplier, key, value)
    return supplier


def delete_supplier(supplier_id: int, *, actor_id: int) -> None:
    """
    Delete a supplier with no purchasing history.

    Suppliers with purchases, payments or a credit balance keep their row;
    deactivate them with update_supplier(is_active=False) instead.
    """
    require_actor(actor_id)

    with unit_of_work():
        supplier = get_supplier(supplier_id, lock=True)

        if supplier.credit_balance_cents != 0:
            raise StateError(
                "Supplier has an outstanding balance and cannot be deleted",
                credit_balance_cents=supplier.credit_balance_cents,
            )
        purchase_count = db.session.query(Purchase).filter_by(supplier_id=supplier.id).count()
        if purchase_count:
            raise StateError(
                f"Supplier has {purchase_count} purchase record(s); deactivate instead",
                purchase_count=purchase_count,
            )
        payment_count = db.session.query(PurchasePayment).filter_by(supplier_id=supplier.id).count()
        if payment_count:
            raise StateError(
                f"Supplier has {payment_count} payment record(s); deactivate instead",
                payment_count=payment_count,
            )

        db.session.delete(supplier)

    logger.info("Supplier %s deleted", supplier_id)


def list_suppliers(include_inactive: bool = False) -> list[Supplier]:
    q = db.session.query(Supplier)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(Supplier.name.asc()).all()
