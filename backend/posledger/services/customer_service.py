# Overview: Service-layer operations for customers and the walk-in sentinel.

"""
Customer service.

WALK-IN CUSTOMER: identified by Customer.is_walk_in, set once by
ensure_walk_in_customer() during system init. Ledger code checks the flag,
never the display name. The walk-in row is exempt from lifetime stats and
debt, and cannot be deleted.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, NotFoundError, StateError, ValidationError
from ..models import Customer, Sale
from posledger.validation import coerce_int
from .auth_service import require_actor
from .concurrency import lock_for_update, unit_of_work


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"name", "phone", "email", "address", "credit_limit_cents"}


def get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    return customer


def tracks_stats(customer: Customer | None) -> bool:
    """Lifetime stats and debt apply to real customers only."""
    return customer is not None and not customer.is_walk_in


def ensure_walk_in_customer() -> Customer:
    """
    Return the walk-in sentinel, creating it on first call.

    Safe to call repeatedly (idempotent).
    """
    customer = db.session.query(Customer).filter_by(is_walk_in=True).first()
    if customer:
        return customer

    customer = Customer(
        name=current_app.config.get("WALK_IN_CUSTOMER_NAME", "Walk-in Customer"),
        is_walk_in=True,
    )
    db.session.add(customer)
    db.session.commit()
    logger.info("Walk-in customer created with id %s", customer.id)
    return customer


def get_walk_in_customer() -> Customer | None:
    return db.session.query(Customer).filter_by(is_walk_in=True).first()


def _check_phone_free(phone: str | None, customer_id: int | None = None) -> None:
    if not phone:
        return
    q = db.session.query(Customer).filter(Customer.phone == phone)
    if customer_id is not None:
        q = q.filter(Customer.id != customer_id)
    existing = q.first()
    if existing is not None:
        raise ConflictError(
            f"Phone number {phone} is already registered to customer '{existing.name}'",
            field="phone",
            customer_id=existing.id,
        )


def create_customer(
    *,
    actor_id: int,
    name: str,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
    credit_limit_cents: int = 0,
    opening_balance_cents: int = 0,
) -> Customer:
    """
    Register a customer.

    An opening balance is debt carried in from before the system; it seeds
    credit_balance_cents without any invoice behind it, and repayments pay
    it down like any other debt.
    """
    require_actor(actor_id)

    if not name or not name.strip():
        raise ValidationError("Customer name is required")
    credit_limit_cents = coerce_int(credit_limit_cents, "credit_limit_cents", minimum=0)
    opening_balance_cents = coerce_int(opening_balance_cents, "opening_balance_cents", minimum=0)

    phone = phone.strip() if phone else None
    _check_phone_free(phone)

    with unit_of_work():
        customer = Customer(
            name=name.strip(),
            phone=phone,
            email=email,
            address=address,
            credit_limit_cents=credit_limit_cents,
            opening_balance_cents=opening_balance_cents,
            credit_balance_cents=opening_balance_cents,
        )
        db.session.add(customer)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"Phone number {phone} is already registered", field="phone")

    if opening_balance_cents:
        logger.info("Customer %s created with opening balance %s", customer.id, opening_balance_cents)
    return customer


def update_customer(customer_id: int, *, actor_id: int, **fields) -> Customer:
    """
    Edit contact details and the credit limit.

    Balances and lifetime stats move only through sales and repayments.
    """
    require_actor(actor_id)

    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
    if "name" in fields:
        if not fields["name"] or not fields["name"].strip():
            raise ValidationError("Customer name is required")
        fields["name"] = fields["name"].strip()
    if "phone" in fields:
        fields["phone"] = fields["phone"].strip() if fields["phone"] else None
    if "credit_limit_cents" in fields:
        fields["credit_limit_cents"] = coerce_int(fields["credit_limit_cents"], "credit_limit_cents", minimum=0)

    with unit_of_work():
        customer = get_customer(customer_id, lock=True)
        if customer.is_walk_in and set(fields) - {"name"}:
            raise StateError("Only the walk-in customer's name can be edited")
        if "phone" in fields:
            _check_phone_free(fields["phone"], customer_id=customer.id)
        for key, value in fields.items():
            setattr(customer, key, value)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError("Phone number is already registered", field="phone")

    return customer


def delete_customer(customer_id: int, *, actor_id: int) -> None:
    """
    Delete a customer with no ledger history.

    Refuses the walk-in sentinel, customers with outstanding debt, and
    customers referenced by any sale (their history stays attributable).
    """
    require_actor(actor_id)

    with unit_of_work():
        customer = get_customer(customer_id, lock=True)

        if customer.is_walk_in:
            raise StateError("The walk-in customer cannot be deleted")
        if customer.credit_balance_cents > 0:
            raise StateError(
                "Customer has outstanding debt and cannot be deleted",
                credit_balance_cents=customer.credit_balance_cents,
            )
        if db.session.query(Sale.id).filter_by(customer_id=customer.id).first() is not None:
            raise StateError("Customer has sales history and cannot be deleted")

        db.session.delete(customer)

    logger.info("Customer %s deleted", customer_id)
