# Overview: Service-layer operations for customer debt; FIFO repayment allocation.

"""
Debt Settlement

A repayment is allocated to the customer's UNPAID sales oldest first. Each
sale the remaining amount fully covers becomes PAID; the first sale it does
not cover becomes PARTIAL and allocation stops there. PARTIAL sales are not
picked up again by later repayments. Voided sales are skipped: their
status stays UNPAID but they no longer back any debt.

Debt with no invoice behind it (an opening balance) is paid down by the
amount left after the walk; it just settles no sale.

The money itself is recorded as a DEBT_COLLECTION sale (no line items,
invoice number from the shared sequence) plus one CustomerPayment linked to
it, and the customer's credit balance drops by the full amount.
"""

from __future__ import annotations

import logging

from flask import current_app

from ..extensions import db
from ..errors import StateError, ValidationError
from ..models import CustomerPayment, Sale
from ..models.sales import (
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_UNPAID,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_VOID,
    SALE_TYPE_DEBT_COLLECTION,
    format_invoice_number,
)
from posledger.time_utils import utcnow
from posledger.validation import coerce_int
from .auth_service import require_actor
from .concurrency import lock_for_update, unit_of_work
from .customer_service import get_customer
from .sequence_service import next_invoice_number


logger = logging.getLogger(__name__)


def allocate_fifo(sales: list[Sale], amount_cents: int) -> list[Sale]:
    """
    Walk sales oldest first and set their payment status.

    Returns the sales that were touched (fully or partially settled).
    """
    remaining = amount_cents
    touched = []
    for sale in sales:
        if remaining <= 0:
            break
        touched.append(sale)
        if remaining >= sale.total_cents:
            sale.payment_status = PAYMENT_STATUS_PAID
            remaining -= sale.total_cents
        else:
            sale.payment_status = PAYMENT_STATUS_PARTIAL
            remaining = 0
            break
    return touched


def repay_debt(
    customer_id: int,
    *,
    actor_id: int,
    amount_cents: int,
    payment_method: str | None = None,
) -> CustomerPayment:
    """
    Record a debt repayment and settle invoices FIFO.

    Raises:
        ValidationError: amount not positive, or larger than the current debt
        StateError: customer is the walk-in sentinel
        NotFoundError: unknown customer
    """
    require_actor(actor_id)

    amount_cents = coerce_int(amount_cents, "amount_cents", minimum=1)

    payment_method = payment_method or current_app.config.get("DEFAULT_PAYMENT_METHOD", "CASH")

    with unit_of_work():
        customer = get_customer(customer_id, lock=True)
        if customer.is_walk_in:
            raise StateError("The walk-in customer carries no debt")

        if amount_cents > customer.credit_balance_cents:
            raise ValidationError(
                "Repayment amount cannot exceed current debt",
                amount_cents=amount_cents,
                credit_balance_cents=customer.credit_balance_cents,
            )

        unpaid = lock_for_update(
            db.session.query(Sale)
            .filter_by(customer_id=customer.id, payment_status=PAYMENT_STATUS_UNPAID)
            .filter(Sale.status != SALE_STATUS_VOID)
            .order_by(Sale.created_at.asc(), Sale.id.asc())
        ).all()
        settled = allocate_fifo(unpaid, amount_cents)

        customer.credit_balance_cents -= amount_cents

        now = utcnow()
        invoice_no = next_invoice_number()
        collection = Sale(
            invoice_no=invoice_no,
            sale_number=format_invoice_number(invoice_no),
            user_id=actor_id,
            customer_id=customer.id,
            sale_type=SALE_TYPE_DEBT_COLLECTION,
            status=SALE_STATUS_COMPLETED,
            payment_status=PAYMENT_STATUS_PAID,
            payment_method=payment_method,
            subtotal_cents=amount_cents,
            discount_cents=0,
            tax_cents=0,
            total_cents=amount_cents,
            cash_received_cents=amount_cents,
            change_cents=0,
            notes=f"Debt repayment - Settled {len(settled)} invoice(s)",
        )
        db.session.add(collection)
        db.session.flush()

        payment = CustomerPayment(
            customer_id=customer.id,
            user_id=actor_id,
            sale_id=collection.id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            payment_date=now,
            notes=f"Debt repayment (Settled {len(settled)} invoice(s))",
        )
        db.session.add(payment)

    logger.info(
        "Debt repaid for customer %s: amount=%s settled=%s invoice=%s",
        customer_id, amount_cents, len(settled), collection.sale_number,
    )
    return payment


def list_unpaid_sales(customer_id: int) -> list[Sale]:
    get_customer(customer_id)
    return (
        db.session.query(Sale)
        .filter(Sale.customer_id == customer_id)
        .filter(Sale.status != SALE_STATUS_VOID)
        .filter(Sale.payment_status.in_([PAYMENT_STATUS_UNPAID, PAYMENT_STATUS_PARTIAL]))
        .order_by(Sale.created_at.asc(), Sale.id.asc())
        .all()
    )
