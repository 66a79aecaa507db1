# Overview: Service-layer operations for sales; checkout, void, refund and metadata edits.

"""
Sale Lifecycle Service

LIFECYCLE:
- COMPLETED: checkout finished (paid, or UNPAID when sold on credit)
- VOID: cancelled; terminal
- RETURNED: reached once every line item has been refunded

VARIANTS: a Sale row is tagged by sale_type. SALE rows own line items;
DEBT_COLLECTION rows (created by debt_service.repay_debt) never do. Any code
that walks line items goes through sale_lines(), which returns an empty tuple
for item-less variants.

CUSTOMER STATS: non-walk-in customers accumulate total_spent_cents and
visit_count at checkout. Void takes back the visit and whatever was not
already refunded; a refund takes back only its own amount and keeps the
visit.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError, StateError, ValidationError
from ..models import Sale, SaleItem, SalesReturn, SalesReturnItem
from ..models.inventory import MOVEMENT_RETURN_IN, MOVEMENT_SALE
from ..models.sales import (
    PAYMENT_METHOD_CREDIT,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_UNPAID,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_RETURNED,
    SALE_STATUS_VOID,
    SALE_TYPE_SALE,
    format_invoice_number,
)
from posledger.time_utils import utcnow, parse_iso_datetime
from posledger.validation import coerce_int, coerce_optional_int
from .auth_service import require_actor
from .concurrency import lock_for_update, unit_of_work
from .customer_service import get_customer, get_walk_in_customer, tracks_stats
from .sequence_service import next_invoice_number
from .stock_service import apply_stock_delta, get_product


logger = logging.getLogger(__name__)

METADATA_FIELDS = {"customer_id", "payment_method", "notes"}


def sale_lines(sale: Sale):
    """Line items of a sale; empty for item-less variants (debt collections)."""
    if not sale.has_items:
        return ()
    return sale.items


def get_sale(sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError("Sale", sale_id)
    return sale


def _refunded_total(sale: Sale) -> int:
    return sum(ret.total_cents for ret in sale.returns)


# =============================================================================
# CHECKOUT
# =============================================================================

def create_sale(
    *,
    actor_id: int,
    items,
    customer_id: int | None = None,
    payment_method: str | None = None,
    cash_received_cents: int | None = None,
    notes: str | None = None,
) -> Sale:
    """
    Check out a cart.

    Each item is {"product_id", "quantity", optional "unit_price_cents"}; the
    product's selling price is used when no price is given. Stock is checked
    per product across the whole cart before anything is written.

    Raises:
        ValidationError: empty cart, bad quantity, insufficient stock,
            credit sale for the walk-in customer or above the credit limit
    """
    require_actor(actor_id)

    if not items:
        raise ValidationError("Cart is empty")
    customer_id = coerce_optional_int(customer_id, "customer_id", minimum=1)
    cash_received_cents = coerce_optional_int(cash_received_cents, "cash_received_cents", minimum=0)

    payment_method = payment_method or current_app.config.get("DEFAULT_PAYMENT_METHOD", "CASH")
    on_credit = payment_method == PAYMENT_METHOD_CREDIT

    with unit_of_work():
        customer = get_customer(customer_id, lock=True) if customer_id else get_walk_in_customer()

        if on_credit and not tracks_stats(customer):
            raise ValidationError("Credit sales require a registered customer")

        requested: dict[int, int] = {}
        lines = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValidationError("Each item must be an object", line=index)
            quantity = coerce_int(item.get("quantity"), "quantity", minimum=1, line=index)
            product_id = coerce_int(item.get("product_id"), "product_id", minimum=1, line=index)
            unit_price = coerce_optional_int(item.get("unit_price_cents"), "unit_price_cents", minimum=0, line=index)

            product = get_product(product_id, lock=True)
            if not product.is_active:
                raise ValidationError(f"Product '{product.name}' is no longer sold", line=index, product_id=product.id)
            if unit_price is None:
                unit_price = product.selling_price_cents

            requested[product.id] = requested.get(product.id, 0) + quantity
            lines.append((product, quantity, unit_price))

        insufficient = [
            {"product_id": product.id, "name": product.name, "requested": requested[product.id], "stock": product.stock}
            for product, _, _ in lines
            if product.stock < requested[product.id]
        ]
        if insufficient:
            raise ValidationError("Insufficient stock", items=insufficient)

        subtotal = sum(quantity * unit_price for _, quantity, unit_price in lines)
        total = subtotal

        if on_credit and customer.credit_limit_cents:
            if customer.credit_balance_cents + total > customer.credit_limit_cents:
                raise ValidationError(
                    "Sale would exceed the customer's credit limit",
                    credit_balance_cents=customer.credit_balance_cents,
                    credit_limit_cents=customer.credit_limit_cents,
                    total_cents=total,
                )

        change = None
        if cash_received_cents is not None:
            if cash_received_cents < total:
                raise ValidationError("Cash received is less than the sale total", total_cents=total)
            change = cash_received_cents - total

        invoice_no = next_invoice_number()
        sale = Sale(
            invoice_no=invoice_no,
            sale_number=format_invoice_number(invoice_no),
            user_id=actor_id,
            customer_id=customer.id if customer else None,
            sale_type=SALE_TYPE_SALE,
            status=SALE_STATUS_COMPLETED,
            payment_status=PAYMENT_STATUS_UNPAID if on_credit else PAYMENT_STATUS_PAID,
            payment_method=payment_method,
            subtotal_cents=subtotal,
            discount_cents=0,
            tax_cents=0,
            total_cents=total,
            cash_received_cents=cash_received_cents,
            change_cents=change,
            notes=notes or None,
        )
        db.session.add(sale)
        db.session.flush()

        for product, quantity, unit_price in lines:
            sale.items.append(SaleItem(
                product_id=product.id,
                quantity=quantity,
                unit_price_cents=unit_price,
                total_cents=quantity * unit_price,
            ))
            apply_stock_delta(
                product=product,
                quantity_delta=-quantity,
                movement_type=MOVEMENT_SALE,
                user_id=actor_id,
                reference_type="Sale",
                reference_id=sale.id,
                note=f"Sale {sale.sale_number}",
            )

        if tracks_stats(customer):
            customer.total_spent_cents += total
            customer.visit_count += 1
            if on_credit:
                customer.credit_balance_cents += total

    logger.info(
        "Sale %s completed: total=%s method=%s customer=%s",
        sale.sale_number, sale.total_cents, sale.payment_method, sale.customer_id,
    )
    return sale


# =============================================================================
# VOID
# =============================================================================

def void_sale(sale_id: int, *, actor_id: int) -> Sale:
    """
    Void a sale: restock every line not already refunded and take back the
    customer's visit and the unrefunded spend.

    The customer's credit balance is left as is.
    """
    require_actor(actor_id)

    with unit_of_work():
        sale = get_sale(sale_id, lock=True)
        if sale.status == SALE_STATUS_VOID:
            raise StateError("Sale is already voided", status=sale.status)
        if not sale.has_items:
            raise StateError("Debt collection records cannot be voided", sale_type=sale.sale_type)

        sale.status = SALE_STATUS_VOID
        sale.voided_at = utcnow()
        sale.voided_by_user_id = actor_id

        for item in sale_lines(sale):
            if item.is_refunded:
                continue
            product = get_product(item.product_id, lock=True)
            apply_stock_delta(
                product=product,
                quantity_delta=item.quantity,
                movement_type=MOVEMENT_RETURN_IN,
                user_id=actor_id,
                reference_type="Sale",
                reference_id=sale.id,
                note=f"Voided sale {sale.sale_number}",
            )

        customer = get_customer(sale.customer_id, lock=True) if sale.customer_id else None
        if tracks_stats(customer):
            customer.total_spent_cents -= sale.total_cents - _refunded_total(sale)
            customer.visit_count = max(customer.visit_count - 1, 0)

    logger.info("Sale %s voided", sale.sale_number)
    return sale


# =============================================================================
# REFUND
# =============================================================================

def refund_sale(
    sale_id: int,
    *,
    actor_id: int,
    item_ids,
    reason: str,
    refund_method: str | None = None,
    notes: str | None = None,
) -> SalesReturn:
    """
    Refund a subset of a sale's line items and restock them.

    Raises:
        StateError: sale is VOID, or an item was already refunded
        ValidationError: empty selection, missing reason, or an item that
            does not belong to the sale
    """
    require_actor(actor_id)

    selected = list(dict.fromkeys(coerce_int(item_id, "item_id", minimum=1) for item_id in item_ids or []))
    if not selected:
        raise ValidationError("Select at least one item to refund")
    if not reason or not reason.strip():
        raise ValidationError("A refund reason is required")

    with unit_of_work():
        sale = get_sale(sale_id, lock=True)
        if sale.status == SALE_STATUS_VOID:
            raise StateError("Cannot refund a voided sale", status=sale.status)

        by_id = {item.id: item for item in sale_lines(sale)}
        unknown = [item_id for item_id in selected if item_id not in by_id]
        if unknown:
            raise ValidationError("Items do not belong to this sale", item_ids=unknown)

        already = [item_id for item_id in selected if by_id[item_id].is_refunded]
        if already:
            raise StateError("Items have already been refunded", item_ids=already)

        chosen = [by_id[item_id] for item_id in selected]
        refund_total = sum(item.total_cents for item in chosen)

        sequence = len(sale.returns) + 1
        sales_return = SalesReturn(
            return_number=f"RET-{sale.invoice_no:06d}-{sequence}",
            sale=sale,
            customer_id=sale.customer_id,
            user_id=actor_id,
            total_cents=refund_total,
            refund_method=refund_method or sale.payment_method,
            reason=reason.strip(),
            notes=notes or None,
        )
        db.session.add(sales_return)
        db.session.flush()

        for item in chosen:
            sales_return.items.append(SalesReturnItem(
                sale_item=item,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                total_cents=item.total_cents,
                reason=reason.strip(),
            ))
            product = get_product(item.product_id, lock=True)
            apply_stock_delta(
                product=product,
                quantity_delta=item.quantity,
                movement_type=MOVEMENT_RETURN_IN,
                user_id=actor_id,
                reference_type="SalesReturn",
                reference_id=sales_return.id,
                note=f"Refund from invoice #{sale.sale_number}: {reason.strip()}",
            )
        db.session.flush()

        customer = get_customer(sale.customer_id, lock=True) if sale.customer_id else None
        if tracks_stats(customer):
            customer.total_spent_cents -= refund_total

        if all(item.is_refunded for item in sale_lines(sale)):
            sale.status = SALE_STATUS_RETURNED

    logger.info(
        "Sale %s refunded: return=%s items=%s amount=%s",
        sale.sale_number, sales_return.return_number, len(chosen), refund_total,
    )
    return sales_return


# =============================================================================
# METADATA EDIT
# =============================================================================

def update_sale_metadata(sale_id: int, *, actor_id: int, **fields) -> Sale:
    """Change customer, payment method or notes. Never touches stock or balances."""
    require_actor(actor_id)

    unknown = set(fields) - METADATA_FIELDS
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

    with unit_of_work():
        sale = get_sale(sale_id, lock=True)
        if sale.status == SALE_STATUS_VOID:
            raise StateError("Cannot edit a voided sale", status=sale.status)

        if "customer_id" in fields:
            customer_id = fields["customer_id"]
            if customer_id:
                sale.customer_id = get_customer(customer_id).id
            else:
                walk_in = get_walk_in_customer()
                sale.customer_id = walk_in.id if walk_in else None
        if "payment_method" in fields and fields["payment_method"]:
            sale.payment_method = fields["payment_method"]
        if "notes" in fields:
            sale.notes = fields["notes"] or None

    return sale


# =============================================================================
# REPORTING PROJECTION
# =============================================================================

def sales_summary(start: datetime | str | None = None, end: datetime | str | None = None) -> dict:
    """
    Revenue over non-void sales in [start, end) and units sold per product.

    Debt collections count toward revenue but contribute no units.
    """
    start = parse_iso_datetime(start)
    end = parse_iso_datetime(end)

    q = db.session.query(Sale).filter(Sale.status != SALE_STATUS_VOID)
    if start:
        q = q.filter(Sale.created_at >= start)
    if end:
        q = q.filter(Sale.created_at < end)

    revenue = 0
    refunds = 0
    by_type: dict[str, int] = {}
    units: dict[int, int] = {}
    sales = q.order_by(Sale.created_at, Sale.id).all()
    for sale in sales:
        revenue += sale.total_cents
        refunds += _refunded_total(sale)
        by_type[sale.sale_type] = by_type.get(sale.sale_type, 0) + sale.total_cents
        for item in sale_lines(sale):
            if item.is_refunded:
                continue
            units[item.product_id] = units.get(item.product_id, 0) + item.quantity

    return {
        "sale_count": len(sales),
        "revenue_cents": revenue,
        "refunded_cents": refunds,
        "net_revenue_cents": revenue - refunds,
        "revenue_by_type_cents": by_type,
        "units_sold": [
            {"product_id": product_id, "quantity": quantity}
            for product_id, quantity in sorted(units.items())
        ],
    }

