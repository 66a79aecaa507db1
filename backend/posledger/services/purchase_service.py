# Overview: Service-layer operations for purchase orders; stock, cost history and supplier credit.

"""
Purchase Lifecycle Service

LIFECYCLE:
1. PENDING: ordered, not yet received
2. RECEIVED: goods received (stock and supplier credit booked)
3. CANCELLED: voided; terminal

Every operation runs in one unit of work: stock movements, cost history,
payment rows and supplier credit commit together or not at all.

STOCK: creating a purchase adds each line's quantity to stock with a
PURCHASE movement (for PENDING purchases too). Edits always revert every
existing line with a compensating ADJUSTMENT movement and then reapply the
new lines in full; there is no delta-based diffing, so stock reflects only
the latest version however many times a purchase is edited. Reversals do not
refuse a negative result.

COST: a line whose unit price differs from the product's current cost
appends a COST price-history entry, which becomes the new current cost.

SUPPLIER CREDIT: Purchase.supplier_credit_cents tracks how much of this
purchase is booked on the supplier's credit balance. A purchase is on
account once it is RECEIVED or has at least one payment; its booked amount
is then total - paid. _sync_supplier_credit() moves the supplier balance by
the difference between the target and what is already booked, so create,
edit, void and mark-paid never double count.
"""

from __future__ import annotations

import logging
import secrets

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, NotFoundError, StateError, ValidationError
from ..models import Purchase, PurchaseItem, PurchasePayment, Supplier
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_PURCHASE
from ..models.purchasing import (
    PURCHASE_STATUS_CANCELLED,
    PURCHASE_STATUS_PENDING,
    PURCHASE_STATUS_RECEIVED,
)
from posledger.time_utils import utcnow, parse_iso_datetime, parse_iso_date
from posledger.validation import coerce_int, coerce_optional_int
from .auth_service import require_actor
from .concurrency import lock_for_update, unit_of_work
from .product_service import record_cost_price
from .stock_service import apply_stock_delta, get_product
from .supplier_service import get_supplier


logger = logging.getLogger(__name__)

REFERENCE_TYPE = "Purchase"
OPEN_STATUSES = {PURCHASE_STATUS_PENDING, PURCHASE_STATUS_RECEIVED}


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _generate_po_number() -> str:
    return f"PO-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


def _normalize_items(items) -> list[dict]:
    """Validate line input and return normalized dicts."""
    if not items:
        raise ValidationError("A purchase needs at least one item")

    normalized = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", line=index)
        product_id = coerce_int(item.get("product_id"), "product_id", minimum=1, line=index)
        quantity = coerce_int(item.get("quantity"), "quantity", minimum=1, line=index)
        unit_price_cents = coerce_int(item.get("unit_price_cents"), "unit_price_cents", minimum=0, line=index)

        normalized.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
            "expiry_date": parse_iso_date(item.get("expiry_date")),
        })
    return normalized


def _subtotal(items: list[dict]) -> int:
    return sum(item["quantity"] * item["unit_price_cents"] for item in items)


def _apply_items(
    purchase: Purchase,
    items: list[dict],
    *,
    user_id: int,
    price_reason: str,
    note: str,
) -> None:
    """Create line rows and apply their stock, cost and expiry effects."""
    received = purchase.status == PURCHASE_STATUS_RECEIVED

    for item in items:
        product = get_product(item["product_id"], lock=True)
        line_total = item["quantity"] * item["unit_price_cents"]

        purchase.items.append(PurchaseItem(
            product_id=product.id,
            quantity=item["quantity"],
            unit_price_cents=item["unit_price_cents"],
            discount_cents=0,
            tax_cents=0,
            total_cents=line_total,
            received_qty=item["quantity"] if received else 0,
            expiry_date=item["expiry_date"],
        ))

        apply_stock_delta(
            product=product,
            quantity_delta=item["quantity"],
            movement_type=MOVEMENT_PURCHASE,
            user_id=user_id,
            reference_type=REFERENCE_TYPE,
            reference_id=purchase.id,
            note=note,
        )

        record_cost_price(product, item["unit_price_cents"], user_id=user_id, reason=price_reason)

        if item["expiry_date"]:
            product.expiry_date = item["expiry_date"]

    db.session.flush()


def _revert_items(purchase: Purchase, *, user_id: int, note: str) -> None:
    """Undo the stock effect of every current line (negative ADJUSTMENT)."""
    for item in purchase.items:
        product = get_product(item.product_id, lock=True)
        apply_stock_delta(
            product=product,
            quantity_delta=-item.quantity,
            movement_type=MOVEMENT_ADJUSTMENT,
            user_id=user_id,
            reference_type=REFERENCE_TYPE,
            reference_id=purchase.id,
            note=note,
        )


def _target_supplier_credit(purchase: Purchase) -> int:
    if purchase.status not in OPEN_STATUSES:
        return 0
    on_account = purchase.status == PURCHASE_STATUS_RECEIVED or bool(purchase.payments)
    if not on_account:
        return 0
    return max(purchase.total_cents - purchase.paid_cents, 0)


def _sync_supplier_credit(purchase: Purchase, supplier: Supplier) -> int:
    """Move the supplier balance to match this purchase's target; returns the change."""
    target = _target_supplier_credit(purchase)
    delta = target - purchase.supplier_credit_cents
    if delta:
        supplier.credit_balance_cents += delta
        purchase.supplier_credit_cents = target
    return delta


def _check_po_number_free(po_number: str, purchase_id: int | None = None) -> None:
    q = db.session.query(Purchase.id).filter(Purchase.po_number == po_number)
    if purchase_id is not None:
        q = q.filter(Purchase.id != purchase_id)
    if q.first() is not None:
        raise ConflictError(f"Reference number {po_number} is already used by another purchase", field="reference_no")


# =============================================================================
# QUERIES
# =============================================================================

def get_purchase(purchase_id: int, *, lock: bool = False) -> Purchase:
    query = db.session.query(Purchase).filter_by(id=purchase_id)
    if lock:
        query = lock_for_update(query)
    purchase = query.first()
    if purchase is None:
        raise NotFoundError("Purchase", purchase_id)
    return purchase


def list_purchases(status: str | None = None, supplier_id: int | None = None) -> list[Purchase]:
    q = db.session.query(Purchase)
    if status:
        q = q.filter_by(status=status)
    if supplier_id:
        q = q.filter_by(supplier_id=supplier_id)
    return q.order_by(Purchase.created_at.desc(), Purchase.id.desc()).all()


def get_purchase_summary(purchase_id: int) -> dict:
    purchase = get_purchase(purchase_id)
    return {
        "purchase": purchase.to_dict(include_items=True),
        "total_cents": purchase.total_cents,
        "paid_cents": purchase.paid_cents,
        "outstanding_cents": purchase.outstanding_cents,
        "supplier_credit_cents": purchase.supplier_credit_cents,
    }


# =============================================================================
# CREATE
# =============================================================================

def create_purchase(
    *,
    actor_id: int,
    supplier_id: int,
    items,
    status: str = PURCHASE_STATUS_RECEIVED,
    purchase_date=None,
    reference_no: str | None = None,
    notes: str | None = None,
    paid_amount_cents: int | None = None,
    payment_method: str | None = None,
) -> Purchase:
    """
    Record a purchase: lines, stock, cost history, payment and supplier credit.

    Raises:
        AuthenticationError: no actor
        NotFoundError: supplier or product missing
        ValidationError: bad lines, status or paid amount
        ConflictError: reference number already used
    """
    require_actor(actor_id)

    supplier_id = coerce_int(supplier_id, "supplier_id", minimum=1)
    if status not in OPEN_STATUSES:
        raise ValidationError("status must be PENDING or RECEIVED")
    lines = _normalize_items(items)
    subtotal = _subtotal(lines)
    discount = 0
    tax = 0
    total = subtotal - discount + tax

    paid_amount_cents = coerce_optional_int(paid_amount_cents, "paid_amount_cents", minimum=0)
    if paid_amount_cents is not None:
        if paid_amount_cents > total:
            raise ValidationError(
                "Paid amount cannot exceed the purchase total",
                paid_amount_cents=paid_amount_cents,
                total_cents=total,
            )

    purchased_at = parse_iso_datetime(purchase_date) or utcnow()
    po_number = (reference_no or "").strip() or _generate_po_number()

    with unit_of_work():
        supplier = get_supplier(supplier_id, lock=True)
        _check_po_number_free(po_number)

        purchase = Purchase(
            po_number=po_number,
            supplier_id=supplier.id,
            user_id=actor_id,
            status=status,
            subtotal_cents=subtotal,
            discount_cents=discount,
            tax_cents=tax,
            total_cents=total,
            supplier_credit_cents=0,
            notes=notes or None,
            received_at=purchased_at if status == PURCHASE_STATUS_RECEIVED else None,
        )
        db.session.add(purchase)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"Reference number {po_number} is already in use", field="reference_no")

        _apply_items(
            purchase,
            lines,
            user_id=actor_id,
            price_reason="Purchase Update",
            note=f"Purchase {po_number}",
        )

        if paid_amount_cents:
            purchase.payments.append(PurchasePayment(
                supplier_id=supplier.id,
                user_id=actor_id,
                amount_cents=paid_amount_cents,
                payment_method=payment_method or "CASH",
                payment_date=purchased_at,
            ))
            db.session.flush()

        _sync_supplier_credit(purchase, supplier)

    logger.info(
        "Purchase %s created: %s lines, total=%s, supplier_credit=%s",
        purchase.po_number, len(lines), purchase.total_cents, purchase.supplier_credit_cents,
    )
    return purchase


# =============================================================================
# EDIT (revert-then-reapply)
# =============================================================================

def update_purchase(
    purchase_id: int,
    *,
    actor_id: int,
    items=None,
    supplier_id: int | None = None,
    reference_no: str | None = None,
    purchase_date=None,
    status: str | None = None,
    notes: str | None = None,
) -> Purchase:
    """
    Edit a purchase by fully reverting its lines and reapplying the new ones.

    When `items` is None the current lines are reapplied unchanged, so a
    metadata-only edit still nets to zero stock change. Reapplying when no
    new lines are sent is intentional; only an explicit list replaces them.

    Raises:
        StateError: purchase is CANCELLED
        ValidationError: bad lines/status, or new total below the amount paid
    """
    require_actor(actor_id)

    new_lines = _normalize_items(items) if items is not None else None
    supplier_id = coerce_optional_int(supplier_id, "supplier_id", minimum=1)
    if status is not None and status not in OPEN_STATUSES:
        raise ValidationError("status must be PENDING or RECEIVED")

    with unit_of_work():
        purchase = get_purchase(purchase_id, lock=True)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise StateError("Cannot update a cancelled purchase", status=purchase.status)

        if new_lines is None:
            new_lines = [
                {
                    "product_id": item.product_id,
                    "quantity": item.quantity,
                    "unit_price_cents": item.unit_price_cents,
                    "expiry_date": item.expiry_date,
                }
                for item in purchase.items
            ]

        old_po_number = purchase.po_number

        # 1. Revert every existing line
        _revert_items(purchase, user_id=actor_id, note=f"Stock reversed from purchase edit {old_po_number}")

        # 2. Delete old line rows
        purchase.items.clear()
        db.session.flush()

        # Supplier change: release what is booked on the old supplier first
        supplier = get_supplier(purchase.supplier_id, lock=True)
        if supplier_id and supplier_id != purchase.supplier_id:
            new_supplier = get_supplier(supplier_id, lock=True)
            supplier.credit_balance_cents -= purchase.supplier_credit_cents
            purchase.supplier_credit_cents = 0
            purchase.supplier_id = new_supplier.id
            supplier = new_supplier

        if reference_no is not None and reference_no.strip() and reference_no.strip() != old_po_number:
            _check_po_number_free(reference_no.strip(), purchase_id=purchase.id)
            purchase.po_number = reference_no.strip()

        if notes is not None:
            purchase.notes = notes or None

        if status and status != purchase.status:
            purchase.status = status
            if status == PURCHASE_STATUS_RECEIVED and purchase.received_at is None:
                purchase.received_at = parse_iso_datetime(purchase_date) or utcnow()

        # 3. Recompute totals and reapply exactly as on create
        purchase.subtotal_cents = _subtotal(new_lines)
        purchase.total_cents = purchase.subtotal_cents - purchase.discount_cents + purchase.tax_cents
        if purchase.total_cents < purchase.paid_cents:
            raise ValidationError(
                "Edited total cannot be less than the amount already paid",
                total_cents=purchase.total_cents,
                paid_cents=purchase.paid_cents,
            )

        _apply_items(
            purchase,
            new_lines,
            user_id=actor_id,
            price_reason="Purchase Edit Update",
            note=f"Purchase edit {purchase.po_number}",
        )

        # 4. Re-book supplier credit against the new total
        _sync_supplier_credit(purchase, supplier)

        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError("Reference number is already in use", field="reference_no")

    logger.info("Purchase %s edited: total=%s", purchase.po_number, purchase.total_cents)
    return purchase


# =============================================================================
# VOID
# =============================================================================

def void_purchase(purchase_id: int, *, actor_id: int) -> Purchase:
    """
    Cancel a purchase: reverse every line's stock and release the unpaid
    balance booked on the supplier. Amounts already paid are not reversed.
    """
    require_actor(actor_id)

    with unit_of_work():
        purchase = get_purchase(purchase_id, lock=True)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise StateError("Purchase is already voided", status=purchase.status)

        supplier = get_supplier(purchase.supplier_id, lock=True)

        purchase.status = PURCHASE_STATUS_CANCELLED
        purchase.cancelled_at = utcnow()

        _revert_items(
            purchase,
            user_id=actor_id,
            note=f"Stock reversed from voided purchase {purchase.po_number}",
        )

        released = -_sync_supplier_credit(purchase, supplier)

    logger.info("Purchase %s voided: supplier credit released=%s", purchase.po_number, released)
    return purchase


# =============================================================================
# MARK AS PAID
# =============================================================================

def mark_purchase_paid(
    purchase_id: int,
    *,
    actor_id: int,
    payment_method: str | None = None,
) -> PurchasePayment:
    """Pay the remaining balance in one payment and mark the purchase RECEIVED."""
    require_actor(actor_id)

    with unit_of_work():
        purchase = get_purchase(purchase_id, lock=True)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise StateError("Cannot mark a cancelled purchase as paid", status=purchase.status)

        remaining = purchase.total_cents - purchase.paid_cents
        if remaining <= 0:
            raise StateError("Purchase is already fully paid", outstanding_cents=remaining)

        supplier = get_supplier(purchase.supplier_id, lock=True)
        now = utcnow()

        payment = PurchasePayment(
            supplier_id=supplier.id,
            user_id=actor_id,
            amount_cents=remaining,
            payment_method=payment_method or "CASH",
            payment_date=now,
        )
        purchase.payments.append(payment)

        if purchase.status != PURCHASE_STATUS_RECEIVED:
            purchase.status = PURCHASE_STATUS_RECEIVED
            for item in purchase.items:
                item.received_qty = item.quantity
        if purchase.received_at is None:
            purchase.received_at = now

        db.session.flush()
        _sync_supplier_credit(purchase, supplier)

    logger.info("Purchase %s marked paid: amount=%s", purchase.po_number, remaining)
    return payment
