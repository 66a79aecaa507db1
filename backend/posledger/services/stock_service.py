# Overview: Service-layer operations for the stock ledger; the only writer of Product.stock.

"""
Stock Ledger Invariants (authoritative)

- Product.stock is a materialized balance: for every product it equals
  SUM(StockMovement.quantity_delta) over all of its movements.
- apply_stock_delta() is the only code that writes Product.stock. It changes
  the balance by the signed delta AND appends exactly one StockMovement in
  the caller's unit of work, so neither can commit without the other.
- Movements are append-only; a correction is a new compensating movement.
- Reads (overview, product list, history, verification) never mutate.
- Low stock means stock <= min_stock_level.
"""

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_TYPES
from .concurrency import lock_for_update


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def apply_stock_delta(
    *,
    product: Product,
    quantity_delta: int,
    movement_type: str,
    user_id: int,
    reference_type: str | None = None,
    reference_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """
    Change a product's on-hand balance and append the matching movement.

    Does not commit: callers run this inside services.concurrency.unit_of_work
    together with the rest of their operation. Does not check for a negative
    result; callers that must refuse to go below zero (checkout, manual
    REMOVE) check before calling.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type {movement_type!r}")
    if quantity_delta == 0:
        raise ValidationError("A stock movement must change the quantity")

    product.stock = (product.stock or 0) + quantity_delta

    movement = StockMovement(
        product_id=product.id,
        user_id=user_id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


# =============================================================================
# READ PROJECTIONS
# =============================================================================

def get_stock_overview() -> dict:
    """Active item count, inventory value at current cost, low-stock count."""
    products = db.session.query(Product).filter_by(is_active=True).all()

    total_value_cents = 0
    low_stock_count = 0
    for product in products:
        cost = product.purchase_price_cents or 0
        total_value_cents += cost * product.stock
        if product.is_low_stock:
            low_stock_count += 1

    return {
        "total_items": len(products),
        "total_inventory_value_cents": total_value_cents,
        "low_stock_item_count": low_stock_count,
    }


def list_stock_products(query: str | None = None, low_stock_only: bool = False) -> list[dict]:
    q = db.session.query(Product).filter_by(is_active=True)

    if query and query.strip():
        term = f"%{query.strip()}%"
        q = q.filter(or_(
            Product.name.ilike(term),
            Product.barcode.ilike(term),
            Product.sku.ilike(term),
        ))

    if low_stock_only:
        q = q.filter(Product.stock <= Product.min_stock_level)

    rows = []
    for product in q.order_by(Product.name.asc()).all():
        cost = product.purchase_price_cents or 0
        rows.append({
            "id": product.id,
            "name": product.name,
            "unit": product.unit,
            "stock": product.stock,
            "min_stock_level": product.min_stock_level,
            "purchase_price_cents": cost,
            "total_value_cents": cost * product.stock,
            "is_low_stock": product.is_low_stock,
        })
    return rows


def get_stock_history(product_id: int, limit: int = 100) -> list[StockMovement]:
    """Movements for one product, newest first."""
    get_product(product_id)
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def get_movement_total(product_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def verify_stock_ledger(product_id: int | None = None) -> list[dict]:
    """
    Compare each product's materialized stock to the sum of its movements.

    Returns one entry per product that disagrees; an empty list means the
    ledger is consistent.
    """
    sums = (
        db.session.query(
            StockMovement.product_id,
            func.coalesce(func.sum(StockMovement.quantity_delta), 0).label("total"),
        )
        .group_by(StockMovement.product_id)
    )
    if product_id is not None:
        sums = sums.filter(StockMovement.product_id == product_id)
    totals = {row.product_id: int(row.total) for row in sums.all()}

    products = db.session.query(Product)
    if product_id is not None:
        products = products.filter_by(id=product_id)

    mismatches = []
    for product in products.order_by(Product.id).all():
        expected = totals.get(product.id, 0)
        if product.stock != expected:
            mismatches.append({
                "product_id": product.id,
                "name": product.name,
                "stock": product.stock,
                "movement_total": expected,
                "difference": product.stock - expected,
            })
    return mismatches
