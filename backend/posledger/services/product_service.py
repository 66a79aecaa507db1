# Overview: Service-layer operations for products and their price history.

"""
Product catalog service.

STOCK: products are created with an optional opening balance, written as an
OPENING movement through the stock ledger. After that, stock changes only
through purchases, sales, refunds and adjustments; update_product() refuses
to touch it.

PRICES: every recorded change appends a PriceHistory row. The current cost is
the newest COST entry (Product.purchase_price_cents), so record_cost_price()
is the one place purchases and manual edits change it.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, StateError, ValidationError
from ..models import Product, PriceHistory
from ..models.inventory import MOVEMENT_OPENING, PRICE_TYPE_COST, PRICE_TYPE_SELLING
from posledger.time_utils import parse_iso_date
from posledger.validation import coerce_int
from .auth_service import require_actor
from .concurrency import unit_of_work
from .stock_service import apply_stock_delta, get_product


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"name", "barcode", "sku", "unit", "min_stock_level", "expiry_date", "is_active"}


def _check_barcode_free(barcode: str | None, product_id: int | None = None) -> None:
    if not barcode:
        return
    q = db.session.query(Product).filter(Product.barcode == barcode)
    if product_id is not None:
        q = q.filter(Product.id != product_id)
    existing = q.first()
    if existing is not None:
        raise ConflictError(
            f"Barcode {barcode} is already used by product '{existing.name}'",
            field="barcode",
            product_id=existing.id,
        )


def record_cost_price(
    product: Product,
    new_cost_cents: int,
    *,
    user_id: int,
    reason: str,
) -> PriceHistory | None:
    """
    Append a COST entry when the cost differs from the current one.

    Returns the new entry, or None when the cost is unchanged. No commit.
    """
    current = product.purchase_price_cents
    if current == new_cost_cents:
        return None

    entry = PriceHistory(
        product_id=product.id,
        user_id=user_id,
        old_price_cents=current,
        new_price_cents=new_cost_cents,
        price_type=PRICE_TYPE_COST,
        reason=reason,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def create_product(
    *,
    actor_id: int,
    name: str,
    selling_price_cents: int,
    purchase_price_cents: int = 0,
    barcode: str | None = None,
    sku: str | None = None,
    unit: str = "pcs",
    min_stock_level: int = 0,
    opening_stock: int = 0,
    expiry_date=None,
) -> Product:
    require_actor(actor_id)

    if not name or not name.strip():
        raise ValidationError("Product name is required")
    selling_price_cents = coerce_int(selling_price_cents, "selling_price_cents", minimum=0)
    purchase_price_cents = coerce_int(purchase_price_cents, "purchase_price_cents", minimum=0)
    min_stock_level = coerce_int(min_stock_level, "min_stock_level", minimum=0)
    opening_stock = coerce_int(opening_stock, "opening_stock", minimum=0)

    barcode = barcode.strip() if barcode else None
    _check_barcode_free(barcode)

    with unit_of_work():
        product = Product(
            name=name.strip(),
            barcode=barcode,
            sku=sku,
            unit=unit or "pcs",
            min_stock_level=min_stock_level,
            selling_price_cents=selling_price_cents,
            stock=0,
            expiry_date=parse_iso_date(expiry_date),
        )
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"Barcode {barcode} is already in use", field="barcode")

        db.session.add(PriceHistory(
            product_id=product.id,
            user_id=actor_id,
            old_price_cents=None,
            new_price_cents=purchase_price_cents,
            price_type=PRICE_TYPE_COST,
            reason="Opening cost",
        ))

        if opening_stock:
            apply_stock_delta(
                product=product,
                quantity_delta=opening_stock,
                movement_type=MOVEMENT_OPENING,
                user_id=actor_id,
                reference_type="Product",
                reference_id=product.id,
                note="Opening stock",
            )

    logger.info("Product %s created (opening stock %s)", product.id, opening_stock)
    return product


def update_product(product_id: int, *, actor_id: int, **fields) -> Product:
    """Edit catalog metadata. Stock and prices have their own operations."""
    require_actor(actor_id)

    if "stock" in fields:
        raise ValidationError("Stock cannot be edited directly; use a stock adjustment")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
    if "min_stock_level" in fields:
        fields["min_stock_level"] = coerce_int(fields["min_stock_level"], "min_stock_level", minimum=0)
    if "is_active" in fields and not isinstance(fields["is_active"], bool):
        raise ValidationError("is_active must be true or false")

    with unit_of_work():
        product = get_product(product_id, lock=True)
        if "barcode" in fields:
            fields["barcode"] = fields["barcode"].strip() if fields["barcode"] else None
            _check_barcode_free(fields["barcode"], product_id=product.id)
        if "expiry_date" in fields:
            fields["expiry_date"] = parse_iso_date(fields["expiry_date"])
        for key, value in fields.items():
            setattr(product, key, value)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError("Barcode is already in use", field="barcode")

    return product


def change_price(
    product_id: int,
    *,
    actor_id: int,
    price_type: str,
    new_price_cents: int,
    reason: str | None = None,
) -> PriceHistory | None:
    """Explicit price edit; appends history only when the price changes."""
    require_actor(actor_id)

    if price_type not in (PRICE_TYPE_COST, PRICE_TYPE_SELLING):
        raise ValidationError("price_type must be COST or SELLING")
    new_price_cents = coerce_int(new_price_cents, "new_price_cents", minimum=0)

    with unit_of_work():
        product = get_product(product_id, lock=True)

        if price_type == PRICE_TYPE_COST:
            entry = record_cost_price(
                product, new_price_cents, user_id=actor_id, reason=reason or "Manual edit",
            )
        else:
            entry = None
            if product.selling_price_cents != new_price_cents:
                entry = PriceHistory(
                    product_id=product.id,
                    user_id=actor_id,
                    old_price_cents=product.selling_price_cents,
                    new_price_cents=new_price_cents,
                    price_type=PRICE_TYPE_SELLING,
                    reason=reason or "Manual edit",
                )
                product.selling_price_cents = new_price_cents
                db.session.add(entry)

    return entry


def deactivate_product(product_id: int, *, actor_id: int) -> Product:
    """
    Retire a product from the catalog (soft delete).

    Products always carry ledger history (at least their opening cost), so
    the row is kept and only is_active is cleared. Checkout refuses inactive
    products; stock, movements and prices stay readable.

    Raises:
        StateError: product is already inactive
    """
    require_actor(actor_id)

    with unit_of_work():
        product = get_product(product_id, lock=True)
        if not product.is_active:
            raise StateError("Product is already inactive", product_id=product.id)
        product.is_active = False

    logger.info("Product %s deactivated (stock on hand %s)", product_id, product.stock)
    return product


def get_price_history(product_id: int, price_type: str | None = None) -> list[PriceHistory]:
    get_product(product_id)
    q = db.session.query(PriceHistory).filter_by(product_id=product_id)
    if price_type:
        q = q.filter_by(price_type=price_type)
    return q.order_by(PriceHistory.id.desc()).all()
