from __future__ import annotations

from ..extensions import db
from posledger.time_utils import utcnow, to_utc_z, to_iso_date


# Movement types (StockMovement.movement_type)
MOVEMENT_OPENING = "OPENING"
MOVEMENT_PURCHASE = "PURCHASE"
MOVEMENT_SALE = "SALE"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_DAMAGE = "DAMAGE"
MOVEMENT_EXPIRED = "EXPIRED"
MOVEMENT_LOST = "LOST"
MOVEMENT_RETURN_IN = "RETURN_IN"

MOVEMENT_TYPES = {
    MOVEMENT_OPENING,
    MOVEMENT_PURCHASE,
    MOVEMENT_SALE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_DAMAGE,
    MOVEMENT_EXPIRED,
    MOVEMENT_LOST,
    MOVEMENT_RETURN_IN,
}

# Price history types (PriceHistory.price_type)
PRICE_TYPE_COST = "COST"
PRICE_TYPE_SELLING = "SELLING"


class Product(db.Model):
    """
    Product master data plus the materialized on-hand balance.

    STOCK: `stock` is a cache of SUM(StockMovement.quantity_delta) for the
    product. Only services/stock_service.apply_stock_delta writes it, and it
    always appends the matching movement row in the same unit of work.

    COST: there is no mutable cost column. The current purchase price is the
    newest COST entry of the product's price history (see
    `purchase_price_cents`), so two purchases of the same product each append
    their own entry instead of racing on one field.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=True)
    sku = db.Column(db.String(64), nullable=True, index=True)
    unit = db.Column(db.String(32), nullable=False, default="pcs")

    min_stock_level = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)
    expiry_date = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    @property
    def purchase_price_cents(self) -> int | None:
        entry = (
            db.session.query(PriceHistory)
            .filter_by(product_id=self.id, price_type=PRICE_TYPE_COST)
            .order_by(PriceHistory.id.desc())
            .first()
        )
        return entry.new_price_cents if entry else None

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "barcode": self.barcode,
            "sku": self.sku,
            "unit": self.unit,
            "min_stock_level": self.min_stock_level,
            "selling_price_cents": self.selling_price_cents,
            "purchase_price_cents": self.purchase_price_cents,
            "stock": self.stock,
            "expiry_date": to_iso_date(self.expiry_date),
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """One signed stock change. Append-only (see models/immutability.py)."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_product_created", "product_id", "created_at"),
        db.Index("ix_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class PriceHistory(db.Model):
    """
    Append-only price log.

    COST entries double as the product's cost sequence: the newest one is
    the current purchase price. `old_price_cents` is NULL for the opening
    entry written when the product is created.
    """
    __tablename__ = "price_history"
    __table_args__ = (
        db.Index("ix_price_history_product_type", "product_id", "price_type", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    old_price_cents = db.Column(db.Integer, nullable=True)
    new_price_cents = db.Column(db.Integer, nullable=False)
    price_type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "old_price_cents": self.old_price_cents,
            "new_price_cents": self.new_price_cents,
            "price_type": self.price_type,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class StockAdjustment(db.Model):
    """Audit header for a manual stock correction (before/after snapshot)."""
    __tablename__ = "stock_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    reason = db.Column(db.String(32), nullable=False)
    before_qty = db.Column(db.Integer, nullable=False)
    after_qty = db.Column(db.Integer, nullable=False)
    difference = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "before_qty": self.before_qty,
            "after_qty": self.after_qty,
            "difference": self.difference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
