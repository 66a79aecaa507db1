from __future__ import annotations

from ..extensions import db
from posledger.time_utils import utcnow, to_utc_z


SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_VOID = "VOID"
SALE_STATUS_RETURNED = "RETURNED"

PAYMENT_STATUS_PAID = "PAID"
PAYMENT_STATUS_UNPAID = "UNPAID"
PAYMENT_STATUS_PARTIAL = "PARTIAL"

# Sale variants. Only SALE rows own line items; DEBT_COLLECTION rows record
# money received against earlier credit sales and never have items.
SALE_TYPE_SALE = "SALE"
SALE_TYPE_DEBT_COLLECTION = "DEBT_COLLECTION"

ITEMLESS_SALE_TYPES = frozenset({SALE_TYPE_DEBT_COLLECTION})

PAYMENT_METHOD_CREDIT = "CREDIT"


def format_invoice_number(invoice_no: int) -> str:
    return f"INV-{invoice_no:06d}"


class InvoiceSequence(db.Model):
    """
    Single-row global invoice counter.

    Shared by checkout, debt collection and backup restore so invoice
    numbers stay strictly increasing across every kind of Sale row.
    """
    __tablename__ = "invoice_sequences"

    id = db.Column(db.Integer, primary_key=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)


class Sale(db.Model):
    """
    Sale document (tagged by sale_type).

    LIFECYCLE: COMPLETED -> VOID (terminal), or COMPLETED -> RETURNED once
    every line item has been refunded.

    Code that walks line items must go through
    services/sales_service.sale_lines(), which returns an empty tuple for
    item-less variants such as DEBT_COLLECTION.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("invoice_no", name="uq_sales_invoice_no"),
        db.Index("ix_sales_customer_payment_status", "customer_id", "payment_status", "created_at"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_no = db.Column(db.Integer, nullable=False)
    sale_number = db.Column(db.String(32), nullable=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    sale_type = db.Column(db.String(24), nullable=False, default=SALE_TYPE_SALE, index=True)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PAID, index=True)
    payment_method = db.Column(db.String(32), nullable=False, default="CASH")

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    cash_received_cents = db.Column(db.Integer, nullable=True)
    change_cents = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    voided_at = db.Column(db.DateTime, nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy="dynamic"))
    items = db.relationship("SaleItem", backref="sale", order_by="SaleItem.id")

    @property
    def has_items(self) -> bool:
        return self.sale_type not in ITEMLESS_SALE_TYPES

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_no": self.invoice_no,
            "sale_number": self.sale_number,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "sale_type": self.sale_type,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "cash_received_cents": self.cash_received_cents,
            "change_cents": self.change_cents,
            "notes": self.notes,
            "voided_at": to_utc_z(self.voided_at),
            "voided_by_user_id": self.voided_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items] if self.has_items else []
        return data


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")
    return_items = db.relationship("SalesReturnItem", backref="sale_item")

    @property
    def is_refunded(self) -> bool:
        return bool(self.return_items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "is_refunded": self.is_refunded,
        }


class SalesReturn(db.Model):
    """One refund event against a sale; drives restocking of its items."""
    __tablename__ = "sales_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_sales_returns_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    total_cents = db.Column(db.Integer, nullable=False)
    refund_method = db.Column(db.String(32), nullable=False, default="CASH")
    reason = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True, order_by="SalesReturn.id"))
    items = db.relationship("SalesReturnItem", backref="sales_return", order_by="SalesReturnItem.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_number": self.return_number,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "refund_method": self.refund_method,
            "reason": self.reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class SalesReturnItem(db.Model):
    __tablename__ = "sales_return_items"
    __table_args__ = (
        # A sale item can be refunded once
        db.UniqueConstraint("sale_item_id", name="uq_sales_return_items_sale_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sales_return_id = db.Column(db.Integer, db.ForeignKey("sales_returns.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_return_id": self.sales_return_id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
            "reason": self.reason,
        }
