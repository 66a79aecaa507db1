"""
Purchase lifecycle tests.

Verifies:
- create applies stock, cost history and supplier credit together
- edit fully reverts then reapplies (unchanged edits net to zero)
- void reverses stock and releases only the unpaid balance
- mark-as-paid settles the remainder once
- payments + booked supplier credit reconcile to the total at every step
"""

from datetime import date

import pytest

from posledger.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from posledger.extensions import db
from posledger.models import PriceHistory, Purchase, PurchasePayment, StockMovement, Supplier
from posledger.models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_PURCHASE, PRICE_TYPE_COST
from posledger.models.purchasing import (
    PURCHASE_STATUS_CANCELLED,
    PURCHASE_STATUS_PENDING,
    PURCHASE_STATUS_RECEIVED,
)
from posledger.services import purchase_service

from conftest import movement_count


def _items(product, quantity=10, price=100, **extra):
    return [{"product_id": product.id, "quantity": quantity, "unit_price_cents": price, **extra}]


def _cost_entries(product_id):
    return (
        db.session.query(PriceHistory)
        .filter_by(product_id=product_id, price_type=PRICE_TYPE_COST)
        .order_by(PriceHistory.id)
        .all()
    )


def _latest_movement(product_id):
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .first()
    )


def assert_reconciled(purchase):
    """Payments plus the credit booked on the supplier account for the total."""
    db.session.refresh(purchase)
    if purchase.status == PURCHASE_STATUS_RECEIVED:
        assert purchase.paid_cents + purchase.supplier_credit_cents == purchase.total_cents

    booked = sum(
        p.supplier_credit_cents
        for p in db.session.query(Purchase).filter_by(supplier_id=purchase.supplier_id)
    )
    assert db.session.get(Supplier, purchase.supplier_id).credit_balance_cents == booked


# =============================================================================
# CREATE
# =============================================================================


class TestCreatePurchase:
    def test_received_without_payment_books_full_total(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )

        assert purchase.status == PURCHASE_STATUS_RECEIVED
        assert purchase.po_number.startswith("PO-")
        assert purchase.subtotal_cents == 1000
        assert purchase.discount_cents == 0
        assert purchase.tax_cents == 0
        assert purchase.total_cents == 1000
        assert purchase.received_at is not None

        assert product.stock == 30
        assert supplier.credit_balance_cents == 1000

        movement = _latest_movement(product.id)
        assert movement.movement_type == MOVEMENT_PURCHASE
        assert movement.quantity_delta == 10
        assert movement.reference_type == "Purchase"
        assert movement.reference_id == purchase.id

        entries = _cost_entries(product.id)
        assert len(entries) == 2
        assert (entries[-1].old_price_cents, entries[-1].new_price_cents) == (80, 100)
        assert entries[-1].reason == "Purchase Update"
        assert product.purchase_price_cents == 100
        assert_reconciled(purchase)

    def test_same_cost_adds_no_price_history(self, admin, supplier, product):
        purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product, price=80),
        )
        assert len(_cost_entries(product.id)) == 1
        assert product.purchase_price_cents == 80

    def test_partial_payment_books_shortfall(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id,
            supplier_id=supplier.id,
            items=_items(product),
            paid_amount_cents=400,
        )
        assert supplier.credit_balance_cents == 600
        assert [p.amount_cents for p in purchase.payments] == [400]
        assert purchase.outstanding_cents == 600
        assert_reconciled(purchase)

    def test_full_payment_books_nothing(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id,
            supplier_id=supplier.id,
            items=_items(product),
            paid_amount_cents=1000,
        )
        assert supplier.credit_balance_cents == 0
        assert purchase.outstanding_cents == 0
        assert_reconciled(purchase)

    def test_pending_adds_stock_but_no_supplier_credit(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id,
            supplier_id=supplier.id,
            items=_items(product),
            status=PURCHASE_STATUS_PENDING,
        )
        assert purchase.status == PURCHASE_STATUS_PENDING
        assert purchase.received_at is None
        assert product.stock == 30
        assert supplier.credit_balance_cents == 0

    def test_expiry_date_propagates_to_product(self, admin, supplier, product):
        purchase_service.create_purchase(
            actor_id=admin.id,
            supplier_id=supplier.id,
            items=_items(product, expiry_date="2027-01-31"),
        )
        assert product.expiry_date == date(2027, 1, 31)

    def test_paid_more_than_total_rejected(self, admin, supplier, product):
        with pytest.raises(ValidationError):
            purchase_service.create_purchase(
                actor_id=admin.id,
                supplier_id=supplier.id,
                items=_items(product),
                paid_amount_cents=1001,
            )
        assert db.session.query(Purchase).count() == 0
        assert product.stock == 20

    @pytest.mark.parametrize("items", [
        [],
        [{"quantity": 1, "unit_price_cents": 10}],
        "zero-quantity",
        "negative-price",
    ])
    def test_invalid_lines_rejected(self, admin, supplier, product, items):
        if items == "zero-quantity":
            items = _items(product, quantity=0)
        elif items == "negative-price":
            items = _items(product, price=-1)
        with pytest.raises(ValidationError):
            purchase_service.create_purchase(actor_id=admin.id, supplier_id=supplier.id, items=items)
        assert movement_count(product.id) == 1

    def test_unknown_supplier(self, admin, product):
        with pytest.raises(NotFoundError):
            purchase_service.create_purchase(actor_id=admin.id, supplier_id=424242, items=_items(product))

    def test_unknown_product_rolls_back_every_line(self, admin, supplier, product):
        items = _items(product) + [{"product_id": 999999, "quantity": 1, "unit_price_cents": 5}]
        with pytest.raises(NotFoundError):
            purchase_service.create_purchase(actor_id=admin.id, supplier_id=supplier.id, items=items)

        assert product.stock == 20
        assert movement_count(product.id) == 1
        assert len(_cost_entries(product.id)) == 1
        assert db.session.query(Purchase).count() == 0
        assert supplier.credit_balance_cents == 0

    def test_requires_actor(self, supplier, product):
        with pytest.raises(AuthenticationError):
            purchase_service.create_purchase(actor_id=None, supplier_id=supplier.id, items=_items(product))
        assert db.session.query(Purchase).count() == 0

    def test_duplicate_reference_conflict(self, admin, supplier, product):
        purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product), reference_no="GR-0042",
        )
        with pytest.raises(ConflictError):
            purchase_service.create_purchase(
                actor_id=admin.id, supplier_id=supplier.id, items=_items(product), reference_no="GR-0042",
            )
        assert product.stock == 30


# =============================================================================
# EDIT
# =============================================================================


class TestEditPurchase:
    def test_unchanged_items_leave_stock_unchanged(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        movements_before = movement_count(product.id)

        purchase_service.update_purchase(purchase.id, actor_id=admin.id, items=_items(product))

        assert product.stock == 30
        assert supplier.credit_balance_cents == 1000
        assert len(_cost_entries(product.id)) == 2
        # one compensating ADJUSTMENT plus one reapplied PURCHASE
        assert movement_count(product.id) == movements_before + 2
        assert _latest_movement(product.id).movement_type == MOVEMENT_PURCHASE
        assert_reconciled(purchase)

    def test_metadata_only_edit_reapplies_current_lines(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        purchase_service.update_purchase(purchase.id, actor_id=admin.id, notes="Checked by Ko Min")

        assert purchase.notes == "Checked by Ko Min"
        assert len(purchase.items) == 1
        assert purchase.total_cents == 1000
        assert product.stock == 30

    def test_repeated_edits_reflect_only_latest_version(self, admin, supplier, product, product_b):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        purchase_service.update_purchase(purchase.id, actor_id=admin.id, items=_items(product, quantity=4))
        purchase_service.update_purchase(
            purchase.id,
            actor_id=admin.id,
            items=_items(product, quantity=6) + _items(product_b, quantity=2, price=50),
        )

        assert product.stock == 26
        assert product_b.stock == 52
        assert purchase.total_cents == 700
        assert supplier.credit_balance_cents == 700
        assert_reconciled(purchase)

    def test_price_change_on_edit_records_history(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        purchase_service.update_purchase(purchase.id, actor_id=admin.id, items=_items(product, price=120))

        latest = _cost_entries(product.id)[-1]
        assert (latest.old_price_cents, latest.new_price_cents) == (100, 120)
        assert latest.reason == "Purchase Edit Update"

    def test_reversal_movements_are_adjustments(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        purchase_service.update_purchase(purchase.id, actor_id=admin.id, items=_items(product, quantity=3))

        reversal = (
            db.session.query(StockMovement)
            .filter_by(product_id=product.id, movement_type=MOVEMENT_ADJUSTMENT)
            .one()
        )
        assert reversal.quantity_delta == -10
        assert reversal.reference_id == purchase.id

    def test_edit_cancelled_rejected(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        purchase_service.void_purchase(purchase.id, actor_id=admin.id)
        movements = movement_count(product.id)

        with pytest.raises(StateError):
            purchase_service.update_purchase(purchase.id, actor_id=admin.id, items=_items(product))
        assert movement_count(product.id) == movements
        assert product.stock == 20

    def test_edit_below_paid_amount_rejected_without_side_effects(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product), paid_amount_cents=800,
        )
        with pytest.raises(ValidationError):
            purchase_service.update_purchase(purchase.id, actor_id=admin.id, items=_items(product, quantity=5))

        assert product.stock == 30
        assert supplier.credit_balance_cents == 200
        assert db.session.get(Purchase, purchase.id).total_cents == 1000

    def test_supplier_change_moves_booked_credit(self, admin, supplier, other_supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        purchase_service.update_purchase(purchase.id, actor_id=admin.id, supplier_id=other_supplier.id)

        assert supplier.credit_balance_cents == 0
        assert other_supplier.credit_balance_cents == 1000
        assert purchase.supplier_id == other_supplier.id
        assert_reconciled(purchase)

    def test_receiving_a_pending_purchase_books_credit(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id,
            supplier_id=supplier.id,
            items=_items(product),
            status=PURCHASE_STATUS_PENDING,
        )
        purchase_service.update_purchase(purchase.id, actor_id=admin.id, status=PURCHASE_STATUS_RECEIVED)

        assert purchase.status == PURCHASE_STATUS_RECEIVED
        assert purchase.received_at is not None
        assert supplier.credit_balance_cents == 1000
        assert product.stock == 30


# =============================================================================
# VOID
# =============================================================================


class TestVoidPurchase:
    def test_void_returns_to_baseline(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        purchase_service.void_purchase(purchase.id, actor_id=admin.id)

        assert purchase.status == PURCHASE_STATUS_CANCELLED
        assert purchase.cancelled_at is not None
        assert product.stock == 20
        assert supplier.credit_balance_cents == 0

        movement = _latest_movement(product.id)
        assert movement.movement_type == MOVEMENT_ADJUSTMENT
        assert movement.quantity_delta == -10

    def test_void_releases_only_the_outstanding_balance(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product), paid_amount_cents=400,
        )
        purchase_service.void_purchase(purchase.id, actor_id=admin.id)

        assert supplier.credit_balance_cents == 0
        assert db.session.query(PurchasePayment).filter_by(purchase_id=purchase.id).count() == 1

    def test_void_pending_purchase(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id,
            supplier_id=supplier.id,
            items=_items(product),
            status=PURCHASE_STATUS_PENDING,
        )
        purchase_service.void_purchase(purchase.id, actor_id=admin.id)
        assert product.stock == 20
        assert supplier.credit_balance_cents == 0

    def test_double_void_rejected(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        purchase_service.void_purchase(purchase.id, actor_id=admin.id)
        movements = movement_count(product.id)

        with pytest.raises(StateError):
            purchase_service.void_purchase(purchase.id, actor_id=admin.id)
        assert movement_count(product.id) == movements
        assert supplier.credit_balance_cents == 0


# =============================================================================
# MARK AS PAID
# =============================================================================


class TestMarkPurchasePaid:
    def test_pays_remainder_and_clears_credit(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product), paid_amount_cents=300,
        )
        payment = purchase_service.mark_purchase_paid(purchase.id, actor_id=admin.id)

        assert payment.amount_cents == 700
        assert [p.amount_cents for p in purchase.payments] == [300, 700]
        assert purchase.outstanding_cents == 0
        assert supplier.credit_balance_cents == 0
        assert_reconciled(purchase)

    def test_pending_purchase_becomes_received(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id,
            supplier_id=supplier.id,
            items=_items(product),
            status=PURCHASE_STATUS_PENDING,
        )
        purchase_service.mark_purchase_paid(purchase.id, actor_id=admin.id, payment_method="BANK")

        assert purchase.status == PURCHASE_STATUS_RECEIVED
        assert purchase.received_at is not None
        assert purchase.payments[0].payment_method == "BANK"
        assert supplier.credit_balance_cents == 0

    def test_fully_paid_rejected(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product), paid_amount_cents=1000,
        )
        with pytest.raises(StateError):
            purchase_service.mark_purchase_paid(purchase.id, actor_id=admin.id)
        assert db.session.query(PurchasePayment).count() == 1

    def test_cancelled_rejected(self, admin, supplier, product):
        purchase = purchase_service.create_purchase(
            actor_id=admin.id, supplier_id=supplier.id, items=_items(product),
        )
        purchase_service.void_purchase(purchase.id, actor_id=admin.id)
        with pytest.raises(StateError):
            purchase_service.mark_purchase_paid(purchase.id, actor_id=admin.id)


# =============================================================================
# RECONCILIATION ACROSS THE LIFECYCLE
# =============================================================================


def test_supplier_balance_reconciles_across_lifecycle(admin, supplier, product, product_b):
    first = purchase_service.create_purchase(
        actor_id=admin.id, supplier_id=supplier.id, items=_items(product), paid_amount_cents=250,
    )
    second = purchase_service.create_purchase(
        actor_id=admin.id, supplier_id=supplier.id, items=_items(product_b, quantity=4, price=50),
    )
    assert supplier.credit_balance_cents == 750 + 200
    assert_reconciled(first)

    purchase_service.update_purchase(first.id, actor_id=admin.id, items=_items(product, quantity=12))
    assert supplier.credit_balance_cents == 950 + 200
    assert_reconciled(first)

    purchase_service.mark_purchase_paid(second.id, actor_id=admin.id)
    assert supplier.credit_balance_cents == 950
    assert_reconciled(second)

    purchase_service.void_purchase(first.id, actor_id=admin.id)
    assert supplier.credit_balance_cents == 0
    assert_reconciled(first)


def test_purchase_summary(admin, supplier, product):
    purchase = purchase_service.create_purchase(
        actor_id=admin.id, supplier_id=supplier.id, items=_items(product), paid_amount_cents=100,
    )
    summary = purchase_service.get_purchase_summary(purchase.id)

    assert summary["total_cents"] == 1000
    assert summary["paid_cents"] == 100
    assert summary["outstanding_cents"] == 900
    assert summary["supplier_credit_cents"] == 900
    assert len(summary["purchase"]["items"]) == 1

    with pytest.raises(NotFoundError):
        purchase_service.get_purchase_summary(987654)
