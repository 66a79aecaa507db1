"""
Strict integer input tests: cents and quantities reject strings that are
not plain integers, floats, decimals, scientific notation and booleans.
"""

import pytest

from posledger.errors import ValidationError
from posledger.extensions import db
from posledger.models import Purchase, Sale
from posledger.services import product_service, purchase_service, sales_service
from posledger.services.customer_service import create_customer
from posledger.validation import coerce_int, coerce_optional_int

from conftest import movement_count


@pytest.mark.parametrize("value, expected", [
    (500, 500),
    ("500", 500),
    (" 42 ", 42),
    ("-3", -3),
    (0, 0),
])
def test_accepts_integers_and_digit_strings(value, expected):
    assert coerce_int(value, "amount_cents") == expected


@pytest.mark.parametrize("value", [50.5, 100.0, "12.5", "1e3", "abc", "", True, None, [1]])
def test_rejects_non_integers(value):
    with pytest.raises(ValidationError) as exc:
        coerce_int(value, "amount_cents")
    assert exc.value.details["field"] == "amount_cents"


def test_minimum_and_details():
    with pytest.raises(ValidationError) as exc:
        coerce_int(0, "quantity", minimum=1, line=2)
    assert exc.value.message == "quantity must be at least 1"
    assert exc.value.details == {"field": "quantity", "line": 2}


def test_optional_treats_blank_as_missing():
    assert coerce_optional_int(None, "paid_amount_cents") is None
    assert coerce_optional_int("  ", "paid_amount_cents") is None
    assert coerce_optional_int("75", "paid_amount_cents") == 75


# =============================================================================
# SERVICES
# =============================================================================


@pytest.mark.parametrize("paid", ["abc", 50.5, "1e2"])
def test_purchase_paid_amount_must_be_integer(admin, supplier, product, paid):
    with pytest.raises(ValidationError):
        purchase_service.create_purchase(
            actor_id=admin.id,
            supplier_id=supplier.id,
            items=[{"product_id": product.id, "quantity": 10, "unit_price_cents": 100}],
            paid_amount_cents=paid,
        )

    assert db.session.query(Purchase).count() == 0
    assert product.stock == 20
    assert supplier.credit_balance_cents == 0


def test_purchase_line_price_must_be_integer(admin, supplier, product):
    with pytest.raises(ValidationError) as exc:
        purchase_service.create_purchase(
            actor_id=admin.id,
            supplier_id=supplier.id,
            items=[{"product_id": product.id, "quantity": 10, "unit_price_cents": 99.9}],
        )
    assert exc.value.details == {"field": "unit_price_cents", "line": 0}
    assert movement_count(product.id) == 1


def test_purchase_digit_strings_are_coerced(admin, supplier, product):
    purchase = purchase_service.create_purchase(
        actor_id=admin.id,
        supplier_id=supplier.id,
        items=[{"product_id": str(product.id), "quantity": "10", "unit_price_cents": "100"}],
        paid_amount_cents="400",
    )

    assert purchase.total_cents == 1000
    assert purchase.paid_cents == 400
    assert supplier.credit_balance_cents == 600
    assert product.stock == 30


@pytest.mark.parametrize("field, value", [
    ("cash_received_cents", 50.5),
    ("cash_received_cents", "lots"),
    ("unit_price_cents", 149.99),
    ("quantity", 1.5),
])
def test_sale_amounts_must_be_integers(admin, walk_in, product, field, value):
    item = {"product_id": product.id, "quantity": 1}
    kwargs = {}
    if field == "cash_received_cents":
        kwargs[field] = value
    else:
        item[field] = value

    with pytest.raises(ValidationError):
        sales_service.create_sale(actor_id=admin.id, items=[item], **kwargs)

    assert db.session.query(Sale).count() == 0
    assert product.stock == 20


def test_sale_cash_received_digit_string(admin, walk_in, product):
    sale = sales_service.create_sale(
        actor_id=admin.id,
        items=[{"product_id": product.id, "quantity": 2}],
        cash_received_cents="500",
    )
    assert sale.cash_received_cents == 500
    assert sale.change_cents == 200


@pytest.mark.parametrize("kwargs", [
    {"selling_price_cents": 10.5},
    {"selling_price_cents": 100, "purchase_price_cents": "cheap"},
    {"selling_price_cents": 100, "opening_stock": 2.5},
])
def test_product_amounts_must_be_integers(admin, kwargs):
    with pytest.raises(ValidationError):
        product_service.create_product(actor_id=admin.id, name="Tea Leaf 200g", **kwargs)


def test_price_change_must_be_integer(admin, product):
    with pytest.raises(ValidationError):
        product_service.change_price(product.id, actor_id=admin.id, price_type="COST", new_price_cents=85.5)
    assert product.purchase_price_cents == 80


@pytest.mark.parametrize("field", ["credit_limit_cents", "opening_balance_cents"])
def test_customer_amounts_must_be_integers(admin, walk_in, field):
    with pytest.raises(ValidationError):
        create_customer(actor_id=admin.id, name="U Ba", **{field: 100.5})
