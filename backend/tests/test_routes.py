"""
HTTP API tests: authentication, permission gates, structured errors and
end-to-end flows through the blueprints.
"""

import pytest

from posledger.extensions import db
from posledger.models import Product, Supplier
from posledger.services import purchase_service

from conftest import auth_headers, get_auth_token


# =============================================================================
# AUTHENTICATION
# =============================================================================


@pytest.mark.parametrize("method, path", [
    ("get", "/api/auth/me"),
    ("get", "/api/stock/overview"),
    ("post", "/api/stock/products/1/adjust"),
    ("post", "/api/purchases"),
    ("post", "/api/purchases/1/void"),
    ("post", "/api/sales"),
    ("post", "/api/sales/1/refund"),
    ("post", "/api/customers/1/repay"),
    ("get", "/api/backup/export"),
    ("post", "/api/backup/restore"),
])
def test_unauthenticated_requests_rejected(client, db_session, method, path):
    response = getattr(client, method)(path, json={})
    assert response.status_code == 401
    assert response.json["success"] is False
    assert response.json["error"]["code"] == "authentication_required"


def test_login_logout_cycle(client, admin):
    response = client.post("/api/auth/login", json={"username": "admin", "password": "Password123!"})
    assert response.status_code == 200
    token = response.json["token"]
    assert response.json["user"]["role"] == "admin"
    assert response.json["expires_at"].endswith("Z")

    me = client.get("/api/auth/me", headers=auth_headers(token))
    assert me.status_code == 200
    assert "backup.restore" in me.json["capabilities"]

    assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
    assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401


def test_login_with_bad_credentials(client, admin):
    response = client.post("/api/auth/login", json={"username": "admin", "password": "nope-nope"})
    assert response.status_code == 401
    assert response.json["error"]["code"] == "authentication_required"
    assert get_auth_token(client, "admin", "nope-nope") is None


def test_login_requires_fields(client, db_session):
    response = client.post("/api/auth/login", json={"username": "admin"})
    assert response.status_code == 400
    assert response.json["error"]["code"] == "validation_error"


# =============================================================================
# PERMISSIONS
# =============================================================================


@pytest.mark.parametrize("method, path, capability", [
    ("post", "/api/purchases/1/void", "purchases.void"),
    ("post", "/api/backup/restore", "backup.restore"),
    ("post", "/api/stock/products/1/adjust", "stock.adjust"),
    ("post", "/api/sales/1/void", "sales.void"),
])
def test_cashier_denied(client, cashier_headers, method, path, capability):
    response = getattr(client, method)(path, json={}, headers=cashier_headers)
    assert response.status_code == 403
    error = response.json["error"]
    assert error["code"] == "permission_denied"
    assert f"{error['details']['module']}.{error['details']['action']}" == capability


def test_cashier_can_sell(client, cashier_headers, walk_in, product):
    response = client.post(
        "/api/sales",
        json={"items": [{"product_id": product.id, "quantity": 2}], "cash_received_cents": 500},
        headers=cashier_headers,
    )
    assert response.status_code == 201
    assert response.json["sale"]["change_cents"] == 200


# =============================================================================
# FLOWS
# =============================================================================


def test_purchase_flow(client, admin_headers, supplier, product):
    created = client.post(
        "/api/purchases",
        json={
            "supplier_id": supplier.id,
            "paid_amount_cents": 300,
            "items": [{"product_id": product.id, "quantity": 10, "unit_price_cents": 100}],
        },
        headers=admin_headers,
    )
    assert created.status_code == 201
    purchase_id = created.json["purchase"]["id"]
    assert created.json["purchase"]["supplier_credit_cents"] == 700
    assert len(created.json["purchase"]["items"]) == 1

    detail = client.get(f"/api/purchases/{purchase_id}", headers=admin_headers)
    assert detail.status_code == 200
    assert detail.json["outstanding_cents"] == 700

    paid = client.post(f"/api/purchases/{purchase_id}/mark-paid", json={}, headers=admin_headers)
    assert paid.status_code == 200
    assert paid.json["payment"]["amount_cents"] == 700
    assert paid.json["purchase"]["outstanding_cents"] == 0

    voided = client.post(f"/api/purchases/{purchase_id}/void", headers=admin_headers)
    assert voided.status_code == 200
    assert voided.json["purchase"]["status"] == "CANCELLED"

    again = client.post(f"/api/purchases/{purchase_id}/void", headers=admin_headers)
    assert again.status_code == 409
    assert again.json["error"]["code"] == "invalid_state"

    db.session.expire_all()
    assert db.session.get(Product, product.id).stock == 20
    assert db.session.get(Supplier, supplier.id).credit_balance_cents == 0


def test_purchase_for_unknown_supplier(client, admin_headers, product):
    response = client.post(
        "/api/purchases",
        json={"supplier_id": 777, "items": [{"product_id": product.id, "quantity": 1, "unit_price_cents": 1}]},
        headers=admin_headers,
    )
    assert response.status_code == 404
    assert response.json["error"]["details"] == {"entity": "Supplier", "entity_id": 777}


def test_sale_refund_flow(client, admin_headers, customer, product, product_b):
    sale = client.post(
        "/api/sales",
        json={
            "customer_id": customer.id,
            "items": [
                {"product_id": product.id, "quantity": 1},
                {"product_id": product_b.id, "quantity": 1},
            ],
        },
        headers=admin_headers,
    )
    assert sale.status_code == 201
    sale_id = sale.json["sale"]["id"]
    item_id = sale.json["sale"]["items"][1]["id"]

    refund = client.post(
        f"/api/sales/{sale_id}/refund",
        json={"item_ids": [item_id], "reason": "Leaking bottle"},
        headers=admin_headers,
    )
    assert refund.status_code == 201
    assert refund.json["return"]["total_cents"] == 100
    assert refund.json["sale"]["status"] == "COMPLETED"

    empty = client.post(
        f"/api/sales/{sale_id}/refund",
        json={"item_ids": [], "reason": "Leaking bottle"},
        headers=admin_headers,
    )
    assert empty.status_code == 400
    assert empty.json == {
        "success": False,
        "error": {"code": "validation_error", "message": "Select at least one item to refund", "details": {}},
    }

    detail = client.get(f"/api/sales/{sale_id}", headers=admin_headers)
    assert len(detail.json["sale"]["returns"]) == 1
    assert [i["is_refunded"] for i in detail.json["sale"]["items"]] == [False, True]


def test_insufficient_stock_is_a_validation_error(client, admin_headers, walk_in, product):
    response = client.post(
        "/api/sales",
        json={"items": [{"product_id": product.id, "quantity": 500}]},
        headers=admin_headers,
    )
    assert response.status_code == 400
    details = response.json["error"]["details"]
    assert details["items"][0]["stock"] == 20
    assert details["items"][0]["requested"] == 500


@pytest.mark.parametrize("path, body, field", [
    ("/api/purchases", {"paid_amount_cents": "abc"}, "paid_amount_cents"),
    ("/api/purchases", {"paid_amount_cents": 50.5}, "paid_amount_cents"),
    ("/api/sales", {"cash_received_cents": 50.5}, "cash_received_cents"),
    ("/api/sales", {"cash_received_cents": "five hundred"}, "cash_received_cents"),
])
def test_non_integer_amounts_are_validation_errors(client, admin_headers, walk_in, supplier, product, path, body, field):
    payload = {"supplier_id": supplier.id, "items": [{"product_id": product.id, "quantity": 1, "unit_price_cents": 100}]}
    payload.update(body)

    response = client.post(path, json=payload, headers=admin_headers)
    assert response.status_code == 400
    assert response.json["error"]["code"] == "validation_error"
    assert response.json["error"]["details"]["field"] == field


def test_cash_received_as_digit_string(client, admin_headers, walk_in, product):
    response = client.post(
        "/api/sales",
        json={"items": [{"product_id": product.id, "quantity": 2}], "cash_received_cents": "500"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json["sale"]["change_cents"] == 200


def test_counterparty_maintenance(client, admin_headers, walk_in, customer, other_supplier, product):
    customer_resp = client.patch(
        f"/api/customers/{customer.id}",
        json={"address": "No. 12, 35th Street", "credit_limit_cents": 5000},
        headers=admin_headers,
    )
    assert customer_resp.status_code == 200
    assert customer_resp.json["customer"]["credit_limit_cents"] == 5000

    supplier_resp = client.patch(
        f"/api/purchases/suppliers/{other_supplier.id}",
        json={"company_name": "Mandalay Oils Ltd"},
        headers=admin_headers,
    )
    assert supplier_resp.status_code == 200
    assert supplier_resp.json["supplier"]["company_name"] == "Mandalay Oils Ltd"

    assert client.delete(f"/api/purchases/suppliers/{other_supplier.id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/purchases/suppliers/{other_supplier.id}", headers=admin_headers).status_code == 404

    retired = client.delete(f"/api/stock/products/{product.id}", headers=admin_headers)
    assert retired.status_code == 200
    assert retired.json["product"]["is_active"] is False

    sale = client.post(
        "/api/sales",
        json={"items": [{"product_id": product.id, "quantity": 1}]},
        headers=admin_headers,
    )
    assert sale.status_code == 400
    assert sale.json["error"]["details"]["product_id"] == product.id


def test_debt_repayment_flow(client, admin_headers, customer, product):
    client.post(
        "/api/sales",
        json={"customer_id": customer.id, "payment_method": "CREDIT", "items": [{"product_id": product.id, "quantity": 2}]},
        headers=admin_headers,
    )
    repay = client.post(f"/api/customers/{customer.id}/repay", json={"amount_cents": 300}, headers=admin_headers)
    assert repay.status_code == 201
    assert repay.json["customer"]["credit_balance_cents"] == 0

    detail = client.get(f"/api/customers/{customer.id}", headers=admin_headers)
    assert detail.json["unpaid_sales"] == []
    assert len(detail.json["payments"]) == 1


def test_stock_endpoints(client, admin_headers, product, product_b):
    adjust = client.post(
        f"/api/stock/products/{product.id}/adjust",
        json={"direction": "REMOVE", "quantity": 16, "reason": "EXPIRED"},
        headers=admin_headers,
    )
    assert adjust.status_code == 201

    overview = client.get("/api/stock/overview", headers=admin_headers)
    assert overview.json["overview"]["low_stock_item_count"] == 1

    low = client.get("/api/stock/products?low_stock=true", headers=admin_headers)
    assert [p["id"] for p in low.json["products"]] == [product.id]

    history = client.get(f"/api/stock/products/{product.id}/history", headers=admin_headers)
    assert [m["movement_type"] for m in history.json["movements"]] == ["EXPIRED", "OPENING"]

    verify = client.get("/api/stock/verify", headers=admin_headers)
    assert verify.json["mismatches"] == []


def test_health(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json["status"] == "healthy"


def test_backup_export(client, admin_headers, product):
    response = client.get("/api/backup/export", headers=admin_headers)
    assert response.status_code == 200
    assert [p["id"] for p in response.json["backup"]["data"]["products"]] == [product.id]


def test_unexpected_failure_returns_generic_error(client, admin_headers, supplier, product, monkeypatch):
    def boom(**kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(purchase_service, "create_purchase", boom)
    response = client.post(
        "/api/purchases",
        json={"supplier_id": supplier.id, "items": [{"product_id": product.id, "quantity": 1, "unit_price_cents": 1}]},
        headers=admin_headers,
    )
    assert response.status_code == 500
    assert response.json["error"]["code"] == "internal_error"
    assert "disk on fire" not in response.get_data(as_text=True)
