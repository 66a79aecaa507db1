# Overview: Flask API routes for purchase and supplier operations; parses input and returns JSON responses.

# backend/posledger/routes/purchases.py
"""
Purchase API Routes

LIFECYCLE (PENDING -> RECEIVED -> CANCELLED):
- POST   /api/purchases                   create (stock in, cost history, supplier credit)
- PUT    /api/purchases/<id>              edit (full revert, then reapply)
- POST   /api/purchases/<id>/void         cancel and reverse
- POST   /api/purchases/<id>/mark-paid    pay the remaining balance
- GET    /api/purchases/<id>              detail with paid/outstanding totals

Amounts are integer cents.
"""

from flask import Blueprint, jsonify, g, request

from ..errors import LedgerError
from ..services import purchase_service, supplier_service
from ..decorators import (
    require_auth,
    require_permission,
    error_response,
    internal_error_response,
    json_body,
)


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


# =============================================================================
# SUPPLIERS
# =============================================================================

@purchases_bp.get("/suppliers")
@require_auth
@require_permission("purchases", "view")
def list_suppliers_route():
    try:
        suppliers = supplier_service.list_suppliers()
        return jsonify({"success": True, "suppliers": [s.to_dict() for s in suppliers]}), 200
    except Exception:
        return internal_error_response("Failed to list suppliers")


@purchases_bp.post("/suppliers")
@require_auth
@require_permission("suppliers", "manage")
def create_supplier_route():
    try:
        data = json_body()
        supplier = supplier_service.create_supplier(
            actor_id=g.current_user.id,
            name=data.get("name"),
            phone=data.get("phone"),
            company_name=data.get("company_name"),
        )
        return jsonify({"success": True, "supplier": supplier.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to create supplier")


@purchases_bp.patch("/suppliers/<int:supplier_id>")
@require_auth
@require_permission("suppliers", "manage")
def update_supplier_route(supplier_id: int):
    try:
        fields = {k: v for k, v in json_body().items() if k != "actor_id"}
        supplier = supplier_service.update_supplier(supplier_id, actor_id=g.current_user.id, **fields)
        return jsonify({"success": True, "supplier": supplier.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update supplier")


@purchases_bp.delete("/suppliers/<int:supplier_id>")
@require_auth
@require_permission("suppliers", "manage")
def delete_supplier_route(supplier_id: int):
    try:
        supplier_service.delete_supplier(supplier_id, actor_id=g.current_user.id)
        return jsonify({"success": True}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to delete supplier")


# =============================================================================
# PURCHASES
# =============================================================================

@purchases_bp.get("")
@require_auth
@require_permission("purchases", "view")
def list_purchases_route():
    try:
        purchases = purchase_service.list_purchases(
            status=request.args.get("status"),
            supplier_id=request.args.get("supplier_id", type=int),
        )
        return jsonify({"success": True, "purchases": [p.to_dict() for p in purchases]}), 200
    except Exception:
        return internal_error_response("Failed to list purchases")


@purchases_bp.post("")
@require_auth
@require_permission("purchases", "create")
def create_purchase_route():
    """
    Request body:
    {
        "supplier_id": 1,
        "status": "RECEIVED",              (optional, default RECEIVED)
        "reference_no": "PO-...",          (optional, generated when absent)
        "purchase_date": "2024-05-01",     (optional)
        "paid_amount_cents": 50000,        (optional)
        "payment_method": "CASH",          (optional)
        "notes": "...",                    (optional)
        "items": [
            {"product_id": 3, "quantity": 10, "unit_price_cents": 100, "expiry_date": "2025-01-31"}
        ]
    }

    Returns:
        201: purchase with items
        400: validation failure
        404: unknown supplier or product
        409: reference number already used
    """
    try:
        data = json_body()
        purchase = purchase_service.create_purchase(
            actor_id=g.current_user.id,
            supplier_id=data.get("supplier_id"),
            items=data.get("items"),
            status=data.get("status") or "RECEIVED",
            purchase_date=data.get("purchase_date"),
            reference_no=data.get("reference_no"),
            notes=data.get("notes"),
            paid_amount_cents=data.get("paid_amount_cents"),
            payment_method=data.get("payment_method"),
        )
        return jsonify({"success": True, "purchase": purchase.to_dict(include_items=True)}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to create purchase")


@purchases_bp.get("/<int:purchase_id>")
@require_auth
@require_permission("purchases", "view")
def get_purchase_route(purchase_id: int):
    try:
        summary = purchase_service.get_purchase_summary(purchase_id)
        return jsonify({"success": True, **summary}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to load purchase")


@purchases_bp.put("/<int:purchase_id>")
@require_auth
@require_permission("purchases", "create")
def update_purchase_route(purchase_id: int):
    """Same body as create; omitted "items" reapplies the current lines."""
    try:
        data = json_body()
        purchase = purchase_service.update_purchase(
            purchase_id,
            actor_id=g.current_user.id,
            items=data.get("items"),
            supplier_id=data.get("supplier_id"),
            reference_no=data.get("reference_no"),
            purchase_date=data.get("purchase_date"),
            status=data.get("status"),
            notes=data.get("notes"),
        )
        return jsonify({"success": True, "purchase": purchase.to_dict(include_items=True)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update purchase")


@purchases_bp.post("/<int:purchase_id>/void")
@require_auth
@require_permission("purchases", "void")
def void_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.void_purchase(purchase_id, actor_id=g.current_user.id)
        return jsonify({"success": True, "purchase": purchase.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to void purchase")


@purchases_bp.post("/<int:purchase_id>/mark-paid")
@require_auth
@require_permission("purchases", "pay")
def mark_paid_route(purchase_id: int):
    try:
        data = json_body()
        payment = purchase_service.mark_purchase_paid(
            purchase_id,
            actor_id=g.current_user.id,
            payment_method=data.get("payment_method"),
        )
        purchase = purchase_service.get_purchase(purchase_id)
        return jsonify({
            "success": True,
            "payment": payment.to_dict(),
            "purchase": purchase.to_dict(),
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to mark purchase as paid")
