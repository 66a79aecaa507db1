# Overview: Flask API routes for stock and catalog operations; parses input and returns JSON responses.

# backend/posledger/routes/stock.py
"""
Stock API Routes

READS (stock.view): overview, product list, movement history, ledger
verification. These never mutate.

WRITES:
- products.manage: create products, edit metadata, change prices
- stock.adjust: manual ADD/REMOVE adjustments
"""

from flask import Blueprint, jsonify, g, request

from ..errors import LedgerError
from ..services import adjustment_service, product_service, stock_service
from ..decorators import (
    require_auth,
    require_permission,
    error_response,
    internal_error_response,
    json_body,
)


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _truthy(value: str | None) -> bool:
    return (value or "").lower() in ("1", "true", "yes")


# =============================================================================
# READ PROJECTIONS
# =============================================================================

@stock_bp.get("/overview")
@require_auth
@require_permission("stock", "view")
def overview_route():
    try:
        return jsonify({"success": True, "overview": stock_service.get_stock_overview()}), 200
    except Exception:
        return internal_error_response("Failed to load stock overview")


@stock_bp.get("/products")
@require_auth
@require_permission("stock", "view")
def list_products_route():
    """
    Query params:
        q: search name, barcode or SKU
        low_stock: "true" to list only products at or below their minimum
    """
    try:
        rows = stock_service.list_stock_products(
            query=request.args.get("q"),
            low_stock_only=_truthy(request.args.get("low_stock")),
        )
        return jsonify({"success": True, "products": rows}), 200
    except Exception:
        return internal_error_response("Failed to list stock products")


@stock_bp.get("/products/<int:product_id>/history")
@require_auth
@require_permission("stock", "view")
def history_route(product_id: int):
    try:
        limit = request.args.get("limit", default=100, type=int)
        movements = stock_service.get_stock_history(product_id, limit=limit)
        return jsonify({"success": True, "movements": [m.to_dict() for m in movements]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to load stock history")


@stock_bp.get("/verify")
@require_auth
@require_permission("stock", "view")
def verify_route():
    """Products whose stock disagrees with the sum of their movements."""
    try:
        product_id = request.args.get("product_id", type=int)
        mismatches = stock_service.verify_stock_ledger(product_id)
        return jsonify({"success": True, "consistent": not mismatches, "mismatches": mismatches}), 200
    except Exception:
        return internal_error_response("Failed to verify stock ledger")


# =============================================================================
# ADJUSTMENTS
# =============================================================================

@stock_bp.post("/products/<int:product_id>/adjust")
@require_auth
@require_permission("stock", "adjust")
def adjust_route(product_id: int):
    """
    Request body:
    {
        "direction": "ADD" | "REMOVE",
        "quantity": 5,
        "reason": "DAMAGE",
        "notes": "Dropped pallet"  (optional)
    }
    """
    try:
        data = json_body()
        adjustment = adjustment_service.adjust_stock(
            product_id,
            actor_id=g.current_user.id,
            direction=data.get("direction"),
            quantity=data.get("quantity"),
            reason=data.get("reason"),
            notes=data.get("notes"),
        )
        return jsonify({"success": True, "adjustment": adjustment.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to adjust stock")


# =============================================================================
# CATALOG
# =============================================================================

@stock_bp.post("/products")
@require_auth
@require_permission("products", "manage")
def create_product_route():
    try:
        data = json_body()
        product = product_service.create_product(
            actor_id=g.current_user.id,
            name=data.get("name"),
            selling_price_cents=data.get("selling_price_cents", 0),
            purchase_price_cents=data.get("purchase_price_cents", 0),
            barcode=data.get("barcode"),
            sku=data.get("sku"),
            unit=data.get("unit", "pcs"),
            min_stock_level=data.get("min_stock_level", 0),
            opening_stock=data.get("opening_stock", 0),
            expiry_date=data.get("expiry_date"),
        )
        return jsonify({"success": True, "product": product.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to create product")


@stock_bp.patch("/products/<int:product_id>")
@require_auth
@require_permission("products", "manage")
def update_product_route(product_id: int):
    try:
        fields = {k: v for k, v in json_body().items() if k != "actor_id"}
        product = product_service.update_product(product_id, actor_id=g.current_user.id, **fields)
        return jsonify({"success": True, "product": product.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update product")


@stock_bp.delete("/products/<int:product_id>")
@require_auth
@require_permission("products", "manage")
def deactivate_product_route(product_id: int):
    """Soft delete: the product leaves the catalog, its ledger history stays."""
    try:
        product = product_service.deactivate_product(product_id, actor_id=g.current_user.id)
        return jsonify({"success": True, "product": product.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to deactivate product")


@stock_bp.post("/products/<int:product_id>/price")
@require_auth
@require_permission("products", "manage")
def change_price_route(product_id: int):
    """Request body: {"price_type": "COST" | "SELLING", "new_price_cents": 1200, "reason": "..."}"""
    try:
        data = json_body()
        entry = product_service.change_price(
            product_id,
            actor_id=g.current_user.id,
            price_type=data.get("price_type"),
            new_price_cents=data.get("new_price_cents"),
            reason=data.get("reason"),
        )
        return jsonify({"success": True, "changed": entry is not None,
                        "entry": entry.to_dict() if entry else None}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to change price")


@stock_bp.get("/products/<int:product_id>/price-history")
@require_auth
@require_permission("stock", "view")
def price_history_route(product_id: int):
    try:
        entries = product_service.get_price_history(product_id, request.args.get("price_type"))
        return jsonify({"success": True, "history": [e.to_dict() for e in entries]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to load price history")
