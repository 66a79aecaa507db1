# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/posledger/routes/sales.py
"""
Sales API Routes

- POST  /api/sales                 checkout
- GET   /api/sales/<id>            detail with items and returns
- PATCH /api/sales/<id>            customer / payment method / notes
- POST  /api/sales/<id>/void       void (restocks unrefunded items)
- POST  /api/sales/<id>/refund     refund selected items
- GET   /api/sales/summary         revenue and units sold for a date range
"""

from flask import Blueprint, jsonify, g, request

from ..errors import LedgerError, ValidationError
from ..services import sales_service
from ..decorators import (
    require_auth,
    require_permission,
    error_response,
    internal_error_response,
    json_body,
)


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_payload(sale) -> dict:
    data = sale.to_dict(include_items=True)
    data["returns"] = [ret.to_dict() for ret in sale.returns]
    return data


@sales_bp.post("")
@require_auth
@require_permission("sales", "create")
def checkout_route():
    """
    Request body:
    {
        "customer_id": 4,                  (optional, walk-in when absent)
        "payment_method": "CASH",          (CREDIT books the total as customer debt)
        "cash_received_cents": 2000,       (optional)
        "notes": "...",                    (optional)
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 500}]
    }
    """
    try:
        data = json_body()
        sale = sales_service.create_sale(
            actor_id=g.current_user.id,
            items=data.get("items"),
            customer_id=data.get("customer_id"),
            payment_method=data.get("payment_method"),
            cash_received_cents=data.get("cash_received_cents"),
            notes=data.get("notes"),
        )
        return jsonify({"success": True, "sale": _sale_payload(sale)}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to complete sale")


@sales_bp.get("/summary")
@require_auth
@require_permission("sales", "view")
def summary_route():
    """Query params: start, end (ISO dates or datetimes; end is exclusive)."""
    try:
        summary = sales_service.sales_summary(request.args.get("start"), request.args.get("end"))
        return jsonify({"success": True, "summary": summary}), 200
    except ValueError:
        return error_response(ValidationError("start and end must be ISO-8601 dates"))
    except Exception:
        return internal_error_response("Failed to build sales summary")


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("sales", "view")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"success": True, "sale": _sale_payload(sale)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to load sale")


@sales_bp.patch("/<int:sale_id>")
@require_auth
@require_permission("sales", "edit")
def update_sale_route(sale_id: int):
    try:
        fields = {k: v for k, v in json_body().items() if k != "actor_id"}
        sale = sales_service.update_sale_metadata(sale_id, actor_id=g.current_user.id, **fields)
        return jsonify({"success": True, "sale": sale.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update sale")


@sales_bp.post("/<int:sale_id>/void")
@require_auth
@require_permission("sales", "void")
def void_sale_route(sale_id: int):
    try:
        sale = sales_service.void_sale(sale_id, actor_id=g.current_user.id)
        return jsonify({"success": True, "sale": sale.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to void sale")


@sales_bp.post("/<int:sale_id>/refund")
@require_auth
@require_permission("sales", "refund")
def refund_sale_route(sale_id: int):
    """
    Request body:
    {
        "item_ids": [11, 12],
        "reason": "Damaged packaging",
        "refund_method": "CASH",   (optional, defaults to the sale's method)
        "notes": "..."             (optional)
    }
    """
    try:
        data = json_body()
        sales_return = sales_service.refund_sale(
            sale_id,
            actor_id=g.current_user.id,
            item_ids=data.get("item_ids"),
            reason=data.get("reason"),
            refund_method=data.get("refund_method"),
            notes=data.get("notes"),
        )
        sale = sales_service.get_sale(sale_id)
        return jsonify({
            "success": True,
            "return": sales_return.to_dict(),
            "sale": sale.to_dict(),
        }), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to refund sale")
