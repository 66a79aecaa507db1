# Overview: Flask API routes for customer operations; parses input and returns JSON responses.

# backend/posledger/routes/customers.py
"""
Customer API Routes

The walk-in customer (is_walk_in) is created by `flask system init` and can
be read here but never deleted. Debt repayment settles UNPAID invoices
oldest first and records a DEBT_COLLECTION sale.
"""

from flask import Blueprint, jsonify, g

from ..errors import LedgerError
from ..services import customer_service, debt_service
from ..decorators import (
    require_auth,
    require_permission,
    error_response,
    internal_error_response,
    json_body,
)


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
@require_auth
@require_permission("customers", "manage")
def create_customer_route():
    try:
        data = json_body()
        customer = customer_service.create_customer(
            actor_id=g.current_user.id,
            name=data.get("name"),
            phone=data.get("phone"),
            email=data.get("email"),
            address=data.get("address"),
            credit_limit_cents=data.get("credit_limit_cents", 0),
            opening_balance_cents=data.get("opening_balance_cents", 0),
        )
        return jsonify({"success": True, "customer": customer.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to create customer")


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_permission("sales", "view")
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(customer_id)
        unpaid = debt_service.list_unpaid_sales(customer_id)
        return jsonify({
            "success": True,
            "customer": customer.to_dict(),
            "unpaid_sales": [sale.to_dict() for sale in unpaid],
            "payments": [payment.to_dict() for payment in customer.payments],
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to load customer")


@customers_bp.patch("/<int:customer_id>")
@require_auth
@require_permission("customers", "manage")
def update_customer_route(customer_id: int):
    try:
        fields = {k: v for k, v in json_body().items() if k != "actor_id"}
        customer = customer_service.update_customer(customer_id, actor_id=g.current_user.id, **fields)
        return jsonify({"success": True, "customer": customer.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update customer")


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_permission("customers", "manage")
def delete_customer_route(customer_id: int):
    try:
        customer_service.delete_customer(customer_id, actor_id=g.current_user.id)
        return jsonify({"success": True}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to delete customer")


@customers_bp.post("/<int:customer_id>/repay")
@require_auth
@require_permission("customers", "collect")
def repay_debt_route(customer_id: int):
    """Request body: {"amount_cents": 25000, "payment_method": "CASH"}"""
    try:
        data = json_body()
        payment = debt_service.repay_debt(
            customer_id,
            actor_id=g.current_user.id,
            amount_cents=data.get("amount_cents"),
            payment_method=data.get("payment_method"),
        )
        customer = customer_service.get_customer(customer_id)
        return jsonify({
            "success": True,
            "payment": payment.to_dict(),
            "customer": customer.to_dict(),
        }), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to record debt repayment")
