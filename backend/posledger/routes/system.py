# backend/posledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether `flask system init` has run
(walk-in customer and invoice sequence present).
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import Customer, InvoiceSequence, User
from posledger.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        walk_in = db.session.query(Customer).filter_by(is_walk_in=True).first()
        sequence = db.session.get(InvoiceSequence, 1)

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "walk_in_customer": walk_in is not None,
                "next_invoice_no": sequence.next_number if sequence else None,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), status
