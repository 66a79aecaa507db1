# Overview: Typed error taxonomy shared by services and routes.

"""
Ledger error taxonomy.

Every failure a ledger operation can report is one of the classes below.
Services raise them; routes turn them into the structured result

    {"success": false, "error": {"code": ..., "message": ..., "details": {...}}}

Because every mutation runs inside a unit of work (see
services/concurrency.py), raising any of these inside a service rolls the
whole transaction back before the caller sees the error.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class: carries a machine-readable code and an HTTP status."""

    code = "ledger_error"
    http_status = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class AuthenticationError(LedgerError):
    """No active session / actor; raised before any transaction opens."""

    code = "authentication_required"
    http_status = 401


class AuthorizationError(LedgerError):
    """Actor lacks the (module, action) capability."""

    code = "permission_denied"
    http_status = 403


class NotFoundError(LedgerError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class ValidationError(LedgerError):
    code = "validation_error"
    http_status = 400


class ConflictError(LedgerError):
    """Duplicate value for a unique field (barcode, phone, PO number)."""

    code = "conflict"
    http_status = 409


class StateError(LedgerError):
    """Operation is not valid in the document's current lifecycle state."""

    code = "invalid_state"
    http_status = 409


INTERNAL_ERROR = {
    "code": "internal_error",
    "message": "The operation failed and no changes were saved",
    "details": {},
}


def error_result(exc: LedgerError) -> tuple[dict, int]:
    """Structured failure body plus HTTP status for a ledger error."""
    return {"success": False, "error": exc.to_dict()}, exc.http_status


def internal_error_result() -> tuple[dict, int]:
    return {"success": False, "error": dict(INTERNAL_ERROR)}, 500
