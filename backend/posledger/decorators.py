# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import AuthenticationError, AuthorizationError, error_result, internal_error_result
from .services import auth_service, permission_service


def _is_authenticated() -> bool:
    return getattr(g, "current_user", None) is not None


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require an authenticated actor.

    Sets g.current_user (the User) and g.session_token (the raw bearer token).
    Returns 401 before the route runs when the header is missing, the token
    is unknown, expired or revoked, or the account is inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        try:
            user = auth_service.resolve_actor(token)
        except AuthenticationError as e:
            body, status = error_result(e)
            return jsonify(body), status

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_permission(module: str, action: str):
    """Require the (module, action) capability; use below @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                body, status = error_result(AuthenticationError("Authentication required"))
                return jsonify(body), status

            try:
                permission_service.require_permission(g.current_user, module, action)
            except AuthorizationError as e:
                body, status = error_result(e)
                return jsonify(body), status

            return f(*args, **kwargs)

        return decorated_function

    return decorator


def error_response(exc):
    """JSON response for a LedgerError raised by a service."""
    body, status = error_result(exc)
    return jsonify(body), status


def internal_error_response(message: str):
    """Log the active exception and return the generic failure result."""
    current_app.logger.exception(message)
    body, status = internal_error_result()
    return jsonify(body), status


def json_body() -> dict:
    return request.get_json(silent=True) or {}
