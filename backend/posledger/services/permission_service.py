# Overview: Service-layer capability checks for (module, action) pairs.

from __future__ import annotations

import logging

from ..errors import AuthorizationError
from ..models import User
from ..permissions import ROLE_CAPABILITIES, CAPABILITY_DEFINITIONS


logger = logging.getLogger(__name__)


def get_user_capabilities(user: User) -> frozenset:
    if user is None or not user.is_active:
        return frozenset()
    return ROLE_CAPABILITIES.get(user.role, frozenset())


def has_permission(user: User, module: str, action: str) -> bool:
    return (module, action) in get_user_capabilities(user)


def require_permission(user: User, module: str, action: str) -> None:
    """Raise AuthorizationError unless the user holds (module, action)."""
    if (module, action) not in CAPABILITY_DEFINITIONS:
        raise ValueError(f"Unknown capability {module}.{action}")
    if not has_permission(user, module, action):
        logger.warning(
            "Permission denied: user=%s role=%s capability=%s.%s",
            getattr(user, "id", None), getattr(user, "role", None), module, action,
        )
        raise AuthorizationError(
            f"Permission denied: {module}.{action} required",
            module=module,
            action=action,
        )
