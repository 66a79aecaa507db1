# Overview: Strict coercion for money (integer cents) and quantity inputs.

from __future__ import annotations

from typing import Any

from .errors import ValidationError


def coerce_int(value: Any, field: str, *, minimum: int | None = None, **details: Any) -> int:
    """
    Coerce an integer input (cents or quantity) strictly.

    Accepts ints and plain digit strings (optional leading minus). Rejects
    None, booleans, floats, decimals and scientific notation, so 50.5 never
    lands in an integer-cents column.

    Raises:
        ValidationError: not an integer, or below `minimum`
    """
    if value is None:
        raise ValidationError(f"{field} is required", field=field, **details)

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field, **details)

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field, **details)
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                field=field,
                **details,
            )
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field, **details)
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field, **details)
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field, **details)
    else:
        raise ValidationError(f"{field} must be an integer", field=field, **details)

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}", field=field, **details)
    return result


def coerce_optional_int(value: Any, field: str, *, minimum: int | None = None, **details: Any) -> int | None:
    """Like coerce_int, but None (or a blank string) means "not given"."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_int(value, field, minimum=minimum, **details)
