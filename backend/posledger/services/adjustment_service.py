# Overview: Service-layer operations for manual, audited stock corrections.

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import ValidationError
from ..models import StockAdjustment
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_DAMAGE,
    MOVEMENT_EXPIRED,
    MOVEMENT_LOST,
)
from posledger.validation import coerce_int
from .auth_service import require_actor
from .concurrency import unit_of_work
from .stock_service import apply_stock_delta, get_product


logger = logging.getLogger(__name__)

DIRECTION_ADD = "ADD"
DIRECTION_REMOVE = "REMOVE"

# Reasons that have their own movement type; anything else is ADJUSTMENT
REASON_MOVEMENT_TYPES = {
    "DAMAGE": MOVEMENT_DAMAGE,
    "EXPIRED": MOVEMENT_EXPIRED,
    "LOST": MOVEMENT_LOST,
}


def movement_type_for_reason(reason: str) -> str:
    return REASON_MOVEMENT_TYPES.get(reason, MOVEMENT_ADJUSTMENT)


def adjust_stock(
    product_id: int,
    *,
    actor_id: int,
    direction: str,
    quantity: int,
    reason: str,
    notes: str | None = None,
) -> StockAdjustment:
    """
    Add or remove stock by hand, with an adjustment record and one movement.

    Raises:
        ValidationError: bad direction, non-positive quantity, missing
            reason, or REMOVE larger than the current stock
        NotFoundError: unknown product
    """
    require_actor(actor_id)

    direction = (direction or "").upper()
    if direction not in (DIRECTION_ADD, DIRECTION_REMOVE):
        raise ValidationError("direction must be ADD or REMOVE")
    quantity = coerce_int(quantity, "quantity", minimum=1)
    if not reason or not reason.strip():
        raise ValidationError("An adjustment reason is required")
    reason = reason.strip().upper()

    with unit_of_work():
        product = get_product(product_id, lock=True)
        before = product.stock

        if direction == DIRECTION_REMOVE and quantity > before:
            raise ValidationError(
                f"Insufficient stock. Current: {before}, Requested: {quantity}",
                stock=before,
                requested=quantity,
            )

        difference = quantity if direction == DIRECTION_ADD else -quantity

        adjustment = StockAdjustment(
            product_id=product.id,
            user_id=actor_id,
            reason=reason,
            before_qty=before,
            after_qty=before + difference,
            difference=difference,
            notes=notes or None,
        )
        db.session.add(adjustment)
        db.session.flush()

        verb = "added" if direction == DIRECTION_ADD else "removed"
        apply_stock_delta(
            product=product,
            quantity_delta=difference,
            movement_type=movement_type_for_reason(reason),
            user_id=actor_id,
            reference_type="StockAdjustment",
            reference_id=adjustment.id,
            note=notes or f"Stock {verb}: {reason}",
        )

    logger.info(
        "Stock adjusted for product %s: %s -> %s (%s)",
        product.id, adjustment.before_qty, adjustment.after_qty, reason,
    )
    return adjustment
