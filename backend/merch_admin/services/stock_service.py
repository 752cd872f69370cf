# Overview: Service-layer operations for variant stock; every quantity change goes through here.

"""
Variant stock service.

Stock invariants & semantics (authoritative):
- ProductVariant.quantity is the available quantity of one size of a product.
- Every change re-reads the row inside the caller's transaction and applies
  max(0, current + delta): decrements clamp at zero, never negative.
- Every change appends exactly one StockMovement mirroring the delta.
- ProductVariant.version_id detects a concurrent writer between read and
  flush; callers wrap their unit of work in concurrency.run_with_retry so
  the whole operation is retried or rejected, never half-applied.
- Stand assignments (StandStock) are NOT stock and never touch these rows.

Functions here never commit. The calling service owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..extensions import db
from ..models import ProductVariant, StockMovement
from .concurrency import lock_for_update, run_with_retry


MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"
MOVEMENT_CANCELLATION = "cancellation"
MOVEMENT_RESTORE = "restore"
MOVEMENT_REDUCE = "reduce"

MOVEMENT_TYPES = {
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
    MOVEMENT_CANCELLATION,
    MOVEMENT_RESTORE,
    MOVEMENT_REDUCE,
}


class StockError(Exception):
    """Raised for stock operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class VariantNotFoundError(StockError):
    pass


@dataclass(frozen=True)
class StockAdjustment:
    variant_id: int
    previous_quantity: int
    new_quantity: int
    delta: int

    def to_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "delta": self.delta,
        }


def get_variant(variant_id: int, *, lock: bool = False) -> ProductVariant:
    query = db.session.query(ProductVariant).filter_by(id=variant_id)
    if lock:
        # Re-read the row even if the identity map already holds it
        query = lock_for_update(query).populate_existing()
    variant = query.first()
    if variant is None:
        raise VariantNotFoundError(f"Product variant {variant_id} not found", details={"variant_id": variant_id})
    return variant


def adjust_quantity(
    variant_id: int,
    delta: int,
    *,
    movement_type: str,
    reason: str | None = None,
    order_id: int | None = None,
    stand_id: int | None = None,
    user_id: int | None = None,
) -> StockAdjustment:
    """
    Apply a signed delta to a variant's quantity and log the movement.

    Positive delta restores stock, negative consumes it. The result is
    clamped at zero. Flushes so a version conflict raises here, inside the
    caller's retry scope.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise StockError(f"Unknown movement type: {movement_type}")

    variant = get_variant(variant_id, lock=True)

    previous = variant.quantity
    new_quantity = max(0, previous + delta)
    variant.quantity = new_quantity

    db.session.add(StockMovement(
        product_variant_id=variant.id,
        stand_id=stand_id,
        order_id=order_id,
        movement_type=movement_type,
        quantity_delta=delta,
        previous_quantity=previous,
        new_quantity=new_quantity,
        reason=reason,
        user_id=user_id,
    ))
    db.session.flush()

    return StockAdjustment(
        variant_id=variant.id,
        previous_quantity=previous,
        new_quantity=new_quantity,
        delta=delta,
    )


def record_initial_quantity(variant: ProductVariant, *, reason: str, user_id: int | None = None) -> None:
    """Log the opening quantity of a freshly created variant (no read-modify-write needed)."""
    if not variant.quantity:
        return
    db.session.add(StockMovement(
        product_variant_id=variant.id,
        movement_type=MOVEMENT_ADJUSTMENT,
        quantity_delta=variant.quantity,
        previous_quantity=0,
        new_quantity=variant.quantity,
        reason=reason,
        user_id=user_id,
    ))


def set_quantity(
    variant_id: int,
    quantity: int,
    *,
    reason: str = "Manual adjustment",
    user_id: int | None = None,
    commit: bool = True,
) -> StockAdjustment:
    """
    Set a variant to an absolute quantity (stock count, manual correction).

    Logged as an adjustment carrying the signed difference.
    """
    if quantity < 0:
        raise StockError("quantity must be >= 0")

    def _apply():
        variant = get_variant(variant_id, lock=True)
        return adjust_quantity(
            variant_id,
            quantity - variant.quantity,
            movement_type=MOVEMENT_ADJUSTMENT,
            reason=reason,
            user_id=user_id,
        )

    if not commit:
        return _apply()

    def _op():
        result = _apply()
        db.session.commit()
        return result

    return run_with_retry(_op)


def sum_by_variant(items: Iterable) -> dict[int, int]:
    """Total quantity per variant; duplicate lines for one variant are added up."""
    totals: dict[int, int] = {}
    for item in items:
        totals[item.product_variant_id] = totals.get(item.product_variant_id, 0) + item.quantity
    return totals


def compute_item_deltas(old_items: Iterable, new_items: Iterable) -> dict[int, int]:
    """
    Net stock delta per variant when an order's items change from old to new.

    Positive = units go back to stock (removed or reduced lines),
    negative = units leave stock (added or increased lines).
    Variants whose total is unchanged are omitted.
    """
    old_totals = sum_by_variant(old_items)
    new_totals = sum_by_variant(new_items)

    deltas: dict[int, int] = {}
    for variant_id in sorted(set(old_totals) | set(new_totals)):
        delta = old_totals.get(variant_id, 0) - new_totals.get(variant_id, 0)
        if delta != 0:
            deltas[variant_id] = delta
    return deltas


def list_movements(
    variant_id: int | None = None,
    order_id: int | None = None,
    limit: int = 100,
) -> list[StockMovement]:
    """Audit view, newest first. Not used by any reconciliation path."""
    query = db.session.query(StockMovement)
    if variant_id is not None:
        query = query.filter(StockMovement.product_variant_id == variant_id)
    if order_id is not None:
        query = query.filter(StockMovement.order_id == order_id)
    limit = max(1, min(int(limit), 500))
    return query.order_by(StockMovement.id.desc()).limit(limit).all()
