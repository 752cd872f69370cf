# Overview: Stand CRUD and per-stand stock assignment.

"""
Stand service.

Assignment semantics:
- assign_stock is declarative: the given list IS the stand's stock afterwards.
  Existing rows are replaced in one transaction; an empty list clears it.
- StandStock is bookkeeping for what a stand should hold. It never moves
  ProductVariant.quantity, so over-allocation across stands is allowed and
  only reported back as warnings.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field

from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderItem, ProductVariant, Stand, StandStock
from ..validation import ConflictError, parse_stock_assignments
from .concurrency import lock_for_update, run_with_retry
from .orders_service import ORDER_STATUS_DELIVERED

STAND_MUTABLE_FIELDS = {
    "name",
    "location",
    "description",
    "operating_hours",
    "image_url",
    "contact_person",
    "contact_phone",
    "qr_code_value",
    "is_active",
}


class StandError(Exception):
    """Raised for stand operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class StandNotFoundError(StandError):
    pass


@dataclass
class AssignmentResult:
    stand: Stand
    warnings: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "stand": self.stand.to_dict(include_stock=True),
            "warnings": self.warnings,
        }


def generate_stand_qr() -> str:
    return f"STAND_{secrets.token_hex(6).upper()}"


def _require_stand(stand_id: int, *, lock: bool = False) -> Stand:
    query = db.session.query(Stand).filter_by(id=stand_id)
    if lock:
        query = lock_for_update(query)
    stand = query.first()
    if stand is None:
        raise StandNotFoundError("Stand not found", details={"stand_id": stand_id})
    return stand


def _ensure_qr_unique(qr_value: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Stand).filter(Stand.qr_code_value == qr_value)
    if exclude_id is not None:
        query = query.filter(Stand.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Stand QR value already in use: {qr_value}")


def list_stands(*, include_inactive: bool = False) -> list[Stand]:
    query = db.session.query(Stand)
    if not include_inactive:
        query = query.filter(Stand.is_active.is_(True))
    return query.order_by(Stand.name.asc(), Stand.id.asc()).all()


def get_stand(stand_id: int) -> Stand | None:
    return db.session.get(Stand, stand_id)


def create_stand(*, patch: dict) -> Stand:
    stand = Stand()
    for k, v in patch.items():
        if k in STAND_MUTABLE_FIELDS:
            setattr(stand, k, v)

    if stand.qr_code_value:
        _ensure_qr_unique(stand.qr_code_value)
    else:
        stand.qr_code_value = generate_stand_qr()
    if stand.is_active is None:
        stand.is_active = True

    db.session.add(stand)
    db.session.commit()
    return stand


def update_stand(stand_id: int, *, patch: dict) -> Stand:
    stand = _require_stand(stand_id)
    if patch.get("qr_code_value"):
        _ensure_qr_unique(patch["qr_code_value"], exclude_id=stand.id)
    for k, v in patch.items():
        if k in STAND_MUTABLE_FIELDS:
            setattr(stand, k, v)
    if not stand.qr_code_value:
        stand.qr_code_value = generate_stand_qr()
    db.session.commit()
    return stand


def deactivate_stand(stand_id: int) -> Stand:
    """Soft delete. Orders keep pointing at the stand; its assignments stay for history."""
    stand = _require_stand(stand_id)
    stand.is_active = False
    db.session.commit()
    return stand


def _over_allocation_warnings(variant_ids: list[int]) -> list[dict]:
    if not variant_ids:
        return []
    rows = (
        db.session.query(
            ProductVariant.id,
            ProductVariant.quantity,
            func.coalesce(func.sum(StandStock.quantity), 0),
        )
        .join(StandStock, StandStock.product_variant_id == ProductVariant.id)
        .join(Stand, StandStock.stand_id == Stand.id)
        .filter(ProductVariant.id.in_(variant_ids), Stand.is_active.is_(True))
        .group_by(ProductVariant.id, ProductVariant.quantity)
        .all()
    )
    return [
        {
            "product_variant_id": variant_id,
            "available_quantity": available,
            "assigned_quantity": int(assigned),
        }
        for variant_id, available, assigned in rows
        if int(assigned) > available
    ]


def assign_stock(stand_id: int, assignments: list[dict]) -> AssignmentResult:
    """
    Replace the stand's stock with the given [{product_variant_id, quantity}].

    Rows go through parse_stock_assignments first, so duplicate variants and
    negative quantities raise ValidationError and zero rows are dropped.
    Unknown variants abort the whole replacement.
    """
    assignments = parse_stock_assignments(assignments)

    def _op():
        stand = _require_stand(stand_id, lock=True)

        variant_ids = [a["product_variant_id"] for a in assignments]
        if variant_ids:
            found = {
                row[0]
                for row in db.session.query(ProductVariant.id).filter(ProductVariant.id.in_(variant_ids)).all()
            }
            missing = sorted(set(variant_ids) - found)
            if missing:
                raise StandError("Product variant not found", details={"variant_ids": missing})

        db.session.query(StandStock).filter(StandStock.stand_id == stand.id).delete(synchronize_session=False)
        db.session.flush()
        for a in assignments:
            db.session.add(StandStock(
                stand_id=stand.id,
                product_variant_id=a["product_variant_id"],
                quantity=a["quantity"],
            ))
        db.session.flush()

        warnings = _over_allocation_warnings(variant_ids)
        db.session.commit()
        return AssignmentResult(stand=stand, warnings=warnings)

    return run_with_retry(_op)


def get_stand_stock(stand_id: int) -> list[dict]:
    """
    Per assigned variant: assigned, delivered through this stand, remaining.

    delivered counts units on orders this stand handed over that are still
    in delivered status; remaining never goes below zero.
    """
    stand = _require_stand(stand_id)

    delivered = dict(
        db.session.query(OrderItem.product_variant_id, func.sum(OrderItem.quantity))
        .join(Order, OrderItem.order_id == Order.id)
        .filter(Order.delivered_by_stand_id == stand.id, Order.status == ORDER_STATUS_DELIVERED)
        .group_by(OrderItem.product_variant_id)
        .all()
    )

    rows = []
    for row in stand.stock:
        delivered_qty = int(delivered.get(row.product_variant_id) or 0)
        data = row.to_dict()
        data["assigned_quantity"] = row.quantity
        data["delivered_quantity"] = delivered_qty
        data["remaining_quantity"] = max(0, row.quantity - delivered_qty)
        rows.append(data)
    return rows
