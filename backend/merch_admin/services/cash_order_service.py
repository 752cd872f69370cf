# Overview: Read-only projection of cash orders into pending / validated / expired / cancelled.

"""
Cash-order expiry projection.

Unpaid cash orders are held for CASH_ORDER_EXPIRY_MINUTES (30 by default).
The state is derived from created_at and "now" on every read and never
written back, so an expired order stays reserved until staff cancel it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Order
from ..time_utils import utcnow, whole_minutes_between
from . import orders_service

CASH_STATE_PENDING = "pending"
CASH_STATE_VALIDATED = "validated"
CASH_STATE_EXPIRED = "expired"
CASH_STATE_CANCELLED = "cancelled"

CASH_STATES = (CASH_STATE_PENDING, CASH_STATE_VALIDATED, CASH_STATE_EXPIRED, CASH_STATE_CANCELLED)

DEFAULT_EXPIRY_MINUTES = 30


@dataclass(frozen=True)
class CashOrderState:
    state: str
    remaining_minutes: int
    minutes_elapsed: int

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "remaining_minutes": self.remaining_minutes,
            "minutes_elapsed": self.minutes_elapsed,
        }


def derive_cash_order_state(
    created_at: datetime,
    now: datetime,
    payment_validated: bool,
    status: str,
    expiry_minutes: int = DEFAULT_EXPIRY_MINUTES,
) -> CashOrderState:
    """
    cancelled/returned -> cancelled, validated -> validated, then by age:
    more than expiry_minutes whole minutes -> expired, otherwise pending
    with expiry_minutes - elapsed left. remaining_minutes is 0 unless pending.
    """
    elapsed = whole_minutes_between(created_at, now)

    if status in orders_service.CLOSED_STATUSES:
        return CashOrderState(CASH_STATE_CANCELLED, 0, elapsed)
    if payment_validated:
        return CashOrderState(CASH_STATE_VALIDATED, 0, elapsed)
    if elapsed > expiry_minutes:
        return CashOrderState(CASH_STATE_EXPIRED, 0, elapsed)
    return CashOrderState(CASH_STATE_PENDING, max(0, expiry_minutes - elapsed), elapsed)


def _expiry_minutes() -> int:
    return int(current_app.config.get("CASH_ORDER_EXPIRY_MINUTES", DEFAULT_EXPIRY_MINUTES))


def _cash_orders() -> list[Order]:
    return (
        db.session.query(Order)
        .filter(Order.payment_method == orders_service.PAYMENT_METHOD_CASH)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def project(order: Order, now: datetime | None = None) -> CashOrderState:
    return derive_cash_order_state(
        order.created_at,
        now or utcnow(),
        order.payment_validated,
        order.status,
        expiry_minutes=_expiry_minutes(),
    )


def list_cash_orders(
    *,
    state: str | None = None,
    search: str | None = None,
    now: datetime | None = None,
) -> list[tuple[Order, CashOrderState]]:
    """
    Cash orders newest first, each with its projected state.

    search matches the customer email (case-insensitive substring) or the
    exact order id.
    """
    now = now or utcnow()
    needle = (search or "").strip().lower()

    results = []
    for order in _cash_orders():
        if needle and needle not in (order.customer_email or "").lower() and needle != str(order.id):
            continue
        projected = project(order, now)
        if state and projected.state != state:
            continue
        results.append((order, projected))
    return results


def cash_order_stats(now: datetime | None = None) -> dict:
    """Counts per projected state and the total amount of validated cash orders."""
    now = now or utcnow()
    counts = {s: 0 for s in CASH_STATES}
    validated_amount = 0
    for order in _cash_orders():
        projected = project(order, now)
        counts[projected.state] += 1
        if projected.state == CASH_STATE_VALIDATED:
            validated_amount += order.total_amount_cents
    return {**counts, "validated_amount_cents": validated_amount}
