# Overview: Pickup QR scanning; looks an order up by its token and hands it over.

"""
QR delivery flow.

A scanned value is matched against Order.qr_code by exact equality. Scanning
never raises for a bad or unknown code: the outcome says what happened so
the stand UI can show it.

Outcomes:
- delivered:        order was waiting_payment/pending and is now delivered
- already_delivered: order was handed over earlier (nothing changes)
- not_deliverable:  order is cancelled or returned
- invalid:          no order carries this code
- ready:            lookup only, order can be delivered
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Order
from . import orders_service
from .concurrency import lock_for_update, run_with_retry

SCAN_DELIVERED = "delivered"
SCAN_ALREADY_DELIVERED = "already_delivered"
SCAN_NOT_DELIVERABLE = "not_deliverable"
SCAN_INVALID = "invalid"
SCAN_READY = "ready"

SCAN_MESSAGES = {
    SCAN_DELIVERED: "Order delivered",
    SCAN_ALREADY_DELIVERED: "Order was already delivered",
    SCAN_NOT_DELIVERABLE: "Order cannot be delivered",
    SCAN_INVALID: "Invalid QR code",
    SCAN_READY: "Order ready for delivery",
}


@dataclass(frozen=True)
class ScanResult:
    outcome: str
    order: Order | None = None

    @property
    def message(self) -> str:
        return SCAN_MESSAGES[self.outcome]

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "message": self.message,
            "order": self.order.to_dict() if self.order is not None else None,
        }


def _outcome_for(order: Order | None) -> str:
    if order is None:
        return SCAN_INVALID
    if order.status == orders_service.ORDER_STATUS_DELIVERED:
        return SCAN_ALREADY_DELIVERED
    if order.status not in orders_service.DELIVERABLE_STATUSES:
        return SCAN_NOT_DELIVERABLE
    return SCAN_READY


def _normalize(qr_value: str | None) -> str:
    return (qr_value or "").strip()


def lookup(qr_value: str | None) -> ScanResult:
    order = orders_service.get_order_by_qr(_normalize(qr_value))
    return ScanResult(outcome=_outcome_for(order), order=order)


def confirm_delivery(qr_value: str | None, stand_id: int | None = None) -> ScanResult:
    """
    Deliver the order behind a scanned code.

    The order row is re-read under lock so two stands scanning the same code
    resolve to one delivered and one already_delivered.
    """
    qr_value = _normalize(qr_value)
    if not qr_value:
        return ScanResult(outcome=SCAN_INVALID)

    def _op():
        query = db.session.query(Order).filter(Order.qr_code == qr_value)
        order = lock_for_update(query).populate_existing().first()
        outcome = _outcome_for(order)
        if outcome != SCAN_READY:
            return ScanResult(outcome=outcome, order=order)

        orders_service.deliver_locked(order, stand_id)
        db.session.commit()
        current_app.logger.info("Order %s delivered by stand %s", order.id, stand_id)
        return ScanResult(outcome=SCAN_DELIVERED, order=order)

    return run_with_retry(_op)
