"""
Order Service - merchandise order lifecycle and stock reconciliation

WHY: An order moves stock at creation, on every item edit, and again when it
is cancelled or returned. Each of those is one unit of work: order rows,
variant quantities and stock movements are written in a single transaction
(run_with_retry), so a failure part-way leaves nothing behind.

STATE MACHINE:
    waiting_payment ─┬─> pending ─┬─> delivered ─┬─> cancelled
                     │            │              └─> returned
                     ├────────────┴─> cancelled
                     └─> delivered        pending ──> returned

- cancel:  waiting_payment | pending | delivered  -> cancelled
- return:  pending | delivered                     -> returned
- deliver: waiting_payment | pending               -> delivered
- cancelled / returned are terminal; repeating cancel/return is rejected,
  so stock is never restored twice.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Order, OrderItem, ProductVariant, Stand
from ..time_utils import utcnow
from ..validation import ConflictError
from . import stock_service
from .concurrency import lock_for_update, run_with_retry


ORDER_STATUS_WAITING_PAYMENT = "waiting_payment"
ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUS_RETURNED = "returned"

ORDER_STATUSES = (
    ORDER_STATUS_WAITING_PAYMENT,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_RETURNED,
)
CLOSED_STATUSES = {ORDER_STATUS_CANCELLED, ORDER_STATUS_RETURNED}

CANCELLABLE_STATUSES = {ORDER_STATUS_WAITING_PAYMENT, ORDER_STATUS_PENDING, ORDER_STATUS_DELIVERED}
RETURNABLE_STATUSES = {ORDER_STATUS_PENDING, ORDER_STATUS_DELIVERED}
DELIVERABLE_STATUSES = {ORDER_STATUS_WAITING_PAYMENT, ORDER_STATUS_PENDING}

PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHODS = (PAYMENT_METHOD_CARD, PAYMENT_METHOD_CASH, "pos", "qr_mercadopago", "transfer")

SALE_TYPE_POS = "POS"
SALE_TYPE_ONLINE = "Online"
SALE_TYPES = (SALE_TYPE_POS, SALE_TYPE_ONLINE)

DEFAULT_CANCEL_REASON = "Cancelled by administrator"


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderNotFoundError(OrderError):
    pass


class OrderStateError(OrderError):
    """The requested transition is not allowed from the order's current status."""


class InsufficientStockError(OrderError):
    """An order line asks for more units than the variant holds."""


@dataclass(frozen=True)
class OrderItemInput:
    product_variant_id: int
    quantity: int
    unit_price_cents: int | None = None


@dataclass
class OrderFilters:
    email: str | None = None
    status: str | None = None
    sale_type: str | None = None
    payment_method: str | None = None
    payment_validated: bool | None = None
    stand_id: int | None = None
    product_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


def generate_qr_code() -> str:
    """Unique pickup token, e.g. ORDER_1718031234567_9f2c4a1b0e."""
    return f"ORDER_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def calculate_total(items) -> int:
    return sum(item.quantity * item.unit_price_cents for item in items)


def _require_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    order = query.first()
    if order is None:
        raise OrderNotFoundError("Order not found", details={"order_id": order_id})
    return order


def _resolve_items(items: list[OrderItemInput]) -> list[OrderItem]:
    """Build OrderItem rows, snapshotting the variant price where none was given."""
    resolved = []
    missing = []
    for item in items:
        if item.quantity <= 0:
            raise OrderError("Item quantity must be positive", details={"product_variant_id": item.product_variant_id})
        if item.unit_price_cents is not None and item.unit_price_cents < 0:
            raise OrderError("Unit price must be >= 0", details={"product_variant_id": item.product_variant_id})
        variant = db.session.get(ProductVariant, item.product_variant_id)
        if variant is None:
            missing.append(item.product_variant_id)
            continue
        unit_price = item.unit_price_cents if item.unit_price_cents is not None else variant.price_cents
        resolved.append(OrderItem(
            product_variant_id=variant.id,
            quantity=item.quantity,
            unit_price_cents=unit_price,
        ))
    if missing:
        raise OrderError("Product variant not found", details={"variant_ids": missing})
    return resolved


def _require_available(needed: dict[int, int]) -> None:
    """
    Lock each variant and reject the whole batch if any would go below zero.

    Runs before any stock write so a rejected order or edit leaves nothing
    behind. needed maps variant id -> units to take.
    """
    short = []
    for variant_id in sorted(needed):
        quantity = needed[variant_id]
        if quantity <= 0:
            continue
        variant = stock_service.get_variant(variant_id, lock=True)
        if quantity > variant.quantity:
            short.append({
                "product_variant_id": variant_id,
                "requested": quantity,
                "available": variant.quantity,
            })
    if short:
        raise InsufficientStockError("Insufficient stock", details={"items": short})


def _check_choices(payment_method: str | None, sale_type: str | None = None) -> None:
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise OrderError(f"Invalid payment method: {payment_method}", details={"allowed": list(PAYMENT_METHODS)})
    if sale_type is not None and sale_type not in SALE_TYPES:
        raise OrderError(f"Invalid sale type: {sale_type}", details={"allowed": list(SALE_TYPES)})


def _require_stand(stand_id: int | None) -> None:
    if stand_id is None:
        return
    stand = db.session.get(Stand, stand_id)
    if stand is None or not stand.is_active:
        raise OrderError("Stand not found", details={"stand_id": stand_id})


def get_order(order_id: int) -> Order | None:
    return db.session.get(Order, order_id)


def get_order_by_qr(qr_code: str) -> Order | None:
    if not qr_code:
        return None
    return db.session.query(Order).filter(Order.qr_code == qr_code).first()


def list_orders(filters: OrderFilters | None = None) -> list[Order]:
    """Newest first, narrowed by any filters that are set."""
    filters = filters or OrderFilters()
    query = db.session.query(Order)

    if filters.email:
        query = query.filter(Order.customer_email.ilike(f"%{filters.email}%"))
    if filters.status:
        query = query.filter(Order.status == filters.status)
    if filters.sale_type:
        query = query.filter(Order.sale_type == filters.sale_type)
    if filters.payment_method:
        query = query.filter(Order.payment_method == filters.payment_method)
    if filters.payment_validated is not None:
        query = query.filter(Order.payment_validated == filters.payment_validated)
    if filters.stand_id is not None:
        query = query.filter(or_(
            Order.stand_id == filters.stand_id,
            Order.delivered_by_stand_id == filters.stand_id,
        ))
    if filters.product_id is not None:
        query = query.filter(Order.items.any(
            OrderItem.product_variant.has(ProductVariant.product_id == filters.product_id)
        ))
    if filters.date_from is not None:
        query = query.filter(Order.created_at >= filters.date_from)
    if filters.date_to is not None:
        query = query.filter(Order.created_at <= filters.date_to)

    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def create_order(
    *,
    customer_name: str,
    customer_email: str,
    items: list[OrderItemInput],
    payment_method: str | None = None,
    sale_type: str = SALE_TYPE_ONLINE,
    stand_id: int | None = None,
    user_id: int | None = None,
    qr_code: str | None = None,
    payment_validated: bool = False,
    actor_user_id: int | None = None,
) -> Order:
    """
    Create an order with its items.

    Status starts as waiting_payment for unvalidated cash orders, otherwise
    pending. With RESERVE_STOCK_ON_CREATE the items consume stock right away
    (reduce movements), which is what later edit/cancel/return deltas assume.
    An order asking for more units than a variant holds is rejected with
    InsufficientStockError before anything is written.
    """
    if not items:
        raise OrderError("Order must have at least one item")
    _check_choices(payment_method, sale_type)

    reserve = current_app.config.get("RESERVE_STOCK_ON_CREATE", True)

    def _op():
        _require_stand(stand_id)
        if qr_code and get_order_by_qr(qr_code) is not None:
            raise ConflictError(f"QR code already in use: {qr_code}")

        lines = _resolve_items(items)
        needed = stock_service.sum_by_variant(lines)
        if reserve:
            _require_available(needed)
        unpaid_cash = payment_method == PAYMENT_METHOD_CASH and not payment_validated

        order = Order(
            user_id=user_id,
            customer_name=customer_name,
            customer_email=customer_email,
            qr_code=qr_code or generate_qr_code(),
            status=ORDER_STATUS_WAITING_PAYMENT if unpaid_cash else ORDER_STATUS_PENDING,
            payment_method=payment_method,
            payment_validated=payment_validated,
            total_amount_cents=calculate_total(lines),
            sale_type=sale_type,
            stand_id=stand_id,
            created_at=utcnow(),
        )
        order.items = lines
        db.session.add(order)
        db.session.flush()

        if reserve:
            for variant_id, quantity in needed.items():
                stock_service.adjust_quantity(
                    variant_id,
                    -quantity,
                    movement_type=stock_service.MOVEMENT_REDUCE,
                    reason=f"Order {order.id}",
                    order_id=order.id,
                    stand_id=stand_id,
                    user_id=actor_user_id,
                )

        db.session.commit()
        return order

    return run_with_retry(_op)


def update_order_items(
    order_id: int,
    items: list[OrderItemInput],
    actor_user_id: int | None = None,
) -> Order:
    """
    Replace an order's items and reconcile stock against the previous set.

    Net effect on each variant is exactly (old total - new total) for that
    variant: removed/reduced lines restore, added/increased lines reduce,
    unchanged variants are not touched. The total is recomputed from the
    new items. Increases beyond the available stock raise
    InsufficientStockError.
    """
    if not items:
        raise OrderError("Order must keep at least one item; cancel it instead")

    def _op():
        order = _require_order(order_id, lock=True)
        if order.status in CLOSED_STATUSES:
            raise OrderStateError(
                f"Cannot edit items of a {order.status} order",
                details={"status": order.status},
            )

        new_lines = _resolve_items(items)
        deltas = stock_service.compute_item_deltas(order.items, new_lines)
        _require_available({variant_id: -delta for variant_id, delta in deltas.items() if delta < 0})

        for variant_id, delta in deltas.items():
            stock_service.adjust_quantity(
                variant_id,
                delta,
                movement_type=stock_service.MOVEMENT_RESTORE if delta > 0 else stock_service.MOVEMENT_REDUCE,
                reason=f"Order edit for {order.id}",
                order_id=order.id,
                user_id=actor_user_id,
            )

        # delete-orphan cascade removes the previous rows
        order.items = new_lines
        order.total_amount_cents = calculate_total(new_lines)

        db.session.commit()
        return order

    return run_with_retry(_op)


def _close_order(
    order_id: int,
    *,
    target_status: str,
    allowed: set[str],
    reason: str,
    movement_type: str,
    movement_reason: str,
    actor_user_id: int | None,
) -> Order:
    def _op():
        order = _require_order(order_id, lock=True)
        if order.status == target_status:
            raise OrderStateError(
                f"Order already {target_status}",
                details={"status": order.status},
            )
        if order.status not in allowed:
            raise OrderStateError(
                f"Cannot mark a {order.status} order as {target_status}",
                details={"status": order.status},
            )

        order.status = target_status
        order.return_requested = True
        order.return_reason = reason
        order.return_timestamp = utcnow()
        order.refund_amount_cents = order.total_amount_cents

        for variant_id, quantity in stock_service.sum_by_variant(order.items).items():
            stock_service.adjust_quantity(
                variant_id,
                quantity,
                movement_type=movement_type,
                reason=movement_reason,
                order_id=order.id,
                user_id=actor_user_id,
            )

        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int, reason: str | None = None, actor_user_id: int | None = None) -> Order:
    """Cancel an open or delivered order and put every item back in stock."""
    return _close_order(
        order_id,
        target_status=ORDER_STATUS_CANCELLED,
        allowed=CANCELLABLE_STATUSES,
        reason=reason or DEFAULT_CANCEL_REASON,
        movement_type=stock_service.MOVEMENT_CANCELLATION,
        movement_reason=f"Cancellation for order {order_id}",
        actor_user_id=actor_user_id,
    )


def return_order(order_id: int, reason: str, actor_user_id: int | None = None) -> Order:
    """Process a customer return: refund the full total and restock every item."""
    if not reason or not reason.strip():
        raise OrderError("reason required")
    return _close_order(
        order_id,
        target_status=ORDER_STATUS_RETURNED,
        allowed=RETURNABLE_STATUSES,
        reason=reason.strip(),
        movement_type=stock_service.MOVEMENT_RETURN,
        movement_reason=f"Return for order {order_id}: {reason.strip()}",
        actor_user_id=actor_user_id,
    )


def validate_payment(order_id: int, payment_method: str | None = None) -> Order:
    """Mark the payment as received, optionally correcting the method. No stock effect."""
    _check_choices(payment_method)

    def _op():
        order = _require_order(order_id, lock=True)
        order.payment_validated = True
        if payment_method:
            order.payment_method = payment_method
        db.session.commit()
        return order

    return run_with_retry(_op)


def deliver_locked(order: Order, stand_id: int | None) -> Order:
    """
    Apply the delivered transition to an already-locked order.

    Shared by the manual route and the QR scan flow; the caller commits.
    """
    if order.status == ORDER_STATUS_DELIVERED:
        raise OrderStateError("Order already delivered", details={"status": order.status})
    if order.status not in DELIVERABLE_STATUSES:
        raise OrderStateError(
            f"Cannot deliver a {order.status} order",
            details={"status": order.status},
        )
    _require_stand(stand_id)

    order.status = ORDER_STATUS_DELIVERED
    order.delivered_by_stand_id = stand_id
    order.delivery_timestamp = utcnow()
    return order


def mark_delivered(order_id: int, stand_id: int | None = None) -> Order:
    def _op():
        order = _require_order(order_id, lock=True)
        deliver_locked(order, stand_id)
        db.session.commit()
        return order

    return run_with_retry(_op)


def delete_order(order_id: int) -> None:
    """Remove a closed order. Open orders must be cancelled first so their stock comes back."""
    def _op():
        order = _require_order(order_id, lock=True)
        if order.status not in CLOSED_STATUSES:
            raise OrderStateError(
                "Only cancelled or returned orders can be deleted",
                details={"status": order.status},
            )
        db.session.delete(order)
        db.session.commit()

    run_with_retry(_op)


def get_sales_stats() -> dict:
    """Dashboard counters. Revenue and units exclude cancelled and returned orders."""
    open_filter = Order.status.notin_(CLOSED_STATUSES)

    total_sales_cents = db.session.query(
        func.coalesce(func.sum(Order.total_amount_cents), 0)
    ).filter(open_filter).scalar()

    total_products = db.session.query(
        func.coalesce(func.sum(OrderItem.quantity), 0)
    ).join(Order, OrderItem.order_id == Order.id).filter(open_filter).scalar()

    total_sales_count = db.session.query(Order).filter(open_filter).count()
    validated_sales = db.session.query(Order).filter(open_filter, Order.payment_validated.is_(True)).count()
    pending_validation = db.session.query(Order).filter(open_filter, Order.payment_validated.is_(False)).count()
    returned_sales = db.session.query(Order).filter(Order.status.in_(CLOSED_STATUSES)).count()
    cash_orders_pending = db.session.query(Order).filter(
        Order.payment_method == PAYMENT_METHOD_CASH,
        Order.payment_validated.is_(False),
    ).count()

    return {
        "total_sales_cents": int(total_sales_cents or 0),
        "total_products": int(total_products or 0),
        "total_sales_count": total_sales_count,
        "validated_sales": validated_sales,
        "pending_validation": pending_validation,
        "returned_sales": returned_sales,
        "cash_orders_pending": cash_orders_pending,
    }
