# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/merch_admin/routes/orders.py
"""
Order routes.

Every mutating route is one service call; the service owns the transaction,
so an error response always means nothing was written.

SECURITY:
- Listing, detail, creation and manual delivery: any authenticated user
- Item edits, cancel, return and payment validation: admin or manager
- Deleting closed orders: admin
"""
from flask import Blueprint, request, current_app, g

from ..services import orders_service, cash_order_service
from ..services.orders_service import (
    OrderError,
    OrderNotFoundError,
    OrderStateError,
    InsufficientStockError,
    OrderFilters,
    OrderItemInput,
)
from ..services.stock_service import StockError
from ..services.concurrency import ConcurrencyConflictError
from ..validation import parse_order_items, parse_bool_arg, coerce_bool, coerce_int, ValidationError, ConflictError
from ..time_utils import parse_iso_datetime
from ..decorators import require_auth, require_role

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_error_response(e: Exception):
    if isinstance(e, OrderNotFoundError):
        return {"error": str(e)}, 404
    if isinstance(e, (OrderStateError, InsufficientStockError)):
        return {"error": str(e), "details": e.details}, 409
    if isinstance(e, (ConflictError, ConcurrencyConflictError)):
        return {"error": str(e)}, 409
    if isinstance(e, OrderError):
        return {"error": str(e), "details": e.details}, 400
    return {"error": str(e)}, 400


def _item_inputs(raw) -> list[OrderItemInput]:
    return [OrderItemInput(**item) for item in parse_order_items(raw)]


def _filters_from_args(args) -> OrderFilters:
    try:
        date_from = parse_iso_datetime(args.get("date_from"))
        date_to = parse_iso_datetime(args.get("date_to"))
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO-8601 datetimes")

    return OrderFilters(
        email=args.get("email") or None,
        status=args.get("status") or None,
        sale_type=args.get("sale_type") or None,
        payment_method=args.get("payment_method") or None,
        payment_validated=parse_bool_arg(args.get("payment_validated")),
        stand_id=args.get("stand_id", type=int),
        product_id=args.get("product_id", type=int),
        date_from=date_from,
        date_to=date_to,
    )


@orders_bp.get("")
@require_auth
def list_orders():
    """
    Query params (all optional): email, status, sale_type, payment_method,
    payment_validated, stand_id, product_id, date_from, date_to.
    """
    try:
        filters = _filters_from_args(request.args)
    except ValidationError as e:
        return {"error": str(e)}, 400

    orders = orders_service.list_orders(filters)
    return {"items": [o.to_dict() for o in orders], "count": len(orders)}


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order(order_id: int):
    order = orders_service.get_order(order_id)
    if order is None:
        return {"error": "Order not found"}, 404
    return order.to_dict()


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Body: {customer_name, customer_email, items: [{product_variant_id, quantity,
    unit_price_cents?}], payment_method?, sale_type?, stand_id?, user_id?,
    qr_code?, payment_validated?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        customer_name = (payload.get("customer_name") or "").strip()
        customer_email = (payload.get("customer_email") or "").strip()
        if not customer_name or not customer_email:
            raise ValidationError("customer_name and customer_email are required")
        items = _item_inputs(payload.get("items"))
        stand_id = coerce_int("stand_id", payload["stand_id"]) if payload.get("stand_id") is not None else None
        user_id = coerce_int("user_id", payload["user_id"]) if payload.get("user_id") is not None else None
        payment_validated = coerce_bool("payment_validated", payload.get("payment_validated", False))
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        order = orders_service.create_order(
            customer_name=customer_name,
            customer_email=customer_email,
            items=items,
            payment_method=payload.get("payment_method") or None,
            sale_type=payload.get("sale_type") or orders_service.SALE_TYPE_ONLINE,
            stand_id=stand_id,
            user_id=user_id,
            qr_code=(payload.get("qr_code") or "").strip() or None,
            payment_validated=payment_validated,
            actor_user_id=g.current_user.id,
        )
    except (OrderError, StockError, ConflictError, ConcurrencyConflictError) as e:
        return _order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Order %s created by user %s", order.id, g.current_user.id)
    return order.to_dict(), 201


@orders_bp.put("/<int:order_id>/items")
@require_auth
@require_role("admin", "manager")
def update_items_route(order_id: int):
    """
    Replace the order's items. Stock moves by the per-variant difference
    between the old and new lines, and the total is recomputed.
    """
    payload = request.get_json(silent=True) or {}
    try:
        items = _item_inputs(payload.get("items"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        order = orders_service.update_order_items(order_id, items, actor_user_id=g.current_user.id)
    except (OrderError, StockError, ConcurrencyConflictError) as e:
        return _order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update items of order %s", order_id)
        return {"error": "Internal server error"}, 500

    return order.to_dict(), 200


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_role("admin", "manager")
def cancel_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        order = orders_service.cancel_order(
            order_id,
            reason=(payload.get("reason") or "").strip() or None,
            actor_user_id=g.current_user.id,
        )
    except (OrderError, StockError, ConcurrencyConflictError) as e:
        return _order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order %s", order_id)
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Order %s cancelled by user %s", order_id, g.current_user.id)
    return order.to_dict(), 200


@orders_bp.post("/<int:order_id>/return")
@require_auth
@require_role("admin", "manager")
def return_order_route(order_id: int):
    """Body: {reason}. Refunds the full total and restocks every line."""
    payload = request.get_json(silent=True) or {}
    try:
        order = orders_service.return_order(
            order_id,
            reason=payload.get("reason") or "",
            actor_user_id=g.current_user.id,
        )
    except (OrderError, StockError, ConcurrencyConflictError) as e:
        return _order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to return order %s", order_id)
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Order %s returned by user %s", order_id, g.current_user.id)
    return order.to_dict(), 200


@orders_bp.post("/<int:order_id>/validate-payment")
@require_auth
@require_role("admin", "manager")
def validate_payment_route(order_id: int):
    """Body: {payment_method?}. Marks payment received; status and stock are unchanged."""
    payload = request.get_json(silent=True) or {}
    try:
        order = orders_service.validate_payment(order_id, payment_method=payload.get("payment_method") or None)
    except (OrderError, ConcurrencyConflictError) as e:
        return _order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate payment of order %s", order_id)
        return {"error": "Internal server error"}, 500

    return order.to_dict(), 200


@orders_bp.post("/<int:order_id>/deliver")
@require_auth
def deliver_order_route(order_id: int):
    """Body: {stand_id?}. Manual hand-over without scanning."""
    payload = request.get_json(silent=True) or {}
    try:
        stand_id = coerce_int("stand_id", payload["stand_id"]) if payload.get("stand_id") is not None else None
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        order = orders_service.mark_delivered(order_id, stand_id=stand_id)
    except (OrderError, ConcurrencyConflictError) as e:
        return _order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deliver order %s", order_id)
        return {"error": "Internal server error"}, 500

    return order.to_dict(), 200


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_role("admin")
def delete_order_route(order_id: int):
    try:
        orders_service.delete_order(order_id)
    except (OrderError, ConcurrencyConflictError) as e:
        return _order_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete order %s", order_id)
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Order %s deleted by user %s", order_id, g.current_user.id)
    return {"ok": True}, 200


@orders_bp.get("/stats")
@require_auth
def sales_stats():
    return orders_service.get_sales_stats()


# =============================================================================
# Cash orders
# =============================================================================

@orders_bp.get("/cash")
@require_auth
def list_cash_orders():
    """
    Cash orders with their projected state.

    Query params: state (pending|validated|expired|cancelled), search (email or id).
    """
    state = request.args.get("state") or None
    if state is not None and state not in cash_order_service.CASH_STATES:
        return {"error": f"Invalid state: {state}"}, 400

    rows = cash_order_service.list_cash_orders(state=state, search=request.args.get("search"))
    items = []
    for order, projected in rows:
        data = order.to_dict()
        data["cash_state"] = projected.to_dict()
        items.append(data)
    return {"items": items, "count": len(items)}


@orders_bp.get("/cash/stats")
@require_auth
def cash_order_stats():
    return cash_order_service.cash_order_stats()
