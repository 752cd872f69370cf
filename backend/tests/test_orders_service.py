"""
Order lifecycle tests.

Verifies:
- Creation reserves stock and picks the initial status
- Orders and edits beyond the available stock are rejected before any write
- Item edits move stock by the per-variant difference and recompute the total
- Cancel / return restore every line exactly once
- Deletion is limited to closed orders
"""

import pytest

from merch_admin.models import Order, StockMovement
from merch_admin.services import orders_service, stock_service
from merch_admin.services.orders_service import (
    InsufficientStockError,
    OrderError,
    OrderItemInput,
    OrderStateError,
    OrderNotFoundError,
    OrderFilters,
)
from merch_admin.validation import ConflictError


def _create(variant_id, quantity=1, **kwargs):
    kwargs.setdefault("customer_name", "Ana Torres")
    kwargs.setdefault("customer_email", "ana@example.com")
    return orders_service.create_order(items=[OrderItemInput(variant_id, quantity)], **kwargs)


# =============================================================================
# CREATION
# =============================================================================


class TestCreateOrder:
    def test_reserves_stock_and_snapshots_price(self, db_session, make_product):
        product = make_product(sizes=(("M", 10, 2500),))
        variant = product.variants[0]

        order = _create(variant.id, 3, payment_method="card")

        assert order.status == orders_service.ORDER_STATUS_PENDING
        assert order.total_amount_cents == 7500
        assert order.items[0].unit_price_cents == 2500
        assert order.qr_code.startswith("ORDER_")
        assert variant.quantity == 7

        movement = db_session.query(StockMovement).filter_by(order_id=order.id).one()
        assert movement.movement_type == stock_service.MOVEMENT_REDUCE
        assert movement.quantity_delta == -3

    def test_unpaid_cash_waits_for_payment(self, db_session, make_product):
        product = make_product()
        order = _create(product.variants[0].id, payment_method="cash")
        assert order.status == orders_service.ORDER_STATUS_WAITING_PAYMENT

    def test_validated_cash_is_pending(self, db_session, make_product):
        product = make_product()
        order = _create(product.variants[0].id, payment_method="cash", payment_validated=True)
        assert order.status == orders_service.ORDER_STATUS_PENDING

    def test_explicit_unit_price_kept(self, db_session, make_product):
        product = make_product(sizes=(("M", 10, 2500),))
        order = orders_service.create_order(
            customer_name="Ana",
            customer_email="ana@example.com",
            items=[OrderItemInput(product.variants[0].id, 2, unit_price_cents=2000)],
        )
        assert order.total_amount_cents == 4000

    def test_duplicate_qr_rejected(self, db_session, make_product):
        product = make_product()
        _create(product.variants[0].id, qr_code="ORDER_FIXED")
        with pytest.raises(ConflictError):
            _create(product.variants[0].id, qr_code="ORDER_FIXED")

    def test_unknown_variant_writes_nothing(self, db_session, make_product):
        product = make_product(sizes=(("M", 10, 2500),))
        with pytest.raises(OrderError):
            orders_service.create_order(
                customer_name="Ana",
                customer_email="ana@example.com",
                items=[OrderItemInput(product.variants[0].id, 1), OrderItemInput(9999, 1)],
            )
        assert db_session.query(Order).count() == 0
        assert product.variants[0].quantity == 10

    def test_invalid_payment_method(self, db_session, make_product):
        product = make_product()
        with pytest.raises(OrderError):
            _create(product.variants[0].id, payment_method="bitcoin")

    def test_more_than_available_rejected(self, db_session, make_product):
        product = make_product(sizes=(("M", 1, 2500),))
        variant = product.variants[0]
        movements_before = db_session.query(StockMovement).count()

        with pytest.raises(InsufficientStockError) as exc_info:
            _create(variant.id, 3)

        assert exc_info.value.details["items"] == [
            {"product_variant_id": variant.id, "requested": 3, "available": 1}
        ]
        assert db_session.query(Order).count() == 0
        assert db_session.query(StockMovement).count() == movements_before
        assert variant.quantity == 1

    def test_lines_of_same_variant_are_summed(self, db_session, make_product):
        product = make_product(sizes=(("M", 2, 2500),))
        variant_id = product.variants[0].id
        with pytest.raises(InsufficientStockError):
            orders_service.create_order(
                customer_name="Ana",
                customer_email="ana@example.com",
                items=[OrderItemInput(variant_id, 2), OrderItemInput(variant_id, 1)],
            )
        assert product.variants[0].quantity == 2

    def test_last_unit_then_cancel_restores_it(self, db_session, make_product):
        product = make_product(sizes=(("M", 1, 2500),))
        variant = product.variants[0]

        order = _create(variant.id, 1)
        assert variant.quantity == 0

        orders_service.cancel_order(order.id)
        assert variant.quantity == 1

    def test_empty_items(self, db_session):
        with pytest.raises(OrderError):
            orders_service.create_order(customer_name="Ana", customer_email="ana@example.com", items=[])


# =============================================================================
# ITEM EDITS
# =============================================================================


class TestUpdateOrderItems:
    def test_reducing_line_restores_difference(self, db_session, make_product):
        product = make_product(sizes=(("M", 500, 1000),))
        variant = product.variants[0]
        order = _create(variant.id, 250)
        assert variant.quantity == 250

        order = orders_service.update_order_items(order.id, [OrderItemInput(variant.id, 100)])

        assert variant.quantity == 400
        assert order.total_amount_cents == 100_000
        restore = (
            db_session.query(StockMovement)
            .filter_by(order_id=order.id, movement_type=stock_service.MOVEMENT_RESTORE)
            .one()
        )
        assert restore.quantity_delta == 150

    def test_swap_variant(self, db_session, make_product):
        product = make_product(sizes=(("M", 10, 2500), ("L", 10, 2800)))
        medium, large = product.variants
        order = _create(medium.id, 2)

        order = orders_service.update_order_items(order.id, [OrderItemInput(large.id, 3)])

        assert medium.quantity == 10
        assert large.quantity == 7
        assert order.total_amount_cents == 8400
        assert [item.product_variant_id for item in order.items] == [large.id]

    def test_dropping_a_line_and_reducing_another(self, db_session, make_product):
        product = make_product(sizes=(("A", 10, 100), ("B", 10, 50)))
        size_a, size_b = product.variants
        order = orders_service.create_order(
            customer_name="Ana",
            customer_email="ana@example.com",
            items=[OrderItemInput(size_a.id, 2), OrderItemInput(size_b.id, 1)],
        )
        assert order.total_amount_cents == 250
        assert (size_a.quantity, size_b.quantity) == (8, 9)

        order = orders_service.update_order_items(order.id, [OrderItemInput(size_a.id, 1)])

        assert order.total_amount_cents == 100
        assert (size_a.quantity, size_b.quantity) == (9, 10)
        restores = (
            db_session.query(StockMovement)
            .filter_by(order_id=order.id, movement_type=stock_service.MOVEMENT_RESTORE)
            .order_by(StockMovement.product_variant_id)
            .all()
        )
        assert [(m.product_variant_id, m.quantity_delta) for m in restores] == [(size_a.id, 1), (size_b.id, 1)]

    def test_increase_beyond_stock_rejected(self, db_session, make_product):
        product = make_product(sizes=(("M", 3, 2500),))
        variant = product.variants[0]
        order = _create(variant.id, 2)

        with pytest.raises(InsufficientStockError):
            orders_service.update_order_items(order.id, [OrderItemInput(variant.id, 4)])

        assert variant.quantity == 1
        order = orders_service.get_order(order.id)
        assert [item.quantity for item in order.items] == [2]
        assert order.total_amount_cents == 5000

    def test_unchanged_items_write_no_movement(self, db_session, make_product):
        product = make_product()
        variant = product.variants[0]
        order = _create(variant.id, 2)
        before = db_session.query(StockMovement).count()

        orders_service.update_order_items(order.id, [OrderItemInput(variant.id, 2)])

        assert db_session.query(StockMovement).count() == before

    def test_empty_items_rejected(self, db_session, make_product):
        product = make_product()
        order = _create(product.variants[0].id)
        with pytest.raises(OrderError):
            orders_service.update_order_items(order.id, [])

    def test_closed_order_rejected(self, db_session, make_product):
        product = make_product()
        variant = product.variants[0]
        order = _create(variant.id)
        orders_service.cancel_order(order.id)
        with pytest.raises(OrderStateError):
            orders_service.update_order_items(order.id, [OrderItemInput(variant.id, 5)])
        assert variant.quantity == 10


# =============================================================================
# CANCEL / RETURN
# =============================================================================


class TestCloseOrder:
    def test_cancel_restores_stock(self, db_session, make_product):
        product = make_product(sizes=(("M", 10, 2500),))
        variant = product.variants[0]
        order = _create(variant.id, 4)

        order = orders_service.cancel_order(order.id)

        assert order.status == orders_service.ORDER_STATUS_CANCELLED
        assert order.return_reason == orders_service.DEFAULT_CANCEL_REASON
        assert order.refund_amount_cents == 10_000
        assert variant.quantity == 10

    def test_cancel_twice_rejected(self, db_session, make_product):
        product = make_product()
        variant = product.variants[0]
        order = _create(variant.id, 4)
        orders_service.cancel_order(order.id)

        with pytest.raises(OrderStateError):
            orders_service.cancel_order(order.id)
        assert variant.quantity == 10

    def test_return_requires_reason(self, db_session, make_product):
        product = make_product()
        order = _create(product.variants[0].id)
        with pytest.raises(OrderError):
            orders_service.return_order(order.id, reason="  ")

    def test_return_delivered_order(self, db_session, make_product):
        product = make_product()
        variant = product.variants[0]
        order = _create(variant.id, 2)
        orders_service.mark_delivered(order.id)

        order = orders_service.return_order(order.id, reason="Wrong size")

        assert order.status == orders_service.ORDER_STATUS_RETURNED
        assert order.return_requested is True
        assert order.return_reason == "Wrong size"
        assert variant.quantity == 10
        movement = (
            db_session.query(StockMovement)
            .filter_by(order_id=order.id, movement_type=stock_service.MOVEMENT_RETURN)
            .one()
        )
        assert movement.quantity_delta == 2

    def test_return_of_cancelled_order_rejected(self, db_session, make_product):
        product = make_product()
        order = _create(product.variants[0].id)
        orders_service.cancel_order(order.id)
        with pytest.raises(OrderStateError):
            orders_service.return_order(order.id, reason="Changed mind")

    def test_unknown_order(self, db_session):
        with pytest.raises(OrderNotFoundError):
            orders_service.cancel_order(9999)


# =============================================================================
# PAYMENT, DELIVERY, DELETION, STATS
# =============================================================================


class TestOrderLifecycle:
    def test_validate_payment_keeps_status_and_stock(self, db_session, make_product):
        product = make_product()
        variant = product.variants[0]
        order = _create(variant.id, payment_method="cash")

        order = orders_service.validate_payment(order.id, payment_method="transfer")

        assert order.payment_validated is True
        assert order.payment_method == "transfer"
        assert order.status == orders_service.ORDER_STATUS_WAITING_PAYMENT
        assert variant.quantity == 9

    def test_deliver_with_stand(self, db_session, make_product, make_stand):
        product = make_product()
        stand = make_stand()
        order = _create(product.variants[0].id)

        order = orders_service.mark_delivered(order.id, stand_id=stand.id)

        assert order.status == orders_service.ORDER_STATUS_DELIVERED
        assert order.delivered_by_stand_id == stand.id
        assert order.delivery_timestamp is not None

    def test_deliver_twice_rejected(self, db_session, make_product):
        product = make_product()
        order = _create(product.variants[0].id)
        orders_service.mark_delivered(order.id)
        with pytest.raises(OrderStateError):
            orders_service.mark_delivered(order.id)

    def test_delete_requires_closed_order(self, db_session, make_product):
        product = make_product()
        order = _create(product.variants[0].id)

        with pytest.raises(OrderStateError):
            orders_service.delete_order(order.id)

        orders_service.cancel_order(order.id)
        orders_service.delete_order(order.id)
        assert orders_service.get_order(order.id) is None

    def test_list_filters(self, db_session, make_product):
        product = make_product()
        variant_id = product.variants[0].id
        _create(variant_id, customer_email="ana@example.com", payment_method="card")
        _create(variant_id, customer_email="luis@example.com", payment_method="cash")

        assert len(orders_service.list_orders()) == 2
        by_email = orders_service.list_orders(OrderFilters(email="luis"))
        assert [o.customer_email for o in by_email] == ["luis@example.com"]
        cash = orders_service.list_orders(OrderFilters(payment_method="cash", payment_validated=False))
        assert len(cash) == 1
        assert len(orders_service.list_orders(OrderFilters(product_id=product.id))) == 2

    def test_sales_stats(self, db_session, make_product):
        product = make_product(sizes=(("M", 20, 1000),))
        variant_id = product.variants[0].id
        _create(variant_id, 2, payment_method="card", payment_validated=True)
        _create(variant_id, 1, payment_method="cash")
        cancelled = _create(variant_id, 5, payment_method="card")
        orders_service.cancel_order(cancelled.id)

        stats = orders_service.get_sales_stats()

        assert stats["total_sales_cents"] == 3000
        assert stats["total_products"] == 3
        assert stats["total_sales_count"] == 2
        assert stats["validated_sales"] == 1
        assert stats["pending_validation"] == 1
        assert stats["returned_sales"] == 1
        assert stats["cash_orders_pending"] == 1
