"""
Cash-order expiry projection tests.
"""

from datetime import datetime, timedelta

import pytest

from merch_admin.services import cash_order_service, orders_service
from merch_admin.services.cash_order_service import derive_cash_order_state
from merch_admin.services.orders_service import OrderItemInput
from merch_admin.time_utils import utcnow

CREATED = datetime(2026, 10, 19, 20, 0, 0)


class TestDeriveState:
    def test_pending_with_remaining_minutes(self):
        state = derive_cash_order_state(CREATED, CREATED + timedelta(minutes=10), False, "waiting_payment")
        assert state.state == cash_order_service.CASH_STATE_PENDING
        assert state.remaining_minutes == 20
        assert state.minutes_elapsed == 10

    def test_partial_minutes_are_floored(self):
        state = derive_cash_order_state(CREATED, CREATED + timedelta(minutes=29, seconds=59), False, "pending")
        assert state.state == cash_order_service.CASH_STATE_PENDING
        assert state.remaining_minutes == 1

    def test_exactly_thirty_minutes_still_pending(self):
        state = derive_cash_order_state(CREATED, CREATED + timedelta(minutes=30), False, "pending")
        assert state.state == cash_order_service.CASH_STATE_PENDING
        assert state.remaining_minutes == 0

    def test_expired_after_thirty_minutes(self):
        state = derive_cash_order_state(CREATED, CREATED + timedelta(minutes=31), False, "waiting_payment")
        assert state.state == cash_order_service.CASH_STATE_EXPIRED
        assert state.remaining_minutes == 0

    def test_validated_wins_over_age(self):
        state = derive_cash_order_state(CREATED, CREATED + timedelta(hours=5), True, "pending")
        assert state.state == cash_order_service.CASH_STATE_VALIDATED
        assert state.remaining_minutes == 0

    @pytest.mark.parametrize("status", ["cancelled", "returned"])
    def test_closed_orders_are_cancelled(self, status):
        state = derive_cash_order_state(CREATED, CREATED + timedelta(minutes=1), True, status)
        assert state.state == cash_order_service.CASH_STATE_CANCELLED
        assert state.remaining_minutes == 0

    def test_custom_expiry(self):
        state = derive_cash_order_state(CREATED, CREATED + timedelta(minutes=11), False, "pending", expiry_minutes=10)
        assert state.state == cash_order_service.CASH_STATE_EXPIRED


class TestCashOrderListing:
    @pytest.fixture
    def cash_orders(self, db_session, make_product):
        product = make_product(sizes=(("M", 20, 1000),))
        variant_id = product.variants[0].id

        def _cash(email, quantity=1, age_minutes=0, validated=False):
            order = orders_service.create_order(
                customer_name=email.split("@")[0],
                customer_email=email,
                items=[OrderItemInput(variant_id, quantity)],
                payment_method="cash",
                payment_validated=validated,
            )
            order.created_at = utcnow() - timedelta(minutes=age_minutes)
            db_session.commit()
            return order

        fresh = _cash("fresh@example.com", age_minutes=5)
        stale = _cash("stale@example.com", age_minutes=45)
        paid = _cash("paid@example.com", quantity=3, validated=True)
        dropped = _cash("dropped@example.com")
        orders_service.cancel_order(dropped.id)

        # non-cash orders never show up
        orders_service.create_order(
            customer_name="card",
            customer_email="card@example.com",
            items=[OrderItemInput(variant_id, 1)],
            payment_method="card",
        )
        return {"fresh": fresh, "stale": stale, "paid": paid, "dropped": dropped}

    def test_states_projected(self, cash_orders):
        states = {order.customer_email: projected.state for order, projected in cash_order_service.list_cash_orders()}
        assert states == {
            "fresh@example.com": "pending",
            "stale@example.com": "expired",
            "paid@example.com": "validated",
            "dropped@example.com": "cancelled",
        }

    def test_filter_by_state(self, cash_orders):
        rows = cash_order_service.list_cash_orders(state="expired")
        assert [order.id for order, _ in rows] == [cash_orders["stale"].id]

    def test_search_by_email_or_id(self, cash_orders):
        by_email = cash_order_service.list_cash_orders(search="FRESH")
        assert [order.id for order, _ in by_email] == [cash_orders["fresh"].id]

        by_id = cash_order_service.list_cash_orders(search=str(cash_orders["paid"].id))
        assert [order.id for order, _ in by_id] == [cash_orders["paid"].id]

    def test_projection_is_not_persisted(self, cash_orders, db_session):
        cash_order_service.list_cash_orders()
        stale = orders_service.get_order(cash_orders["stale"].id)
        assert stale.status == orders_service.ORDER_STATUS_WAITING_PAYMENT

    def test_stats(self, cash_orders):
        stats = cash_order_service.cash_order_stats()
        assert stats["pending"] == 1
        assert stats["expired"] == 1
        assert stats["validated"] == 1
        assert stats["cancelled"] == 1
        assert stats["validated_amount_cents"] == 3000
