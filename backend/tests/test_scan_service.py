"""
Pickup QR scan tests: every scanned value resolves to an outcome, never an exception.
"""

from merch_admin.services import orders_service, scan_service
from merch_admin.services.orders_service import OrderItemInput


def _order(variant_id):
    return orders_service.create_order(
        customer_name="Ana Torres",
        customer_email="ana@example.com",
        items=[OrderItemInput(variant_id, 1)],
        payment_method="card",
        payment_validated=True,
    )


class TestLookup:
    def test_unknown_code_is_invalid(self, db_session):
        result = scan_service.lookup("ORDER_0_nothing")
        assert result.outcome == scan_service.SCAN_INVALID
        assert result.order is None
        assert result.to_dict()["message"] == "Invalid QR code"

    def test_open_order_is_ready(self, db_session, make_product):
        product = make_product()
        order = _order(product.variants[0].id)

        result = scan_service.lookup(f"  {order.qr_code} ")

        assert result.outcome == scan_service.SCAN_READY
        assert result.order.id == order.id
        assert orders_service.get_order(order.id).status == orders_service.ORDER_STATUS_PENDING


class TestConfirmDelivery:
    def test_delivers_open_order(self, db_session, make_product, make_stand):
        product = make_product()
        stand = make_stand()
        order = _order(product.variants[0].id)

        result = scan_service.confirm_delivery(order.qr_code, stand_id=stand.id)

        assert result.outcome == scan_service.SCAN_DELIVERED
        assert result.order.status == orders_service.ORDER_STATUS_DELIVERED
        assert result.order.delivered_by_stand_id == stand.id

    def test_second_scan_already_delivered(self, db_session, make_product):
        product = make_product()
        order = _order(product.variants[0].id)
        scan_service.confirm_delivery(order.qr_code)

        result = scan_service.confirm_delivery(order.qr_code)

        assert result.outcome == scan_service.SCAN_ALREADY_DELIVERED

    def test_cancelled_order_not_deliverable(self, db_session, make_product):
        product = make_product()
        order = _order(product.variants[0].id)
        orders_service.cancel_order(order.id)

        result = scan_service.confirm_delivery(order.qr_code)

        assert result.outcome == scan_service.SCAN_NOT_DELIVERABLE
        assert orders_service.get_order(order.id).status == orders_service.ORDER_STATUS_CANCELLED

    def test_empty_and_unknown_codes(self, db_session):
        assert scan_service.confirm_delivery("").outcome == scan_service.SCAN_INVALID
        assert scan_service.confirm_delivery(None).outcome == scan_service.SCAN_INVALID
        assert scan_service.confirm_delivery("STAND_ABC").outcome == scan_service.SCAN_INVALID
