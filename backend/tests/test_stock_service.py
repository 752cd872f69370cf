"""
Variant stock tests.

Verifies:
- Item deltas are netted per variant
- Decrements clamp at zero
- Every change writes one movement with previous/new snapshots
"""

from dataclasses import dataclass

import pytest

from merch_admin.models import StockMovement
from merch_admin.services import stock_service
from merch_admin.services.stock_service import StockError, VariantNotFoundError


@dataclass
class Line:
    product_variant_id: int
    quantity: int


class TestComputeItemDeltas:
    def test_reduced_line_restores_difference(self):
        assert stock_service.compute_item_deltas([Line(1, 250)], [Line(1, 100)]) == {1: 150}

    def test_added_line_consumes(self):
        assert stock_service.compute_item_deltas([Line(1, 2)], [Line(1, 2), Line(2, 3)]) == {2: -3}

    def test_removed_line_restores_all(self):
        assert stock_service.compute_item_deltas([Line(1, 2), Line(2, 4)], [Line(1, 2)]) == {2: 4}

    def test_duplicate_lines_are_summed(self):
        old = [Line(1, 1), Line(1, 2)]
        new = [Line(1, 3)]
        assert stock_service.compute_item_deltas(old, new) == {}

    def test_swapped_variant(self):
        assert stock_service.compute_item_deltas([Line(1, 2)], [Line(2, 2)]) == {1: 2, 2: -2}


class TestAdjustQuantity:
    def test_decrement_clamps_at_zero(self, db_session, make_product):
        product = make_product(sizes=(("M", 3, 2500),))
        variant = product.variants[0]

        result = stock_service.adjust_quantity(
            variant.id, -5, movement_type=stock_service.MOVEMENT_REDUCE, reason="test"
        )
        db_session.commit()

        assert result.previous_quantity == 3
        assert result.new_quantity == 0
        assert variant.quantity == 0

        movement = (
            db_session.query(StockMovement)
            .filter_by(product_variant_id=variant.id, movement_type=stock_service.MOVEMENT_REDUCE)
            .one()
        )
        assert movement.quantity_delta == -5
        assert movement.previous_quantity == 3
        assert movement.new_quantity == 0

    def test_unknown_movement_type_rejected(self, db_session, make_product):
        product = make_product()
        with pytest.raises(StockError):
            stock_service.adjust_quantity(product.variants[0].id, 1, movement_type="teleport")

    def test_unknown_variant(self, db_session):
        with pytest.raises(VariantNotFoundError):
            stock_service.adjust_quantity(9999, 1, movement_type=stock_service.MOVEMENT_RESTORE)


class TestSetQuantity:
    def test_logs_signed_difference(self, db_session, make_product):
        product = make_product(sizes=(("L", 10, 2500),))
        variant_id = product.variants[0].id

        result = stock_service.set_quantity(variant_id, 4, reason="Stock count")

        assert result.delta == -6
        assert result.new_quantity == 4
        movements = stock_service.list_movements(variant_id=variant_id)
        # newest first: the adjustment, then the opening quantity
        assert [m.quantity_delta for m in movements] == [-6, 10]
        assert movements[0].reason == "Stock count"

    def test_negative_rejected(self, db_session, make_product):
        product = make_product()
        with pytest.raises(StockError):
            stock_service.set_quantity(product.variants[0].id, -1)
