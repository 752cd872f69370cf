"""
Optimistic locking and retry tests.

Verifies:
- run_with_retry retries StaleDataError and gives up with ConcurrencyConflictError
- Every failed attempt rolls the session back
- A bumped version_id on ProductVariant is detected at flush time
- Routes report an exhausted retry as 409
"""

import pytest
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from merch_admin.models import Category, ProductVariant
from merch_admin.services import concurrency, orders_service
from merch_admin.services.concurrency import ConcurrencyConflictError, run_with_retry


def _bump_version(session, variant_id):
    """Simulate another writer committing a change to the row."""
    table = ProductVariant.__table__
    session.execute(
        update(table)
        .where(table.c.id == variant_id)
        .values(version_id=table.c.version_id + 1)
    )


@pytest.fixture
def no_sleep(monkeypatch):
    delays = []
    monkeypatch.setattr(concurrency.time, "sleep", delays.append)
    return delays


# =============================================================================
# RETRY LOOP
# =============================================================================


class TestRunWithRetry:
    def test_gives_up_after_three_stale_attempts(self, db_session, no_sleep):
        calls = []

        def _op():
            calls.append(1)
            db_session.add(Category(name=f"Pending {len(calls)}"))
            raise StaleDataError("row changed")

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            run_with_retry(_op)

        assert len(calls) == 3
        assert exc_info.value.details == {"attempts": 3}
        assert isinstance(exc_info.value.__cause__, StaleDataError)
        assert no_sleep == [0.1, 0.2]
        assert list(db_session.new) == []
        assert db_session.query(Category).count() == 0

    def test_second_attempt_succeeds(self, db_session, no_sleep):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("row changed")
            return "done"

        assert run_with_retry(_op) == "done"
        assert len(calls) == 2
        assert no_sleep == [0.1]

    def test_other_errors_are_not_retried(self, db_session, no_sleep):
        calls = []

        def _op():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(_op)

        assert len(calls) == 1
        assert no_sleep == []


# =============================================================================
# VERSION COLUMN
# =============================================================================


class TestVersionConflict:
    def test_flush_detects_bumped_version(self, db_session, make_product):
        product = make_product(sizes=(("M", 10, 2500),))
        variant = db_session.get(ProductVariant, product.variants[0].id)
        assert variant.quantity == 10

        _bump_version(db_session, variant.id)
        variant.quantity = 9

        with pytest.raises(StaleDataError):
            db_session.flush()
        db_session.rollback()

    def test_retry_recovers_from_real_conflict(self, db_session, make_product, no_sleep):
        product = make_product(sizes=(("M", 10, 2500),))
        variant_id = product.variants[0].id
        calls = []

        def _op():
            variant = db_session.get(ProductVariant, variant_id)
            current = variant.quantity
            if not calls:
                _bump_version(db_session, variant_id)
            calls.append(1)
            variant.quantity = current - 1
            db_session.commit()
            return variant

        variant = run_with_retry(_op)

        assert len(calls) == 2
        assert variant.quantity == 9

    def test_update_bumps_version(self, db_session, make_product):
        product = make_product(sizes=(("M", 10, 2500),))
        variant = product.variants[0]
        before = variant.version_id

        variant.quantity = 8
        db_session.commit()

        assert variant.version_id == before + 1


class TestConflictResponses:
    def test_exhausted_retry_is_409(self, client, manager_headers, make_product, monkeypatch):
        product = make_product()
        order = orders_service.create_order(
            customer_name="Ana",
            customer_email="ana@example.com",
            items=[orders_service.OrderItemInput(product.variants[0].id, 1)],
        )

        def _conflict(*args, **kwargs):
            raise ConcurrencyConflictError(details={"attempts": 3})

        monkeypatch.setattr(orders_service, "update_order_items", _conflict)

        resp = client.put(
            f"/api/orders/{order.id}/items",
            json={"items": [{"product_variant_id": product.variants[0].id, "quantity": 2}]},
            headers=manager_headers,
        )
        assert resp.status_code == 409
