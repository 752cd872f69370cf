"""
Catalog tests: variant reconciliation by size and deletion rules.
"""

import pytest

from merch_admin.models import ProductVariant, StandStock, StockMovement
from merch_admin.services import orders_service, products_service, stands_service, stock_service
from merch_admin.services.orders_service import OrderItemInput
from merch_admin.services.products_service import ProductError, ProductInUseError, ProductNotFoundError
from merch_admin.validation import ConflictError


class TestCreateProduct:
    def test_opening_quantities_logged(self, db_session, make_product):
        product = make_product(sizes=(("S", 4, 2500), ("M", 0, 2500)))

        assert product.total_quantity == 4
        assert product.low_stock_threshold == 5
        assert product.is_low_stock is True
        movements = db_session.query(StockMovement).all()
        assert [(m.quantity_delta, m.movement_type) for m in movements] == [(4, stock_service.MOVEMENT_ADJUSTMENT)]

    def test_requires_variants(self, db_session):
        with pytest.raises(ProductError):
            products_service.create_product(patch={"name": "Empty"}, variants=[])

    def test_unknown_category(self, db_session):
        with pytest.raises(ProductError):
            products_service.create_product(
                patch={"name": "Cap", "category_id": 9999},
                variants=[{"size": "One Size", "quantity": 1, "price_cents": 2000}],
            )

    def test_images_keep_order(self, db_session):
        product = products_service.create_product(
            patch={"name": "Poster"},
            variants=[{"size": "50x70", "quantity": 1, "price_cents": 1800}],
            images=[
                {"image_url": "/uploads/a.png", "storage_path": "a.png", "is_primary": True, "sort_order": 0},
                {"image_url": "https://cdn.example.com/b.png", "is_primary": False, "sort_order": 1},
            ],
        )
        assert [i.image_url for i in product.images] == ["/uploads/a.png", "https://cdn.example.com/b.png"]
        assert product.images[0].storage_path == "a.png"


class TestReconcileVariants:
    def test_by_size(self, db_session, make_product):
        product = make_product(sizes=(("S", 5, 2500), ("M", 5, 2500)))
        small_id, medium_id = [v.id for v in product.variants]

        product = products_service.update_product(
            product.id,
            patch={"name": "Tour Tee"},
            variants=[
                {"size": "M", "quantity": 8, "price_cents": 2700},
                {"size": "XL", "quantity": 2, "price_cents": 3000},
            ],
        )

        by_size = {v.size: v for v in product.variants}
        assert product.name == "Tour Tee"
        assert set(by_size) == {"M", "XL"}
        assert by_size["M"].id == medium_id
        assert by_size["M"].quantity == 8
        assert by_size["M"].price_cents == 2700
        assert db_session.get(ProductVariant, small_id) is None

        deltas = [m.quantity_delta for m in stock_service.list_movements(variant_id=medium_id)]
        assert deltas == [3, 5]

    def test_removing_ordered_size_blocked(self, db_session, make_product):
        product = make_product(sizes=(("S", 5, 2500), ("M", 5, 2500)))
        small = product.variants[0]
        orders_service.create_order(
            customer_name="Ana",
            customer_email="ana@example.com",
            items=[OrderItemInput(small.id, 1)],
        )

        with pytest.raises(ProductInUseError):
            products_service.update_product(
                product.id,
                patch={},
                variants=[{"size": "M", "quantity": 5, "price_cents": 2500}],
            )
        assert len(products_service.get_product(product.id).variants) == 2

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            products_service.update_product(9999, patch={"name": "x"})


class TestDeleteProduct:
    def test_detaches_history_and_assignments(self, db_session, make_product, make_stand):
        product = make_product()
        variant_id = product.variants[0].id
        stand = make_stand()
        stands_service.assign_stock(stand.id, [{"product_variant_id": variant_id, "quantity": 2}])

        products_service.delete_product(product.id)

        assert products_service.get_product(product.id) is None
        assert db_session.query(StandStock).count() == 0
        movements = db_session.query(StockMovement).all()
        assert len(movements) == 1
        assert movements[0].product_variant_id is None

    def test_product_with_orders_refused(self, db_session, make_product):
        product = make_product()
        orders_service.create_order(
            customer_name="Ana",
            customer_email="ana@example.com",
            items=[OrderItemInput(product.variants[0].id, 1)],
        )
        with pytest.raises(ProductInUseError):
            products_service.delete_product(product.id)


class TestCatalogQueries:
    def test_category_names_unique(self, db_session):
        products_service.create_category(name="Apparel")
        with pytest.raises(ConflictError):
            products_service.create_category(name="Apparel")

    def test_search_and_low_stock(self, db_session, make_product):
        make_product("Hoodie", sizes=(("M", 50, 5500),), description="Heavyweight")
        make_product("Tote Bag", sizes=(("One Size", 2, 1500),))

        assert [p.name for p in products_service.list_products(search="heavy")] == ["Hoodie"]
        assert [p.name for p in products_service.list_products(low_stock_only=True)] == ["Tote Bag"]

    def test_variants_for_assignment(self, db_session, make_product, make_stand):
        product = make_product(sizes=(("M", 10, 2500),))
        variant_id = product.variants[0].id
        stands_service.assign_stock(make_stand("A").id, [{"product_variant_id": variant_id, "quantity": 3}])
        stands_service.assign_stock(make_stand("B").id, [{"product_variant_id": variant_id, "quantity": 4}])

        rows = products_service.list_variants_for_assignment()

        assert rows[0]["product_variant_id"] == variant_id
        assert rows[0]["assigned_quantity"] == 7
        assert rows[0]["quantity"] == 10
