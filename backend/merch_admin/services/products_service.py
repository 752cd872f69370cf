# backend/merch_admin/services/products_service.py
"""
Catalog service: products, their size variants, images and categories.

Variant quantities are only ever written through stock_service so every
change, including the opening quantity and edits from the product form,
leaves a StockMovement behind.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Category, OrderItem, Product, ProductImage, ProductVariant, Stand, StandStock, StockMovement
from ..validation import ConflictError
from . import stock_service
from .concurrency import lock_for_update, run_with_retry

PRODUCT_MUTABLE_FIELDS = {"name", "description", "category_id", "low_stock_threshold"}


class ProductError(Exception):
    """Raised for catalog operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFoundError(ProductError):
    pass


class ProductInUseError(ProductError):
    """Variants referenced by order lines cannot be deleted."""


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _require_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFoundError("Product not found", details={"product_id": product_id})
    return product


def _require_category(category_id: int | None) -> None:
    if category_id is not None and db.session.get(Category, category_id) is None:
        raise ProductError("Category not found", details={"category_id": category_id})


def _referenced_variant_ids(variant_ids: list[int]) -> set[int]:
    if not variant_ids:
        return set()
    rows = (
        db.session.query(OrderItem.product_variant_id)
        .filter(OrderItem.product_variant_id.in_(variant_ids))
        .distinct()
        .all()
    )
    return {row[0] for row in rows}


def _detach_variants(variant_ids: list[int]) -> None:
    """Drop stand assignments and keep movement history for variants about to be deleted."""
    if not variant_ids:
        return
    db.session.query(StandStock).filter(
        StandStock.product_variant_id.in_(variant_ids)
    ).delete(synchronize_session=False)
    db.session.query(StockMovement).filter(
        StockMovement.product_variant_id.in_(variant_ids)
    ).update({StockMovement.product_variant_id: None}, synchronize_session=False)


def _replace_images(product: Product, images: list[dict]) -> None:
    product.images = [
        ProductImage(
            image_url=image["image_url"],
            storage_path=image.get("storage_path"),
            is_primary=image["is_primary"],
            sort_order=image["sort_order"],
        )
        for image in images
    ]


# =============================================================================
# Categories
# =============================================================================

def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name.asc()).all()


def create_category(*, name: str, description: str | None = None) -> Category:
    name = (name or "").strip()
    if not name:
        raise ProductError("Category name is required")
    if db.session.query(Category).filter(Category.name == name).first() is not None:
        raise ConflictError(f"Category '{name}' already exists")

    category = Category(name=name, description=description)
    db.session.add(category)
    db.session.commit()
    return category


# =============================================================================
# Products
# =============================================================================

def list_products(
    *,
    category_id: int | None = None,
    search: str | None = None,
    low_stock_only: bool = False,
) -> list[Product]:
    """
    Catalog listing, alphabetical.

    search matches name or description (case-insensitive). low_stock_only keeps
    products with at least one variant at or below its threshold.
    """
    query = db.session.query(Product)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

    products = query.order_by(Product.name.asc(), Product.id.asc()).all()
    if low_stock_only:
        products = [p for p in products if p.is_low_stock]
    return products


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def create_product(
    *,
    patch: dict,
    variants: list[dict],
    images: list[dict] | None = None,
    user_id: int | None = None,
) -> Product:
    """
    Create a product with its variants in one transaction.

    Opening quantities are logged as adjustment movements.
    """
    if not variants:
        raise ProductError("Product must have at least one variant")

    def _op():
        _require_category(patch.get("category_id"))

        product = Product(
            low_stock_threshold=current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 5),
        )
        apply_product_patch(product, patch)
        product.variants = [
            ProductVariant(size=v["size"], quantity=v["quantity"], price_cents=v["price_cents"])
            for v in variants
        ]
        if images:
            _replace_images(product, images)

        db.session.add(product)
        db.session.flush()

        for variant in product.variants:
            stock_service.record_initial_quantity(
                variant,
                reason=f"Initial stock for {product.name} ({variant.size})",
                user_id=user_id,
            )

        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(
    product_id: int,
    *,
    patch: dict,
    variants: list[dict] | None = None,
    images: list[dict] | None = None,
    user_id: int | None = None,
) -> Product:
    """
    Update product fields and, when given, reconcile variants by size.

    - size present before and after: price updated in place, a quantity
      change is applied as an adjustment movement
    - new size: variant created with its opening quantity logged
    - size no longer listed: variant deleted, unless an order references it
    images, when given, replace the current set.
    """
    if variants is not None and not variants:
        raise ProductError("Product must have at least one variant")

    def _op():
        product = _require_product(product_id, lock=True)
        if "category_id" in patch:
            _require_category(patch["category_id"])
        apply_product_patch(product, patch)

        if variants is not None:
            _reconcile_variants(product, variants, user_id=user_id)
        if images is not None:
            _replace_images(product, images)

        db.session.commit()
        return product

    return run_with_retry(_op)


def _reconcile_variants(product: Product, desired: list[dict], *, user_id: int | None) -> None:
    existing = {v.size: v for v in product.variants}
    desired_sizes = {v["size"] for v in desired}

    removed = [v for size, v in existing.items() if size not in desired_sizes]
    removed_ids = [v.id for v in removed]
    blocked = _referenced_variant_ids(removed_ids)
    if blocked:
        raise ProductInUseError(
            "Cannot remove sizes that appear on orders",
            details={"variant_ids": sorted(blocked)},
        )

    _detach_variants(removed_ids)
    for variant in removed:
        product.variants.remove(variant)

    created = []
    for entry in desired:
        variant = existing.get(entry["size"])
        if variant is None:
            variant = ProductVariant(size=entry["size"], quantity=entry["quantity"], price_cents=entry["price_cents"])
            product.variants.append(variant)
            created.append(variant)
            continue

        variant.price_cents = entry["price_cents"]
        if variant.quantity != entry["quantity"]:
            stock_service.set_quantity(
                variant.id,
                entry["quantity"],
                reason=f"Product edit for {product.name} ({variant.size})",
                user_id=user_id,
                commit=False,
            )

    db.session.flush()
    for variant in created:
        stock_service.record_initial_quantity(
            variant,
            reason=f"Initial stock for {product.name} ({variant.size})",
            user_id=user_id,
        )


def delete_product(product_id: int) -> None:
    """
    Delete a product with its variants and images.

    Refused while any order line references one of its variants; stand
    assignments are dropped and stock movements keep their history with
    the variant reference cleared.
    """
    def _op():
        product = _require_product(product_id, lock=True)
        variant_ids = [v.id for v in product.variants]
        blocked = _referenced_variant_ids(variant_ids)
        if blocked:
            raise ProductInUseError(
                "Product has orders and cannot be deleted",
                details={"variant_ids": sorted(blocked)},
            )

        _detach_variants(variant_ids)
        db.session.delete(product)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# Variants
# =============================================================================

def set_variant_quantity(
    variant_id: int,
    quantity: int,
    *,
    reason: str | None = None,
    user_id: int | None = None,
) -> stock_service.StockAdjustment:
    """Manual stock correction for one size."""
    return stock_service.set_quantity(
        variant_id,
        quantity,
        reason=reason or "Manual adjustment",
        user_id=user_id,
    )


def list_variants_for_assignment() -> list[dict]:
    """Every variant with its product name and what active stands already hold, for picking stand stock."""
    assigned = dict(
        db.session.query(StandStock.product_variant_id, func.sum(StandStock.quantity))
        .join(Stand, StandStock.stand_id == Stand.id)
        .filter(Stand.is_active.is_(True))
        .group_by(StandStock.product_variant_id)
        .all()
    )
    rows = (
        db.session.query(ProductVariant, Product)
        .join(Product, ProductVariant.product_id == Product.id)
        .order_by(Product.name.asc(), ProductVariant.id.asc())
        .all()
    )
    return [
        {
            "product_variant_id": variant.id,
            "product_id": product.id,
            "product_name": product.name,
            "size": variant.size,
            "quantity": variant.quantity,
            "price_cents": variant.price_cents,
            "assigned_quantity": int(assigned.get(variant.id) or 0),
        }
        for variant, product in rows
    ]


def list_stock_movements(
    *,
    variant_id: int | None = None,
    order_id: int | None = None,
    limit: int = 100,
) -> list[StockMovement]:
    return stock_service.list_movements(variant_id=variant_id, order_id=order_id, limit=limit)
