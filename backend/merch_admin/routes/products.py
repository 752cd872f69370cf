# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

# backend/merch_admin/routes/products.py
"""
Catalog routes: products with their size variants and images, categories,
manual stock corrections and the stock movement audit view.

SECURITY: All routes require authentication.
- Read operations: any authenticated user
- Write operations: admin or manager
"""
from flask import Blueprint, request, g, current_app

from ..services import products_service
from ..services.products_service import ProductError, ProductNotFoundError, ProductInUseError
from ..services.stock_service import StockError, VariantNotFoundError
from ..services.concurrency import ConcurrencyConflictError
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    split_payload,
    enforce_rules_product,
    enforce_rules_quantity,
    parse_variants,
    parse_images,
    parse_bool_arg,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "category_id", "low_stock_threshold"},
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _product_error_response(e: ProductError):
    if isinstance(e, ProductNotFoundError):
        return {"error": str(e)}, 404
    if isinstance(e, ProductInUseError):
        return {"error": str(e), "details": e.details}, 409
    return {"error": str(e), "details": e.details}, 400


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - category_id: int (optional)
    - search: str (optional) - name or description substring
    - low_stock: bool (optional) - only products with a variant at/below threshold
    """
    try:
        low_stock = parse_bool_arg(request.args.get("low_stock"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    products = products_service.list_products(
        category_id=request.args.get("category_id", type=int),
        search=request.args.get("search"),
        low_stock_only=bool(low_stock),
    )
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    product = products_service.get_product(product_id)
    if product is None:
        return {"error": "Product not found"}, 404
    return product.to_dict()


def _parse_product_payload(payload, *, partial: bool):
    fields, nested = split_payload(payload, {"variants", "images"})
    patch = validate_payload(model=Product, payload=fields, policy=PRODUCT_POLICY, partial=partial)
    enforce_rules_product(patch)

    variants = parse_variants(nested["variants"]) if "variants" in nested else None
    images = parse_images(nested["images"]) if "images" in nested else None
    return patch, variants, images


@products_bp.post("")
@require_auth
@require_role("admin", "manager")
def create_product_route():
    """
    Create a product.

    Body: {name, description?, category_id?, low_stock_threshold?,
           variants: [{size, quantity, price_cents}], images?: [url | {image_url, ...}]}
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch, variants, images = _parse_product_payload(payload, partial=False)
        if not variants:
            raise ValidationError("At least one variant is required")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = products_service.create_product(
            patch=patch,
            variants=variants,
            images=images,
            user_id=g.current_user.id,
        )
    except ProductError as e:
        return _product_error_response(e)
    except (ConflictError, ConcurrencyConflictError) as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Product %s created by user %s", product.id, g.current_user.id)
    return product.to_dict(), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role("admin", "manager")
def update_product_route(product_id: int):
    """Patch fields; variants (reconciled by size) and images are replaced only when present."""
    payload = request.get_json(silent=True) or {}

    try:
        patch, variants, images = _parse_product_payload(payload, partial=True)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = products_service.update_product(
            product_id,
            patch=patch,
            variants=variants,
            images=images,
            user_id=g.current_user.id,
        )
    except ProductError as e:
        return _product_error_response(e)
    except ConcurrencyConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return {"error": "Internal server error"}, 500

    return product.to_dict(), 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role("admin", "manager")
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id)
    except ProductError as e:
        return _product_error_response(e)
    except ConcurrencyConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to delete product %s", product_id)
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Product %s deleted by user %s", product_id, g.current_user.id)
    return {"ok": True}, 200


# =============================================================================
# Categories
# =============================================================================

@products_bp.get("/categories")
@require_auth
def list_categories():
    categories = products_service.list_categories()
    return {"items": [c.to_dict() for c in categories], "count": len(categories)}


@products_bp.post("/categories")
@require_auth
@require_role("admin", "manager")
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        category = products_service.create_category(
            name=payload.get("name"),
            description=payload.get("description"),
        )
    except ProductError as e:
        return _product_error_response(e)
    except ConflictError as e:
        return {"error": str(e)}, 409
    return category.to_dict(), 201


# =============================================================================
# Variants and stock
# =============================================================================

@products_bp.get("/variants")
@require_auth
def list_variants():
    """Flat variant list with product names and totals assigned to stands."""
    items = products_service.list_variants_for_assignment()
    return {"items": items, "count": len(items)}


@products_bp.put("/variants/<int:variant_id>/quantity")
@require_auth
@require_role("admin", "manager")
def set_variant_quantity_route(variant_id: int):
    """Body: {quantity, reason?}. Absolute stock count for one size."""
    payload = request.get_json(silent=True) or {}
    try:
        quantity = enforce_rules_quantity("quantity", payload.get("quantity"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        adjustment = products_service.set_variant_quantity(
            variant_id,
            quantity,
            reason=payload.get("reason"),
            user_id=g.current_user.id,
        )
    except VariantNotFoundError as e:
        return {"error": str(e)}, 404
    except StockError as e:
        return {"error": str(e)}, 400
    except ConcurrencyConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to set quantity for variant %s", variant_id)
        return {"error": "Internal server error"}, 500

    return adjustment.to_dict(), 200


@products_bp.get("/movements")
@require_auth
@require_role("admin", "manager")
def list_movements():
    """Query params: variant_id, order_id, limit (default 100, max 500)."""
    movements = products_service.list_stock_movements(
        variant_id=request.args.get("variant_id", type=int),
        order_id=request.args.get("order_id", type=int),
        limit=request.args.get("limit", default=100, type=int),
    )
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}
