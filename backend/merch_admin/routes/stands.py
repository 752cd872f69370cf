# Overview: Flask API routes for stands and their assigned stock.

# backend/merch_admin/routes/stands.py
"""
Stand routes.

- Read operations: any authenticated user
- Write operations and stock assignment: admin or manager
"""
from flask import Blueprint, request, current_app, g

from ..services import stands_service
from ..services.stands_service import StandError, StandNotFoundError
from ..models import Stand
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    parse_stock_assignments,
    parse_bool_arg,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role

STAND_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "location",
        "description",
        "operating_hours",
        "image_url",
        "contact_person",
        "contact_phone",
        "qr_code_value",
        "is_active",
    },
    required_on_create={"name"},
)

stands_bp = Blueprint("stands", __name__, url_prefix="/api/stands")


def _stand_error_response(e: StandError):
    if isinstance(e, StandNotFoundError):
        return {"error": str(e)}, 404
    return {"error": str(e), "details": e.details}, 400


@stands_bp.get("")
@require_auth
def list_stands():
    """Query params: include_inactive (bool), include_stock (bool)."""
    try:
        include_inactive = bool(parse_bool_arg(request.args.get("include_inactive")))
        include_stock = bool(parse_bool_arg(request.args.get("include_stock")))
    except ValidationError as e:
        return {"error": str(e)}, 400

    stands = stands_service.list_stands(include_inactive=include_inactive)
    return {
        "items": [s.to_dict(include_stock=include_stock) for s in stands],
        "count": len(stands),
    }


@stands_bp.get("/<int:stand_id>")
@require_auth
def get_stand(stand_id: int):
    stand = stands_service.get_stand(stand_id)
    if stand is None:
        return {"error": "Stand not found"}, 404
    return stand.to_dict(include_stock=True)


@stands_bp.post("")
@require_auth
@require_role("admin", "manager")
def create_stand_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Stand, payload=payload, policy=STAND_POLICY, partial=False)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        stand = stands_service.create_stand(patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create stand")
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Stand %s created by user %s", stand.id, g.current_user.id)
    return stand.to_dict(), 201


@stands_bp.put("/<int:stand_id>")
@require_auth
@require_role("admin", "manager")
def update_stand_route(stand_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Stand, payload=payload, policy=STAND_POLICY, partial=True)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        stand = stands_service.update_stand(stand_id, patch=patch)
    except StandError as e:
        return _stand_error_response(e)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update stand %s", stand_id)
        return {"error": "Internal server error"}, 500

    return stand.to_dict(), 200


@stands_bp.delete("/<int:stand_id>")
@require_auth
@require_role("admin", "manager")
def deactivate_stand_route(stand_id: int):
    """Soft delete: the stand is hidden from listings but kept for order history."""
    try:
        stand = stands_service.deactivate_stand(stand_id)
    except StandError as e:
        return _stand_error_response(e)
    return stand.to_dict(), 200


# =============================================================================
# Stock assignment
# =============================================================================

@stands_bp.get("/<int:stand_id>/stock")
@require_auth
def get_stand_stock(stand_id: int):
    """Assigned, delivered and remaining quantity per variant."""
    try:
        rows = stands_service.get_stand_stock(stand_id)
    except StandError as e:
        return _stand_error_response(e)
    return {"items": rows, "count": len(rows)}


@stands_bp.put("/<int:stand_id>/stock")
@require_auth
@require_role("admin", "manager")
def assign_stock_route(stand_id: int):
    """
    Replace the stand's stock.

    Body: {assignments: [{product_variant_id, quantity}]}. The list is the
    complete desired state; an empty list clears the stand.
    Response carries warnings for variants assigned beyond their stock.
    """
    payload = request.get_json(silent=True) or {}
    try:
        assignments = parse_stock_assignments(payload.get("assignments"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        result = stands_service.assign_stock(stand_id, assignments)
    except StandError as e:
        return _stand_error_response(e)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to assign stock to stand %s", stand_id)
        return {"error": "Internal server error"}, 500

    if result.warnings:
        current_app.logger.warning(
            "Stand %s over-allocated for variants %s",
            stand_id, [w["product_variant_id"] for w in result.warnings],
        )
    return result.to_dict(), 200
