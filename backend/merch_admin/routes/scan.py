# Overview: Flask API routes for pickup QR scanning at stands.

from flask import Blueprint, request, current_app

from ..services import scan_service
from ..services.orders_service import OrderError
from ..services.concurrency import ConcurrencyConflictError
from ..validation import coerce_int, ValidationError
from ..decorators import require_auth

scan_bp = Blueprint("scan", __name__, url_prefix="/api/scan")


@scan_bp.post("/lookup")
@require_auth
def lookup_route():
    """
    Body: {qr_code}. Always 200; the outcome field says whether the order
    can be delivered (ready), was already delivered, is closed, or is unknown.
    """
    payload = request.get_json(silent=True) or {}
    result = scan_service.lookup(payload.get("qr_code"))
    return result.to_dict(), 200


@scan_bp.post("/confirm")
@require_auth
def confirm_route():
    """
    Body: {qr_code, stand_id?}. Delivers the order when it is open.

    Unknown codes and non-deliverable orders are reported in the outcome,
    not as errors.
    """
    payload = request.get_json(silent=True) or {}
    try:
        stand_id = coerce_int("stand_id", payload["stand_id"]) if payload.get("stand_id") is not None else None
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        result = scan_service.confirm_delivery(payload.get("qr_code"), stand_id=stand_id)
    except OrderError as e:
        return {"error": str(e), "details": e.details}, 400
    except ConcurrencyConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to confirm delivery")
        return {"error": "Internal server error"}, 500

    return result.to_dict(), 200
