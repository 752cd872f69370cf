# Overview: Flask API routes for the user directory.

# backend/merch_admin/routes/users.py
"""
User directory routes.

SECURITY:
- Listing and lookups: admin or manager
- Creating users, role changes, activation and balance: admin
- Users may always edit their own profile
"""
from flask import Blueprint, request, current_app, g

from ..services import users_service
from ..services.users_service import UserError, UserNotFoundError
from ..services.auth_service import PasswordValidationError
from ..models import User
from ..validation import ModelValidationPolicy, validate_payload, coerce_int, ValidationError, ConflictError
from ..decorators import require_auth, require_role

PROFILE_POLICY = ModelValidationPolicy(
    writable_fields={"full_name", "phone", "avatar_url", "qr_code"},
)

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _user_error_response(e: Exception):
    if isinstance(e, UserNotFoundError):
        return {"error": str(e)}, 404
    if isinstance(e, ConflictError):
        return {"error": str(e)}, 409
    if isinstance(e, UserError):
        return {"error": str(e), "details": e.details}, 400
    return {"error": str(e)}, 400


@users_bp.get("")
@require_auth
@require_role("admin", "manager")
def list_users():
    """Query params: role, search (email or name)."""
    users = users_service.list_users(
        role=request.args.get("role") or None,
        search=request.args.get("search") or None,
    )
    return {"items": [u.to_dict() for u in users], "count": len(users)}


@users_bp.get("/<int:user_id>")
@require_auth
def get_user(user_id: int):
    if g.current_user.id != user_id and g.current_user.role not in ("admin", "manager"):
        return {"error": "Permission denied"}, 403
    user = users_service.get_user(user_id)
    if user is None:
        return {"error": "User not found"}, 404
    return user.to_dict()


@users_bp.get("/qr/<qr_code>")
@require_auth
@require_role("admin", "manager")
def get_user_by_qr(qr_code: str):
    user = users_service.get_user_by_qr(qr_code)
    if user is None:
        return {"error": "User not found"}, 404
    return user.to_dict()


@users_bp.post("")
@require_auth
@require_role("admin")
def create_user_route():
    """Body: {email, full_name?, phone?, role?, password?}."""
    payload = request.get_json(silent=True) or {}
    try:
        user = users_service.create_user(
            email=payload.get("email"),
            full_name=payload.get("full_name"),
            phone=payload.get("phone"),
            role=payload.get("role") or users_service.ROLE_STAFF,
            password=payload.get("password") or None,
        )
    except PasswordValidationError as e:
        return {"error": str(e)}, 400
    except (UserError, ConflictError) as e:
        return _user_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create user")
        return {"error": "Internal server error"}, 500

    current_app.logger.info("User %s created by user %s", user.id, g.current_user.id)
    return user.to_dict(), 201


@users_bp.put("/<int:user_id>")
@require_auth
def update_profile_route(user_id: int):
    if g.current_user.id != user_id and g.current_user.role != "admin":
        return {"error": "Permission denied"}, 403

    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=User, payload=payload, policy=PROFILE_POLICY, partial=True)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        user = users_service.update_profile(user_id, patch)
    except (UserError, ConflictError) as e:
        return _user_error_response(e)
    return user.to_dict(), 200


@users_bp.put("/<int:user_id>/role")
@require_auth
@require_role("admin")
def update_role_route(user_id: int):
    payload = request.get_json(silent=True) or {}
    if user_id == g.current_user.id:
        return {"error": "Administrators cannot change their own role"}, 400
    try:
        user = users_service.update_role(user_id, payload.get("role") or "")
    except UserError as e:
        return _user_error_response(e)

    current_app.logger.info("User %s role set to %s by user %s", user_id, user.role, g.current_user.id)
    return user.to_dict(), 200


@users_bp.put("/<int:user_id>/active")
@require_auth
@require_role("admin")
def set_active_route(user_id: int):
    payload = request.get_json(silent=True) or {}
    if "is_active" not in payload or not isinstance(payload["is_active"], bool):
        return {"error": "is_active (bool) is required"}, 400
    if user_id == g.current_user.id and not payload["is_active"]:
        return {"error": "Administrators cannot deactivate themselves"}, 400
    try:
        user = users_service.set_active(user_id, payload["is_active"])
    except UserError as e:
        return _user_error_response(e)
    return user.to_dict(), 200


@users_bp.post("/<int:user_id>/balance")
@require_auth
@require_role("admin")
def adjust_balance_route(user_id: int):
    """Body: {amount_cents}. Negative amounts debit; the balance never drops below zero."""
    payload = request.get_json(silent=True) or {}
    try:
        amount = coerce_int("amount_cents", payload.get("amount_cents"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        user = users_service.adjust_balance(user_id, amount)
    except UserError as e:
        return _user_error_response(e)
    return user.to_dict(), 200
