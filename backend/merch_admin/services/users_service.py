# Overview: User directory; profiles, roles, wallet balance and activity.

from __future__ import annotations

import secrets

from sqlalchemy import or_

from ..extensions import db
from ..models import User
from ..time_utils import utcnow
from ..validation import ConflictError
from . import auth_service, session_service

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_STAFF = "staff"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF)

PROFILE_MUTABLE_FIELDS = {"full_name", "phone", "avatar_url", "qr_code"}


class UserError(Exception):
    """Raised for user directory errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class UserNotFoundError(UserError):
    pass


def _require_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise UserNotFoundError("User not found", details={"user_id": user_id})
    return user


def generate_user_qr() -> str:
    return f"USER_{secrets.token_hex(8)}"


def list_users(*, role: str | None = None, search: str | None = None) -> list[User]:
    """Newest first. search matches email or full name."""
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == role)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.email.ilike(pattern), User.full_name.ilike(pattern)))
    return query.order_by(User.created_at.desc(), User.id.desc()).all()


def get_user(user_id: int) -> User | None:
    return db.session.get(User, user_id)


def get_user_by_qr(qr_code: str) -> User | None:
    if not qr_code:
        return None
    return db.session.query(User).filter(User.qr_code == qr_code.strip()).first()


def create_user(
    *,
    email: str,
    full_name: str | None = None,
    phone: str | None = None,
    role: str = ROLE_STAFF,
    password: str | None = None,
    qr_code: str | None = None,
) -> User:
    """
    Add a user. Without a password the account exists only as a profile.

    Raises auth_service.PasswordValidationError for weak passwords.
    """
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise UserError("A valid email is required")
    if role not in ROLES:
        raise UserError(f"Invalid role: {role}", details={"allowed": list(ROLES)})
    if db.session.query(User).filter(db.func.lower(User.email) == email).first() is not None:
        raise ConflictError(f"Email already registered: {email}")

    user = User(
        email=email,
        full_name=full_name,
        phone=phone,
        role=role,
        qr_code=qr_code or generate_user_qr(),
        password_hash=auth_service.hash_password(password) if password else None,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def update_profile(user_id: int, patch: dict) -> User:
    user = _require_user(user_id)
    if patch.get("qr_code"):
        clash = db.session.query(User).filter(User.qr_code == patch["qr_code"], User.id != user.id).first()
        if clash is not None:
            raise ConflictError("QR code already assigned to another user")
    for k, v in patch.items():
        if k in PROFILE_MUTABLE_FIELDS:
            setattr(user, k, v)
    db.session.commit()
    return user


def update_role(user_id: int, role: str) -> User:
    """Change a user's role; their open sessions are revoked so the new role applies at next login."""
    if role not in ROLES:
        raise UserError(f"Invalid role: {role}", details={"allowed": list(ROLES)})
    user = _require_user(user_id)
    if user.role == role:
        return user
    user.role = role
    db.session.commit()
    session_service.revoke_all_user_sessions(user.id)
    return user


def set_active(user_id: int, is_active: bool) -> User:
    user = _require_user(user_id)
    user.is_active = is_active
    db.session.commit()
    if not is_active:
        session_service.revoke_all_user_sessions(user.id)
    return user


def set_password(user_id: int, password: str) -> User:
    user = _require_user(user_id)
    user.password_hash = auth_service.hash_password(password)
    db.session.commit()
    return user


def adjust_balance(user_id: int, amount_cents: int) -> User:
    """Add (or with a negative amount, remove) wallet balance. Never goes below zero."""
    user = _require_user(user_id)
    user.balance_cents = max(0, (user.balance_cents or 0) + amount_cents)
    db.session.commit()
    return user


def touch_last_activity(user_id: int) -> User:
    user = _require_user(user_id)
    user.last_activity = utcnow()
    db.session.commit()
    return user
