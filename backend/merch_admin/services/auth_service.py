# Overview: Password hashing and credential checks for dashboard staff.

"""
Authentication Service

Staff accounts sign in with email + password. Customer profiles in the user
directory usually have no password_hash and cannot log in at all.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper + lower case and a digit required
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, *, rounds: int | None = None) -> str:
    """Validate strength, then hash with bcrypt (BCRYPT_ROUNDS, 12 by default). Stored as str."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds or current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    """Timing-safe check via bcrypt.checkpw; malformed hashes simply fail."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def authenticate(email: str, password: str) -> User | None:
    """
    Return the active user matching the credentials, or None.

    Updates last_activity on success.
    """
    email = (email or "").strip().lower()
    if not email:
        return None

    user = db.session.query(User).filter(
        db.func.lower(User.email) == email,
        User.is_active.is_(True),
    ).first()

    if user is None or not verify_password(password, user.password_hash):
        return None

    user.last_activity = utcnow()
    db.session.commit()
    return user
