# Overview: User accounts, password hashing and credential checks.

"""
Authentication Service

Users are global accounts; what they may do in an organization comes from
OrgMember rows (see organization_service.py). Username and email are unique
across the whole installation.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters with upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app, has_app_context

from ..extensions import db
from ..errors import Conflict, ValidationError
from ..models import User
from .security_service import log_security_event
from lockstock.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[^A-Za-z0-9]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def _bcrypt_rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", 12))
    return 12


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    full_name: str | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationError: blank username/email
        PasswordValidationError: weak password
        Conflict: username or email already taken
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username:
        raise ValidationError("username is required")
    if not email or "@" not in email:
        raise ValidationError("email must be a valid email address")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise Conflict("Username or email already exists.")

    password_hash = hash_password(password)

    user = User(
        username=username,
        email=email,
        full_name=full_name,
        password_hash=password_hash,
    )

    db.session.add(user)
    db.session.commit()
    return user


def find_user(identifier: str) -> User | None:
    """Look a user up by username or email."""
    identifier = (identifier or "").strip()
    return db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier.lower())
    ).first()


def authenticate(identifier: str, password: str) -> User | None:
    """
    Check credentials (username or email plus password).

    Returns the User and stamps last_login_at on success, None otherwise.
    Every attempt is written to the security audit trail.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == (identifier or "").lower()),
        User.is_active.is_(True),
    ).first()

    if user is None or not verify_password(password or "", user.password_hash):
        log_security_event(
            event_type="LOGIN_FAILED",
            success=False,
            user_id=user.id if user else None,
            reason="Invalid credentials",
        )
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    log_security_event(event_type="LOGIN_SUCCEEDED", success=True, user_id=user.id)
    return user
