# Overview: Opaque bearer session tokens with absolute and idle timeouts.

"""
Session Token Management

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout (SESSION_ABSOLUTE_HOURS) and idle timeout (SESSION_IDLE_MINUTES)
- Revocable on logout
- Tracks client IP and user agent

Sessions identify a user only. The organization a request acts on is chosen
per request and checked against OrgMember rows by the authorization layer.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from lockstock.time_utils import utcnow


@dataclass
class SessionContext:
    user: User
    session: SessionToken


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy); the client's plaintext token."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 of a high-entropy token; bcrypt is reserved for passwords."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_ABSOLUTE_HOURS", 24))


def _idle_timeout() -> timedelta:
    return timedelta(minutes=current_app.config.get("SESSION_IDLE_MINUTES", 120))


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Returns SessionContext for a live token, None otherwise.

    None when the token is unknown, revoked, past its absolute expiry, idle
    too long (auto-revoked) or owned by a deactivated user (auto-revoked).
    Updates last_used_at on success.
    """
    if not token:
        return None

    now = utcnow()
    session = db.session.query(SessionToken).filter(
        SessionToken.token_hash == hash_token(token),
        SessionToken.revoked_at.is_(None),
    ).first()

    if session is None:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > _idle_timeout():
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if user is None or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Returns True if a live session was revoked, False if not found."""
    session = db.session.query(SessionToken).filter(
        SessionToken.token_hash == hash_token(token),
        SessionToken.revoked_at.is_(None),
    ).first()

    if session is None:
        return False

    _revoke(session, reason)
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    now = utcnow()
    sessions = db.session.query(SessionToken).filter(
        SessionToken.user_id == user_id,
        SessionToken.revoked_at.is_(None),
    ).all()

    for session in sessions:
        session.revoked_at = now
        session.revoked_reason = reason

    db.session.commit()
    return len(sessions)
