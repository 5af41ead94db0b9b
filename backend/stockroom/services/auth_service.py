# Overview: Users, bcrypt password hashing and opaque session tokens for the HTTP layer.

"""
Authentication service.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with at least one letter and one digit
- Session tokens: 32 random bytes, stored as SHA-256 hashes
- 24-hour absolute timeout, 2-hour idle timeout, revocable on logout
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta

import bcrypt

from ..extensions import db
from ..models import SessionToken, User
from ..models.auth import ROLES
from stockroom.errors import DuplicateValue, ValidationFailure
from stockroom.permissions import permissions_for_role
from stockroom.time_utils import utcnow

logger = logging.getLogger(__name__)

SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise ValidationFailure("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise ValidationFailure("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise ValidationFailure("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe comparison through bcrypt.checkpw; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(*, name: str, email: str, password: str, role: str = "staff") -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationFailure: Bad email, role or weak password
        DuplicateValue: Email already registered
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name:
        raise ValidationFailure("Name is required")
    if not _EMAIL_RE.match(email):
        raise ValidationFailure("Please enter a valid email")
    if role not in ROLES:
        raise ValidationFailure(f"Invalid role. Must be one of: {', '.join(ROLES)}")
    if db.session.query(User).filter_by(email=email).first():
        raise DuplicateValue("User already exists with this email")

    user = User(name=name, email=email, password_hash=hash_password(password), role=role)
    db.session.add(user)
    db.session.commit()
    logger.info("Created %s user %s", role, email)
    return user


def authenticate(email: str, password: str) -> User | None:
    """Return the active user for these credentials, or None."""
    user = (
        db.session.query(User)
        .filter(User.email == (email or "").strip().lower(), User.is_active.is_(True))
        .first()
    )
    if user is None or not verify_password(password or "", user.password_hash):
        return None
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def user_permissions(user: User) -> frozenset:
    return permissions_for_role(user.role)


# =============================================================================
# Sessions
# =============================================================================

@dataclass
class SessionContext:
    user: User
    session: SessionToken
    permissions: frozenset


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens are high-entropy; SHA-256 is sufficient where passwords need bcrypt
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """Returns (session_record, plaintext_token). Only the hash is stored."""
    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def _revoke(session: SessionToken, now) -> None:
    session.is_revoked = True
    session.revoked_at = now
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Return the SessionContext for a live token, or None when the token is
    unknown, revoked, expired, idle too long or its user is deactivated.
    Idle and deactivated-user sessions are revoked on the way out.
    """
    now = utcnow()
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if session is None or session.expires_at < now:
        return None
    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, now)
        return None
    user = session.user
    if user is None or not user.is_active:
        _revoke(session, now)
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session, permissions=user_permissions(user))


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return False
    _revoke(session, utcnow())
    return True
