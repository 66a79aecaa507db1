# Overview: Service-layer operations for auth; users, passwords and session tokens.

"""
Authentication Service

WHY: Every ledger mutation must be attributable to a user. Services take an
explicit actor id and call require_actor() before opening a transaction, so
an unauthenticated call fails with no side effects.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor BCRYPT_ROUNDS, 12 by default)
- Session tokens are 32 random bytes; only their SHA-256 hash is stored
- Tokens expire after SESSION_TTL_HOURS and can be revoked on logout
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import timedelta

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import AuthenticationError, ConflictError, ValidationError
from ..models import User, SessionToken
from ..models.auth import ROLES, ROLE_CASHIER
from posledger.time_utils import utcnow


MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """Hash password using bcrypt (cost factor BCRYPT_ROUNDS, default 12)."""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_user(
    username: str,
    password: str,
    role: str = ROLE_CASHIER,
    full_name: str | None = None,
) -> User:
    if not username or not username.strip():
        raise ValidationError("username is required")
    if role not in ROLES:
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(sorted(ROLES))}")

    user = User(
        username=username.strip(),
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Username {username!r} is already taken", field="username")
    return user


def authenticate(username: str, password: str) -> tuple[SessionToken, str]:
    """
    Verify credentials and open a session.

    Returns (session_record, plaintext_token); only the hash is persisted.
    """
    user = db.session.query(User).filter_by(username=username).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid username or password")

    token = secrets.token_hex(32)
    now = utcnow()
    ttl_hours = current_app.config.get("SESSION_TTL_HOURS", 24)

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
    )
    user.last_login_at = now
    db.session.add(session)
    db.session.commit()
    return session, token


def resolve_actor(token: str | None) -> User:
    """Map a bearer token to its active user or raise AuthenticationError."""
    if not token:
        raise AuthenticationError("Authentication required")

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked or session.expires_at <= utcnow():
        raise AuthenticationError("Invalid or expired token")

    user = session.user
    if user is None or not user.is_active:
        raise AuthenticationError("User account is inactive")
    return user


def revoke_session(token: str) -> None:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session and not session.is_revoked:
        session.is_revoked = True
        session.revoked_at = utcnow()
        db.session.commit()


def require_actor(actor_id: int | None) -> User:
    """
    Fail fast when a mutation has no authenticated actor.

    Called by every mutating service before its unit of work opens.
    """
    if not actor_id:
        raise AuthenticationError("Unauthorized. Please log in again.")
    user = db.session.get(User, actor_id)
    if user is None or not user.is_active:
        raise AuthenticationError("Unauthorized. Please log in again.")
    return user
