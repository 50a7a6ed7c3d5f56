# Overview: Service-layer operations for session; the server-side token allow-list.

"""
Session Token Management Service

WHY: Tokens are only valid while the server says so. Logging out, deleting
an account or idling past the timeout removes a token from the allow-list
immediately, regardless of what the client still holds.

SessionStore capability:
- issue_session(user | provider)  -> (record, plaintext token)
- validate_session(token)         -> SessionContext | None
- revoke_session(token)           -> bool

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_ABSOLUTE_TIMEOUT_HOURS)
- Idle timeout (SESSION_IDLE_TIMEOUT_HOURS)
"""

from __future__ import annotations

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..actors import Actor, actor_for_provider, actor_for_user
from ..extensions import db
from ..models import SessionToken, User, Provider
from carrental.time_utils import utcnow


@dataclass
class SessionContext:
    """Resolved identity for one authenticated request."""
    actor: Actor
    session: SessionToken
    principal: User | Provider


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24))


def _idle_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_IDLE_TIMEOUT_HOURS", 2))


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """Hash token for database storage using SHA-256."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def issue_session(principal: User | Provider) -> tuple[SessionToken, str]:
    """
    Create a new session token for a user or provider.

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        is_revoked=False,
    )
    if isinstance(principal, User):
        session.user_id = principal.id
    elif isinstance(principal, Provider):
        session.provider_id = principal.id
    else:
        raise TypeError(f"Cannot issue a session for {principal!r}")

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason


def validate_session(token: str) -> SessionContext | None:
    """
    Validate session token and resolve it into an Actor.

    Returns None if the token is unknown, revoked or expired, or if its
    account no longer exists. Updates last_used_at on success.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    # Check absolute timeout
    if session.expires_at < now:
        return None

    # Check idle timeout
    if now - session.last_used_at > _idle_timeout():
        _revoke(session, "Idle timeout")
        db.session.commit()
        return None

    if session.user_id is not None:
        principal = session.user
        actor = actor_for_user(principal) if principal else None
    else:
        principal = session.provider
        actor = actor_for_provider(principal) if principal else None

    if actor is None:
        _revoke(session, "Account removed")
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(actor=actor, session=session, principal=principal)


def revoke_session(token: str, reason: str = "Logout") -> bool:
    """
    Revoke session token.

    Returns True if session was revoked, False if not found.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    db.session.commit()
    return True


def revoke_all_sessions(principal: User | Provider, reason: str = "Revoke all sessions") -> int:
    """Revoke all active sessions of a user or provider. Returns the count revoked."""
    query = db.session.query(SessionToken).filter_by(is_revoked=False)
    if isinstance(principal, User):
        query = query.filter_by(user_id=principal.id)
    else:
        query = query.filter_by(provider_id=principal.id)

    count = 0
    for session in query.all():
        _revoke(session, reason)
        count += 1

    db.session.commit()
    return count


def cleanup_expired_sessions(retention_days: int = 30) -> int:
    """
    Delete expired and revoked sessions older than the retention window.

    Returns count of sessions deleted.
    """
    now = utcnow()
    cutoff = now - timedelta(days=retention_days)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True)
        ),
        SessionToken.created_at < cutoff
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
