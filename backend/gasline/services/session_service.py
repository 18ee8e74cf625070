# Overview: Bearer session tokens; resolves a token into the User and the Caller that order operations use.

"""
Session tokens

A successful login (password for staff, emailed OTP for customers and
agents) opens a SessionToken. Only the SHA-256 of the token is stored; the
plaintext goes to the client once.

A token stops working when:
- it is older than SESSION_TTL_HOURS (default 24)
- it was unused for SESSION_IDLE_MINUTES (default 120); it is then revoked
- its user was disabled; it is then revoked
- the client logged out
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from .visibility_service import Caller
from gasline.time_utils import utcnow


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    caller: Caller


def _ttl() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))


def _idle_limit() -> timedelta:
    return timedelta(minutes=current_app.config.get("SESSION_IDLE_MINUTES", 120))


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _find_open(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token), SessionToken.is_revoked.is_(False))
        .first()
    )


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Open a session for user_id and return (record, plaintext_token).

    Raises ValueError for an unknown or disabled user; callers resolve the
    user first, so this only trips on programming errors.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User account is disabled")

    token = generate_token()
    now = utcnow()
    record = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _ttl(),
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(record)
    db.session.commit()
    current_app.logger.info("Session opened: user=%s role=%s", user.id, user.role)
    return record, token


def _close(record: SessionToken, reason: str, now) -> None:
    record.is_revoked = True
    record.revoked_at = now
    record.revoked_reason = reason
    db.session.commit()
    current_app.logger.info("Session %s closed: %s", record.id, reason)


def validate_session(token: str) -> SessionContext | None:
    """Resolve token to a SessionContext, or None. Touches last_used_at."""
    record = _find_open(token)
    if record is None:
        return None

    now = utcnow()
    if record.expires_at < now:
        return None
    if now - record.last_used_at > _idle_limit():
        _close(record, "Idle timeout", now)
        return None

    user = record.user
    if user is None or not user.is_active:
        _close(record, "User account deactivated", now)
        return None

    record.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=record, caller=Caller.from_user(user))


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Close the session behind token. False when there is no open session."""
    record = _find_open(token)
    if record is None:
        return False
    _close(record, reason, utcnow())
    return True
