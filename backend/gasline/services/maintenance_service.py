# Overview: Service-layer operations for maintenance; encapsulates business logic and database work.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import LoginOTP, SessionToken
from gasline.time_utils import utcnow


def cleanup_login_otps(*, now=None) -> int:
    """Delete used and expired login codes. Returns rows removed."""
    now = now or utcnow()
    deleted = db.session.query(LoginOTP).filter(
        db.or_(LoginOTP.is_used.is_(True), LoginOTP.expires_at < now)
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def cleanup_sessions(*, retention_days: int = 30) -> int:
    """
    Delete session tokens that expired or were revoked more than
    retention_days ago.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < cutoff,
            db.and_(SessionToken.is_revoked.is_(True), SessionToken.revoked_at < cutoff),
        )
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
