# Overview: Service-layer operations for one-time passwords; encapsulates business logic and database work.

"""
OTP Gate

Two consumers share the same primitives:
- Delivery OTP: stored on the Order while it is out_for_delivery and
  checked by OrderStateMachine.verify_delivery_otp.
- Login OTP: LoginOTP rows keyed by (email, role) for customers and agents.

SECURITY NOTES:
- Codes are 6 digits from the `secrets` CSPRNG.
- Comparison is constant-time (hmac.compare_digest).
- Wrong and expired codes produce the same message.
- A code is single-use. A successful delivery verification clears the
  order's code; a successful login verification marks the row used.
"""

from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta

from flask import current_app

from ..errors import InvalidOTPError, NotFoundError, ValidationError
from ..extensions import db
from ..models import DeliveryAgent, LoginOTP, User
from ..models.auth import OTP_LOGIN_ROLES, ROLE_AGENT
from gasline.time_utils import utcnow


OTP_LENGTH = 6


def generate_otp_code() -> str:
    """Six decimal digits, leading zeros kept."""
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def is_otp_valid(
    code: str | None,
    stored_code: str | None,
    expires_at: datetime | None,
    now: datetime,
) -> bool:
    """True iff a code is stored, matches, and now <= expires_at."""
    if not code or not stored_code or expires_at is None:
        return False
    if not hmac.compare_digest(str(code), str(stored_code)):
        return False
    return now <= expires_at


# =============================================================================
# LOGIN OTP
# =============================================================================

def _check_login_role(role: str) -> None:
    if role not in OTP_LOGIN_ROLES:
        raise ValidationError(f"OTP login is only available for: {', '.join(OTP_LOGIN_ROLES)}")


def issue_login_otp(email: str, role: str, *, now: datetime | None = None) -> LoginOTP:
    """
    Create a fresh login code for (email, role).

    Any earlier codes for the pair are deleted, so only the newest code can
    be used. Agents must already be registered as a DeliveryAgent.

    Commits. The caller is responsible for delivering the code.
    """
    _check_login_role(role)
    if role == ROLE_AGENT:
        agent = db.session.query(DeliveryAgent).filter_by(email=email).first()
        if agent is None:
            raise NotFoundError("No delivery agent is registered with this email")

    now = now or utcnow()
    ttl = timedelta(minutes=current_app.config.get("LOGIN_OTP_TTL_MINUTES", 10))

    db.session.query(LoginOTP).filter_by(email=email, role=role).delete(synchronize_session=False)
    record = LoginOTP(
        email=email,
        role=role,
        code=generate_otp_code(),
        expires_at=now + ttl,
        is_used=False,
        created_at=now,
    )
    db.session.add(record)
    db.session.commit()

    current_app.logger.info("Login OTP issued: role=%s email=%s", role, email)
    return record


def verify_login_otp(email: str, role: str, code: str, *, now: datetime | None = None) -> User:
    """
    Consume a login code and return the User it authenticates.

    Customers are created on first login. Agents are linked to their
    DeliveryAgent row (and its agency) so visibility scoping works.

    Raises InvalidOTPError for a missing, wrong, used or expired code.
    Commits.
    """
    _check_login_role(role)
    now = now or utcnow()

    record = (
        db.session.query(LoginOTP)
        .filter_by(email=email, role=role, is_used=False)
        .order_by(LoginOTP.created_at.desc(), LoginOTP.id.desc())
        .first()
    )
    if record is None or not is_otp_valid(code, record.code, record.expires_at, now):
        current_app.logger.info("Login OTP rejected: role=%s email=%s", role, email)
        raise InvalidOTPError()

    record.is_used = True

    user = db.session.query(User).filter_by(email=email, role=role).first()
    if user is None:
        user = User(email=email, role=role, is_active=True)
        db.session.add(user)

    if role == ROLE_AGENT:
        agent = db.session.query(DeliveryAgent).filter_by(email=email).first()
        if agent is None:
            db.session.rollback()
            raise NotFoundError("No delivery agent is registered with this email")
        user.delivery_agent_id = agent.id
        user.agency_id = agent.agency_id
        user.name = user.name or agent.name
        user.phone = user.phone or agent.phone

    if not user.is_active:
        db.session.rollback()
        raise ValidationError("Account is disabled")

    user.last_login_at = now
    db.session.commit()
    return user
