# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Password authentication for staff accounts (admin, agency_owner).

Customers and delivery agents sign in with an emailed login OTP
(see otp_service); they never have a password.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters with upper, lower and digit
"""

import bcrypt
import re

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Agency, User
from ..models.auth import ROLE_ADMIN, ROLE_AGENCY_OWNER, USER_ROLES
from ..validation import normalize_email
from gasline.time_utils import utcnow

PASSWORD_ROLES = (ROLE_ADMIN, ROLE_AGENCY_OWNER)


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    """bcrypt.checkpw is timing-safe. Accounts without a hash never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    email: str,
    role: str,
    *,
    name: str | None = None,
    password: str | None = None,
    agency_id: int | None = None,
    phone: str | None = None,
) -> User:
    """Create an account. Staff roles require a password; owners require an agency."""
    email = normalize_email(email)
    if role not in USER_ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(USER_ROLES)}")
    if role in PASSWORD_ROLES and not password:
        raise ValidationError("Password is required for admin and agency accounts")
    if role == ROLE_AGENCY_OWNER:
        if agency_id is None or db.session.get(Agency, agency_id) is None:
            raise NotFoundError("Agency not found")
    if db.session.query(User).filter_by(email=email, role=role).first():
        raise ValidationError(f"A {role} account already exists for {email}")

    user = User(
        email=email,
        role=role,
        name=name,
        phone=phone,
        agency_id=agency_id if role == ROLE_AGENCY_OWNER else None,
        password_hash=hash_password(password) if password else None,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate a staff account by email and password.

    Returns the User, or None for unknown email, wrong password or a
    disabled account. Admin accounts win when one email holds both roles.
    """
    email = (email or "").strip().lower()
    candidates = (
        db.session.query(User)
        .filter(User.email == email, User.role.in_(PASSWORD_ROLES))
        .order_by(User.role)
        .all()
    )
    for user in candidates:
        if user.is_active and verify_password(password, user.password_hash):
            user.last_login_at = utcnow()
            db.session.commit()
            return user
    return None
