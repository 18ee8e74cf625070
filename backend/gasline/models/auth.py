from __future__ import annotations

from ..extensions import db
from gasline.time_utils import to_utc_z, utcnow

ROLE_CUSTOMER = "customer"
ROLE_AGENT = "agent"
ROLE_AGENCY_OWNER = "agency_owner"
ROLE_ADMIN = "admin"
USER_ROLES = (ROLE_CUSTOMER, ROLE_AGENT, ROLE_AGENCY_OWNER, ROLE_ADMIN)

# Roles that sign in with an emailed login OTP instead of a password
OTP_LOGIN_ROLES = (ROLE_CUSTOMER, ROLE_AGENT)


class User(db.Model):
    """
    Account behind an authenticated caller.

    The same email may hold one account per role (a customer can also be an
    agent). Agents are linked to their DeliveryAgent row and agency owners to
    their Agency; those links drive order visibility.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", "role", name="uq_users_email_role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    role = db.Column(db.String(16), nullable=False, index=True)

    agency_id = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=True, index=True)
    delivery_agent_id = db.Column(db.Integer, db.ForeignKey("delivery_agents.id"), nullable=True, index=True)

    # Bcrypt hashed password (admin and agency owner only)
    password_hash = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(), nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime(), nullable=True)

    agency = db.relationship("Agency")
    delivery_agent = db.relationship("DeliveryAgent")

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "role": self.role,
            "agency_id": self.agency_id,
            "delivery_agent_id": self.delivery_agent_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class SessionToken(db.Model):
    """
    Bearer session token.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout
    - 2-hour idle timeout
    - Revocable on logout
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }


class LoginOTP(db.Model):
    """
    Emailed one-time login code for customers and agents.

    One active record per (email, role): issuing a new code deletes the
    previous ones for the pair. A record is consumed by setting is_used.
    """
    __tablename__ = "login_otps"
    __table_args__ = (
        db.Index("ix_login_otps_email_role", "email", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False)
    code = db.Column(db.String(6), nullable=False)
    expires_at = db.Column(db.DateTime(), nullable=False, index=True)
    is_used = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<LoginOTP email={self.email!r} role={self.role} used={self.is_used}>"
