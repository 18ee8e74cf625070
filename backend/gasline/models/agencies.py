from __future__ import annotations

from ..extensions import db
from gasline.time_utils import to_utc_z, utcnow

AGENCY_STATUSES = ("active", "inactive")
AGENT_STATUSES = ("online", "offline")


def sql_in_list(column: str, values) -> str:
    """SQL text for a CHECK constraint limiting column to values."""
    return f"{column} IN (" + ", ".join(f"'{v}'" for v in values) + ")"


class Agency(db.Model):
    """
    Tenant root: an agency operates its own inventory, agents and orders.

    MULTI-TENANT: Inventory records, delivery agents and orders carry agency_id.
    An order is fulfilled by exactly one agency.
    """
    __tablename__ = "agencies"
    __table_args__ = (
        db.CheckConstraint(sql_in_list("status", AGENCY_STATUSES), name="ck_agencies_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    created_at = db.Column(db.DateTime(), nullable=False, default=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<Agency id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "city": self.city,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class DeliveryAgent(db.Model):
    """
    Delivery personnel belonging to one agency.

    An agent may only be assigned orders fulfilled by the same agency.
    """
    __tablename__ = "delivery_agents"
    __table_args__ = (
        db.Index("ix_delivery_agents_agency_status", "agency_id", "status"),
        db.CheckConstraint(sql_in_list("status", AGENT_STATUSES), name="ck_delivery_agents_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    agency_id = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=False, unique=True)
    vehicle_number = db.Column(db.String(20), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="offline")
    joined_at = db.Column(db.DateTime(), nullable=True)
    created_at = db.Column(db.DateTime(), nullable=False, default=utcnow)

    agency = db.relationship("Agency", backref=db.backref("agents", lazy=True))

    def __repr__(self) -> str:
        return f"<DeliveryAgent id={self.id} name={self.name!r} agency_id={self.agency_id}>"

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "vehicle_number": self.vehicle_number,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agency_id": self.agency_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "vehicle_number": self.vehicle_number,
            "status": self.status,
            "joined_at": to_utc_z(self.joined_at),
            "created_at": to_utc_z(self.created_at),
        }
