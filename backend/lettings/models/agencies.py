from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Agency(db.Model):
    """
    Multi-tenant root: every letting agency is a tenant.

    All properties, applications, tenancies and payments belong to exactly one
    agency. Scope is supplied by the authentication layer upstream and every
    service query filters by agency_id.
    """
    __tablename__ = "agencies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Agency id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Property(db.Model):
    __tablename__ = "properties"
    __table_args__ = (
        db.Index("ix_properties_agency_id", "agency_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    agency_id = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False)
    address_line1 = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(120), nullable=True)
    postcode = db.Column(db.String(16), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    bedrooms = db.relationship(
        "Bedroom",
        back_populates="property",
        order_by="Bedroom.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agency_id": self.agency_id,
            "address_line1": self.address_line1,
            "city": self.city,
            "postcode": self.postcode,
            "bedrooms": [b.to_dict() for b in self.bedrooms],
        }


class Bedroom(db.Model):
    """
    A lettable room.

    occupancy_version is bumped inside every transaction that assigns the room
    so concurrent assignment checks serialize on the room row.
    """
    __tablename__ = "bedrooms"
    __table_args__ = (
        db.UniqueConstraint("property_id", "name", name="uq_bedrooms_property_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    base_rent_pppw = db.Column(db.Numeric(12, 2), nullable=True)
    occupancy_version = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))

    property = db.relationship("Property", back_populates="bedrooms")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "name": self.name,
            "base_rent_pppw": str(self.base_rent_pppw) if self.base_rent_pppw is not None else None,
        }


class Application(db.Model):
    """
    An approved tenant application waiting to be turned into a tenancy.

    status moves approved -> converted_to_tenancy on tenancy creation and back
    to approved if the pending tenancy is deleted.
    """
    __tablename__ = "applications"
    __table_args__ = (
        db.Index("ix_applications_agency_status", "agency_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    agency_id = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False)
    first_name = db.Column(db.String(128), nullable=False)
    surname = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(32), nullable=False, default="approved")

    guarantor_required = db.Column(db.Boolean, nullable=False, default=False)
    guarantor_name = db.Column(db.String(255), nullable=True)
    guarantor_email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agency_id": self.agency_id,
            "first_name": self.first_name,
            "surname": self.surname,
            "email": self.email,
            "status": self.status,
            "guarantor_required": self.guarantor_required,
            "guarantor_name": self.guarantor_name,
            "guarantor_email": self.guarantor_email,
        }
