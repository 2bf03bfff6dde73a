from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


# Lifecycle states (see services/lifecycle_service.py for the transition rules)
TENANCY_PENDING = "pending"
TENANCY_AWAITING_SIGNATURES = "awaiting_signatures"
TENANCY_APPROVAL = "approval"
TENANCY_ACTIVE = "active"
TENANCY_EXPIRED = "expired"
TENANCY_STATUSES = (
    TENANCY_PENDING,
    TENANCY_AWAITING_SIGNATURES,
    TENANCY_APPROVAL,
    TENANCY_ACTIVE,
    TENANCY_EXPIRED,
)

TENANCY_TYPE_ROOM_ONLY = "room_only"
TENANCY_TYPE_WHOLE_HOUSE = "whole_house"
TENANCY_TYPES = (TENANCY_TYPE_ROOM_ONLY, TENANCY_TYPE_WHOLE_HOUSE)

PAYMENT_OPTION_MONTHLY = "monthly"
PAYMENT_OPTION_QUARTERLY = "quarterly"
PAYMENT_OPTION_MONTHLY_TO_QUARTERLY = "monthly_to_quarterly"
PAYMENT_OPTION_UPFRONT = "upfront"
PAYMENT_OPTIONS = (
    PAYMENT_OPTION_MONTHLY,
    PAYMENT_OPTION_QUARTERLY,
    PAYMENT_OPTION_MONTHLY_TO_QUARTERLY,
    PAYMENT_OPTION_UPFRONT,
)

KEY_NOT_COLLECTED = "not_collected"
KEY_COLLECTED = "collected"
KEY_RETURNED = "returned"
KEY_STATUSES = (KEY_NOT_COLLECTED, KEY_COLLECTED, KEY_RETURNED)


class Tenancy(db.Model):
    """
    One letting arrangement for a property (whole house) or a single room.

    INVARIANTS:
    - is_rolling_periodic=True  -> end_date is NULL until notice is given
    - is_rolling_periodic=False -> end_date is required and after start_date
    - tenancy_type=room_only    -> exactly one member
    - start/end/rent are editable only while status is pending
    """
    __tablename__ = "tenancies"
    __table_args__ = (
        db.Index("ix_tenancies_agency_status", "agency_id", "status"),
        db.Index("ix_tenancies_rolling", "is_rolling_periodic", "auto_generate_payments", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    agency_id = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    source_tenancy_id = db.Column(db.Integer, db.ForeignKey("tenancies.id"), nullable=True)

    tenancy_type = db.Column(db.String(32), nullable=False, default=TENANCY_TYPE_WHOLE_HOUSE)
    status = db.Column(db.String(32), nullable=False, default=TENANCY_PENDING)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)

    # Sum of member weekly rents
    rent_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    is_rolling_periodic = db.Column(db.Boolean, nullable=False, default=False)
    auto_generate_payments = db.Column(db.Boolean, nullable=False, default=True)
    is_migration = db.Column(db.Boolean, nullable=False, default=False)

    notice_given_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    property = db.relationship("Property")
    members = db.relationship(
        "TenancyMember",
        back_populates="tenancy",
        order_by="TenancyMember.id",
        cascade="all, delete-orphan",
    )
    payment_schedules = db.relationship(
        "PaymentSchedule",
        back_populates="tenancy",
        order_by="PaymentSchedule.due_date",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Tenancy id={self.id} status={self.status} start={self.start_date} end={self.end_date}>"

    def to_dict(self, *, include_members: bool = True) -> dict:
        data = {
            "id": self.id,
            "agency_id": self.agency_id,
            "property_id": self.property_id,
            "source_tenancy_id": self.source_tenancy_id,
            "tenancy_type": self.tenancy_type,
            "status": self.status,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "rent_amount": str(self.rent_amount) if self.rent_amount is not None else None,
            "is_rolling_periodic": self.is_rolling_periodic,
            "auto_generate_payments": self.auto_generate_payments,
            "is_migration": self.is_migration,
            "notice_given_at": to_utc_z(self.notice_given_at),
            "expired_at": to_utc_z(self.expired_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_members:
            data["members"] = [m.to_dict() for m in self.members]
        return data


class TenancyMember(db.Model):
    """One occupant's participation in a tenancy. Deleted only with its tenancy."""
    __tablename__ = "tenancy_members"
    __table_args__ = (
        db.UniqueConstraint("tenancy_id", "bedroom_id", name="uq_tenancy_members_tenancy_bedroom"),
        db.Index("ix_tenancy_members_bedroom_id", "bedroom_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenancy_id = db.Column(db.Integer, db.ForeignKey("tenancies.id"), nullable=False, index=True)
    application_id = db.Column(db.Integer, db.ForeignKey("applications.id"), nullable=True)
    bedroom_id = db.Column(db.Integer, db.ForeignKey("bedrooms.id"), nullable=True)

    first_name = db.Column(db.String(128), nullable=False)
    surname = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)

    rent_pppw = db.Column(db.Numeric(12, 2), nullable=True)
    deposit_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_option = db.Column(db.String(32), nullable=True)

    is_signed = db.Column(db.Boolean, nullable=False, default=False)
    signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    signature_data = db.Column(db.Text, nullable=True)

    guarantor_required = db.Column(db.Boolean, nullable=False, default=False)
    guarantor_name = db.Column(db.String(255), nullable=True)
    guarantor_email = db.Column(db.String(255), nullable=True)

    key_status = db.Column(db.String(32), nullable=False, default=KEY_NOT_COLLECTED)
    key_collection_date = db.Column(db.Date, nullable=True)
    key_return_date = db.Column(db.Date, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    tenancy = db.relationship("Tenancy", back_populates="members")
    bedroom = db.relationship("Bedroom")
    guarantor_agreement = db.relationship(
        "GuarantorAgreement",
        back_populates="member",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.surname}".strip()

    def to_dict(self) -> dict:
        agreement = self.guarantor_agreement
        return {
            "id": self.id,
            "tenancy_id": self.tenancy_id,
            "application_id": self.application_id,
            "bedroom_id": self.bedroom_id,
            "bedroom_name": self.bedroom.name if self.bedroom is not None else None,
            "first_name": self.first_name,
            "surname": self.surname,
            "email": self.email,
            "rent_pppw": str(self.rent_pppw) if self.rent_pppw is not None else None,
            "deposit_amount": str(self.deposit_amount) if self.deposit_amount is not None else None,
            "payment_option": self.payment_option,
            "is_signed": self.is_signed,
            "signed_at": to_utc_z(self.signed_at),
            "guarantor_required": self.guarantor_required,
            "guarantor_name": self.guarantor_name,
            "guarantor_email": self.guarantor_email,
            "guarantor_signed": agreement.is_signed if agreement is not None else None,
            "key_status": self.key_status,
            "key_collection_date": to_iso_date(self.key_collection_date),
            "key_return_date": to_iso_date(self.key_return_date),
        }


class GuarantorAgreement(db.Model):
    """
    Guarantor sign-off for one member.

    Access is by guarantor_token; issuing a new token replaces the old one so
    the previous link stops working immediately.
    """
    __tablename__ = "guarantor_agreements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenancy_id = db.Column(db.Integer, db.ForeignKey("tenancies.id"), nullable=False, index=True)
    member_id = db.Column(db.Integer, db.ForeignKey("tenancy_members.id"), nullable=False, unique=True)

    guarantor_name = db.Column(db.String(255), nullable=True)
    guarantor_email = db.Column(db.String(255), nullable=True)

    guarantor_token = db.Column(db.String(64), nullable=False, unique=True, index=True)
    token_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_signed = db.Column(db.Boolean, nullable=False, default=False)
    signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    signature_data = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    member = db.relationship("TenancyMember", back_populates="guarantor_agreement")

    def to_dict(self, *, include_token: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenancy_id": self.tenancy_id,
            "member_id": self.member_id,
            "guarantor_name": self.guarantor_name,
            "guarantor_email": self.guarantor_email,
            "token_expires_at": to_utc_z(self.token_expires_at),
            "is_signed": self.is_signed,
            "signed_at": to_utc_z(self.signed_at),
        }
        if include_token:
            data["guarantor_token"] = self.guarantor_token
        return data
