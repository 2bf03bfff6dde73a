# Overview: Service-layer operations for tenancy lifecycle; encapsulates business logic and database work.

"""
Tenancy Lifecycle Service

================================================================================
PURPOSE: Enforce pending -> awaiting_signatures -> approval -> active -> expired
================================================================================

STATE MACHINE:
    pending -> awaiting_signatures -> approval -> active -> expired

    pending:             Draft; dates, rent and rooms editable; deletable
    awaiting_signatures: Core fields locked; sign links and guarantor links out
    approval:            Everyone signed; schedule generated
    active:              Occupied and billable
    expired:             Ended; room released

    Migration fast path: created directly in active (paperwork done elsewhere).
    Rolling successor:   created in pending from a subset of an existing
                         tenancy's members.

RULES (NON-NEGOTIABLE):
1. Cannot skip or reverse states
2. Rolling tenancies have no end date until notice is given; fixed-term
   tenancies always have one, after the start date
3. room_only tenancies have exactly one member
4. Room assignments are conflict-checked inside the writing transaction with
   the rooms locked (see occupancy_service / concurrency.lock_bedrooms)
5. Each transition is all-or-nothing. Schedule generation and events that
   follow a committed transition are best-effort: failures are logged and
   reported on TransitionResult.auxiliary_failures, never rolled back
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from ..extensions import db
from ..models import Application, Bedroom, PaymentSchedule, Property, Tenancy, TenancyMember
from ..models.tenancies import (
    KEY_COLLECTED,
    KEY_NOT_COLLECTED,
    KEY_RETURNED,
    KEY_STATUSES,
    PAYMENT_OPTION_MONTHLY,
    PAYMENT_OPTIONS,
    TENANCY_ACTIVE,
    TENANCY_APPROVAL,
    TENANCY_AWAITING_SIGNATURES,
    TENANCY_EXPIRED,
    TENANCY_PENDING,
    TENANCY_STATUSES,
    TENANCY_TYPE_ROOM_ONLY,
    TENANCY_TYPES,
)
from ..time_utils import local_today, to_iso_date, utcnow
from ..validation import Field, NotFoundError, ValidationError, signature_matches, validate_payload
from . import event_service, guarantor_service, schedule_service
from .concurrency import lock_bedrooms, lock_for_update, run_with_retry
from .occupancy_service import CandidateAssignment, ensure_no_conflicts
from .reconciliation_service import unpaid_obligations


logger = logging.getLogger(__name__)


class LifecycleError(ValueError):
    """
    Raised when a transition's preconditions are not met.

    missing carries structured detail (counts and names of what is
    outstanding) so the caller can resolve it without inspecting raw state.
    """

    def __init__(self, message: str, *, missing: Optional[dict] = None):
        super().__init__(message)
        self.missing = missing or {}


class TenancyIntegrityError(ValueError):
    """Raised when a write would break the rolling/end-date or room_only invariants."""


VALID_TRANSITIONS = {
    (TENANCY_PENDING, TENANCY_AWAITING_SIGNATURES),
    (TENANCY_AWAITING_SIGNATURES, TENANCY_APPROVAL),
    (TENANCY_APPROVAL, TENANCY_ACTIVE),
    (TENANCY_ACTIVE, TENANCY_EXPIRED),
}

BILLABLE_STATUSES = {TENANCY_APPROVAL, TENANCY_ACTIVE}

MEMBER_FIELDS = {
    "application_id": Field("int"),
    "first_name": Field("str", max_length=128),
    "surname": Field("str", max_length=128),
    "email": Field("str", max_length=255),
    "bedroom_id": Field("int"),
    "rent_pppw": Field("money"),
    "deposit_amount": Field("money"),
    "payment_option": Field("str", choices=frozenset(PAYMENT_OPTIONS)),
    "guarantor_required": Field("bool", nullable=False),
    "guarantor_name": Field("str", max_length=255),
    "guarantor_email": Field("str", max_length=255),
}

MEMBER_OVERRIDE_FIELDS = {
    "bedroom_id": Field("int"),
    "rent_pppw": Field("money"),
    "deposit_amount": Field("money"),
}

_UNSET = object()


@dataclass
class TransitionResult:
    """
    Outcome of a committed lifecycle operation.

    auxiliary_failures lists best-effort steps that failed after commit
    (e.g. schedule generation); each is safe to retry.
    """
    tenancy: Tenancy
    warnings: list[str] = field(default_factory=list)
    auxiliary_failures: list[dict] = field(default_factory=list)
    created_obligations: int = 0

    @property
    def partial_success(self) -> bool:
        return bool(self.auxiliary_failures)

    def to_dict(self) -> dict:
        return {
            "tenancy": self.tenancy.to_dict(),
            "warnings": list(self.warnings),
            "auxiliary_failures": list(self.auxiliary_failures),
            "created_obligations": self.created_obligations,
            "partial_success": self.partial_success,
        }


@dataclass
class ExpiryWarnings:
    keys_outstanding: list[dict] = field(default_factory=list)
    unpaid_obligations: list[dict] = field(default_factory=list)

    def messages(self) -> list[str]:
        messages = []
        for item in self.keys_outstanding:
            messages.append(f"{item['member_name']} has keys {item['key_status'].replace('_', ' ')}")
        if self.unpaid_obligations:
            total = sum(Decimal(item["balance"]) for item in self.unpaid_obligations)
            messages.append(
                f"{len(self.unpaid_obligations)} obligation(s) unpaid, balance {total}"
            )
        return messages

    def to_dict(self) -> dict:
        return {
            "keys_outstanding": list(self.keys_outstanding),
            "unpaid_obligations": list(self.unpaid_obligations),
            "messages": self.messages(),
        }


def can_transition(from_status: str, to_status: str) -> bool:
    if from_status not in TENANCY_STATUSES or to_status not in TENANCY_STATUSES:
        raise LifecycleError(f"Invalid status transition {from_status} -> {to_status}")
    return (from_status, to_status) in VALID_TRANSITIONS


def _require_transition(tenancy: Tenancy, to_status: str) -> None:
    if not can_transition(tenancy.status, to_status):
        raise LifecycleError(
            f"Cannot move tenancy {tenancy.id} from {tenancy.status} to {to_status}",
            missing={"current_status": tenancy.status, "required_status": _required_from(to_status)},
        )


def _required_from(to_status: str) -> Optional[str]:
    for src, dst in VALID_TRANSITIONS:
        if dst == to_status:
            return src
    return None


# =============================================================================
# LOOKUPS
# =============================================================================

def get_tenancy(tenancy_id: int, *, agency_id: int, lock: bool = False) -> Tenancy:
    query = db.session.query(Tenancy).filter_by(id=tenancy_id, agency_id=agency_id)
    if lock:
        query = lock_for_update(query)
    tenancy = query.first()
    if not tenancy:
        raise NotFoundError(f"Tenancy {tenancy_id} not found")
    return tenancy


def list_tenancies(
    *,
    agency_id: int,
    status: Optional[str] = None,
    property_id: Optional[int] = None,
) -> list[Tenancy]:
    query = db.session.query(Tenancy).filter(Tenancy.agency_id == agency_id)
    if status is not None:
        if status not in TENANCY_STATUSES:
            raise ValidationError(f"Unknown status '{status}'")
        query = query.filter(Tenancy.status == status)
    if property_id is not None:
        query = query.filter(Tenancy.property_id == property_id)
    return query.order_by(Tenancy.start_date.desc(), Tenancy.id.desc()).all()


def _get_member(member_id: int, agency_id: int) -> TenancyMember:
    member = (
        db.session.query(TenancyMember)
        .join(Tenancy, TenancyMember.tenancy_id == Tenancy.id)
        .filter(TenancyMember.id == member_id, Tenancy.agency_id == agency_id)
        .first()
    )
    if not member:
        raise NotFoundError(f"Tenancy member {member_id} not found")
    return member


# =============================================================================
# INTEGRITY AND ROOM CHECKS
# =============================================================================

def check_integrity(
    *,
    start_date: date,
    end_date: Optional[date],
    is_rolling_periodic: bool,
    tenancy_type: str,
    members: list[dict],
    allow_rolling_end: bool = False,
) -> None:
    """
    Raises:
        TenancyIntegrityError: Dates or member count break a tenancy invariant
        ValidationError: Unknown tenancy type, no members, or duplicate rooms
    """
    if tenancy_type not in TENANCY_TYPES:
        raise ValidationError(f"tenancy_type must be one of: {', '.join(TENANCY_TYPES)}")
    if not members:
        raise ValidationError("A tenancy needs at least one member")

    if is_rolling_periodic and end_date is not None and not allow_rolling_end:
        raise TenancyIntegrityError(
            "A rolling tenancy cannot have an end date; give notice once it is active"
        )
    if not is_rolling_periodic and end_date is None:
        raise TenancyIntegrityError("A fixed-term tenancy must have an end date")
    if end_date is not None and end_date <= start_date:
        raise TenancyIntegrityError("End date must be after start date")

    if tenancy_type == TENANCY_TYPE_ROOM_ONLY and len(members) != 1:
        raise TenancyIntegrityError(
            f"A room_only tenancy must have exactly one member (got {len(members)})"
        )

    rooms = [m.get("bedroom_id") for m in members if m.get("bedroom_id") is not None]
    if len(rooms) != len(set(rooms)):
        raise ValidationError("The same bedroom is assigned to more than one member")


def _check_bedrooms_belong(property_id: int, bedroom_ids) -> None:
    ids = {b for b in bedroom_ids if b is not None}
    if not ids:
        return
    found = {
        row.id
        for row in db.session.query(Bedroom.id)
        .filter(Bedroom.id.in_(ids), Bedroom.property_id == property_id)
        .all()
    }
    missing = sorted(ids - found)
    if missing:
        raise ValidationError(
            f"Bedroom(s) {', '.join(map(str, missing))} do not belong to property {property_id}"
        )


def _get_property(property_id: int, agency_id: int) -> Property:
    prop = db.session.query(Property).filter_by(id=property_id, agency_id=agency_id).first()
    if not prop:
        raise NotFoundError(f"Property {property_id} not found")
    return prop


def _guard_rooms(
    *,
    agency_id: int,
    members: list[dict],
    start_date: date,
    end_date: Optional[date],
    exclude_tenancy_id: Optional[int] = None,
) -> None:
    """Lock the contested rooms, then conflict-check in the same transaction."""
    candidates = [
        CandidateAssignment(m.get("bedroom_id"), _member_label(m))
        for m in members
    ]
    lock_bedrooms(c.bedroom_id for c in candidates)
    ensure_no_conflicts(
        candidates, start_date, end_date, exclude_tenancy_id, agency_id=agency_id,
    )


def _member_label(data: dict) -> str:
    name = f"{data.get('first_name') or ''} {data.get('surname') or ''}".strip()
    return name or "new member"


# =============================================================================
# MEMBER INPUT
# =============================================================================

def _clean_members(raw_members, *, is_rolling_periodic: bool) -> list[dict]:
    if not isinstance(raw_members, list):
        raise ValidationError("members must be a list")
    cleaned = []
    for raw in raw_members:
        data = validate_payload(raw, MEMBER_FIELDS, partial=True)
        if data.get("application_id") is None and not (data.get("first_name") and data.get("surname")):
            raise ValidationError("Each member needs an application_id or first_name and surname")
        for key in ("rent_pppw", "deposit_amount"):
            if data.get(key) is not None and data[key] < 0:
                raise ValidationError(f"{key} cannot be negative")
        if is_rolling_periodic:
            data["payment_option"] = PAYMENT_OPTION_MONTHLY
        cleaned.append(data)

    app_ids = [m["application_id"] for m in cleaned if m.get("application_id") is not None]
    if len(app_ids) != len(set(app_ids)):
        raise ValidationError("The same application is listed more than once")
    return cleaned


def _fill_from_applications(members: list[dict], agency_id: int) -> list[Application]:
    """Copy applicant details onto member input and return the applications to convert."""
    applications = []
    for data in members:
        app_id = data.get("application_id")
        if app_id is None:
            continue
        application = db.session.query(Application).filter_by(id=app_id, agency_id=agency_id).first()
        if not application:
            raise NotFoundError(f"Application {app_id} not found")
        if application.status != "approved":
            raise ValidationError(f"Application {app_id} is not approved (status {application.status})")
        data.setdefault("first_name", application.first_name)
        data.setdefault("surname", application.surname)
        data.setdefault("email", application.email)
        data.setdefault("guarantor_required", application.guarantor_required)
        data.setdefault("guarantor_name", application.guarantor_name)
        data.setdefault("guarantor_email", application.guarantor_email)
        applications.append(application)
    return applications


def _new_member(data: dict, **extra) -> TenancyMember:
    return TenancyMember(
        application_id=data.get("application_id"),
        first_name=data.get("first_name"),
        surname=data.get("surname"),
        email=data.get("email"),
        bedroom_id=data.get("bedroom_id"),
        rent_pppw=data.get("rent_pppw"),
        deposit_amount=data.get("deposit_amount") or Decimal("0"),
        payment_option=data.get("payment_option"),
        guarantor_required=bool(data.get("guarantor_required")),
        guarantor_name=data.get("guarantor_name"),
        guarantor_email=data.get("guarantor_email"),
        **extra,
    )


def _total_rent(members) -> Decimal:
    total = Decimal("0")
    for m in members:
        rent = m.get("rent_pppw") if isinstance(m, dict) else m.rent_pppw
        total += Decimal(rent or 0)
    return total


# =============================================================================
# CREATION / EDIT / DELETE (pending)
# =============================================================================

def create_tenancy(
    *,
    agency_id: int,
    property_id: int,
    start_date: date,
    end_date: Optional[date] = None,
    tenancy_type: str,
    members: list,
    is_rolling_periodic: bool = False,
    auto_generate_payments: bool = True,
) -> Tenancy:
    """
    Create a pending tenancy, usually from approved applications.

    Members may reference an application_id (details are copied from the
    application, which becomes converted_to_tenancy) or give names directly.

    Raises:
        ValidationError: Malformed member input or foreign bedrooms
        TenancyIntegrityError: Rolling/end-date or room_only rule broken
        BedroomConflictError: A room is already let for an overlapping range
    """
    cleaned = _clean_members(members, is_rolling_periodic=is_rolling_periodic)
    check_integrity(
        start_date=start_date,
        end_date=end_date,
        is_rolling_periodic=is_rolling_periodic,
        tenancy_type=tenancy_type,
        members=cleaned,
    )

    def _op():
        member_data = [dict(m) for m in cleaned]
        _get_property(property_id, agency_id)
        _check_bedrooms_belong(property_id, (m.get("bedroom_id") for m in member_data))
        applications = _fill_from_applications(member_data, agency_id)

        _guard_rooms(
            agency_id=agency_id,
            members=member_data,
            start_date=start_date,
            end_date=end_date,
        )

        tenancy = Tenancy(
            agency_id=agency_id,
            property_id=property_id,
            tenancy_type=tenancy_type,
            status=TENANCY_PENDING,
            start_date=start_date,
            end_date=end_date,
            rent_amount=_total_rent(member_data),
            is_rolling_periodic=is_rolling_periodic,
            auto_generate_payments=auto_generate_payments,
            is_migration=False,
        )
        tenancy.members = [_new_member(m) for m in member_data]
        db.session.add(tenancy)
        for application in applications:
            application.status = "converted_to_tenancy"

        db.session.commit()
        logger.info("Tenancy %s created (pending) with %s members", tenancy.id, len(member_data))
        return tenancy

    return run_with_retry(_op)


def update_tenancy(
    tenancy_id: int,
    *,
    agency_id: int,
    start_date=_UNSET,
    end_date=_UNSET,
    auto_generate_payments=_UNSET,
    member_updates: Optional[list[dict]] = None,
) -> Tenancy:
    """
    Edit a pending tenancy's dates, flags or member rooms/rents.

    Once a tenancy leaves pending its core fields are locked; the only way to
    change them is to delete (while pending) and recreate.

    Raises:
        LifecycleError: Tenancy is not pending
        TenancyIntegrityError / BedroomConflictError: as create_tenancy
    """
    updates = []
    for raw in member_updates or []:
        if not isinstance(raw, dict) or "id" not in raw:
            raise ValidationError("Each member update needs an id")
        raw = dict(raw)
        member_id = raw.pop("id")
        updates.append((member_id, validate_payload(raw, MEMBER_OVERRIDE_FIELDS, partial=True)))

    def _op():
        tenancy = get_tenancy(tenancy_id, agency_id=agency_id, lock=True)
        if tenancy.status != TENANCY_PENDING:
            raise LifecycleError(
                f"Tenancy {tenancy.id} is {tenancy.status}; dates, rent and rooms are locked after pending",
                missing={"current_status": tenancy.status, "required_status": TENANCY_PENDING},
            )

        members_by_id = {m.id: m for m in tenancy.members}
        for member_id, patch in updates:
            member = members_by_id.get(member_id)
            if member is None:
                raise ValidationError(f"Member {member_id} is not part of tenancy {tenancy.id}")
            for key, value in patch.items():
                setattr(member, key, value)

        if start_date is not _UNSET:
            tenancy.start_date = start_date
        if end_date is not _UNSET:
            tenancy.end_date = end_date
        if auto_generate_payments is not _UNSET:
            tenancy.auto_generate_payments = bool(auto_generate_payments)

        member_data = [
            {
                "bedroom_id": m.bedroom_id,
                "first_name": m.first_name,
                "surname": m.surname,
            }
            for m in tenancy.members
        ]
        check_integrity(
            start_date=tenancy.start_date,
            end_date=tenancy.end_date,
            is_rolling_periodic=tenancy.is_rolling_periodic,
            tenancy_type=tenancy.tenancy_type,
            members=member_data,
        )
        _check_bedrooms_belong(tenancy.property_id, (m["bedroom_id"] for m in member_data))
        _guard_rooms(
            agency_id=agency_id,
            members=member_data,
            start_date=tenancy.start_date,
            end_date=tenancy.end_date,
            exclude_tenancy_id=tenancy.id,
        )
        tenancy.rent_amount = _total_rent(tenancy.members)
        db.session.commit()
        return tenancy

    return run_with_retry(_op)


def delete_pending_tenancy(tenancy_id: int, *, agency_id: int) -> None:
    """
    Delete a pending tenancy and everything under it.

    Linked applications go back to approved so they can be re-used.
    """
    def _op():
        tenancy = get_tenancy(tenancy_id, agency_id=agency_id, lock=True)
        if tenancy.status != TENANCY_PENDING:
            raise LifecycleError(
                f"Only pending tenancies can be deleted (tenancy {tenancy.id} is {tenancy.status})",
                missing={"current_status": tenancy.status, "required_status": TENANCY_PENDING},
            )
        app_ids = [m.application_id for m in tenancy.members if m.application_id is not None]
        if app_ids:
            db.session.query(Application).filter(
                Application.id.in_(app_ids),
                Application.agency_id == agency_id,
            ).update({Application.status: "approved"}, synchronize_session=False)
        db.session.delete(tenancy)
        db.session.commit()
        logger.info("Pending tenancy %s deleted", tenancy_id)

    return run_with_retry(_op)


# =============================================================================
# SIGNATURES
# =============================================================================

def signature_status(tenancy: Tenancy) -> dict:
    """Outstanding member and guarantor signatures, by count and name."""
    unsigned_members = [m.full_name for m in tenancy.members if not m.is_signed]
    unsigned_guarantors = []
    for m in tenancy.members:
        if not m.guarantor_required:
            continue
        agreement = m.guarantor_agreement
        if agreement is None or not agreement.is_signed:
            unsigned_guarantors.append(m.full_name)
    return {
        "member_signatures": len(unsigned_members),
        "guarantor_signatures": len(unsigned_guarantors),
        "unsigned_members": unsigned_members,
        "members_missing_guarantor": unsigned_guarantors,
    }


def _require_signatures_complete(tenancy: Tenancy, action: str) -> None:
    status = signature_status(tenancy)
    if status["member_signatures"] or status["guarantor_signatures"]:
        raise LifecycleError(
            f"Cannot {action} tenancy {tenancy.id}: "
            f"{status['member_signatures']} member signature(s) and "
            f"{status['guarantor_signatures']} guarantor signature(s) outstanding",
            missing=status,
        )


def send_for_signatures(tenancy_id: int, *, agency_id: int) -> TransitionResult:
    """
    pending -> awaiting_signatures.

    Requires every member to have a weekly rent and, for room_only tenancies,
    a room. Issues a sign link per member and a guarantor agreement for every
    member that needs one.
    """
    def _op():
        tenancy = get_tenancy(tenancy_id, agency_id=agency_id, lock=True)
        _require_transition(tenancy, TENANCY_AWAITING_SIGNATURES)

        members = tenancy.members
        missing_rent = [m.full_name for m in members if m.rent_pppw is None or Decimal(m.rent_pppw) <= 0]
        missing_room = []
        if tenancy.tenancy_type == TENANCY_TYPE_ROOM_ONLY:
            missing_room = [m.full_name for m in members if m.bedroom_id is None]
        if not members or missing_rent or missing_room:
            raise LifecycleError(
                f"Tenancy {tenancy.id} is not ready for signatures",
                missing={
                    "member_count": len(members),
                    "members_missing_rent": missing_rent,
                    "members_missing_room": missing_room,
                },
            )

        tenancy.status = TENANCY_AWAITING_SIGNATURES
        for member in members:
            event_service.emit_event(
                agency_id=agency_id,
                event_type=event_service.SIGNATURE_LINK_ISSUED,
                tenancy_id=tenancy.id,
                member_id=member.id,
                payload={"email": member.email, "name": member.full_name},
            )
            guarantor_service.ensure_agreement_for_member(member)

        db.session.commit()
        logger.info("Tenancy %s sent for signatures", tenancy.id)
        return TransitionResult(tenancy=tenancy)

    return run_with_retry(_op)


def record_member_signature(
    member_id: int,
    *,
    agency_id: int,
    signature_name: str,
    payment_option: Optional[str] = None,
    signature_data: Optional[str] = None,
):
    """
    Record a member's signature and chosen payment option.

    When this completes the paperwork, the tenancy advances to approval.

    Returns:
        (member, TransitionResult | None)
    """
    def _op():
        member = _get_member(member_id, agency_id)
        tenancy = get_tenancy(member.tenancy_id, agency_id=agency_id, lock=True)
        if tenancy.status != TENANCY_AWAITING_SIGNATURES:
            raise LifecycleError(
                f"Tenancy {tenancy.id} is not awaiting signatures (status {tenancy.status})",
                missing={"current_status": tenancy.status, "required_status": TENANCY_AWAITING_SIGNATURES},
            )
        if member.is_signed:
            raise LifecycleError(f"{member.full_name} has already signed")
        if not signature_matches(signature_name, member.full_name):
            raise ValidationError("Signature must match the member's full name")

        option = PAYMENT_OPTION_MONTHLY if tenancy.is_rolling_periodic else (payment_option or member.payment_option)
        if option not in PAYMENT_OPTIONS:
            raise ValidationError(f"payment_option must be one of: {', '.join(PAYMENT_OPTIONS)}")

        member.payment_option = option
        member.is_signed = True
        member.signed_at = utcnow()
        member.signature_data = signature_data or signature_name
        guarantor_service.ensure_agreement_for_member(member)
        db.session.commit()
        return member, tenancy.id

    member, tenancy_id = run_with_retry(_op)
    result = advance_if_fully_signed(tenancy_id, agency_id=agency_id)
    return member, result


def advance_if_fully_signed(
    tenancy_id: int,
    *,
    agency_id: int,
    as_of: Optional[date] = None,
) -> Optional[TransitionResult]:
    """Move awaiting_signatures -> approval once nothing is outstanding."""
    tenancy = get_tenancy(tenancy_id, agency_id=agency_id)
    if tenancy.status != TENANCY_AWAITING_SIGNATURES:
        return None
    status = signature_status(tenancy)
    if status["member_signatures"] or status["guarantor_signatures"]:
        return None
    return submit_for_approval(tenancy_id, agency_id=agency_id, as_of=as_of)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _generate_best_effort(result: TransitionResult, *, agency_id: int, as_of: Optional[date]) -> None:
    tenancy_id = result.tenancy.id
    try:
        created = schedule_service.generate_for_tenancy(
            tenancy_id, agency_id=agency_id, as_of=as_of,
        )
    except Exception as exc:
        db.session.rollback()
        logger.exception("Schedule generation failed for tenancy %s after transition", tenancy_id)
        result.auxiliary_failures.append({
            "step": "schedule_generation",
            "error": str(exc),
            "retry": f"retry_schedule_generation({tenancy_id})",
        })
        return
    result.created_obligations += len(created)


def submit_for_approval(
    tenancy_id: int,
    *,
    agency_id: int,
    as_of: Optional[date] = None,
) -> TransitionResult:
    """
    awaiting_signatures -> approval.

    Requires every member and every required guarantor to have signed.
    Generates the initial payment schedule after commit (best-effort).
    """
    def _op():
        tenancy = get_tenancy(tenancy_id, agency_id=agency_id, lock=True)
        _require_transition(tenancy, TENANCY_APPROVAL)
        _require_signatures_complete(tenancy, "approve")
        tenancy.status = TENANCY_APPROVAL
        event_service.emit_event(
            agency_id=agency_id,
            event_type=event_service.TENANCY_APPROVED,
            tenancy_id=tenancy.id,
        )
        db.session.commit()
        logger.info("Tenancy %s moved to approval", tenancy.id)
        return TransitionResult(tenancy=tenancy)

    result = run_with_retry(_op)
    _generate_best_effort(result, agency_id=agency_id, as_of=as_of)
    return result


def activate_tenancy(
    tenancy_id: int,
    *,
    agency_id: int,
    as_of: Optional[date] = None,
) -> TransitionResult:
    """
    approval -> active.

    Signature completeness is checked again; a tenancy still waiting on a
    member or guarantor is rejected with the outstanding counts. Generates
    the schedule afterwards if any of it is missing (best-effort).
    """
    def _op():
        tenancy = get_tenancy(tenancy_id, agency_id=agency_id, lock=True)
        if tenancy.status not in (TENANCY_AWAITING_SIGNATURES, TENANCY_APPROVAL):
            _require_transition(tenancy, TENANCY_ACTIVE)
        _require_signatures_complete(tenancy, "activate")
        _require_transition(tenancy, TENANCY_ACTIVE)

        tenancy.status = TENANCY_ACTIVE
        event_service.emit_event(
            agency_id=agency_id,
            event_type=event_service.TENANCY_ACTIVATED,
            tenancy_id=tenancy.id,
        )
        db.session.commit()
        logger.info("Tenancy %s activated", tenancy.id)
        return TransitionResult(tenancy=tenancy)

    result = run_with_retry(_op)
    _generate_best_effort(result, agency_id=agency_id, as_of=as_of)
    return result


def preview_expiry(tenancy_id: int, *, agency_id: int, today: Optional[date] = None) -> ExpiryWarnings:
    """Keys not yet returned and obligations not yet paid, for the expiry prompt."""
    tenancy = get_tenancy(tenancy_id, agency_id=agency_id)
    return _expiry_warnings(tenancy, today=today)


def _expiry_warnings(tenancy: Tenancy, *, today: Optional[date]) -> ExpiryWarnings:
    warnings = ExpiryWarnings()
    for member in tenancy.members:
        if member.key_status != KEY_RETURNED:
            warnings.keys_outstanding.append({
                "member_id": member.id,
                "member_name": member.full_name,
                "key_status": member.key_status,
            })
    for obligation, result in unpaid_obligations(tenancy, today=today):
        warnings.unpaid_obligations.append({
            "schedule_id": obligation.id,
            "description": obligation.description,
            "due_date": to_iso_date(obligation.due_date),
            "status": result.status,
            "balance": str(result.balance),
        })
    return warnings


def expire_tenancy(
    tenancy_id: int,
    *,
    agency_id: int,
    today: Optional[date] = None,
) -> TransitionResult:
    """
    active -> expired, on or after the end date.

    Outstanding keys and unpaid obligations do not block expiry; they are
    returned as warnings on the result.
    """
    if today is None:
        today = local_today()

    def _op():
        tenancy = get_tenancy(tenancy_id, agency_id=agency_id, lock=True)
        _require_transition(tenancy, TENANCY_EXPIRED)
        if tenancy.end_date is None:
            raise LifecycleError(
                f"Tenancy {tenancy.id} has no end date; give notice before expiring it",
                missing={"end_date": None},
            )
        if today < tenancy.end_date:
            raise LifecycleError(
                f"Tenancy {tenancy.id} cannot expire before its end date {tenancy.end_date.isoformat()}",
                missing={"end_date": tenancy.end_date.isoformat(), "days_remaining": (tenancy.end_date - today).days},
            )

        warnings = _expiry_warnings(tenancy, today=today)
        tenancy.status = TENANCY_EXPIRED
        tenancy.expired_at = utcnow()
        event_service.emit_event(
            agency_id=agency_id,
            event_type=event_service.TENANCY_EXPIRED,
            tenancy_id=tenancy.id,
            payload=warnings.to_dict(),
        )
        db.session.commit()
        for message in warnings.messages():
            logger.warning("Tenancy %s expired with outstanding item: %s", tenancy.id, message)
        return TransitionResult(tenancy=tenancy, warnings=warnings.messages())

    return run_with_retry(_op)


def give_notice(
    tenancy_id: int,
    *,
    agency_id: int,
    end_date: date,
    today: Optional[date] = None,
) -> TransitionResult:
    """
    Set the end date of an active tenancy (notice on a rolling tenancy, or
    moving the end of a fixed term).

    Rent lines are refitted to the new end in the same transaction: unpaid
    automated lines after it are removed and the period containing it is
    re-clipped. A fixed term that grows gets its new periods straight away;
    a rolling tenancy keeps being billed month by month by the rolling job.
    Lines that already carry payments are left alone and reported as warnings.
    """
    if today is None:
        today = local_today()

    def _op():
        tenancy = get_tenancy(tenancy_id, agency_id=agency_id, lock=True)
        if tenancy.status != TENANCY_ACTIVE:
            raise LifecycleError(
                f"Notice can only be given on an active tenancy (tenancy {tenancy.id} is {tenancy.status})",
                missing={"current_status": tenancy.status, "required_status": TENANCY_ACTIVE},
            )
        if end_date < tenancy.start_date:
            raise TenancyIntegrityError("End date cannot be before start date")
        if end_date < today:
            raise ValidationError("Notice end date cannot be in the past")

        member_data = [
            {"bedroom_id": m.bedroom_id, "first_name": m.first_name, "surname": m.surname}
            for m in tenancy.members
        ]
        _guard_rooms(
            agency_id=agency_id,
            members=member_data,
            start_date=tenancy.start_date,
            end_date=end_date,
            exclude_tenancy_id=tenancy.id,
        )

        tenancy.end_date = end_date
        tenancy.notice_given_at = utcnow()

        refit = schedule_service.refit_rent_lines(tenancy)
        created = []
        if not tenancy.is_rolling_periodic:
            created = schedule_service.add_missing_obligations(
                tenancy, as_of=today, include_deposits=False,
            )

        db.session.commit()
        logger.info(
            "Tenancy %s: notice given, ends %s (removed=%s repriced=%s added=%s)",
            tenancy.id, end_date.isoformat(), refit.removed, refit.repriced, len(created),
        )
        warnings = []
        if refit.removed:
            warnings.append(f"Removed {refit.removed} unpaid rent line(s) after the end date")
        if refit.repriced:
            warnings.append(f"Re-priced {refit.repriced} rent line(s) to the new end date")
        for obligation in refit.held:
            warnings.append(
                f"Rent line {obligation.id} ({obligation.description}) has payments or manual edits "
                f"and was not adjusted to the new end date"
            )
        return TransitionResult(tenancy=tenancy, warnings=warnings, created_obligations=len(created))

    return run_with_retry(_op)


def update_key_status(
    member_id: int,
    *,
    agency_id: int,
    key_status: str,
    on_date: Optional[date] = None,
) -> TenancyMember:
    """Record key collection/return for a member."""
    if key_status not in KEY_STATUSES:
        raise ValidationError(f"key_status must be one of: {', '.join(KEY_STATUSES)}")
    on_date = on_date or local_today()

    def _op():
        member = _get_member(member_id, agency_id)
        if key_status == KEY_NOT_COLLECTED:
            member.key_collection_date = None
            member.key_return_date = None
        elif key_status == KEY_COLLECTED:
            member.key_collection_date = on_date
            member.key_return_date = None
        else:
            if member.key_collection_date is None:
                member.key_collection_date = on_date
            member.key_return_date = on_date
        member.key_status = key_status
        db.session.commit()
        return member

    return run_with_retry(_op)


def retry_schedule_generation(
    tenancy_id: int,
    *,
    agency_id: int,
    as_of: Optional[date] = None,
) -> list[PaymentSchedule]:
    """Re-run generation for a billable tenancy; a no-op when nothing is missing."""
    tenancy = get_tenancy(tenancy_id, agency_id=agency_id)
    if tenancy.status not in BILLABLE_STATUSES:
        raise LifecycleError(
            f"Tenancy {tenancy.id} is {tenancy.status}; schedules exist only from approval onwards",
            missing={"current_status": tenancy.status},
        )
    return schedule_service.generate_for_tenancy(tenancy_id, agency_id=agency_id, as_of=as_of)


# =============================================================================
# ROLLING SUCCESSOR / MIGRATION
# =============================================================================

def create_rolling_from_existing(
    source_tenancy_id: int,
    *,
    agency_id: int,
    start_date: date,
    member_ids: list[int],
    member_overrides: Optional[dict] = None,
) -> Tenancy:
    """
    Create a pending rolling tenancy carrying selected members forward.

    Args:
        source_tenancy_id: Tenancy the members come from
        start_date: First day of the rolling tenancy
        member_ids: Subset of the source tenancy's members to carry
        member_overrides: {member_id: {bedroom_id, rent_pppw, deposit_amount}};
            anything not overridden is copied from the source member

    Raises:
        ValidationError: Members not in the source tenancy
        BedroomConflictError: A room is already let from start_date onwards
    """
    if not member_ids:
        raise ValidationError("Select at least one member to carry forward")
    overrides = {}
    for key, patch in (member_overrides or {}).items():
        overrides[int(key)] = validate_payload(patch, MEMBER_OVERRIDE_FIELDS, partial=True)

    def _op():
        source = get_tenancy(source_tenancy_id, agency_id=agency_id)
        source_members = {m.id: m for m in source.members}
        unknown = [mid for mid in member_ids if mid not in source_members]
        if unknown:
            raise ValidationError(
                f"Member(s) {', '.join(map(str, unknown))} do not belong to tenancy {source.id}"
            )

        member_data = []
        for mid in member_ids:
            src = source_members[mid]
            patch = overrides.get(mid, {})
            member_data.append({
                "application_id": src.application_id,
                "first_name": src.first_name,
                "surname": src.surname,
                "email": src.email,
                "bedroom_id": patch.get("bedroom_id", src.bedroom_id),
                "rent_pppw": patch.get("rent_pppw", src.rent_pppw),
                "deposit_amount": patch.get("deposit_amount", src.deposit_amount),
                "payment_option": PAYMENT_OPTION_MONTHLY,
                "guarantor_required": src.guarantor_required,
                "guarantor_name": src.guarantor_name,
                "guarantor_email": src.guarantor_email,
            })

        check_integrity(
            start_date=start_date,
            end_date=None,
            is_rolling_periodic=True,
            tenancy_type=source.tenancy_type,
            members=member_data,
        )
        _check_bedrooms_belong(source.property_id, (m["bedroom_id"] for m in member_data))
        _guard_rooms(agency_id=agency_id, members=member_data, start_date=start_date, end_date=None)

        tenancy = Tenancy(
            agency_id=agency_id,
            property_id=source.property_id,
            source_tenancy_id=source.id,
            tenancy_type=source.tenancy_type,
            status=TENANCY_PENDING,
            start_date=start_date,
            end_date=None,
            rent_amount=_total_rent(member_data),
            is_rolling_periodic=True,
            auto_generate_payments=True,
            is_migration=False,
        )
        tenancy.members = [_new_member(m) for m in member_data]
        db.session.add(tenancy)
        db.session.commit()
        logger.info("Rolling tenancy %s created from tenancy %s", tenancy.id, source.id)
        return tenancy

    return run_with_retry(_op)


def create_migration_tenancy(
    *,
    agency_id: int,
    property_id: int,
    start_date: date,
    end_date: Optional[date] = None,
    tenancy_type: str,
    members: list,
    is_rolling_periodic: bool = False,
    auto_generate_payments: bool = True,
    as_of: Optional[date] = None,
) -> TransitionResult:
    """
    Import a tenancy whose paperwork was completed outside the system.

    Created directly in active with every member marked signed; the payment
    schedule is generated immediately after commit (best-effort).

    Raises:
        ValidationError: A member without name, rent or deposit
        TenancyIntegrityError / BedroomConflictError: as create_tenancy
    """
    cleaned = _clean_members(members, is_rolling_periodic=is_rolling_periodic)
    for data in cleaned:
        if data.get("application_id") is None and not (data.get("first_name") and data.get("surname")):
            raise ValidationError("Migration members need a name")
        if data.get("rent_pppw") is None or data.get("deposit_amount") is None:
            raise ValidationError(f"{_member_label(data)} needs rent_pppw and deposit_amount")
        data.setdefault("payment_option", PAYMENT_OPTION_MONTHLY)
        if data["payment_option"] is None:
            data["payment_option"] = PAYMENT_OPTION_MONTHLY
    check_integrity(
        start_date=start_date,
        end_date=end_date,
        is_rolling_periodic=is_rolling_periodic,
        tenancy_type=tenancy_type,
        members=cleaned,
    )

    def _op():
        member_data = [dict(m) for m in cleaned]
        _get_property(property_id, agency_id)
        _check_bedrooms_belong(property_id, (m.get("bedroom_id") for m in member_data))
        applications = _fill_from_applications(member_data, agency_id)
        _guard_rooms(
            agency_id=agency_id,
            members=member_data,
            start_date=start_date,
            end_date=end_date,
        )

        signed_at = utcnow()
        tenancy = Tenancy(
            agency_id=agency_id,
            property_id=property_id,
            tenancy_type=tenancy_type,
            status=TENANCY_ACTIVE,
            start_date=start_date,
            end_date=end_date,
            rent_amount=_total_rent(member_data),
            is_rolling_periodic=is_rolling_periodic,
            auto_generate_payments=auto_generate_payments,
            is_migration=True,
        )
        tenancy.members = [
            _new_member(m, is_signed=True, signed_at=signed_at, signature_data="migrated")
            for m in member_data
        ]
        db.session.add(tenancy)
        for application in applications:
            application.status = "converted_to_tenancy"
        db.session.flush()
        event_service.emit_event(
            agency_id=agency_id,
            event_type=event_service.TENANCY_ACTIVATED,
            tenancy_id=tenancy.id,
            payload={"migration": True},
        )
        db.session.commit()
        logger.info("Migration tenancy %s created (active)", tenancy.id)
        return TransitionResult(tenancy=tenancy)

    result = run_with_retry(_op)
    _generate_best_effort(result, agency_id=agency_id, as_of=as_of)
    return result
