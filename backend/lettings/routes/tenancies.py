# Overview: Flask API routes for tenancy lifecycle operations; parses input and returns JSON responses.

"""
Tenancy API Routes

Thin layer over services.lifecycle_service: parse JSON, call the service,
serialize. Every route is scoped to the agency in g.agency_id.

Lifecycle:
    POST /api/tenancies                          create (pending)
    PATCH/DELETE /api/tenancies/<id>             edit / delete while pending
    POST /api/tenancies/<id>/send-for-signatures pending -> awaiting_signatures
    POST /api/tenancies/<id>/approve             awaiting_signatures -> approval
    POST /api/tenancies/<id>/activate            approval -> active
    GET  /api/tenancies/<id>/expiry-preview      outstanding keys / payments
    POST /api/tenancies/<id>/expire              active -> expired
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_agency_scope
from ..models.tenancies import TENANCY_TYPES
from ..services import lifecycle_service, payment_service, reconciliation_service
from ..services.lifecycle_service import MEMBER_OVERRIDE_FIELDS
from ..validation import Field, ValidationError, coerce_date, validate_payload
from .errors import error_response


tenancies_bp = Blueprint("tenancies", __name__, url_prefix="/api/tenancies")


CREATE_FIELDS = {
    "property_id": Field("int", required=True, nullable=False),
    "tenancy_type": Field("str", required=True, nullable=False, choices=frozenset(TENANCY_TYPES)),
    "start_date": Field("date", required=True, nullable=False),
    "end_date": Field("date"),
    "is_rolling_periodic": Field("bool", nullable=False),
    "auto_generate_payments": Field("bool", nullable=False),
}

UPDATE_FIELDS = {
    "start_date": Field("date", nullable=False),
    "end_date": Field("date"),
    "auto_generate_payments": Field("bool", nullable=False),
}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def _split_members(data: dict, fields: dict, *, partial: bool):
    """Members are validated by the service; everything else here."""
    data = dict(data)
    members = data.pop("members", None)
    if members is not None and not isinstance(members, list):
        raise ValidationError("members must be a list")
    if not partial and members is None:
        raise ValidationError("Missing required fields: members")
    return validate_payload(data, fields, partial=partial), members


# =============================================================================
# CRUD
# =============================================================================

@tenancies_bp.get("")
@require_agency_scope
def list_tenancies_route():
    try:
        property_id = request.args.get("property_id", type=int)
        tenancies = lifecycle_service.list_tenancies(
            agency_id=g.agency_id,
            status=request.args.get("status"),
            property_id=property_id,
        )
        return jsonify({"tenancies": [t.to_dict(include_members=False) for t in tenancies]}), 200
    except Exception as exc:
        return error_response(exc, "list tenancies")


@tenancies_bp.post("")
@require_agency_scope
def create_tenancy_route():
    """
    Create a pending tenancy.

    Request body:
    {
        "property_id": 1,
        "tenancy_type": "whole_house",
        "start_date": "2025-09-01",
        "end_date": "2026-08-31",          (omit for rolling)
        "is_rolling_periodic": false,
        "members": [
            {"application_id": 7, "bedroom_id": 3, "rent_pppw": "150.00", "deposit_amount": "600.00"},
            {"first_name": "Sam", "surname": "Lee", "bedroom_id": 4, "rent_pppw": "140.00"}
        ]
    }

    Returns:
        201: Tenancy created
        400: Invalid input
        409: Bedroom conflict (body lists every conflicting assignment)
        422: Rolling/end-date or room_only rule broken
    """
    try:
        data, members = _split_members(_json_body(), CREATE_FIELDS, partial=False)
        tenancy = lifecycle_service.create_tenancy(
            agency_id=g.agency_id,
            property_id=data["property_id"],
            tenancy_type=data["tenancy_type"],
            start_date=data["start_date"],
            end_date=data.get("end_date"),
            is_rolling_periodic=data.get("is_rolling_periodic", False),
            auto_generate_payments=data.get("auto_generate_payments", True),
            members=members,
        )
        return jsonify({"tenancy": tenancy.to_dict()}), 201
    except Exception as exc:
        return error_response(exc, "create tenancy")


@tenancies_bp.get("/<int:tenancy_id>")
@require_agency_scope
def get_tenancy_route(tenancy_id: int):
    try:
        tenancy = lifecycle_service.get_tenancy(tenancy_id, agency_id=g.agency_id)
        data = tenancy.to_dict()
        data["signatures"] = lifecycle_service.signature_status(tenancy)
        return jsonify({"tenancy": data}), 200
    except Exception as exc:
        return error_response(exc, "load tenancy")


@tenancies_bp.patch("/<int:tenancy_id>")
@require_agency_scope
def update_tenancy_route(tenancy_id: int):
    """Edit a pending tenancy. Members: [{"id": 5, "bedroom_id": 2, "rent_pppw": "120"}]."""
    try:
        body = _json_body()
        data, members = _split_members(body, UPDATE_FIELDS, partial=True)
        kwargs = {}
        for key in ("start_date", "end_date", "auto_generate_payments"):
            if key in data:
                kwargs[key] = data[key]
        tenancy = lifecycle_service.update_tenancy(
            tenancy_id,
            agency_id=g.agency_id,
            member_updates=members,
            **kwargs,
        )
        return jsonify({"tenancy": tenancy.to_dict()}), 200
    except Exception as exc:
        return error_response(exc, "update tenancy")


@tenancies_bp.delete("/<int:tenancy_id>")
@require_agency_scope
def delete_tenancy_route(tenancy_id: int):
    try:
        lifecycle_service.delete_pending_tenancy(tenancy_id, agency_id=g.agency_id)
        return jsonify({"deleted": True}), 200
    except Exception as exc:
        return error_response(exc, "delete tenancy")


# =============================================================================
# TRANSITIONS
# =============================================================================

@tenancies_bp.post("/<int:tenancy_id>/send-for-signatures")
@require_agency_scope
def send_for_signatures_route(tenancy_id: int):
    try:
        result = lifecycle_service.send_for_signatures(tenancy_id, agency_id=g.agency_id)
        return jsonify(result.to_dict()), 200
    except Exception as exc:
        return error_response(exc, "send tenancy for signatures")


@tenancies_bp.post("/<int:tenancy_id>/approve")
@require_agency_scope
def approve_tenancy_route(tenancy_id: int):
    try:
        result = lifecycle_service.submit_for_approval(tenancy_id, agency_id=g.agency_id)
        return jsonify(result.to_dict()), 200
    except Exception as exc:
        return error_response(exc, "approve tenancy")


@tenancies_bp.post("/<int:tenancy_id>/activate")
@require_agency_scope
def activate_tenancy_route(tenancy_id: int):
    try:
        result = lifecycle_service.activate_tenancy(tenancy_id, agency_id=g.agency_id)
        return jsonify(result.to_dict()), 200
    except Exception as exc:
        return error_response(exc, "activate tenancy")


@tenancies_bp.get("/<int:tenancy_id>/expiry-preview")
@require_agency_scope
def expiry_preview_route(tenancy_id: int):
    try:
        warnings = lifecycle_service.preview_expiry(tenancy_id, agency_id=g.agency_id)
        return jsonify(warnings.to_dict()), 200
    except Exception as exc:
        return error_response(exc, "preview expiry")


@tenancies_bp.post("/<int:tenancy_id>/expire")
@require_agency_scope
def expire_tenancy_route(tenancy_id: int):
    """Expire on/after the end date. Warnings are returned, not enforced."""
    try:
        result = lifecycle_service.expire_tenancy(tenancy_id, agency_id=g.agency_id)
        return jsonify(result.to_dict()), 200
    except Exception as exc:
        return error_response(exc, "expire tenancy")


@tenancies_bp.post("/<int:tenancy_id>/notice")
@require_agency_scope
def give_notice_route(tenancy_id: int):
    try:
        end_date = coerce_date("end_date", _json_body().get("end_date"))
        result = lifecycle_service.give_notice(tenancy_id, agency_id=g.agency_id, end_date=end_date)
        return jsonify(result.to_dict()), 200
    except Exception as exc:
        return error_response(exc, "give notice")


# =============================================================================
# ROLLING SUCCESSOR / MIGRATION
# =============================================================================

@tenancies_bp.post("/<int:tenancy_id>/rolling")
@require_agency_scope
def create_rolling_route(tenancy_id: int):
    """
    Request body:
    {
        "start_date": "2026-09-01",
        "member_ids": [11, 12],
        "member_overrides": {"12": {"bedroom_id": 5, "rent_pppw": "135.00"}}
    }
    """
    try:
        body = _json_body()
        member_ids = body.get("member_ids") or []
        if not isinstance(member_ids, list):
            raise ValidationError("member_ids must be a list")
        overrides = body.get("member_overrides") or {}
        if not isinstance(overrides, dict):
            raise ValidationError("member_overrides must be an object keyed by member id")
        for patch in overrides.values():
            validate_payload(patch, MEMBER_OVERRIDE_FIELDS, partial=True)
        tenancy = lifecycle_service.create_rolling_from_existing(
            tenancy_id,
            agency_id=g.agency_id,
            start_date=coerce_date("start_date", body.get("start_date")),
            member_ids=[int(m) for m in member_ids],
            member_overrides=overrides,
        )
        return jsonify({"tenancy": tenancy.to_dict()}), 201
    except Exception as exc:
        return error_response(exc, "create rolling tenancy")


@tenancies_bp.post("/migration")
@require_agency_scope
def create_migration_route():
    try:
        data, members = _split_members(_json_body(), CREATE_FIELDS, partial=False)
        result = lifecycle_service.create_migration_tenancy(
            agency_id=g.agency_id,
            property_id=data["property_id"],
            tenancy_type=data["tenancy_type"],
            start_date=data["start_date"],
            end_date=data.get("end_date"),
            is_rolling_periodic=data.get("is_rolling_periodic", False),
            auto_generate_payments=data.get("auto_generate_payments", True),
            members=members,
        )
        return jsonify(result.to_dict()), 201
    except Exception as exc:
        return error_response(exc, "create migration tenancy")


# =============================================================================
# MEMBERS
# =============================================================================

@tenancies_bp.post("/members/<int:member_id>/sign")
@require_agency_scope
def sign_member_route(member_id: int):
    try:
        body = _json_body()
        member, result = lifecycle_service.record_member_signature(
            member_id,
            agency_id=g.agency_id,
            signature_name=body.get("signature_name"),
            payment_option=body.get("payment_option"),
            signature_data=body.get("signature_data"),
        )
        return jsonify({
            "member": member.to_dict(),
            "transition": result.to_dict() if result else None,
        }), 200
    except Exception as exc:
        return error_response(exc, "record signature")


@tenancies_bp.post("/members/<int:member_id>/keys")
@require_agency_scope
def update_keys_route(member_id: int):
    try:
        body = _json_body()
        on_date = coerce_date("date", body["date"]) if body.get("date") else None
        member = lifecycle_service.update_key_status(
            member_id,
            agency_id=g.agency_id,
            key_status=body.get("key_status"),
            on_date=on_date,
        )
        return jsonify({"member": member.to_dict()}), 200
    except Exception as exc:
        return error_response(exc, "update key status")


# =============================================================================
# SCHEDULES
# =============================================================================

@tenancies_bp.get("/<int:tenancy_id>/schedules")
@require_agency_scope
def tenancy_schedules_route(tenancy_id: int):
    """Obligations with status derived from the ledger at request time."""
    try:
        schedules = reconciliation_service.get_tenancy_schedules(
            tenancy_id,
            agency_id=g.agency_id,
            member_id=request.args.get("member_id", type=int),
        )
        return jsonify({"tenancy_id": tenancy_id, "schedules": schedules}), 200
    except Exception as exc:
        return error_response(exc, "load schedules")


@tenancies_bp.get("/<int:tenancy_id>/stats")
@require_agency_scope
def tenancy_stats_route(tenancy_id: int):
    try:
        stats = reconciliation_service.tenancy_payment_stats(tenancy_id, agency_id=g.agency_id)
        return jsonify(stats), 200
    except Exception as exc:
        return error_response(exc, "load payment stats")


@tenancies_bp.post("/<int:tenancy_id>/schedules/generate")
@require_agency_scope
def generate_schedules_route(tenancy_id: int):
    """Re-run generation after a failed or partial attempt; idempotent."""
    try:
        created = lifecycle_service.retry_schedule_generation(tenancy_id, agency_id=g.agency_id)
        return jsonify({"created": [o.to_dict() for o in created]}), 200
    except Exception as exc:
        return error_response(exc, "generate schedules")


@tenancies_bp.post("/<int:tenancy_id>/deposit-returns")
@require_agency_scope
def deposit_returns_route(tenancy_id: int):
    try:
        member_ids = _json_body().get("member_ids")
        created = payment_service.create_deposit_returns(
            tenancy_id,
            agency_id=g.agency_id,
            member_ids=member_ids,
        )
        return jsonify({"created": [o.to_dict() for o in created]}), 201
    except Exception as exc:
        return error_response(exc, "create deposit returns")
