# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payments API Routes

DESIGN:
- Record, correct and delete ledger entries against an obligation
- Create manual obligations (fees, utilities, adjustments)
- Edit/delete/revert obligations
- Obligation status in every response is re-derived from the ledger
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_agency_scope
from ..models.payments import PAYMENT_TYPES
from ..services import payment_service
from ..services.reconciliation_service import reconcile
from ..validation import Field, ValidationError, validate_payload
from .errors import error_response


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


PAYMENT_FIELDS = {
    "schedule_id": Field("int", required=True, nullable=False),
    "amount": Field("money", required=True, nullable=False),
    "payment_date": Field("date"),
    "payment_reference": Field("str", max_length=128),
    "notes": Field("str"),
}

OBLIGATION_FIELDS = {
    "tenancy_id": Field("int", required=True, nullable=False),
    "member_id": Field("int"),
    "amount_due": Field("money", required=True, nullable=False),
    "due_date": Field("date", required=True, nullable=False),
    "payment_type": Field("str", required=True, nullable=False, choices=frozenset(PAYMENT_TYPES)),
    "description": Field("str", max_length=255),
}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def _obligation_summary(obligation) -> dict:
    result = reconcile(obligation)
    data = obligation.to_dict()
    data["amount_paid"] = str(result.amount_paid)
    data["balance"] = str(result.balance)
    data["status"] = result.status
    return data


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

@payments_bp.post("")
@require_agency_scope
def record_payment_route():
    """
    Record a payment against an obligation.

    Request body:
    {
        "schedule_id": 12,
        "amount": "250.00",
        "payment_date": "2025-09-03",      (optional, defaults to today)
        "payment_reference": "BACS 8812"   (optional)
    }

    Returns:
        201: Payment recorded, with the obligation's derived status
        400: Invalid amount, wrong sign, or exceeds remaining balance
        404: Obligation not found
    """
    try:
        data = validate_payload(_json_body(), PAYMENT_FIELDS)
        payment = payment_service.record_payment(
            data["schedule_id"],
            agency_id=g.agency_id,
            amount=data["amount"],
            payment_date=data.get("payment_date"),
            payment_reference=data.get("payment_reference"),
            notes=data.get("notes"),
        )
        return jsonify({
            "payment": payment.to_dict(),
            "obligation": _obligation_summary(payment.schedule),
        }), 201
    except Exception as exc:
        return error_response(exc, "record payment")


@payments_bp.patch("/<int:payment_id>")
@require_agency_scope
def update_payment_route(payment_id: int):
    try:
        fields = {k: v for k, v in PAYMENT_FIELDS.items() if k != "schedule_id"}
        data = validate_payload(_json_body(), fields, partial=True)
        payment = payment_service.update_payment(payment_id, agency_id=g.agency_id, **data)
        return jsonify({
            "payment": payment.to_dict(),
            "obligation": _obligation_summary(payment.schedule),
        }), 200
    except Exception as exc:
        return error_response(exc, "update payment")


@payments_bp.delete("/<int:payment_id>")
@require_agency_scope
def delete_payment_route(payment_id: int):
    try:
        obligation = payment_service.delete_payment(payment_id, agency_id=g.agency_id)
        return jsonify({"obligation": _obligation_summary(obligation)}), 200
    except Exception as exc:
        return error_response(exc, "delete payment")


# =============================================================================
# OBLIGATIONS
# =============================================================================

@payments_bp.post("/schedules")
@require_agency_scope
def create_obligation_route():
    try:
        data = validate_payload(_json_body(), OBLIGATION_FIELDS)
        obligation = payment_service.create_manual_obligation(
            data["tenancy_id"],
            agency_id=g.agency_id,
            amount_due=data["amount_due"],
            due_date=data["due_date"],
            payment_type=data["payment_type"],
            description=data.get("description"),
            member_id=data.get("member_id"),
        )
        return jsonify({"obligation": _obligation_summary(obligation)}), 201
    except Exception as exc:
        return error_response(exc, "create obligation")


@payments_bp.patch("/schedules/<int:schedule_id>")
@require_agency_scope
def update_obligation_route(schedule_id: int):
    try:
        fields = {k: OBLIGATION_FIELDS[k] for k in ("amount_due", "due_date", "description")}
        data = validate_payload(_json_body(), fields, partial=True)
        obligation = payment_service.update_obligation(schedule_id, agency_id=g.agency_id, **data)
        return jsonify({"obligation": _obligation_summary(obligation)}), 200
    except Exception as exc:
        return error_response(exc, "update obligation")


@payments_bp.delete("/schedules/<int:schedule_id>")
@require_agency_scope
def delete_obligation_route(schedule_id: int):
    try:
        payment_service.delete_obligation(schedule_id, agency_id=g.agency_id)
        return jsonify({"deleted": True}), 200
    except Exception as exc:
        return error_response(exc, "delete obligation")


@payments_bp.post("/schedules/<int:schedule_id>/revert")
@require_agency_scope
def revert_obligation_route(schedule_id: int):
    """Delete every payment recorded against the obligation."""
    try:
        removed = payment_service.revert_obligation(schedule_id, agency_id=g.agency_id)
        return jsonify({"removed_payments": removed}), 200
    except Exception as exc:
        return error_response(exc, "revert obligation")
