# Overview: Flask API routes for guarantor links; token-authorized, not agency-scoped.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_agency_scope
from ..services import guarantor_service
from .errors import error_response


guarantors_bp = Blueprint("guarantors", __name__, url_prefix="/api/guarantors")


@guarantors_bp.get("/<token>")
def view_agreement_route(token: str):
    """The guarantor's link: the token itself is the credential."""
    try:
        agreement = guarantor_service.get_agreement_by_token(token)
        data = agreement.to_dict()
        member = agreement.member
        data["tenant_name"] = member.full_name
        data["tenancy_start"] = member.tenancy.start_date.isoformat()
        data["tenancy_end"] = member.tenancy.end_date.isoformat() if member.tenancy.end_date else None
        return jsonify({"agreement": data}), 200
    except Exception as exc:
        return error_response(exc, "load guarantor agreement")


@guarantors_bp.post("/<token>/sign")
def sign_agreement_route(token: str):
    try:
        body = request.get_json(silent=True) or {}
        agreement, result = guarantor_service.sign_agreement(
            token,
            signature_name=body.get("signature_name"),
            signature_data=body.get("signature_data"),
        )
        return jsonify({
            "agreement": agreement.to_dict(),
            "transition": result.to_dict() if result else None,
        }), 200
    except Exception as exc:
        return error_response(exc, "sign guarantor agreement")


@guarantors_bp.post("/members/<int:member_id>/regenerate")
@require_agency_scope
def regenerate_token_route(member_id: int):
    """Issue a new link; the old token stops working immediately."""
    try:
        agreement = guarantor_service.regenerate_token(member_id, agency_id=g.agency_id)
        return jsonify({"agreement": agreement.to_dict(include_token=True)}), 200
    except Exception as exc:
        return error_response(exc, "regenerate guarantor link")
