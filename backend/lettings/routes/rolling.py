# Overview: Flask API routes for the rolling continuation job; manual trigger and preview.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_agency_scope
from ..services import rolling_service
from ..validation import coerce_date
from .errors import error_response


rolling_bp = Blueprint("rolling", __name__, url_prefix="/api/rolling")


@rolling_bp.get("/due")
@require_agency_scope
def due_route():
    try:
        as_of = coerce_date("date", request.args["date"]) if request.args.get("date") else None
        ids = rolling_service.due_tenancies(as_of, agency_id=g.agency_id)
        return jsonify({"tenancy_ids": ids}), 200
    except Exception as exc:
        return error_response(exc, "list due rolling tenancies")


@rolling_bp.post("/run")
@require_agency_scope
def run_route():
    """
    Run the continuation now for the caller's agency.

    Same code path as the daily scheduler; safe to repeat on the same day.
    """
    try:
        body = request.get_json(silent=True) or {}
        as_of = coerce_date("date", body["date"]) if body.get("date") else None
        report = rolling_service.run_rolling_continuation(as_of, agency_id=g.agency_id)
        return jsonify(report.to_dict()), 200
    except Exception as exc:
        return error_response(exc, "run rolling continuation")
