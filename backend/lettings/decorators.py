# Overview: Request decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .extensions import db
from .models import Agency


def require_agency_scope(f):
    """
    Establish tenant context from the upstream authentication layer.

    The gateway in front of this service authenticates the caller and passes
    the agency id in AGENCY_SCOPE_HEADER. It is trusted as-is; this only
    checks that it is present, numeric and names an active agency.

    Sets:
    - g.agency_id: The agency ID (tenant context)

    Returns 401 when the header is missing or malformed, 403 when the agency
    is unknown or inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        header = current_app.config["AGENCY_SCOPE_HEADER"]
        raw = request.headers.get(header, "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Agency scope required"}), 401

        agency = db.session.get(Agency, int(raw))
        if agency is None or not agency.is_active:
            return jsonify({"error": "Agency not found or inactive"}), 403

        g.agency_id = agency.id
        return f(*args, **kwargs)

    return decorated_function
