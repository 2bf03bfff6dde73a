# Overview: Maps service-layer exceptions to JSON error responses.

from flask import current_app, jsonify

from ..services.guarantor_service import GuarantorError
from ..services.lifecycle_service import LifecycleError, TenancyIntegrityError
from ..services.occupancy_service import BedroomConflictError
from ..services.payment_service import PaymentError
from ..services.schedule_service import ScheduleError
from ..validation import ConflictError, NotFoundError, ValidationError


def error_response(exc: Exception, action: str):
    """
    Translate a service exception into (json, status).

    Known domain errors carry their own message and detail; anything else is
    logged with a traceback and reported as a 500.
    """
    if isinstance(exc, BedroomConflictError):
        return jsonify(exc.to_dict()), 409
    if isinstance(exc, LifecycleError):
        return jsonify({"error": str(exc), "missing": exc.missing}), 409
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, TenancyIntegrityError):
        return jsonify({"error": str(exc)}), 422
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, (ValidationError, PaymentError, ScheduleError, GuarantorError)):
        return jsonify({"error": str(exc)}), 400
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500
