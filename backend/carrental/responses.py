# Overview: JSON rendering of service-layer errors for API routes.

from flask import current_app, jsonify, request

from .errors import DomainError, TransientError


def error_response(exc: DomainError):
    """Render a DomainError as `{"error", "kind", ...details}` with its status code."""
    if isinstance(exc, TransientError):
        current_app.logger.warning("Transient failure on %s %s: %s", request.method, request.path, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


def internal_error(action: str):
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    """Request JSON object, or {} when the body is missing or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
