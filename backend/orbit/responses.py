# Overview: JSON request and error-response helpers shared by API routes.

from flask import jsonify, request

from .errors import InvalidTransition, OrbitError, ValidationError


def json_body() -> dict:
    """The JSON request body as a dict; a missing body is {}, anything else but an object is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def error_response(e: OrbitError):
    """Map a domain error to (json, status). See errors.py for the table."""
    body = {"error": str(e), "code": type(e).__name__}
    if isinstance(e, InvalidTransition):
        body["hint"] = "State changed, please refresh"
    return jsonify(body), e.http_status


def internal_error():
    return jsonify({"error": "Internal server error"}), 500
