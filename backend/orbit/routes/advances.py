# Overview: Flask API routes for cash-advance operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..constants import Role
from ..decorators import require_auth, require_role
from ..errors import OrbitError
from ..responses import error_response, internal_error, json_body
from ..services import advance_service


advances_bp = Blueprint("advances", __name__, url_prefix="/api/advances")


@advances_bp.get("")
@require_auth
def list_advances_route():
    """
    Advances visible to the caller.

    Query params:
    - status: comma-separated statuses
    - mine: true to restrict to the caller's own requests
    """
    try:
        raw = request.args.get("status")
        statuses = [part for part in raw.split(",") if part.strip()] if raw else []
        mine = request.args.get("mine", "false").lower() == "true"
        advances = advance_service.list_advances(g.actor, statuses=statuses, mine=mine)
        return jsonify({"advances": [a.to_dict() for a in advances]}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list advances")
        return internal_error()


@advances_bp.post("")
@require_auth
def create_advance_route():
    """
    Request a cash advance.

    Request body:
    {
        "amount": "2000",
        "reason": "at least 10 characters"
    }
    """
    try:
        data = json_body()
        advance = advance_service.create_advance(g.actor, data.get("amount"), data.get("reason"))
        return jsonify({"advance": advance.to_dict()}), 201

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create advance")
        return internal_error()


@advances_bp.get("/<advance_id>")
@require_auth
def get_advance_route(advance_id: str):
    try:
        advance = advance_service.get_advance(g.actor, advance_id)
        return jsonify({"advance": advance.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load advance")
        return internal_error()


@advances_bp.post("/<advance_id>/approve")
@require_auth
@require_role(Role.MANAGER, Role.OWNER)
def approve_advance_route(advance_id: str):
    try:
        advance = advance_service.review_advance(g.actor, advance_id, "approve")
        return jsonify({"advance": advance.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve advance")
        return internal_error()


@advances_bp.post("/<advance_id>/reject")
@require_auth
@require_role(Role.MANAGER, Role.OWNER)
def reject_advance_route(advance_id: str):
    """Body: {"reason": "..."} (required)."""
    try:
        data = json_body()
        advance = advance_service.review_advance(g.actor, advance_id, "reject", data.get("reason"))
        return jsonify({"advance": advance.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject advance")
        return internal_error()


@advances_bp.post("/<advance_id>/disburse")
@require_auth
@require_role(Role.ACCOUNTS)
def disburse_advance_route(advance_id: str):
    """Body: {"reference": "..."} (optional)."""
    try:
        data = json_body()
        advance = advance_service.disburse_advance(g.actor, advance_id, data.get("reference"))
        return jsonify({"advance": advance.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to disburse advance")
        return internal_error()
