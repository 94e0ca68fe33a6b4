# Overview: Flask API routes for approval operations; parses input and returns JSON responses.

"""
Approval API Routes

Managers act on SUBMITTED/REVIEWED expenses, owners on MANAGER_APPROVED
ones. A user holding both roles acts at whichever stage the expense is in.
"""

from flask import Blueprint, jsonify, g, current_app

from ..constants import Role
from ..decorators import require_auth, require_role
from ..errors import OrbitError
from ..responses import error_response, internal_error, json_body
from ..services import expense_service


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


@approvals_bp.get("")
@require_auth
@require_role(Role.MANAGER, Role.OWNER)
def approval_queue_route():
    """Expenses waiting for the caller's stage, newest first."""
    try:
        expenses = expense_service.approval_queue(g.actor)
        return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load approval queue")
        return internal_error()


@approvals_bp.post("/<expense_id>/review")
@require_auth
@require_role(Role.MANAGER)
def mark_reviewed_route(expense_id: str):
    """Manager triage: SUBMITTED -> REVIEWED. Body: {"notes": "..."} (optional)."""
    try:
        data = json_body()
        expense = expense_service.mark_reviewed(g.actor, expense_id, notes=data.get("notes"))
        return jsonify({"expense": expense.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark expense reviewed")
        return internal_error()


@approvals_bp.post("/<expense_id>/approve")
@require_auth
@require_role(Role.MANAGER, Role.OWNER)
def approve_route(expense_id: str):
    try:
        expense = expense_service.review_expense(g.actor, expense_id, "approve")
        return jsonify({"expense": expense.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve expense")
        return internal_error()


@approvals_bp.post("/<expense_id>/reject")
@require_auth
@require_role(Role.MANAGER, Role.OWNER)
def reject_route(expense_id: str):
    """
    Reject with a reason.

    Request body:
    {
        "reason": "Missing receipt"     (required)
    }
    """
    try:
        data = json_body()
        expense = expense_service.review_expense(g.actor, expense_id, "reject", data.get("reason"))
        return jsonify({"expense": expense.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject expense")
        return internal_error()
