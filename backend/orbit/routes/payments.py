# Overview: Flask API routes for payment operations; parses input and returns JSON responses.

"""
Payment API Routes

WHY: The accounts stage. Owner-approved expenses are scheduled and paid
here, with an optional payment proof upload.

SECURITY:
- accounts role required for every endpoint
- Payment proofs are stored before the status moves; a storage failure
  answers 503 and leaves the expense unpaid
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..constants import Role
from ..decorators import require_auth, require_role
from ..errors import OrbitError
from ..responses import error_response, internal_error, json_body
from ..services import expense_service
from .expenses import read_uploads


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT QUEUES
# =============================================================================

@payments_bp.get("/pending")
@require_auth
@require_role(Role.ACCOUNTS)
def pending_payments_route():
    """OWNER_APPROVED and PENDING_PAYMENT expenses."""
    try:
        expenses = expense_service.payment_queue(g.actor)
        return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load payment queue")
        return internal_error()


@payments_bp.get("/paid")
@require_auth
@require_role(Role.ACCOUNTS)
def paid_expenses_route():
    """Most recent payments (limit query param, default 50)."""
    try:
        limit = request.args.get("limit", type=int) or expense_service.PAID_HISTORY_LIMIT
        limit = max(1, min(limit, expense_service.PAID_HISTORY_LIMIT))
        expenses = expense_service.paid_expenses(g.actor, limit=limit)
        return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load paid expenses")
        return internal_error()


# =============================================================================
# PAYMENT TRANSITIONS
# =============================================================================

@payments_bp.post("/<expense_id>/schedule")
@require_auth
@require_role(Role.ACCOUNTS)
def schedule_payment_route(expense_id: str):
    try:
        expense = expense_service.schedule_payment(g.actor, expense_id)
        return jsonify({"expense": expense.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to schedule payment")
        return internal_error()


@payments_bp.post("/<expense_id>/pay")
@require_auth
@require_role(Role.ACCOUNTS)
def pay_expense_route(expense_id: str):
    """
    Mark an expense as paid.

    Request body (JSON, or multipart with proofs under "files"):
    {
        "reference": "TXN123"     (required)
    }

    Returns:
        200: Paid
        400: Missing reference
        409: Not payable any more
        503: Proof could not be stored; nothing changed
    """
    try:
        if request.mimetype == "multipart/form-data":
            reference = request.form.get("reference")
        else:
            reference = json_body().get("reference")

        expense = expense_service.pay_expense(g.actor, expense_id, reference, read_uploads())
        return jsonify({"expense": expense.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to pay expense")
        return internal_error()
