# Overview: Flask API routes for expense operations; parses input and returns JSON responses.

"""
Expense API Routes

WHY: The employee side of the pipeline: create, edit, submit, attach
bills, follow the timeline.

DESIGN:
- JSON or multipart/form-data (bills under the "files" field)
- Every read is scoped by the policy engine; a row the caller cannot see
  answers 404, never 403
- Transitions answer 409 when the row moved, 403 when the caller lacks
  the role or ownership
"""

from flask import Blueprint, request, jsonify, g, current_app, send_file

from ..constants import EXPENSE_CATEGORIES
from ..decorators import require_auth
from ..errors import OrbitError
from ..responses import error_response, internal_error
from ..services import expense_service, storage_service
from ..services.storage_service import Upload


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")

_TRUTHY = {"1", "true", "yes", "on"}


def read_uploads(field: str = "files") -> list[Upload]:
    return [
        Upload.from_file_storage(f)
        for f in request.files.getlist(field)
        if f and f.filename
    ]


def read_payload() -> tuple[dict, bool]:
    """
    Expense fields from JSON or form data, plus the "submit" flag.

    The flag is not an expense field; it is removed before validation.
    """
    if request.mimetype == "multipart/form-data":
        data = {key: value for key, value in request.form.items()}
    else:
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            return data, False
        data = dict(data)

    submit = data.pop("submit", False)
    if isinstance(submit, str):
        submit = submit.strip().lower() in _TRUTHY
    return data, bool(submit)


def _status_args() -> list[str]:
    raw = request.args.get("status")
    if not raw:
        return []
    return [part for part in raw.split(",") if part.strip()]


# =============================================================================
# EXPENSE CRUD
# =============================================================================

@expenses_bp.get("")
@require_auth
def list_expenses_route():
    """
    List expenses visible to the caller.

    Query params:
    - status: comma-separated statuses
    - mine: true to restrict to the caller's own expenses
    """
    try:
        mine = request.args.get("mine", "false").lower() in _TRUTHY
        expenses = expense_service.list_expenses(g.actor, statuses=_status_args(), mine=mine)
        return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list expenses")
        return internal_error()


@expenses_bp.post("")
@require_auth
def create_expense_route():
    """
    Create an expense in DRAFT.

    Request body (JSON or multipart):
    {
        "title": "Team lunch",
        "description": "optional",
        "amount": "500.00",
        "category": "Food & Dining",
        "expense_date": "2026-01-15",
        "submit": true          (optional, submit right away)
    }
    Multipart requests may carry bills under "files".

    Returns:
        201: Expense created (status draft or submitted)
        400: Invalid input
        503: File storage unavailable (nothing is created)
    """
    try:
        payload, submit = read_payload()
        expense = expense_service.create_expense(
            g.actor, payload, uploads=read_uploads(), submit=submit,
        )
        return jsonify({"expense": expense.to_dict()}), 201

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create expense")
        return internal_error()


@expenses_bp.get("/categories")
@require_auth
def categories_route():
    """Suggested categories. Any non-empty category is accepted."""
    return jsonify({"categories": list(EXPENSE_CATEGORIES)}), 200


@expenses_bp.get("/<expense_id>")
@require_auth
def get_expense_route(expense_id: str):
    try:
        expense = expense_service.get_expense(g.actor, expense_id)
        return jsonify({"expense": expense.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load expense")
        return internal_error()


@expenses_bp.patch("/<expense_id>")
@require_auth
def edit_expense_route(expense_id: str):
    """
    Edit a DRAFT. Only title, description, amount, category and
    expense_date may be sent; anything else is a 400.
    """
    try:
        payload = request.get_json(silent=True)
        expense = expense_service.edit_draft(g.actor, expense_id, payload)
        return jsonify({"expense": expense.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to edit expense")
        return internal_error()


@expenses_bp.delete("/<expense_id>")
@require_auth
def delete_expense_route(expense_id: str):
    try:
        expense_service.delete_draft(g.actor, expense_id)
        return jsonify({"message": "Expense deleted"}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete expense")
        return internal_error()


@expenses_bp.post("/<expense_id>/submit")
@require_auth
def submit_expense_route(expense_id: str):
    """
    Submit a DRAFT for approval, optionally with more bills ("files").

    Returns:
        200: Submitted
        409: Not a draft any more
        503: A bill could not be stored; nothing changed
    """
    try:
        expense = expense_service.submit_expense(g.actor, expense_id, read_uploads())
        return jsonify({"expense": expense.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit expense")
        return internal_error()


# =============================================================================
# FILES AND TIMELINE
# =============================================================================

@expenses_bp.get("/<expense_id>/files")
@require_auth
def list_files_route(expense_id: str):
    try:
        files = expense_service.list_files(g.actor, expense_id)
        return jsonify({"files": [f.to_dict() for f in files]}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list expense files")
        return internal_error()


@expenses_bp.post("/<expense_id>/files")
@require_auth
def add_bills_route(expense_id: str):
    """Attach bills ("files") to a DRAFT."""
    try:
        files = expense_service.add_bills(g.actor, expense_id, read_uploads())
        return jsonify({"files": [f.to_dict() for f in files]}), 201

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to attach bills")
        return internal_error()


@expenses_bp.get("/<expense_id>/files/<file_id>/download")
@require_auth
def download_file_route(expense_id: str, file_id: str):
    try:
        row = expense_service.get_file(g.actor, expense_id, file_id)
        handle = storage_service.open_object(row.file_path)
        return send_file(
            handle,
            mimetype=row.file_type,
            as_attachment=True,
            download_name=row.file_name,
        )

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to download expense file")
        return internal_error()


@expenses_bp.get("/<expense_id>/logs")
@require_auth
def list_logs_route(expense_id: str):
    """Status timeline, oldest first."""
    try:
        logs = expense_service.list_status_logs(g.actor, expense_id)
        return jsonify({"logs": [log.to_dict() for log in logs]}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list status logs")
        return internal_error()
