# Overview: Flask API routes for notifications and the dashboard; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..errors import OrbitError
from ..responses import error_response, internal_error, json_body
from ..services import notification_service, reporting_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api")


@notifications_bp.get("/notifications")
@require_auth
def list_notifications_route():
    try:
        unread_only = request.args.get("unread", "false").lower() == "true"
        rows = notification_service.list_notifications(g.actor, unread_only=unread_only)
        return jsonify({"notifications": [n.to_dict() for n in rows]}), 200

    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return internal_error()


@notifications_bp.post("/notifications")
@require_auth
def create_notification_route():
    """
    Create a notification for yourself (reminders).

    Request body:
    {
        "title": "...",
        "message": "...",
        "expense_id": "..."     (optional)
    }
    """
    try:
        data = json_body()
        notification = notification_service.create_notification(
            g.actor,
            data.get("title"),
            data.get("message"),
            user_id=data.get("user_id"),
            expense_id=data.get("expense_id"),
        )
        return jsonify({"notification": notification.to_dict()}), 201

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create notification")
        return internal_error()


@notifications_bp.post("/notifications/<notification_id>/read")
@require_auth
def mark_read_route(notification_id: str):
    try:
        notification = notification_service.mark_read(g.actor, notification_id)
        return jsonify({"notification": notification.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark notification read")
        return internal_error()


@notifications_bp.post("/notifications/read-all")
@require_auth
def mark_all_read_route():
    try:
        count = notification_service.mark_all_read(g.actor)
        return jsonify({"updated": count}), 200

    except Exception:
        current_app.logger.exception("Failed to mark notifications read")
        return internal_error()


@notifications_bp.get("/dashboard")
@require_auth
def dashboard_route():
    """Counts over the expenses the caller can see, grouped for their primary role."""
    try:
        return jsonify(reporting_service.dashboard_stats(g.actor)), 200

    except Exception:
        current_app.logger.exception("Failed to load dashboard")
        return internal_error()
