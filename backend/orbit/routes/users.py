# Overview: Flask API routes for profile and user administration; parses input and returns JSON responses.

"""
User routes.

Provides endpoints for:
- Own profile (read, update)
- Profiles visible to the caller (approvers see everyone)
- Owner administration: user list, role grant/revoke, user removal

Role changes and removals are checked again in the services and recorded
as security events.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..constants import Role
from ..decorators import require_auth, require_role
from ..errors import OrbitError
from ..responses import error_response, internal_error, json_body
from ..services import role_service, user_service


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


# =============================================================================
# PROFILES
# =============================================================================

@users_bp.get("/me/profile")
@require_auth
def my_profile_route():
    try:
        profile = user_service.get_profile(g.actor, g.actor.user_id)
        return jsonify({"profile": profile.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load profile")
        return internal_error()


@users_bp.patch("/me/profile")
@require_auth
def update_my_profile_route():
    """Body: any of full_name, phone, department."""
    try:
        profile = user_service.update_profile(g.actor, g.actor.user_id, request.get_json(silent=True))
        return jsonify({"profile": profile.to_dict()}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return internal_error()


@users_bp.get("/profiles")
@require_auth
def list_profiles_route():
    """Own profile for employees; every profile for manager, owner and accounts."""
    try:
        profiles = user_service.list_profiles(g.actor)
        return jsonify({"profiles": [p.to_dict() for p in profiles]}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list profiles")
        return internal_error()


# =============================================================================
# USER ADMINISTRATION (owner)
# =============================================================================

@users_bp.get("")
@require_auth
@require_role(Role.OWNER)
def list_users_route():
    try:
        return jsonify({"users": user_service.list_users(g.actor)}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list users")
        return internal_error()


@users_bp.get("/<user_id>/roles")
@require_auth
def list_roles_route(user_id: str):
    """Role rows of a user: visible to that user and to owners."""
    try:
        rows = role_service.list_role_rows(g.actor, user_id)
        return jsonify({"roles": [row.to_dict() for row in rows]}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list roles")
        return internal_error()


@users_bp.post("/<user_id>/roles")
@require_auth
@require_role(Role.OWNER)
def assign_role_route(user_id: str):
    """
    Grant a role.

    Request body:
    {
        "role": "manager"
    }
    """
    try:
        data = json_body()
        row = role_service.assign_role(g.actor, user_id, data.get("role") or "")
        return jsonify({"role": row.to_dict()}), 201

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign role")
        return internal_error()


@users_bp.delete("/<user_id>/roles/<role>")
@require_auth
@require_role(Role.OWNER)
def revoke_role_route(user_id: str, role: str):
    try:
        role_service.revoke_role(g.actor, user_id, role)
        return jsonify({"message": "Role revoked"}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to revoke role")
        return internal_error()


@users_bp.delete("/<user_id>")
@require_auth
@require_role(Role.OWNER)
def remove_user_route(user_id: str):
    """Delete the profile, deactivate the account and revoke its sessions."""
    try:
        user_service.remove_user(g.actor, user_id)
        return jsonify({"message": "User removed"}), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove user")
        return internal_error()
