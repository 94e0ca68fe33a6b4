# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Self-service sign-up always creates an employee
- Session management with token-based auth
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..errors import NotFoundError, OrbitError
from ..responses import error_response, internal_error, json_body
from ..services import auth_service, role_service, session_service, user_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _roles_payload(actor) -> dict:
    primary = role_service.primary_role(actor.roles)
    return {
        "roles": [role.value for role in role_service.sort_roles(actor.roles)],
        "primary_role": primary.value if primary else None,
        "display_role": role_service.display_role(actor.roles).value,
    }


@auth_bp.post("/signup")
def signup_route():
    """
    Register a new account.

    Request body:
    {
        "email": "jane@example.com",
        "password": "secret1",
        "full_name": "Jane Doe",
        "role": "owner"     (ignored, every sign-up is an employee)
    }

    Returns:
        201: User created
        400: Invalid input or email taken
    """
    try:
        data = json_body()
        user = auth_service.sign_up(
            email=data.get("email"),
            password=data.get("password"),
            full_name=data.get("full_name"),
            requested_role=data.get("role"),
        )
        return jsonify({"user": user.to_dict(), "message": "Account created"}), 201

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sign up user")
        return internal_error()


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = json_body()
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        actor = role_service.resolve_actor(user.id)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            **_roles_payload(actor),
            "message": "Login successful",
        }), 200

    except OrbitError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to login user")
        return internal_error()


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the current session token."""
    try:
        session_service.revoke_session(g.token, reason="User logout")
        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return internal_error()


@auth_bp.get("/me")
@require_auth
def me_route():
    """
    Current user, profile and role set.

    primary_role is null when no role could be resolved; display_role is
    a UI hint only and falls back to employee.
    """
    try:
        actor = g.actor
        try:
            profile = user_service.get_profile(actor, actor.user_id).to_dict()
        except NotFoundError:
            profile = None

        return jsonify({
            "user": g.current_user.to_dict(),
            "profile": profile,
            **_roles_payload(actor),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to load current user")
        return internal_error()
