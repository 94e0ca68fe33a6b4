# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, role_service, policy_service


def _is_authenticated() -> bool:
    return hasattr(g, "current_user") and hasattr(g, "actor")


def require_auth(f):
    """
    Require authentication and resolve the caller's role set.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.actor: Actor(user_id, roles) every service call is evaluated against
    - g.session_context: The full SessionContext object
    - g.token: The bearer token (for logout)

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated

    A role lookup failure does NOT fail the request: the actor simply has
    no roles and every role-gated operation answers 403.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        g.token = token
        g.actor = role_service.resolve_actor(context.user.id)

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require at least one of the given roles.

    Coarse route-level gate; services re-check against the row.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not g.actor.has_role(*roles):
                names = [role.value for role in roles]
                policy_service.log_security_event(
                    user_id=g.actor.user_id,
                    event_type="PERMISSION_DENIED",
                    success=False,
                    resource=request.path,
                    action=request.method,
                    reason=f"Requires role {' or '.join(names)}",
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": names,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
