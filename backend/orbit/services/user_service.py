# Overview: Service-layer operations for profiles and user administration; encapsulates business logic and database work.

"""
Profiles and User Administration

WHY: Profiles are how approvers see who is asking for money, so
privileged roles may read all of them. Everyone else only sees their own.
Removing a user is an owner action: the profile goes, the identity is
deactivated (its expenses and logs stay attributable) and every session
is revoked.
"""

from __future__ import annotations

from flask import current_app

from ..constants import Role
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Profile, User, UserRole
from ..validation import PROFILE_FIELDS, validate_payload
from . import policy_service, role_service, session_service


def get_profile(actor, user_id: str) -> Profile:
    profile = (
        Profile.query
        .filter(Profile.id == user_id)
        .filter(policy_service.profile_read_clause(actor.user_id))
        .first()
    )
    if profile is None:
        raise NotFoundError("Profile not found")
    return profile


def list_profiles(actor) -> list[Profile]:
    return (
        Profile.query
        .filter(policy_service.profile_read_clause(actor.user_id))
        .order_by(Profile.full_name, Profile.id)
        .all()
    )


def update_profile(actor, user_id: str, payload: dict) -> Profile:
    """Own row only. Allowed fields: full_name, phone, department."""
    if not policy_service.can_update_profile(actor, user_id):
        policy_service.deny(actor, "UPDATE_PROFILE", f"profile:{user_id}", "Can only update your own profile")

    data = validate_payload(payload, PROFILE_FIELDS, partial=True)
    if not data:
        raise ValidationError("No fields to update")

    profile = db.session.get(Profile, user_id)
    if profile is None:
        raise NotFoundError("Profile not found")

    for key, value in data.items():
        setattr(profile, key, value)
    db.session.commit()
    return profile


def list_users(actor) -> list[dict]:
    """Owner view: every profile with its role list, ordered by priority."""
    policy_service.require_role(actor, Role.OWNER, action="LIST_USERS", resource="users")

    roles_by_user: dict[str, list[Role]] = {}
    for row in UserRole.query.filter(policy_service.role_read_clause(actor.user_id)).all():
        roles_by_user.setdefault(row.user_id, []).append(row.role)

    result = []
    for profile in list_profiles(actor):
        roles = role_service.sort_roles(roles_by_user.get(profile.id, []))
        result.append({
            **profile.to_dict(),
            "roles": [role.value for role in roles],
            "primary_role": role_service.primary_role(roles).value if roles else None,
        })
    return result


def remove_user(actor, user_id: str) -> None:
    """
    Owner-only. Deletes the profile, deactivates the user, revokes sessions.

    Raises ValidationError when the owner targets themselves.
    """
    resource = f"user:{user_id}"
    if not policy_service.can_delete_profile(actor, user_id):
        policy_service.deny(actor, "REMOVE_USER", resource, "Only an owner may remove users")
    if user_id == actor.user_id:
        raise ValidationError("You cannot remove yourself")

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    profile = db.session.get(Profile, user_id)
    if profile is not None:
        db.session.delete(profile)
    user.is_active = False
    revoked = session_service.revoke_user_sessions(user_id, reason="User removed", commit=False)
    db.session.commit()

    current_app.logger.info("User %s removed by %s (%d sessions revoked)", user_id, actor.user_id, revoked)
    policy_service.log_security_event(
        user_id=actor.user_id,
        event_type="USER_REMOVED",
        success=True,
        resource=resource,
        action="REMOVE_USER",
    )
