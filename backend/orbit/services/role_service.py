# Overview: Service-layer operations for role resolution; encapsulates business logic and database work.

"""
Role Resolution

WHY: A user holds a SET of roles. Every authorization decision is made
against that set, never against a single "primary" role. The primary role
exists for display and for picking dashboard groupings, and it is chosen
by an explicit priority table (config ROLE_PRIORITY), not by whichever
row the database happens to return first.

DESIGN PRINCIPLES:
- Fail closed: a lookup failure yields an empty role set (no privileges)
- No silent fallback: primary_role() of an empty set is None
- Owner-only administration: only an owner may add or remove role rows
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..constants import DEFAULT_ROLE_PRIORITY, PRIVILEGED_ROLES, Role
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import User, UserRole
from . import policy_service


@dataclass(frozen=True)
class Actor:
    """The (user id, role set) pair every service operation is evaluated against."""
    user_id: str
    roles: frozenset = field(default_factory=frozenset)

    def has_role(self, *roles: Role) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_privileged(self) -> bool:
        return bool(self.roles & PRIVILEGED_ROLES)


def role_priority() -> tuple[Role, ...]:
    """
    Configured priority, highest first.

    Roles missing from the config keep their default relative order after
    the configured ones, so every role always has a rank.
    """
    configured = []
    raw = current_app.config.get("ROLE_PRIORITY") or ()
    for value in raw:
        role = Role.parse(value)
        if role not in configured:
            configured.append(role)
    for role in DEFAULT_ROLE_PRIORITY:
        if role not in configured:
            configured.append(role)
    return tuple(configured)


def sort_roles(roles: Iterable[Role]) -> list[Role]:
    order = {role: index for index, role in enumerate(role_priority())}
    return sorted(set(roles), key=lambda r: order[r])


def get_user_roles(user_id: str) -> list[Role]:
    """Held roles ordered by configured priority. Raises SQLAlchemyError on storage failure."""
    rows = db.session.query(UserRole.role).filter(UserRole.user_id == user_id).all()
    return sort_roles(row.role for row in rows)


def resolve_actor(user_id: str) -> Actor:
    """
    Build the Actor for an authenticated user.

    SECURITY: Storage failure means no roles, not employee.
    """
    try:
        roles = get_user_roles(user_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Role lookup failed for user %s; denying all roles", user_id)
        return Actor(user_id=user_id, roles=frozenset())
    return Actor(user_id=user_id, roles=frozenset(roles))


def primary_role(roles: Iterable[Role]) -> Role | None:
    ordered = sort_roles(roles)
    return ordered[0] if ordered else None


def display_role(roles: Iterable[Role]) -> Role:
    """UI hint only. Never use for authorization."""
    return primary_role(roles) or Role.EMPLOYEE


def _require_owner(actor: Actor, action: str, resource: str) -> None:
    if not actor.has_role(Role.OWNER):
        policy_service.deny(actor, action, resource, "Only an owner may manage roles")


def assign_role(actor: Actor, user_id: str, role: Role | str) -> UserRole:
    """
    Grant a role. Idempotent: granting a held role returns the existing row.

    Raises Unauthorized unless the actor is an owner.
    """
    role = _coerce_role(role)
    resource = f"user:{user_id}"
    _require_owner(actor, "ASSIGN_ROLE", resource)

    if not db.session.get(User, user_id):
        raise NotFoundError("User not found")

    existing = UserRole.query.filter_by(user_id=user_id, role=role).first()
    if existing:
        return existing

    row = UserRole(user_id=user_id, role=role)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent grant of the same role
        db.session.rollback()
        return UserRole.query.filter_by(user_id=user_id, role=role).first()

    policy_service.log_security_event(
        user_id=actor.user_id,
        event_type="ROLE_ASSIGNED",
        success=True,
        resource=resource,
        action="ASSIGN_ROLE",
        reason=f"Granted {role.value}",
    )
    return row


def revoke_role(actor: Actor, user_id: str, role: Role | str) -> None:
    """
    Remove a role row.

    Raises Unauthorized unless the actor is an owner, NotFoundError if the
    user does not hold the role, ValidationError if it is their last one.
    """
    role = _coerce_role(role)
    resource = f"user:{user_id}"
    _require_owner(actor, "REVOKE_ROLE", resource)

    row = UserRole.query.filter_by(user_id=user_id, role=role).first()
    if not row:
        raise NotFoundError("User does not hold that role")

    held = UserRole.query.filter_by(user_id=user_id).count()
    if held <= 1:
        raise ValidationError("Cannot remove a user's last role")

    db.session.delete(row)
    db.session.commit()

    policy_service.log_security_event(
        user_id=actor.user_id,
        event_type="ROLE_REVOKED",
        success=True,
        resource=resource,
        action="REVOKE_ROLE",
        reason=f"Revoked {role.value}",
    )


def list_role_rows(actor: Actor, user_id: str) -> list[UserRole]:
    """Role rows are visible to their own user or to an owner."""
    if not policy_service.can_read_role_rows(actor, user_id):
        policy_service.deny(actor, "READ_ROLES", f"user:{user_id}", "Role rows are private")
    return (
        UserRole.query.filter(policy_service.role_read_clause(actor.user_id))
        .filter(UserRole.user_id == user_id)
        .all()
    )


def _coerce_role(role: Role | str) -> Role:
    if isinstance(role, Role):
        return role
    try:
        return Role.parse(role)
    except ValueError as e:
        raise ValidationError(str(e))
