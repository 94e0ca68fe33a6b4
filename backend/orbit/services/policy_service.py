# Overview: Service-layer operations for authorization policy; encapsulates business logic and database work.

"""
Authorization Policy Engine and Security Event Logging

WHY: Every read and every write is evaluated against the caller's role set,
at two layers that must agree:

1. Predicate layer: can_read_*(actor, row) / can_write_*(actor, row, op).
   Pure functions over an Actor and an already-loaded row. Used to decide
   Unauthorized vs InvalidTransition before anything is written.

2. Storage layer: *_read_clause(user_id) / *_write_clause(user_id, op).
   SQL predicates built from EXISTS sub-selects on user_roles. Every list
   query is filtered by a read clause and every status-guarded UPDATE
   carries a write clause, so the database refuses a write even when a
   caller skipped the predicate layer. These clauses look the roles up
   themselves and never trust a role set supplied by the caller.

DESIGN PRINCIPLES:
- Fail closed: deny by default, every rule is an explicit grant
- Log denials only: grants are not logged
- The storage layer is never weaker than the predicate layer
"""

from __future__ import annotations

from enum import Enum

from flask import current_app, has_request_context, request
from sqlalchemy import and_, false, or_, select
from sqlalchemy.exc import SQLAlchemyError

from ..constants import (
    ACCOUNTS_VISIBLE_ADVANCE_STATUSES,
    ACCOUNTS_VISIBLE_STATUSES,
    MANAGER_STAGE_STATUSES,
    MANAGER_VISIBLE_STATUSES,
    OWNER_STAGE_STATUSES,
    PAYMENT_STAGE_STATUSES,
    PRIVILEGED_ROLES,
    AdvanceStatus,
    ExpenseStatus,
    FileCategory,
    Role,
)
from ..errors import Unauthorized
from ..extensions import db
from ..models import (
    AdvanceRequest,
    Expense,
    ExpenseFile,
    ExpenseStatusLog,
    Notification,
    Profile,
    SecurityEvent,
    UserRole,
)
from ..time_utils import utcnow


class Operation(str, Enum):
    """Write operations the policy engine knows about."""
    # Expense
    EDIT = "edit"
    DELETE = "delete"
    SUBMIT = "submit"
    MARK_REVIEWED = "mark_reviewed"
    MANAGER_REVIEW = "manager_review"
    OWNER_REVIEW = "owner_review"
    SCHEDULE_PAYMENT = "schedule_payment"
    PAY = "pay"
    # Advance
    REVIEW_ADVANCE = "review_advance"
    DISBURSE_ADVANCE = "disburse_advance"


OWNER_DRAFT_OPERATIONS = frozenset({Operation.EDIT, Operation.DELETE, Operation.SUBMIT})

# Stage that owns each status-driven expense operation: (required role, statuses)
EXPENSE_STAGE_RULES = {
    Operation.MARK_REVIEWED: (Role.MANAGER, frozenset({ExpenseStatus.SUBMITTED})),
    Operation.MANAGER_REVIEW: (Role.MANAGER, MANAGER_STAGE_STATUSES),
    Operation.OWNER_REVIEW: (Role.OWNER, OWNER_STAGE_STATUSES),
    Operation.SCHEDULE_PAYMENT: (Role.ACCOUNTS, frozenset({ExpenseStatus.OWNER_APPROVED})),
    Operation.PAY: (Role.ACCOUNTS, PAYMENT_STAGE_STATUSES),
}

ADVANCE_STAGE_RULES = {
    Operation.REVIEW_ADVANCE: (frozenset({Role.MANAGER, Role.OWNER}), frozenset({AdvanceStatus.PENDING})),
    Operation.DISBURSE_ADVANCE: (frozenset({Role.ACCOUNTS}), frozenset({AdvanceStatus.APPROVED})),
}


# =============================================================================
# SECURITY EVENTS
# =============================================================================

def log_security_event(
    user_id: str | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent | None:
    """
    Log security event to audit trail.

    WHY: Immutable audit log for security monitoring. The trail is not a
    gate: a failed insert is logged and the caller carries on.

    event_type examples:
    - PERMISSION_DENIED
    - ROLE_ASSIGNED / ROLE_REVOKED
    - SIGNUP_ROLE_IGNORED
    - LOGIN_FAILED
    - USER_REMOVED
    """
    if has_request_context():
        ip_address = ip_address or request.remote_addr
        user_agent = user_agent or request.headers.get("User-Agent")

    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    try:
        db.session.add(event)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record security event %s", event_type)
        return None

    return event


def deny(actor, action: str, resource: str, reason: str):
    """Record a PERMISSION_DENIED event and raise Unauthorized."""
    log_security_event(
        user_id=actor.user_id if actor else None,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=action,
        reason=reason,
    )
    raise Unauthorized(reason)


def require_role(actor, *roles: Role, action: str, resource: str) -> None:
    """Deny unless the actor holds at least one of `roles`."""
    if not actor.has_role(*roles):
        names = " or ".join(role.value for role in roles)
        deny(actor, action, resource, f"Requires role {names}")


# =============================================================================
# PREDICATE LAYER
# =============================================================================

def can_read_expense(actor, expense) -> bool:
    if expense.user_id == actor.user_id:
        return True
    if actor.has_role(Role.OWNER):
        return True
    if actor.has_role(Role.MANAGER) and expense.status in MANAGER_VISIBLE_STATUSES:
        return True
    if actor.has_role(Role.ACCOUNTS) and expense.status in ACCOUNTS_VISIBLE_STATUSES:
        return True
    return False


def can_write_expense(actor, expense, op: Operation) -> bool:
    """
    Role and row-ownership check for an expense write.

    Includes the status the stage owns, so a False here can mean either
    "wrong actor" or "wrong status". Services check the role first and
    the status second to tell the two apart.
    """
    if op in OWNER_DRAFT_OPERATIONS:
        return expense.user_id == actor.user_id and expense.status == ExpenseStatus.DRAFT

    rule = EXPENSE_STAGE_RULES.get(op)
    if rule is None:
        return False
    role, statuses = rule
    return actor.has_role(role) and expense.status in statuses


def expense_stage_role(op: Operation) -> Role | None:
    rule = EXPENSE_STAGE_RULES.get(op)
    return rule[0] if rule else None


def can_read_file(actor, expense) -> bool:
    """A file is visible iff its parent expense is."""
    return can_read_expense(actor, expense)


def can_write_file(actor, expense, category: FileCategory) -> bool:
    if category == FileCategory.BILL:
        return expense.user_id == actor.user_id and expense.status == ExpenseStatus.DRAFT
    if category == FileCategory.PAYMENT_PROOF:
        return actor.has_role(Role.ACCOUNTS) and expense.status in PAYMENT_STAGE_STATUSES
    return False


def can_read_status_log(actor, expense) -> bool:
    return can_read_expense(actor, expense)


def can_write_status_log(actor, changed_by: str) -> bool:
    return changed_by == actor.user_id


def can_read_advance(actor, advance) -> bool:
    if advance.user_id == actor.user_id:
        return True
    if actor.has_role(Role.MANAGER, Role.OWNER):
        return True
    if actor.has_role(Role.ACCOUNTS) and advance.status in ACCOUNTS_VISIBLE_ADVANCE_STATUSES:
        return True
    return False


def can_write_advance(actor, advance, op: Operation) -> bool:
    rule = ADVANCE_STAGE_RULES.get(op)
    if rule is None:
        return False
    roles, statuses = rule
    return actor.has_role(*roles) and advance.status in statuses


def can_read_profile(actor, profile_id: str) -> bool:
    return profile_id == actor.user_id or actor.is_privileged


def can_update_profile(actor, profile_id: str) -> bool:
    return profile_id == actor.user_id


def can_delete_profile(actor, profile_id: str) -> bool:
    return actor.has_role(Role.OWNER)


def can_read_role_rows(actor, user_id: str) -> bool:
    return user_id == actor.user_id or actor.has_role(Role.OWNER)


def can_write_role_rows(actor) -> bool:
    return actor.has_role(Role.OWNER)


def can_access_notification(actor, notification_user_id: str) -> bool:
    return notification_user_id == actor.user_id


# =============================================================================
# STORAGE LAYER
# =============================================================================

def has_role_clause(user_id: str, *roles: Role):
    """EXISTS (SELECT 1 FROM user_roles WHERE user_id = :uid AND role IN (:roles))"""
    return (
        select(UserRole.id)
        .where(UserRole.user_id == user_id, UserRole.role.in_(list(roles)))
        .exists()
    )


def expense_read_clause(user_id: str):
    return or_(
        Expense.user_id == user_id,
        has_role_clause(user_id, Role.OWNER),
        and_(
            has_role_clause(user_id, Role.MANAGER),
            Expense.status.in_(list(MANAGER_VISIBLE_STATUSES)),
        ),
        and_(
            has_role_clause(user_id, Role.ACCOUNTS),
            Expense.status.in_(list(ACCOUNTS_VISIBLE_STATUSES)),
        ),
    )


def expense_write_clause(user_id: str, op: Operation):
    if op in OWNER_DRAFT_OPERATIONS:
        return and_(Expense.user_id == user_id, Expense.status == ExpenseStatus.DRAFT)

    rule = EXPENSE_STAGE_RULES.get(op)
    if rule is None:
        return false()
    role, statuses = rule
    return and_(has_role_clause(user_id, role), Expense.status.in_(list(statuses)))


def _visible_expense_ids(user_id: str):
    return select(Expense.id).where(expense_read_clause(user_id))


def file_read_clause(user_id: str):
    return ExpenseFile.expense_id.in_(_visible_expense_ids(user_id))


def status_log_read_clause(user_id: str):
    return ExpenseStatusLog.expense_id.in_(_visible_expense_ids(user_id))


def advance_read_clause(user_id: str):
    return or_(
        AdvanceRequest.user_id == user_id,
        has_role_clause(user_id, Role.MANAGER, Role.OWNER),
        and_(
            has_role_clause(user_id, Role.ACCOUNTS),
            AdvanceRequest.status.in_(list(ACCOUNTS_VISIBLE_ADVANCE_STATUSES)),
        ),
    )


def advance_write_clause(user_id: str, op: Operation):
    rule = ADVANCE_STAGE_RULES.get(op)
    if rule is None:
        return false()
    roles, statuses = rule
    return and_(has_role_clause(user_id, *roles), AdvanceRequest.status.in_(list(statuses)))


def profile_read_clause(user_id: str):
    return or_(Profile.id == user_id, has_role_clause(user_id, *PRIVILEGED_ROLES))


def role_read_clause(user_id: str):
    return or_(UserRole.user_id == user_id, has_role_clause(user_id, Role.OWNER))


def notification_clause(user_id: str):
    return Notification.user_id == user_id
