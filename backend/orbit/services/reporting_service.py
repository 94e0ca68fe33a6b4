# Overview: Service-layer operations for dashboard reporting; encapsulates business logic and database work.

"""
Dashboard statistics over the expenses an actor can see.

Counts come from one grouped query filtered by the read clause, so the
numbers never include a row the actor could not list. The primary role
only chooses which status groups count as "pending" and "approved".
"""

from __future__ import annotations

from sqlalchemy import func

from ..constants import ExpenseStatus, Role
from ..extensions import db
from ..models import Expense
from ..validation import format_cents
from . import policy_service, role_service


RECENT_EXPENSES_LIMIT = 5

REJECTED_STATUSES = frozenset({ExpenseStatus.MANAGER_REJECTED, ExpenseStatus.OWNER_REJECTED})

_MANAGER_PENDING = frozenset({ExpenseStatus.SUBMITTED, ExpenseStatus.REVIEWED})
_DEFAULT_PENDING = _MANAGER_PENDING | {ExpenseStatus.MANAGER_APPROVED}

_MANAGER_APPROVED = frozenset({
    ExpenseStatus.MANAGER_APPROVED,
    ExpenseStatus.OWNER_APPROVED,
    ExpenseStatus.PENDING_PAYMENT,
    ExpenseStatus.PAID,
})
_DEFAULT_APPROVED = _MANAGER_APPROVED - {ExpenseStatus.MANAGER_APPROVED}


def _status_groups(primary: Role | None):
    if primary == Role.MANAGER:
        return _MANAGER_PENDING, _MANAGER_APPROVED
    return _DEFAULT_PENDING, _DEFAULT_APPROVED


def _activity(actor, primary: Role | None) -> dict:
    """Own approvals (manager/owner) or payments (accounts)."""
    column = {
        Role.MANAGER: Expense.manager_approved_by,
        Role.OWNER: Expense.owner_approved_by,
        Role.ACCOUNTS: Expense.paid_by,
    }.get(primary)
    if column is None:
        return {}
    count = (
        db.session.query(func.count(Expense.id))
        .filter(policy_service.expense_read_clause(actor.user_id))
        .filter(column == actor.user_id)
        .scalar()
    )
    key = "paid_count" if primary == Role.ACCOUNTS else "approved_count"
    return {key: count}


def dashboard_stats(actor) -> dict:
    primary = role_service.primary_role(actor.roles)
    pending_statuses, approved_statuses = _status_groups(primary)

    rows = (
        db.session.query(
            Expense.status,
            func.count(Expense.id),
            func.coalesce(func.sum(Expense.amount_cents), 0),
        )
        .filter(policy_service.expense_read_clause(actor.user_id))
        .group_by(Expense.status)
        .all()
    )

    counts = {status: count for status, count, _ in rows}
    total_cents = sum(int(amount) for _, _, amount in rows)

    recent = (
        Expense.query
        .filter(policy_service.expense_read_clause(actor.user_id))
        .order_by(Expense.created_at.desc(), Expense.id)
        .limit(RECENT_EXPENSES_LIMIT)
        .all()
    )

    return {
        "primary_role": primary.value if primary else None,
        "display_role": role_service.display_role(actor.roles).value,
        "total": sum(counts.values()),
        "pending": sum(counts.get(s, 0) for s in pending_statuses),
        "approved": sum(counts.get(s, 0) for s in approved_statuses),
        "rejected": sum(counts.get(s, 0) for s in REJECTED_STATUSES),
        "paid": counts.get(ExpenseStatus.PAID, 0),
        "total_amount": format_cents(total_cents),
        "by_status": {status.value: count for status, count in counts.items()},
        "activity": _activity(actor, primary),
        "recent_expenses": [e.to_dict() for e in recent],
    }
