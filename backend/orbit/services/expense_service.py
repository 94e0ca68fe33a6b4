# Overview: Service-layer operations for expenses; encapsulates business logic and database work.

"""
Expense Lifecycle Service

================================================================================
PURPOSE: Drive an expense claim through the approval pipeline
================================================================================

STATE MACHINE:
    DRAFT -> SUBMITTED -> [REVIEWED] -> MANAGER_APPROVED -> OWNER_APPROVED
          -> [PENDING_PAYMENT] -> PAID

    SUBMITTED | REVIEWED -> MANAGER_REJECTED  (terminal, reason required)
    MANAGER_APPROVED     -> OWNER_REJECTED    (terminal, reason required)

    DRAFT:            Owned by the employee, editable/deletable, bills attachable
    SUBMITTED:        Waiting for a manager
    REVIEWED:         Manager triaged it; same transition rights as SUBMITTED
    MANAGER_APPROVED: Waiting for an owner
    OWNER_APPROVED:   Waiting for accounts
    PENDING_PAYMENT:  Accounts scheduled it
    PAID:             Terminal

RULES (NON-NEGOTIABLE):
1. Checks run in a fixed order: role/ownership (Unauthorized), input
   (ValidationError), current status (InvalidTransition).
2. Every status change is ONE status-guarded UPDATE that also carries the
   storage-level write clause. Zero rows affected is never a silent no-op:
   the row is re-read and the caller gets StaleStateError (status moved)
   or Unauthorized (policy refused).
3. Files are stored BEFORE the status moves, and their rows commit in the
   same transaction as the status change. Any failure rolls back the row
   and deletes the objects already stored.
4. The status log row is appended after the status change commits. A
   failed log insert is logged, never raised.
================================================================================
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from ..constants import (
    MANAGER_STAGE_STATUSES,
    OWNER_STAGE_STATUSES,
    PAYMENT_STAGE_STATUSES,
    TERMINAL_EXPENSE_STATUSES,
    ExpenseStatus,
    FileCategory,
    Role,
)
from ..errors import InvalidTransition, NotFoundError, StaleStateError, ValidationError
from ..extensions import db
from ..models import Expense, ExpenseFile, ExpenseStatusLog, Notification
from ..time_utils import utcnow
from ..validation import (
    EXPENSE_FIELDS,
    REFERENCE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    CATEGORY_MAX_LENGTH,
    parse_expense_date,
    parse_review_action,
    require_text,
    validate_payload,
)
from . import policy_service, storage_service
from .concurrency import compare_and_swap_status, run_with_retry
from .policy_service import Operation
from .storage_service import Upload


PAID_HISTORY_LIMIT = 50

# Payload key -> column
_FIELD_COLUMNS = {
    "title": "title",
    "description": "description",
    "amount": "amount_cents",
    "category": "category",
    "expense_date": "expense_date",
}


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _get_expense(expense_id: str) -> Expense:
    """Load a row for a write. Visibility is NOT applied here; the write checks decide."""
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError("Expense not found")
    return expense


def _resource(expense_id: str) -> str:
    return f"expense:{expense_id}"


def _require_actor(actor, expense, op: Operation) -> None:
    """Role (or row ownership for draft operations) check -> Unauthorized."""
    role = policy_service.expense_stage_role(op)
    if role is not None:
        policy_service.require_role(actor, role, action=op.name, resource=_resource(expense.id))
    elif expense.user_id != actor.user_id:
        policy_service.deny(
            actor, op.name, _resource(expense.id),
            "Only the owner of an expense may do this",
        )


def _require_status(expense, allowed: Iterable[ExpenseStatus], verb: str) -> None:
    """Status precondition -> InvalidTransition."""
    allowed = frozenset(allowed)
    if expense.status in TERMINAL_EXPENSE_STATUSES:
        raise InvalidTransition(
            f"Cannot {verb} expense {expense.id}: it is closed ('{expense.status.value}')"
        )
    if expense.status not in allowed:
        expected = ", ".join(sorted(s.value for s in allowed))
        raise InvalidTransition(
            f"Cannot {verb} expense {expense.id}: current status is "
            f"'{expense.status.value}', must be one of: {expected}"
        )


def _check_write(actor, expense, op: Operation, allowed: Iterable[ExpenseStatus], verb: str) -> None:
    _require_actor(actor, expense, op)
    _require_status(expense, allowed, verb)
    if not policy_service.can_write_expense(actor, expense, op):
        policy_service.deny(actor, op.name, _resource(expense.id), "Write refused by expense policy")


def _raise_write_failure(actor, expense_id: str, seen_status: ExpenseStatus, op: Operation):
    """
    The guarded UPDATE matched no row. Work out why.

    Status moved since we read it -> StaleStateError.
    Status unchanged -> the storage-level policy refused -> Unauthorized.
    """
    current = db.session.get(Expense, expense_id)
    if current is None:
        raise NotFoundError("Expense not found")
    if current.status != seen_status:
        current_app.logger.info(
            "Lost update race on expense %s (%s): expected %s, found %s",
            expense_id, op.value, seen_status.value, current.status.value,
        )
        raise StaleStateError("Expense state changed, please refresh and retry")
    policy_service.deny(actor, op.name, _resource(expense_id), "Write refused by expense policy")


def _guarded_write(
    actor,
    expense,
    op: Operation,
    *,
    expected: Iterable[ExpenseStatus],
    new_status: ExpenseStatus,
    values: dict | None = None,
    pending_rows: Iterable = (),
) -> None:
    """
    Compare-and-swap the status (plus `values`) and commit, together with
    any `pending_rows` (file rows) that must land atomically with it.
    """
    expense_id = expense.id
    seen_status = expense.status
    guard = policy_service.expense_write_clause(actor.user_id, op)
    pending_rows = list(pending_rows)

    def _op():
        db.session.add_all(pending_rows)
        rowcount = compare_and_swap_status(
            Expense,
            expense_id,
            expected=expected,
            new_status=new_status,
            guard=guard,
            values=values,
        )
        if rowcount != 1:
            db.session.rollback()
            return False
        db.session.commit()
        return True

    if not run_with_retry(_op):
        _raise_write_failure(actor, expense_id, seen_status, op)


def _append_status_log(actor, expense_id: str, status: ExpenseStatus, *, notes: str | None = None) -> None:
    """
    Audit trail insert, after the transition committed.

    Retried on transient errors; a final failure is logged and swallowed.
    """
    changed_by = actor.user_id
    if not policy_service.can_write_status_log(actor, changed_by):
        policy_service.deny(actor, "WRITE_STATUS_LOG", _resource(expense_id), "changed_by must be the acting user")

    def _op():
        db.session.add(ExpenseStatusLog(
            expense_id=expense_id,
            status=status,
            changed_by=changed_by,
            notes=notes,
            created_at=utcnow(),
        ))
        db.session.commit()

    try:
        run_with_retry(_op)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to append status log for expense %s (%s)", expense_id, status.value
        )


def _stage_files(actor, expense, uploads: Iterable[Upload], category: FileCategory, stored: list) -> list:
    """Store each upload and build (unsaved) ExpenseFile rows. `stored` collects keys for cleanup."""
    rows = []
    for upload in uploads:
        path = storage_service.upload(actor, expense.user_id, expense.id, upload)
        stored.append(path)
        rows.append(ExpenseFile(
            expense_id=expense.id,
            file_name=(upload.filename or "upload")[:255],
            file_path=path,
            file_type=upload.content_type,
            file_size=upload.size,
            uploaded_by=actor.user_id,
            file_category=category,
        ))
    return rows


def _write_with_files(
    actor,
    expense,
    op: Operation,
    uploads: Iterable[Upload],
    category: FileCategory,
    *,
    expected: Iterable[ExpenseStatus],
    new_status: ExpenseStatus,
    values: dict | None = None,
) -> None:
    """Files first, then the guarded write. On any failure nothing is left behind."""
    uploads = list(uploads)
    if uploads and not policy_service.can_write_file(actor, expense, category):
        policy_service.deny(actor, "ATTACH_FILE", _resource(expense.id), f"Cannot attach {category.value} now")

    stored: list[str] = []
    try:
        rows = _stage_files(actor, expense, uploads, category, stored)
        _guarded_write(
            actor, expense, op,
            expected=expected, new_status=new_status, values=values, pending_rows=rows,
        )
    except Exception:
        db.session.rollback()
        storage_service.remove_objects(stored)
        raise


def _parse_statuses(statuses) -> list[ExpenseStatus] | None:
    if not statuses:
        return None
    parsed = []
    for value in statuses:
        try:
            parsed.append(ExpenseStatus(str(value).strip().lower()))
        except ValueError:
            raise ValidationError(f"Invalid expense status '{value}'")
    return parsed


def _validate_for_submit(expense: Expense) -> None:
    if not expense.amount_cents or expense.amount_cents <= 0:
        raise ValidationError("amount must be greater than 0")
    parse_expense_date(expense.expense_date)
    require_text(expense.title, "title", max_length=TITLE_MAX_LENGTH)
    require_text(expense.category, "category", max_length=CATEGORY_MAX_LENGTH)


def _to_columns(data: dict) -> dict:
    return {_FIELD_COLUMNS[key]: value for key, value in data.items()}


# =============================================================================
# DRAFT OPERATIONS (row owner)
# =============================================================================

def create_expense(
    actor,
    payload: dict,
    *,
    uploads: Iterable[Upload] = (),
    submit: bool = False,
) -> Expense:
    """
    Create a DRAFT owned by the actor and log it.

    uploads are attached as bills. With submit=True the draft is then
    submitted. Create, upload and submit form one action: if the upload or
    the submit fails, the new draft is discarded and the error propagates,
    so a retry never leaves a duplicate behind.
    """
    data = validate_payload(payload, EXPENSE_FIELDS, partial=False)
    expense = Expense(user_id=actor.user_id, status=ExpenseStatus.DRAFT, **_to_columns(data))

    def _op():
        db.session.add(expense)
        db.session.commit()

    run_with_retry(_op)
    expense_id = expense.id
    _append_status_log(actor, expense_id, ExpenseStatus.DRAFT, notes="Expense saved as draft")

    uploads = list(uploads)
    try:
        if submit:
            return submit_expense(actor, expense_id, uploads)
        if uploads:
            add_bills(actor, expense_id, uploads)
    except Exception:
        db.session.rollback()
        _discard_draft(actor, expense_id)
        raise
    return _get_expense(expense_id)


def _discard_draft(actor, expense_id: str) -> None:
    """Undo a create whose chained upload or submit failed."""
    try:
        delete_draft(actor, expense_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to discard draft %s after a failed create", expense_id)


def edit_draft(actor, expense_id: str, payload: dict) -> Expense:
    """Patch a draft. Never changes status, never writes a status log."""
    expense = _get_expense(expense_id)
    _require_actor(actor, expense, Operation.EDIT)
    data = validate_payload(payload, EXPENSE_FIELDS, partial=True)
    if not data:
        raise ValidationError("No fields to update")
    _check_write(actor, expense, Operation.EDIT, {ExpenseStatus.DRAFT}, "edit")

    _guarded_write(
        actor, expense, Operation.EDIT,
        expected={ExpenseStatus.DRAFT},
        new_status=ExpenseStatus.DRAFT,
        values=_to_columns(data),
    )
    return _get_expense(expense_id)


def delete_draft(actor, expense_id: str) -> None:
    """Delete a draft with its file rows, log rows and stored objects."""
    expense = _get_expense(expense_id)
    _check_write(actor, expense, Operation.DELETE, {ExpenseStatus.DRAFT}, "delete")

    seen_status = expense.status
    paths = [f.file_path for f in expense.files]
    guard = policy_service.expense_write_clause(actor.user_id, Operation.DELETE)

    def _op():
        db.session.execute(
            delete(ExpenseFile).where(ExpenseFile.expense_id == expense_id)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            delete(ExpenseStatusLog).where(ExpenseStatusLog.expense_id == expense_id)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            delete(Notification).where(Notification.expense_id == expense_id)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(
            delete(Expense)
            .where(Expense.id == expense_id, Expense.status == ExpenseStatus.DRAFT, guard)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            return False
        db.session.commit()
        return True

    if not run_with_retry(_op):
        _raise_write_failure(actor, expense_id, seen_status, Operation.DELETE)

    storage_service.remove_objects(paths)


def add_bills(actor, expense_id: str, uploads: Iterable[Upload]) -> list[ExpenseFile]:
    """Attach bills to a draft. The draft guard is re-checked in the same transaction."""
    uploads = list(uploads)
    if not uploads:
        raise ValidationError("No files provided")

    expense = _get_expense(expense_id)
    _check_write(actor, expense, Operation.EDIT, {ExpenseStatus.DRAFT}, "attach bills to")

    before = {f.id for f in expense.files}
    _write_with_files(
        actor, expense, Operation.EDIT, uploads, FileCategory.BILL,
        expected={ExpenseStatus.DRAFT},
        new_status=ExpenseStatus.DRAFT,
    )
    return [
        f for f in ExpenseFile.query.filter_by(expense_id=expense_id).all()
        if f.id not in before
    ]


def add_bill(actor, expense_id: str, upload: Upload) -> ExpenseFile:
    return add_bills(actor, expense_id, [upload])[0]


def submit_expense(actor, expense_id: str, uploads: Iterable[Upload] = ()) -> Expense:
    """
    DRAFT -> SUBMITTED (row owner).

    Bills in `uploads` are stored first; the status only moves if every
    one of them was stored.
    """
    expense = _get_expense(expense_id)
    _require_actor(actor, expense, Operation.SUBMIT)
    _validate_for_submit(expense)
    _check_write(actor, expense, Operation.SUBMIT, {ExpenseStatus.DRAFT}, "submit")

    _write_with_files(
        actor, expense, Operation.SUBMIT, uploads, FileCategory.BILL,
        expected={ExpenseStatus.DRAFT},
        new_status=ExpenseStatus.SUBMITTED,
    )
    _append_status_log(actor, expense_id, ExpenseStatus.SUBMITTED, notes="Expense submitted for review")
    current_app.logger.info("Expense %s submitted by %s", expense_id, actor.user_id)
    return _get_expense(expense_id)


# =============================================================================
# APPROVAL PIPELINE
# =============================================================================

def mark_reviewed(actor, expense_id: str, notes: str | None = None) -> Expense:
    """SUBMITTED -> REVIEWED (manager triage). Approval rights are unchanged."""
    expense = _get_expense(expense_id)
    _check_write(actor, expense, Operation.MARK_REVIEWED, {ExpenseStatus.SUBMITTED}, "mark reviewed")

    _guarded_write(
        actor, expense, Operation.MARK_REVIEWED,
        expected={ExpenseStatus.SUBMITTED},
        new_status=ExpenseStatus.REVIEWED,
        values={"reviewed_by": actor.user_id, "reviewed_at": utcnow()},
    )
    _append_status_log(actor, expense_id, ExpenseStatus.REVIEWED, notes=notes)
    return _get_expense(expense_id)


def _review(actor, expense_id: str, action: str, reason: str | None, *, op: Operation) -> Expense:
    expense = _get_expense(expense_id)
    _require_actor(actor, expense, op)

    action = parse_review_action(action)
    if action == "reject":
        reason = require_text(reason, "rejection reason")

    if op == Operation.MANAGER_REVIEW:
        allowed = MANAGER_STAGE_STATUSES
        if action == "approve":
            new_status = ExpenseStatus.MANAGER_APPROVED
            values = {"manager_approved_by": actor.user_id, "manager_approved_at": utcnow()}
        else:
            new_status = ExpenseStatus.MANAGER_REJECTED
            values = {"manager_rejection_reason": reason}
    else:
        allowed = OWNER_STAGE_STATUSES
        if action == "approve":
            new_status = ExpenseStatus.OWNER_APPROVED
            values = {"owner_approved_by": actor.user_id, "owner_approved_at": utcnow()}
        else:
            new_status = ExpenseStatus.OWNER_REJECTED
            values = {"owner_rejection_reason": reason}

    _check_write(actor, expense, op, allowed, action)
    _guarded_write(actor, expense, op, expected=allowed, new_status=new_status, values=values)
    _append_status_log(actor, expense_id, new_status, notes=reason if action == "reject" else None)

    current_app.logger.info("Expense %s -> %s by %s", expense_id, new_status.value, actor.user_id)
    return _get_expense(expense_id)


def manager_review(actor, expense_id: str, action: str, reason: str | None = None) -> Expense:
    """SUBMITTED | REVIEWED -> MANAGER_APPROVED | MANAGER_REJECTED."""
    return _review(actor, expense_id, action, reason, op=Operation.MANAGER_REVIEW)


def owner_review(actor, expense_id: str, action: str, reason: str | None = None) -> Expense:
    """MANAGER_APPROVED -> OWNER_APPROVED | OWNER_REJECTED."""
    return _review(actor, expense_id, action, reason, op=Operation.OWNER_REVIEW)


def review_expense(actor, expense_id: str, action: str, reason: str | None = None) -> Expense:
    """
    Route a review to the stage the actor can act on.

    A user holding both manager and owner acts at whichever stage the
    expense is in. Otherwise the stage follows the actor's role, so a
    status mismatch surfaces as InvalidTransition for that stage.
    """
    expense = _get_expense(expense_id)
    if actor.has_role(Role.MANAGER) and expense.status in MANAGER_STAGE_STATUSES:
        return manager_review(actor, expense_id, action, reason)
    if actor.has_role(Role.OWNER) and expense.status in OWNER_STAGE_STATUSES:
        return owner_review(actor, expense_id, action, reason)
    if actor.has_role(Role.OWNER):
        return owner_review(actor, expense_id, action, reason)
    return manager_review(actor, expense_id, action, reason)


def schedule_payment(actor, expense_id: str) -> Expense:
    """OWNER_APPROVED -> PENDING_PAYMENT (accounts)."""
    expense = _get_expense(expense_id)
    _check_write(actor, expense, Operation.SCHEDULE_PAYMENT, {ExpenseStatus.OWNER_APPROVED}, "schedule payment for")

    _guarded_write(
        actor, expense, Operation.SCHEDULE_PAYMENT,
        expected={ExpenseStatus.OWNER_APPROVED},
        new_status=ExpenseStatus.PENDING_PAYMENT,
    )
    _append_status_log(actor, expense_id, ExpenseStatus.PENDING_PAYMENT, notes="Payment scheduled")
    return _get_expense(expense_id)


def pay_expense(actor, expense_id: str, reference: str, uploads: Iterable[Upload] = ()) -> Expense:
    """
    OWNER_APPROVED | PENDING_PAYMENT -> PAID (accounts).

    Payment proofs in `uploads` are stored before the status moves.
    """
    expense = _get_expense(expense_id)
    _require_actor(actor, expense, Operation.PAY)
    reference = require_text(reference, "payment reference", max_length=REFERENCE_MAX_LENGTH)
    _check_write(actor, expense, Operation.PAY, PAYMENT_STAGE_STATUSES, "pay")

    _write_with_files(
        actor, expense, Operation.PAY, uploads, FileCategory.PAYMENT_PROOF,
        expected=PAYMENT_STAGE_STATUSES,
        new_status=ExpenseStatus.PAID,
        values={"payment_reference": reference, "paid_by": actor.user_id, "paid_at": utcnow()},
    )
    _append_status_log(actor, expense_id, ExpenseStatus.PAID, notes=f"Paid, reference {reference}")
    current_app.logger.info("Expense %s paid by %s", expense_id, actor.user_id)
    return _get_expense(expense_id)


# =============================================================================
# QUERIES (always scoped by the read clause)
# =============================================================================

def get_expense(actor, expense_id: str) -> Expense:
    """Invisible rows are reported as missing."""
    expense = (
        Expense.query
        .filter(Expense.id == expense_id)
        .filter(policy_service.expense_read_clause(actor.user_id))
        .first()
    )
    if expense is None:
        raise NotFoundError("Expense not found")
    return expense


def list_expenses(actor, statuses=None, mine: bool = False) -> list[Expense]:
    query = Expense.query.filter(policy_service.expense_read_clause(actor.user_id))
    parsed = _parse_statuses(statuses)
    if parsed:
        query = query.filter(Expense.status.in_(parsed))
    if mine:
        query = query.filter(Expense.user_id == actor.user_id)
    return query.order_by(Expense.created_at.desc(), Expense.id).all()


def approval_queue(actor) -> list[Expense]:
    """Manager: SUBMITTED + REVIEWED. Owner: MANAGER_APPROVED. Newest first."""
    statuses = set()
    if actor.has_role(Role.MANAGER):
        statuses |= MANAGER_STAGE_STATUSES
    if actor.has_role(Role.OWNER):
        statuses |= OWNER_STAGE_STATUSES
    if not statuses:
        policy_service.deny(actor, "APPROVAL_QUEUE", "expenses", "Requires role manager or owner")
    return list_expenses(actor, statuses=[s.value for s in statuses])


def payment_queue(actor) -> list[Expense]:
    policy_service.require_role(actor, Role.ACCOUNTS, action="PAYMENT_QUEUE", resource="expenses")
    return list_expenses(actor, statuses=[s.value for s in PAYMENT_STAGE_STATUSES])


def paid_expenses(actor, limit: int = PAID_HISTORY_LIMIT) -> list[Expense]:
    policy_service.require_role(actor, Role.ACCOUNTS, action="PAID_HISTORY", resource="expenses")
    return (
        Expense.query
        .filter(policy_service.expense_read_clause(actor.user_id))
        .filter(Expense.status == ExpenseStatus.PAID)
        .order_by(Expense.paid_at.desc(), Expense.id)
        .limit(limit)
        .all()
    )


def list_files(actor, expense_id: str, category: FileCategory | None = None) -> list[ExpenseFile]:
    get_expense(actor, expense_id)
    query = (
        ExpenseFile.query
        .filter(ExpenseFile.expense_id == expense_id)
        .filter(policy_service.file_read_clause(actor.user_id))
    )
    if category is not None:
        query = query.filter(ExpenseFile.file_category == category)
    return query.order_by(ExpenseFile.created_at, ExpenseFile.id).all()


def get_file(actor, expense_id: str, file_id: str) -> ExpenseFile:
    expense = get_expense(actor, expense_id)
    if not policy_service.can_read_file(actor, expense):
        raise NotFoundError("File not found")
    row = (
        ExpenseFile.query
        .filter(ExpenseFile.id == file_id, ExpenseFile.expense_id == expense_id)
        .filter(policy_service.file_read_clause(actor.user_id))
        .first()
    )
    if row is None:
        raise NotFoundError("File not found")
    return row


def list_status_logs(actor, expense_id: str) -> list[ExpenseStatusLog]:
    get_expense(actor, expense_id)
    return (
        ExpenseStatusLog.query
        .filter(ExpenseStatusLog.expense_id == expense_id)
        .filter(policy_service.status_log_read_clause(actor.user_id))
        .order_by(ExpenseStatusLog.id)
        .all()
    )
