# Overview: Service-layer operations for advances; encapsulates business logic and database work.

"""
Cash-Advance Lifecycle Service

STATE MACHINE:
    PENDING -> APPROVED -> DISBURSED
    PENDING -> REJECTED (terminal, reason required)

Same rules as expenses: role check (Unauthorized), then input
(ValidationError), then status (InvalidTransition), then one
status-guarded UPDATE carrying the storage-level write clause.
"""

from __future__ import annotations

from flask import current_app

from ..constants import ADVANCE_REASON_MIN_LENGTH, TERMINAL_ADVANCE_STATUSES, AdvanceStatus, Role
from ..errors import InvalidTransition, NotFoundError, StaleStateError, ValidationError
from ..extensions import db
from ..models import AdvanceRequest
from ..time_utils import utcnow
from ..validation import REFERENCE_MAX_LENGTH, optional_text, parse_amount_cents, parse_review_action, require_text
from . import policy_service
from .concurrency import compare_and_swap_status, run_with_retry
from .policy_service import Operation


def _get_advance(advance_id: str) -> AdvanceRequest:
    advance = db.session.get(AdvanceRequest, advance_id)
    if advance is None:
        raise NotFoundError("Advance request not found")
    return advance


def _resource(advance_id: str) -> str:
    return f"advance:{advance_id}"


def _require_status(advance, expected: AdvanceStatus, verb: str) -> None:
    if advance.status in TERMINAL_ADVANCE_STATUSES:
        raise InvalidTransition(
            f"Cannot {verb} advance request {advance.id}: it is closed ('{advance.status.value}')"
        )
    if advance.status != expected:
        raise InvalidTransition(
            f"Cannot {verb} advance request {advance.id}: current status is "
            f"'{advance.status.value}', must be '{expected.value}'"
        )


def _guarded_write(actor, advance, op: Operation, *, expected: AdvanceStatus, new_status: AdvanceStatus, values: dict):
    advance_id = advance.id
    seen_status = advance.status
    guard = policy_service.advance_write_clause(actor.user_id, op)

    def _op():
        rowcount = compare_and_swap_status(
            AdvanceRequest,
            advance_id,
            expected=[expected],
            new_status=new_status,
            guard=guard,
            values=values,
        )
        if rowcount != 1:
            db.session.rollback()
            return False
        db.session.commit()
        return True

    if run_with_retry(_op):
        return _get_advance(advance_id)

    current = db.session.get(AdvanceRequest, advance_id)
    if current is None:
        raise NotFoundError("Advance request not found")
    if current.status != seen_status:
        raise StaleStateError("Advance request state changed, please refresh and retry")
    policy_service.deny(actor, op.name, _resource(advance_id), "Write refused by advance policy")


def create_advance(actor, amount, reason) -> AdvanceRequest:
    """New PENDING request owned by the actor."""
    amount_cents = parse_amount_cents(amount)
    reason = require_text(reason, "reason", min_length=ADVANCE_REASON_MIN_LENGTH)

    advance = AdvanceRequest(
        user_id=actor.user_id,
        amount_cents=amount_cents,
        reason=reason,
        status=AdvanceStatus.PENDING,
        requested_at=utcnow(),
    )

    def _op():
        db.session.add(advance)
        db.session.commit()

    run_with_retry(_op)
    return advance


def review_advance(actor, advance_id: str, action: str, reason: str | None = None) -> AdvanceRequest:
    """PENDING -> APPROVED | REJECTED (manager or owner)."""
    advance = _get_advance(advance_id)
    policy_service.require_role(
        actor, Role.MANAGER, Role.OWNER,
        action=Operation.REVIEW_ADVANCE.name, resource=_resource(advance_id),
    )

    action = parse_review_action(action)
    values = {"reviewed_by": actor.user_id, "reviewed_at": utcnow()}
    if action == "approve":
        new_status = AdvanceStatus.APPROVED
    else:
        new_status = AdvanceStatus.REJECTED
        values["rejection_reason"] = require_text(reason, "rejection reason")

    _require_status(advance, AdvanceStatus.PENDING, action)
    if not policy_service.can_write_advance(actor, advance, Operation.REVIEW_ADVANCE):
        policy_service.deny(actor, Operation.REVIEW_ADVANCE.name, _resource(advance_id), "Write refused by advance policy")

    result = _guarded_write(
        actor, advance, Operation.REVIEW_ADVANCE,
        expected=AdvanceStatus.PENDING, new_status=new_status, values=values,
    )
    current_app.logger.info("Advance %s -> %s by %s", advance_id, new_status.value, actor.user_id)
    return result


def disburse_advance(actor, advance_id: str, reference: str | None = None) -> AdvanceRequest:
    """APPROVED -> DISBURSED (accounts). The payment reference is optional."""
    advance = _get_advance(advance_id)
    policy_service.require_role(
        actor, Role.ACCOUNTS,
        action=Operation.DISBURSE_ADVANCE.name, resource=_resource(advance_id),
    )

    reference = optional_text(reference)
    if reference and len(reference) > REFERENCE_MAX_LENGTH:
        raise ValidationError(f"payment reference exceeds max length {REFERENCE_MAX_LENGTH}")

    _require_status(advance, AdvanceStatus.APPROVED, "disburse")
    if not policy_service.can_write_advance(actor, advance, Operation.DISBURSE_ADVANCE):
        policy_service.deny(actor, Operation.DISBURSE_ADVANCE.name, _resource(advance_id), "Write refused by advance policy")

    result = _guarded_write(
        actor, advance, Operation.DISBURSE_ADVANCE,
        expected=AdvanceStatus.APPROVED,
        new_status=AdvanceStatus.DISBURSED,
        values={"disbursed_by": actor.user_id, "disbursed_at": utcnow(), "payment_reference": reference},
    )
    current_app.logger.info("Advance %s disbursed by %s", advance_id, actor.user_id)
    return result


def get_advance(actor, advance_id: str) -> AdvanceRequest:
    advance = (
        AdvanceRequest.query
        .filter(AdvanceRequest.id == advance_id)
        .filter(policy_service.advance_read_clause(actor.user_id))
        .first()
    )
    if advance is None:
        raise NotFoundError("Advance request not found")
    return advance


def list_advances(actor, statuses=None, mine: bool = False) -> list[AdvanceRequest]:
    query = AdvanceRequest.query.filter(policy_service.advance_read_clause(actor.user_id))
    if statuses:
        parsed = []
        for value in statuses:
            try:
                parsed.append(AdvanceStatus(str(value).strip().lower()))
            except ValueError:
                raise ValidationError(f"Invalid advance status '{value}'")
        query = query.filter(AdvanceRequest.status.in_(parsed))
    if mine:
        query = query.filter(AdvanceRequest.user_id == actor.user_id)
    return query.order_by(AdvanceRequest.requested_at.desc(), AdvanceRequest.id).all()
