"""
Cash-advance lifecycle tests.

Verifies:
- PENDING -> APPROVED -> DISBURSED and PENDING -> REJECTED
- Manager or owner reviews, accounts disburses
- Terminal states reject every further transition
"""

import pytest

from orbit.constants import TERMINAL_ADVANCE_STATUSES, AdvanceStatus
from orbit.errors import InvalidTransition, NotFoundError, Unauthorized, ValidationError
from orbit.services import advance_service


@pytest.fixture
def pending(employee_actor):
    return advance_service.create_advance(employee_actor, "250.00", "Client visit in Pune next week")


class TestCreateAdvance:

    def test_creates_pending(self, employee_actor, pending):
        assert pending.status == AdvanceStatus.PENDING
        assert pending.user_id == employee_actor.user_id
        assert pending.amount_cents == 25000
        assert pending.requested_at is not None

    def test_reason_minimum_length(self, employee_actor):
        with pytest.raises(ValidationError, match="at least 10 characters"):
            advance_service.create_advance(employee_actor, "100", "Taxi")

    def test_amount_must_be_positive(self, employee_actor):
        with pytest.raises(ValidationError):
            advance_service.create_advance(employee_actor, "0", "Conference registration fee")


class TestReviewAdvance:

    def test_manager_approves(self, manager_actor, pending):
        advance = advance_service.review_advance(manager_actor, pending.id, "approve")
        assert advance.status == AdvanceStatus.APPROVED
        assert advance.reviewed_by == manager_actor.user_id
        assert advance.reviewed_at is not None

    def test_owner_rejects_with_reason(self, owner_actor, pending):
        advance = advance_service.review_advance(owner_actor, pending.id, "reject", "Use the corporate card")
        assert advance.status == AdvanceStatus.REJECTED
        assert advance.rejection_reason == "Use the corporate card"

    def test_reject_requires_reason(self, manager_actor, pending):
        with pytest.raises(ValidationError):
            advance_service.review_advance(manager_actor, pending.id, "reject")

    def test_employee_and_accounts_cannot_review(self, employee_actor, accounts_actor, pending):
        for actor in (employee_actor, accounts_actor):
            with pytest.raises(Unauthorized):
                advance_service.review_advance(actor, pending.id, "approve")

    def test_rejected_is_terminal(self, manager_actor, accounts_actor, pending):
        advance_service.review_advance(manager_actor, pending.id, "reject", "Not budgeted")
        with pytest.raises(InvalidTransition):
            advance_service.review_advance(manager_actor, pending.id, "approve")
        with pytest.raises(InvalidTransition):
            advance_service.disburse_advance(accounts_actor, pending.id)


class TestDisburseAdvance:

    def test_accounts_disburses(self, manager_actor, accounts_actor, pending):
        advance_service.review_advance(manager_actor, pending.id, "approve")
        advance = advance_service.disburse_advance(accounts_actor, pending.id, "NEFT-778")

        assert advance.status == AdvanceStatus.DISBURSED
        assert advance.disbursed_by == accounts_actor.user_id
        assert advance.payment_reference == "NEFT-778"

    def test_reference_is_optional(self, manager_actor, accounts_actor, pending):
        advance_service.review_advance(manager_actor, pending.id, "approve")
        advance = advance_service.disburse_advance(accounts_actor, pending.id)
        assert advance.status == AdvanceStatus.DISBURSED
        assert advance.payment_reference is None

    def test_cannot_disburse_pending(self, accounts_actor, pending):
        with pytest.raises(InvalidTransition):
            advance_service.disburse_advance(accounts_actor, pending.id)

    def test_manager_cannot_disburse(self, manager_actor, pending):
        advance_service.review_advance(manager_actor, pending.id, "approve")
        with pytest.raises(Unauthorized):
            advance_service.disburse_advance(manager_actor, pending.id)

    def test_no_transition_leaves_a_terminal_status(self, employee_actor, manager_actor, accounts_actor, pending):
        advance_service.review_advance(manager_actor, pending.id, "reject", "Not budgeted")
        disbursed = advance_service.create_advance(employee_actor, "90.00", "Courier charges for samples")
        advance_service.review_advance(manager_actor, disbursed.id, "approve")
        advance_service.disburse_advance(accounts_actor, disbursed.id, "NEFT-1")

        for advance_id in (pending.id, disbursed.id):
            final = advance_service.get_advance(manager_actor, advance_id).status
            assert final in TERMINAL_ADVANCE_STATUSES
            for attempt in (
                lambda: advance_service.review_advance(manager_actor, advance_id, "approve"),
                lambda: advance_service.review_advance(manager_actor, advance_id, "reject", "Changed my mind"),
                lambda: advance_service.disburse_advance(accounts_actor, advance_id, "NEFT-2"),
            ):
                with pytest.raises(InvalidTransition, match="closed"):
                    attempt()
            assert advance_service.get_advance(manager_actor, advance_id).status == final


class TestAdvanceQueries:

    def test_visibility(self, employee_actor, other_actor, manager_actor, accounts_actor, pending):
        assert advance_service.get_advance(employee_actor, pending.id).id == pending.id
        assert advance_service.get_advance(manager_actor, pending.id).id == pending.id
        with pytest.raises(NotFoundError):
            advance_service.get_advance(other_actor, pending.id)
        with pytest.raises(NotFoundError):
            advance_service.get_advance(accounts_actor, pending.id)

    def test_accounts_sees_approved(self, manager_actor, accounts_actor, pending):
        advance_service.review_advance(manager_actor, pending.id, "approve")
        assert [a.id for a in advance_service.list_advances(accounts_actor)] == [pending.id]

    def test_status_filter(self, manager_actor, pending):
        assert advance_service.list_advances(manager_actor, statuses=["approved"]) == []
        assert [a.id for a in advance_service.list_advances(manager_actor, statuses=["pending"])] == [pending.id]
        with pytest.raises(ValidationError):
            advance_service.list_advances(manager_actor, statuses=["bogus"])
