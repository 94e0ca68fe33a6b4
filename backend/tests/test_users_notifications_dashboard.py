"""
Profiles, user removal, notifications and dashboard statistics.
"""

import pytest

from orbit.constants import ExpenseStatus
from orbit.errors import NotFoundError, Unauthorized, ValidationError
from orbit.extensions import db
from orbit.models import Profile, SecurityEvent, User
from orbit.services import (
    expense_service,
    notification_service,
    reporting_service,
    session_service,
    user_service,
)
from orbit.services.role_service import Actor


# =============================================================================
# PROFILES
# =============================================================================


class TestProfiles:

    def test_employee_sees_only_own(self, employee_actor, other_employee):
        assert [p.id for p in user_service.list_profiles(employee_actor)] == [employee_actor.user_id]
        with pytest.raises(NotFoundError):
            user_service.get_profile(employee_actor, other_employee.id)

    def test_privileged_roles_see_all(self, manager_actor, accounts_actor, employee, other_employee):
        for actor in (manager_actor, accounts_actor):
            ids = {p.id for p in user_service.list_profiles(actor)}
            assert {employee.id, other_employee.id} <= ids

    def test_update_own_profile(self, employee_actor):
        profile = user_service.update_profile(
            employee_actor, employee_actor.user_id, {"phone": "+91 98000 00000", "department": "Sales"},
        )
        assert profile.phone == "+91 98000 00000"
        assert profile.department == "Sales"

    def test_cannot_update_others(self, owner_actor, employee):
        with pytest.raises(Unauthorized):
            user_service.update_profile(owner_actor, employee.id, {"department": "Ops"})

    def test_cannot_change_email_through_profile(self, employee_actor):
        with pytest.raises(ValidationError):
            user_service.update_profile(employee_actor, employee_actor.user_id, {"email": "x@y.z"})


class TestUserAdministration:

    def test_list_users_with_roles(self, owner_actor, manager):
        users = {u["id"]: u for u in user_service.list_users(owner_actor)}
        assert users[manager.id]["roles"] == ["manager", "employee"]
        assert users[manager.id]["primary_role"] == "manager"

    def test_list_users_owner_only(self, manager_actor):
        with pytest.raises(Unauthorized):
            user_service.list_users(manager_actor)

    def test_remove_user(self, owner_actor, employee):
        _, token = session_service.create_session(employee.id)

        user_service.remove_user(owner_actor, employee.id)

        assert db.session.get(Profile, employee.id) is None
        assert db.session.get(User, employee.id).is_active is False
        assert session_service.validate_session(token) is None
        assert SecurityEvent.query.filter_by(event_type="USER_REMOVED").count() == 1

    def test_cannot_remove_self(self, owner_actor):
        with pytest.raises(ValidationError):
            user_service.remove_user(owner_actor, owner_actor.user_id)

    def test_non_owner_cannot_remove(self, manager_actor, employee):
        with pytest.raises(Unauthorized):
            user_service.remove_user(manager_actor, employee.id)


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class TestNotifications:

    def test_own_notifications(self, employee_actor, other_actor):
        notification_service.create_notification(employee_actor, "Hello", "First")
        notification_service.create_notification(employee_actor, "Again", "Second")

        assert len(notification_service.list_notifications(employee_actor)) == 2
        assert notification_service.list_notifications(other_actor) == []

    def test_cannot_notify_someone_else(self, employee_actor, other_employee):
        with pytest.raises(Unauthorized):
            notification_service.create_notification(employee_actor, "Hi", "Spam", user_id=other_employee.id)

    def test_mark_read(self, employee_actor, other_actor):
        row = notification_service.create_notification(employee_actor, "Hello", "Body")

        with pytest.raises(NotFoundError):
            notification_service.mark_read(other_actor, row.id)

        assert notification_service.mark_read(employee_actor, row.id).is_read
        assert notification_service.list_notifications(employee_actor, unread_only=True) == []

    def test_mark_all_read(self, employee_actor, other_actor):
        for i in range(3):
            notification_service.create_notification(employee_actor, f"N{i}", "Body")
        foreign = notification_service.create_notification(other_actor, "Theirs", "Body")

        assert notification_service.mark_all_read(employee_actor) == 3
        assert notification_service.list_notifications(employee_actor, unread_only=True) == []
        db.session.refresh(foreign)
        assert foreign.is_read is False


# =============================================================================
# DASHBOARD
# =============================================================================


class TestDashboard:

    @pytest.fixture
    def pipeline(self, employee_actor, manager_actor, owner_actor, accounts_actor, expense_payload):
        draft = expense_service.create_expense(employee_actor, expense_payload(amount="10"))
        submitted = expense_service.create_expense(employee_actor, expense_payload(amount="20"), submit=True)
        approved = expense_service.create_expense(employee_actor, expense_payload(amount="30"), submit=True)
        expense_service.manager_review(manager_actor, approved.id, "approve")
        rejected = expense_service.create_expense(employee_actor, expense_payload(amount="40"), submit=True)
        expense_service.manager_review(manager_actor, rejected.id, "reject", "Duplicate")
        paid = expense_service.create_expense(employee_actor, expense_payload(amount="50"), submit=True)
        expense_service.manager_review(manager_actor, paid.id, "approve")
        expense_service.owner_review(owner_actor, paid.id, "approve")
        expense_service.pay_expense(accounts_actor, paid.id, "TXN-9")
        return {"draft": draft, "submitted": submitted, "approved": approved, "rejected": rejected, "paid": paid}

    def test_employee_counts_own(self, employee_actor, pipeline):
        stats = reporting_service.dashboard_stats(employee_actor)

        assert stats["primary_role"] == "employee"
        assert stats["total"] == 5
        assert stats["pending"] == 2
        assert stats["approved"] == 1
        assert stats["rejected"] == 1
        assert stats["paid"] == 1
        assert stats["total_amount"] == "150.00"
        assert stats["by_status"][ExpenseStatus.DRAFT.value] == 1
        assert stats["activity"] == {}
        assert len(stats["recent_expenses"]) == 5

    def test_manager_counts_visible_only(self, manager_actor, pipeline):
        stats = reporting_service.dashboard_stats(manager_actor)

        assert stats["primary_role"] == "manager"
        # submitted, manager_approved, manager_rejected
        assert stats["total"] == 3
        assert stats["pending"] == 1
        assert stats["approved"] == 1
        assert stats["rejected"] == 1
        assert stats["activity"] == {"approved_count": 1}

    def test_accounts_activity(self, accounts_actor, pipeline):
        stats = reporting_service.dashboard_stats(accounts_actor)
        assert stats["primary_role"] == "accounts"
        assert stats["total"] == 1
        assert stats["activity"] == {"paid_count": 1}

    def test_no_roles(self, employee, db_session):
        stats = reporting_service.dashboard_stats(Actor(user_id=employee.id, roles=frozenset()))
        assert stats["primary_role"] is None
        assert stats["display_role"] == "employee"
        assert stats["activity"] == {}
