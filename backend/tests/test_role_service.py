"""
Role resolution and role administration.

Verifies:
- Role sets are read from storage and ordered by configured priority
- The primary role never depends on row order
- A failed lookup yields no roles (fail closed)
- Only an owner may grant or revoke roles, and every change is audited
"""

import pytest
from sqlalchemy.exc import OperationalError

from orbit.constants import Role
from orbit.errors import NotFoundError, Unauthorized, ValidationError
from orbit.models import SecurityEvent, UserRole
from orbit.services import role_service
from orbit.services.role_service import Actor


# =============================================================================
# RESOLUTION
# =============================================================================


class TestResolveActor:

    def test_resolves_full_role_set(self, manager):
        actor = role_service.resolve_actor(manager.id)
        assert actor.user_id == manager.id
        assert actor.roles == frozenset({Role.MANAGER, Role.EMPLOYEE})
        assert actor.is_privileged

    def test_plain_employee_is_not_privileged(self, employee):
        actor = role_service.resolve_actor(employee.id)
        assert actor.roles == frozenset({Role.EMPLOYEE})
        assert not actor.is_privileged

    def test_user_without_roles_gets_empty_set(self, employee, db_session):
        UserRole.query.filter_by(user_id=employee.id).delete()
        db_session.commit()

        actor = role_service.resolve_actor(employee.id)
        assert actor.roles == frozenset()
        assert role_service.primary_role(actor.roles) is None

    def test_lookup_failure_fails_closed(self, owner, monkeypatch):
        def _boom(user_id):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(role_service, "get_user_roles", _boom)

        actor = role_service.resolve_actor(owner.id)
        assert actor.roles == frozenset()
        assert not actor.has_role(Role.OWNER)


class TestPrimaryRole:

    def test_default_priority(self, app):
        roles = [Role.EMPLOYEE, Role.MANAGER, Role.ACCOUNTS]
        assert role_service.primary_role(roles) == Role.ACCOUNTS
        assert role_service.primary_role([Role.EMPLOYEE, Role.OWNER]) == Role.OWNER

    def test_independent_of_input_order(self, app):
        assert role_service.primary_role([Role.MANAGER, Role.EMPLOYEE]) == Role.MANAGER
        assert role_service.primary_role([Role.EMPLOYEE, Role.MANAGER]) == Role.MANAGER

    def test_configured_priority_wins(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "ROLE_PRIORITY", ("manager", "owner"))

        assert role_service.role_priority() == (Role.MANAGER, Role.OWNER, Role.ACCOUNTS, Role.EMPLOYEE)
        assert role_service.primary_role([Role.OWNER, Role.MANAGER]) == Role.MANAGER

    def test_empty_set_has_no_primary_but_displays_employee(self, app):
        assert role_service.primary_role([]) is None
        assert role_service.display_role([]) == Role.EMPLOYEE

    def test_sort_roles_deduplicates(self, app):
        assert role_service.sort_roles([Role.EMPLOYEE, Role.OWNER, Role.EMPLOYEE]) == [Role.OWNER, Role.EMPLOYEE]


# =============================================================================
# ADMINISTRATION
# =============================================================================


class TestAssignRole:

    def test_owner_grants_role(self, owner_actor, employee):
        row = role_service.assign_role(owner_actor, employee.id, Role.ACCOUNTS)

        assert row.role == Role.ACCOUNTS
        assert Role.ACCOUNTS in role_service.get_user_roles(employee.id)
        event = SecurityEvent.query.filter_by(event_type="ROLE_ASSIGNED").one()
        assert event.user_id == owner_actor.user_id
        assert event.resource == f"user:{employee.id}"

    def test_grant_is_idempotent(self, owner_actor, employee):
        first = role_service.assign_role(owner_actor, employee.id, "manager")
        second = role_service.assign_role(owner_actor, employee.id, Role.MANAGER)

        assert first.id == second.id
        assert UserRole.query.filter_by(user_id=employee.id, role=Role.MANAGER).count() == 1

    def test_non_owner_cannot_grant(self, manager_actor, employee):
        with pytest.raises(Unauthorized):
            role_service.assign_role(manager_actor, employee.id, Role.OWNER)

        assert Role.OWNER not in role_service.get_user_roles(employee.id)
        assert SecurityEvent.query.filter_by(event_type="PERMISSION_DENIED").count() == 1

    def test_employee_cannot_grant_themselves(self, employee_actor):
        with pytest.raises(Unauthorized):
            role_service.assign_role(employee_actor, employee_actor.user_id, Role.OWNER)

    def test_unknown_role_is_validation_error(self, owner_actor, employee):
        with pytest.raises(ValidationError):
            role_service.assign_role(owner_actor, employee.id, "superuser")

    def test_unknown_user(self, owner_actor):
        with pytest.raises(NotFoundError):
            role_service.assign_role(owner_actor, "missing-user", Role.MANAGER)


class TestRevokeRole:

    def test_owner_revokes_role(self, owner_actor, manager):
        role_service.revoke_role(owner_actor, manager.id, Role.MANAGER)

        assert role_service.get_user_roles(manager.id) == [Role.EMPLOYEE]
        assert SecurityEvent.query.filter_by(event_type="ROLE_REVOKED").count() == 1

    def test_cannot_revoke_last_role(self, owner_actor, employee):
        with pytest.raises(ValidationError):
            role_service.revoke_role(owner_actor, employee.id, Role.EMPLOYEE)

    def test_revoke_unheld_role(self, owner_actor, employee):
        with pytest.raises(NotFoundError):
            role_service.revoke_role(owner_actor, employee.id, Role.ACCOUNTS)

    def test_non_owner_cannot_revoke(self, accounts_actor, manager):
        with pytest.raises(Unauthorized):
            role_service.revoke_role(accounts_actor, manager.id, Role.MANAGER)


class TestRoleRowVisibility:

    def test_user_reads_own_rows(self, employee_actor):
        rows = role_service.list_role_rows(employee_actor, employee_actor.user_id)
        assert [row.role for row in rows] == [Role.EMPLOYEE]

    def test_owner_reads_anyone(self, owner_actor, manager):
        rows = role_service.list_role_rows(owner_actor, manager.id)
        assert {row.role for row in rows} == {Role.MANAGER, Role.EMPLOYEE}

    def test_manager_cannot_read_others(self, manager_actor, employee):
        with pytest.raises(Unauthorized):
            role_service.list_role_rows(manager_actor, employee.id)


class TestActor:

    def test_has_role_any_of(self):
        actor = Actor(user_id="u1", roles=frozenset({Role.ACCOUNTS}))
        assert actor.has_role(Role.MANAGER, Role.ACCOUNTS)
        assert not actor.has_role(Role.MANAGER, Role.OWNER)
        assert not actor.has_role()
