"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Domain errors map to 400 / 403 / 404 / 409 / 503
- Multipart submissions store bills with the expense
- Sign-up and login never hand out a privileged role
"""

import io

import pytest
from sqlalchemy.exc import OperationalError

from orbit.extensions import db
from orbit.models import Expense, ExpenseFile, ExpenseStatusLog
from orbit.services.storage_service import LocalObjectStorage

from conftest import PASSWORD, PNG_BYTES


# =============================================================================
# UNAUTHENTICATED ACCESS: 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
            ("GET", "/api/expenses"),
            ("POST", "/api/expenses"),
            ("GET", "/api/approvals"),
            ("GET", "/api/payments/pending"),
            ("GET", "/api/advances"),
            ("GET", "/api/users"),
            ("GET", "/api/users/me/profile"),
            ("GET", "/api/notifications"),
            ("GET", "/api/dashboard"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client):
        resp = client.get("/api/expenses", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


# =============================================================================
# AUTH
# =============================================================================


class TestAuthRoutes:

    def test_signup_ignores_requested_role(self, client):
        resp = client.post("/api/auth/signup", json={
            "email": "new@orbit.test",
            "password": "secret1",
            "full_name": "New Person",
            "role": "owner",
        })
        assert resp.status_code == 201

        resp = client.post("/api/auth/login", json={"email": "new@orbit.test", "password": "secret1"})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["roles"] == ["employee"]
        assert body["primary_role"] == "employee"
        assert len(body["token"]) == 64

    def test_signup_validation(self, client):
        resp = client.post("/api/auth/signup", json={"email": "bad", "password": "secret1", "full_name": "X Y"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "ValidationError"

    def test_login_missing_fields(self, client):
        assert client.post("/api/auth/login", json={"email": "a@b.c"}).status_code == 400

    def test_login_wrong_password(self, client, employee):
        resp = client.post("/api/auth/login", json={"email": employee.email, "password": "nope-nope"})
        assert resp.status_code == 401

    def test_me_and_logout(self, client, manager):
        resp = client.post("/api/auth/login", json={"email": manager.email, "password": PASSWORD})
        headers = {"Authorization": f"Bearer {resp.get_json()['token']}"}

        me = client.get("/api/auth/me", headers=headers).get_json()
        assert me["roles"] == ["manager", "employee"]
        assert me["primary_role"] == "manager"
        assert me["profile"]["full_name"] == "Mia Manager"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401


# =============================================================================
# EXPENSES
# =============================================================================


class TestExpenseRoutes:

    def test_create_and_fetch(self, client, employee, headers_for, expense_payload):
        headers = headers_for(employee)
        resp = client.post("/api/expenses", json=expense_payload(), headers=headers)
        assert resp.status_code == 201
        expense = resp.get_json()["expense"]
        assert expense["status"] == "draft"
        assert expense["amount"] == "500.00"

        resp = client.get(f"/api/expenses/{expense['id']}", headers=headers)
        assert resp.status_code == 200

        logs = client.get(f"/api/expenses/{expense['id']}/logs", headers=headers).get_json()["logs"]
        assert [log["status"] for log in logs] == ["draft"]

    def test_multipart_submit_with_bill(self, client, employee, headers_for, expense_payload):
        data = dict(expense_payload(), submit="true")
        data["files"] = (io.BytesIO(PNG_BYTES), "receipt.png", "image/png")

        resp = client.post(
            "/api/expenses", data=data, headers=headers_for(employee), content_type="multipart/form-data",
        )
        assert resp.status_code == 201
        expense = resp.get_json()["expense"]
        assert expense["status"] == "submitted"
        assert ExpenseFile.query.filter_by(expense_id=expense["id"]).count() == 1

    def test_download_bill(self, client, employee, headers_for, expense_payload):
        headers = headers_for(employee)
        expense_id = client.post("/api/expenses", json=expense_payload(), headers=headers).get_json()["expense"]["id"]
        resp = client.post(
            f"/api/expenses/{expense_id}/files",
            data={"files": (io.BytesIO(PNG_BYTES), "receipt.png", "image/png")},
            headers=headers,
            content_type="multipart/form-data",
        )
        assert resp.status_code == 201
        file_id = resp.get_json()["files"][0]["id"]

        resp = client.get(f"/api/expenses/{expense_id}/files/{file_id}/download", headers=headers)
        assert resp.status_code == 200
        assert resp.data == PNG_BYTES
        resp.close()

    def test_invalid_amount_is_400(self, client, employee, headers_for, expense_payload):
        resp = client.post("/api/expenses", json=expense_payload(amount="-1"), headers=headers_for(employee))
        assert resp.status_code == 400

    def test_invisible_expense_is_404(self, client, employee, other_employee, headers_for, expense_payload):
        expense_id = client.post(
            "/api/expenses", json=expense_payload(), headers=headers_for(employee),
        ).get_json()["expense"]["id"]

        resp = client.get(f"/api/expenses/{expense_id}", headers=headers_for(other_employee))
        assert resp.status_code == 404

    def test_foreign_edit_is_403(self, client, employee, other_employee, headers_for, expense_payload):
        expense_id = client.post(
            "/api/expenses", json=expense_payload(), headers=headers_for(employee),
        ).get_json()["expense"]["id"]

        resp = client.patch(f"/api/expenses/{expense_id}", json={"title": "Mine"}, headers=headers_for(other_employee))
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "Unauthorized"

    def test_double_submit_is_409(self, client, employee, headers_for, expense_payload):
        headers = headers_for(employee)
        expense_id = client.post("/api/expenses", json=expense_payload(), headers=headers).get_json()["expense"]["id"]

        assert client.post(f"/api/expenses/{expense_id}/submit", headers=headers).status_code == 200
        resp = client.post(f"/api/expenses/{expense_id}/submit", headers=headers)
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "InvalidTransition"
        assert body["hint"] == "State changed, please refresh"

    def test_storage_outage_is_503_and_leaves_nothing(self, client, employee, headers_for, expense_payload, monkeypatch):
        def _fail(self, path, data):
            raise OSError("bucket unavailable")

        def _form():
            data = dict(expense_payload(), submit="true")
            data["files"] = (io.BytesIO(PNG_BYTES), "receipt.png", "image/png")
            return data

        headers = headers_for(employee)
        with monkeypatch.context() as m:
            m.setattr(LocalObjectStorage, "put", _fail)
            resp = client.post("/api/expenses", data=_form(), headers=headers, content_type="multipart/form-data")

        assert resp.status_code == 503
        assert resp.get_json()["code"] == "DependencyFailure"
        assert Expense.query.count() == 0
        assert ExpenseStatusLog.query.count() == 0

        # Retrying the whole action yields exactly one expense.
        resp = client.post("/api/expenses", data=_form(), headers=headers, content_type="multipart/form-data")
        assert resp.status_code == 201
        assert [(e.id, e.status.value) for e in Expense.query.all()] == [
            (resp.get_json()["expense"]["id"], "submitted"),
        ]

    def test_categories(self, client, employee, headers_for):
        resp = client.get("/api/expenses/categories", headers=headers_for(employee))
        assert "Travel" in resp.get_json()["categories"]


# =============================================================================
# APPROVALS AND PAYMENTS
# =============================================================================


class TestPipelineRoutes:

    @pytest.fixture
    def submitted_id(self, client, employee, headers_for, expense_payload):
        resp = client.post("/api/expenses", json=dict(expense_payload(), submit=True), headers=headers_for(employee))
        return resp.get_json()["expense"]["id"]

    def test_employee_cannot_open_queue(self, client, employee, headers_for):
        resp = client.get("/api/approvals", headers=headers_for(employee))
        assert resp.status_code == 403
        assert resp.get_json()["required_roles"] == ["manager", "owner"]

    def test_full_pipeline(self, client, manager, owner, accounts, headers_for, submitted_id):
        queue = client.get("/api/approvals", headers=headers_for(manager)).get_json()["expenses"]
        assert [e["id"] for e in queue] == [submitted_id]

        resp = client.post(f"/api/approvals/{submitted_id}/approve", headers=headers_for(manager))
        assert resp.get_json()["expense"]["status"] == "manager_approved"

        resp = client.post(f"/api/approvals/{submitted_id}/approve", headers=headers_for(owner))
        assert resp.get_json()["expense"]["status"] == "owner_approved"

        pending = client.get("/api/payments/pending", headers=headers_for(accounts)).get_json()["expenses"]
        assert [e["id"] for e in pending] == [submitted_id]

        resp = client.post(f"/api/payments/{submitted_id}/pay", json={}, headers=headers_for(accounts))
        assert resp.status_code == 400

        resp = client.post(f"/api/payments/{submitted_id}/pay", json={"reference": "TXN-42"}, headers=headers_for(accounts))
        assert resp.status_code == 200
        assert resp.get_json()["expense"]["status"] == "paid"

        paid = client.get("/api/payments/paid?limit=500", headers=headers_for(accounts)).get_json()["expenses"]
        assert [e["id"] for e in paid] == [submitted_id]

    def test_reject_without_reason_is_400(self, client, manager, headers_for, submitted_id):
        resp = client.post(f"/api/approvals/{submitted_id}/reject", json={}, headers=headers_for(manager))
        assert resp.status_code == 400

    def test_manager_cannot_pay(self, client, manager, headers_for, submitted_id):
        resp = client.post(f"/api/payments/{submitted_id}/pay", json={"reference": "X"}, headers=headers_for(manager))
        assert resp.status_code == 403


# =============================================================================
# MALFORMED BODIES
# =============================================================================


class TestMalformedBodies:

    @pytest.mark.parametrize("user,method,path", [
        (None, "post", "/api/auth/signup"),
        (None, "post", "/api/auth/login"),
        ("employee", "post", "/api/expenses"),
        ("employee", "post", "/api/advances"),
        ("manager", "post", "/api/advances/missing/reject"),
        ("accounts", "post", "/api/advances/missing/disburse"),
        ("manager", "post", "/api/approvals/missing/review"),
        ("manager", "post", "/api/approvals/missing/reject"),
        ("accounts", "post", "/api/payments/missing/pay"),
        ("employee", "post", "/api/notifications"),
        ("employee", "patch", "/api/users/me/profile"),
        ("owner", "post", "/api/users/missing/roles"),
    ])
    def test_json_list_is_400(self, request, client, headers_for, user, method, path):
        headers = headers_for(request.getfixturevalue(user)) if user else {}
        resp = getattr(client, method)(path, json=[1, 2], headers=headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "ValidationError"


# =============================================================================
# ADVANCES, USERS, NOTIFICATIONS, DASHBOARD
# =============================================================================


class TestOtherRoutes:

    def test_advance_flow(self, client, employee, manager, accounts, headers_for):
        resp = client.post(
            "/api/advances",
            json={"amount": "1500", "reason": "Trade fair booth deposit"},
            headers=headers_for(employee),
        )
        assert resp.status_code == 201
        advance_id = resp.get_json()["advance"]["id"]

        assert client.post(f"/api/advances/{advance_id}/disburse", headers=headers_for(accounts)).status_code == 409
        assert client.post(f"/api/advances/{advance_id}/approve", headers=headers_for(manager)).status_code == 200

        resp = client.post(
            f"/api/advances/{advance_id}/disburse", json={"reference": "NEFT-1"}, headers=headers_for(accounts),
        )
        assert resp.status_code == 200
        assert resp.get_json()["advance"]["status"] == "disbursed"

    def test_owner_grants_role(self, client, owner, employee, headers_for):
        resp = client.post(f"/api/users/{employee.id}/roles", json={"role": "accounts"}, headers=headers_for(owner))
        assert resp.status_code == 201

        roles = client.get(f"/api/users/{employee.id}/roles", headers=headers_for(employee)).get_json()["roles"]
        assert {row["role"] for row in roles} == {"employee", "accounts"}

    def test_manager_cannot_grant_role(self, client, manager, employee, headers_for):
        resp = client.post(f"/api/users/{employee.id}/roles", json={"role": "owner"}, headers=headers_for(manager))
        assert resp.status_code == 403

    def test_profile_update(self, client, employee, headers_for):
        resp = client.patch("/api/users/me/profile", json={"department": "Finance"}, headers=headers_for(employee))
        assert resp.status_code == 200
        assert resp.get_json()["profile"]["department"] == "Finance"

    def test_removed_user_loses_access(self, client, owner, employee, headers_for):
        employee_headers = headers_for(employee)
        assert client.delete(f"/api/users/{employee.id}", headers=headers_for(owner)).status_code == 200
        assert client.get("/api/expenses", headers=employee_headers).status_code == 401

    def test_notifications(self, client, employee, headers_for):
        headers = headers_for(employee)
        resp = client.post("/api/notifications", json={"title": "Reminder", "message": "Upload bill"}, headers=headers)
        assert resp.status_code == 201
        notification_id = resp.get_json()["notification"]["id"]

        assert client.post(f"/api/notifications/{notification_id}/read", headers=headers).status_code == 200
        unread = client.get("/api/notifications?unread=true", headers=headers).get_json()["notifications"]
        assert unread == []

    def test_dashboard(self, client, employee, headers_for):
        body = client.get("/api/dashboard", headers=headers_for(employee)).get_json()
        assert body["total"] == 0
        assert body["display_role"] == "employee"


# =============================================================================
# HEALTH
# =============================================================================


class TestHealth:

    def test_healthy(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"

    def test_database_failure_is_503(self, client, monkeypatch):
        def _boom(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("unable to open database file"))

        monkeypatch.setattr(db.session, "query", _boom)

        resp = client.get("/health")
        assert resp.status_code == 503
        assert resp.get_json()["status"] == "unhealthy"
