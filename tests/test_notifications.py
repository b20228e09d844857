"""Notification service and route tests."""

import os
import tempfile

import pytest
from fastapi.testclient import TestClient

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="notifications_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name
os.environ["JWT_SECRET"] = "test-secret-key"

import canteen.database as _db_mod
from canteen.database import drop_all, get_db, init_db
from canteen.main import app
from canteen.services import notification_service
from canteen.services.account_service import AccountNotFoundError, AccountService
from canteen.services.auth import create_token
from canteen.services.notification_service import (
    DEFAULT_SETTINGS,
    NotificationNotFoundError,
    NotificationService,
)


@pytest.fixture(autouse=True)
def _setup_db():
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    conn = get_db()
    drop_all(conn)
    conn.close()
    init_db()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def svc():
    return NotificationService()


@pytest.fixture
def student():
    return AccountService().create_account("Nila", "S4001", "1234")


@pytest.fixture
def other():
    return AccountService().create_account("Omar", "S4002", "1234")


def _auth(account) -> dict:
    return {"Authorization": f"Bearer {create_token(account.id, account.role)}"}


def _push(account_id, type_="system", title="Hello"):
    conn = get_db()
    try:
        written = notification_service.push(conn, account_id, type_, title, "Body", {"k": 1})
        conn.commit()
    finally:
        conn.close()
    return written


class TestInbox:

    def test_push_and_list(self, svc, student):
        assert _push(student.id)
        inbox = svc.list_for_account(student.id)
        assert len(inbox) == 1
        assert inbox[0]["read"] is False
        assert inbox[0]["data"] == {"k": 1}

    def test_filters(self, svc, student):
        _push(student.id, "order")
        _push(student.id, "wallet")
        _push(student.id, "system")
        assert len(svc.list_for_account(student.id, "order")) == 1
        assert len(svc.list_for_account(student.id, "wallet")) == 1

        first = svc.list_for_account(student.id)[0]
        svc.mark_read(student.id, first["id"])
        assert len(svc.list_for_account(student.id, "unread")) == 2

    def test_mark_all_read(self, svc, student):
        _push(student.id)
        _push(student.id)
        assert svc.mark_all_read(student.id) == 2
        assert svc.mark_all_read(student.id) == 0
        assert all(n["read_at"] for n in svc.list_for_account(student.id))

    def test_cannot_touch_other_accounts_notifications(self, svc, student, other):
        _push(other.id)
        notification_id = svc.list_for_account(other.id)[0]["id"]
        with pytest.raises(NotificationNotFoundError):
            svc.mark_read(student.id, notification_id)
        with pytest.raises(NotificationNotFoundError):
            svc.delete(student.id, notification_id)

    def test_delete(self, svc, student):
        _push(student.id)
        notification_id = svc.list_for_account(student.id)[0]["id"]
        svc.delete(student.id, notification_id)
        assert svc.list_for_account(student.id) == []


class TestSettings:

    def test_defaults(self, svc, student):
        assert svc.get_settings(student.id) == DEFAULT_SETTINGS

    def test_update_merges_known_flags(self, svc, student):
        merged = svc.update_settings(student.id, {"promotions": False, "bogus": True})
        assert merged["promotions"] is False
        assert merged["orderUpdates"] is True
        assert "bogus" not in merged
        svc.update_settings(student.id, {"walletUpdates": False})
        assert svc.get_settings(student.id)["promotions"] is False

    def test_muted_type_not_pushed(self, svc, student):
        svc.update_settings(student.id, {"systemUpdates": False})
        assert not _push(student.id, "system")
        assert svc.list_for_account(student.id) == []


class TestCreateAndBroadcast:

    def test_create_for_user(self, svc, student):
        n = svc.create(student.id, "system", "Hi", "There")
        assert n["user_id"] == student.id

    def test_create_unknown_user(self, svc):
        with pytest.raises(AccountNotFoundError):
            svc.create(9999, "system", "Hi", "There")

    def test_create_missing_fields(self, svc, student):
        with pytest.raises(ValueError):
            svc.create(student.id, "system", "", "There")

    def test_create_unknown_type(self, svc, student):
        with pytest.raises(ValueError, match="Invalid notification type"):
            svc.create(student.id, "spam", "Hi", "There")

    def test_broadcast_all(self, svc, student, other):
        # default admin + two students
        assert svc.broadcast("system", "Closed", "Closed today") == 3

    def test_broadcast_role(self, svc, student, other):
        assert svc.broadcast("promotion", "Offer", "Half price", target_role="student") == 2
        assert len(svc.list_for_account(student.id)) == 1

    def test_broadcast_invalid_role(self, svc):
        with pytest.raises(ValueError):
            svc.broadcast("system", "X", "Y", target_role="chef")


class TestNotificationRoutes:

    def test_list_and_mark_read(self, client, student):
        _push(student.id)
        resp = client.get("/api/notifications", headers=_auth(student))
        assert resp.status_code == 200
        notification_id = resp.json()[0]["id"]

        resp = client.patch(
            f"/api/notifications/{notification_id}/read", headers=_auth(student)
        )
        assert resp.status_code == 200
        assert resp.json()["read"] is True

    def test_unknown_filter(self, client, student):
        resp = client.get(
            "/api/notifications", params={"filter": "spam"}, headers=_auth(student)
        )
        assert resp.status_code == 400

    def test_unknown_notification_404(self, client, student):
        resp = client.delete("/api/notifications/999", headers=_auth(student))
        assert resp.status_code == 404
        assert resp.json() == {"error": "Notification not found"}

    def test_settings_roundtrip(self, client, student):
        resp = client.put(
            "/api/notifications/settings",
            json={"orderUpdates": False},
            headers=_auth(student),
        )
        assert resp.json()["orderUpdates"] is False
        resp = client.get("/api/notifications/settings", headers=_auth(student))
        assert resp.json()["orderUpdates"] is False

    def test_create_requires_staff(self, client, student, other):
        body = {"userId": other.id, "type": "system", "title": "Hi", "message": "Yo"}
        resp = client.post("/api/notifications/create", json=body, headers=_auth(student))
        assert resp.status_code == 403

        staff_headers = {"Authorization": f"Bearer {create_token(1, 'staff')}"}
        resp = client.post("/api/notifications/create", json=body, headers=staff_headers)
        assert resp.status_code == 201

    def test_broadcast_route(self, client, student):
        admin_headers = {"Authorization": f"Bearer {create_token(1, 'admin')}"}
        resp = client.post(
            "/api/notifications/broadcast",
            json={"type": "system", "title": "T", "message": "M", "targetRole": "student"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["count"] == 1

    def test_create_for_unknown_user_404(self, client):
        staff_headers = {"Authorization": f"Bearer {create_token(1, 'staff')}"}
        resp = client.post(
            "/api/notifications/create",
            json={"userId": 9999, "type": "system", "title": "Hi", "message": "Yo"},
            headers=staff_headers,
        )
        assert resp.status_code == 404
        assert resp.json() == {"error": "User not found"}
