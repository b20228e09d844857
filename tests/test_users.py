"""Account service and user administration route tests."""

import json
import os
import tempfile

import pytest
from fastapi.testclient import TestClient

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="users_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name
os.environ["JWT_SECRET"] = "test-secret-key"

import canteen.database as _db_mod
from canteen.database import drop_all, get_db, init_db
from canteen.main import app
from canteen.services.account_service import (
    AccountError,
    AccountNotFoundError,
    AccountService,
)
from canteen.services.auth import create_token, verify_password
from canteen.services.order_service import OrderService
from canteen.services.wallet_service import WalletService


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
    return AccountService()


@pytest.fixture
def admin_headers():
    conn = get_db()
    admin_id = conn.execute("SELECT id FROM accounts WHERE role = 'admin'").fetchone()["id"]
    conn.close()
    return {"Authorization": f"Bearer {create_token(admin_id, 'admin')}"}


class TestAccountService:

    def test_create_hashes_pin_and_generates_qr(self, svc):
        account = svc.create_account("Tara", "S6001", "1234")
        assert account.role == "student"
        assert verify_password("1234", account.pin_hash)
        assert account.qr_code.startswith("CANTEEN_S6001_")

    def test_duplicate_student_id(self, svc):
        svc.create_account("Tara", "S6001", "1234")
        with pytest.raises(AccountError, match="Student ID already exists"):
            svc.create_account("Tara Two", "S6001", "5678")

    def test_duplicate_email(self, svc):
        svc.create_account("Tara", "S6001", "1234", email="t@example.com")
        with pytest.raises(AccountError, match="Email already exists"):
            svc.create_account("Uma", "S6002", "1234", email="t@example.com")

    def test_overlong_pin_rejected(self, svc):
        with pytest.raises(AccountError, match="72 bytes"):
            svc.create_account("Tara", "S6001", "p" * 100)

    def test_invalid_role(self, svc):
        with pytest.raises(AccountError):
            svc.create_account("Tara", "S6001", "1234", role="chef")

    def test_update_ignores_unknown_fields(self, svc):
        account = svc.create_account("Tara", "S6001", "1234")
        updated = svc.update_account(
            account.id, {"role": "staff", "wallet_balance_cents": 99999}
        )
        assert updated.role == "staff"
        assert updated.wallet_balance == 0

    def test_update_unknown(self, svc):
        with pytest.raises(AccountNotFoundError):
            svc.update_account(9999, {"name": "Ghost"})

    def test_delete_refused_with_active_orders(self, svc):
        account = svc.create_account("Tara", "S6001", "1234")
        WalletService().recharge(account.id, "10")
        OrderService().place_order(account.id, [{"name": "Tea", "price": 5}], 5)
        with pytest.raises(AccountError, match="active orders"):
            svc.delete_account(account.id)
        assert svc.get_account(account.id).name == "Tara"

    def test_delete_with_finished_orders(self, svc):
        account = svc.create_account("Tara", "S6001", "1234")
        WalletService().recharge(account.id, "10")
        order = OrderService().place_order(account.id, [{"name": "Tea", "price": 5}], 5)
        OrderService().update_status(order.id, "cancelled", 1, "admin")
        svc.delete_account(account.id)
        with pytest.raises(AccountNotFoundError):
            svc.get_account(account.id)


class TestUserRoutes:

    def test_create_and_list(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={"name": "Tara", "studentId": "S6001", "pin": 1234},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json()["qr_code"].startswith("CANTEEN_S6001_")

        resp = client.get("/api/users", headers=admin_headers)
        students = {u["student_id"] for u in resp.json()}
        assert "S6001" in students
        assert len(students) == 2

    def test_create_missing_fields(self, client, admin_headers):
        resp = client.post("/api/users", json={"name": "Tara"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Name, Student ID, and PIN are required"}

    def test_create_overlong_pin_400(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={"name": "Tara", "studentId": "S6001", "pin": "p" * 100},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert "72 bytes" in resp.json()["error"]

    def test_profile(self, client, svc):
        account = svc.create_account("Tara", "S6001", "1234")
        headers = {"Authorization": f"Bearer {create_token(account.id, 'student')}"}
        resp = client.get("/api/users/profile", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "Tara"
        assert "pin_hash" not in body

    def test_cannot_delete_self(self, client, admin_headers):
        conn = get_db()
        admin_id = conn.execute("SELECT id FROM accounts WHERE role = 'admin'").fetchone()["id"]
        conn.close()
        resp = client.delete(f"/api/users/{admin_id}", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Cannot delete your own account"}

    def test_update_route(self, client, svc, admin_headers):
        account = svc.create_account("Tara", "S6001", "1234")
        resp = client.put(
            f"/api/users/{account.id}", json={"role": "staff"}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "staff"

    def test_qr_view_self_and_others(self, client, svc):
        tara = svc.create_account("Tara", "S6001", "1234")
        uma = svc.create_account("Uma", "S6002", "1234")
        headers = {"Authorization": f"Bearer {create_token(tara.id, 'student')}"}

        resp = client.get(f"/api/users/{tara.id}/qr", headers=headers)
        assert resp.status_code == 200
        payload = json.loads(resp.json()["loginPayload"])
        assert payload["type"] == "canteen_login"
        assert payload["studentId"] == "S6001"

        resp = client.get(f"/api/users/{uma.id}/qr", headers=headers)
        assert resp.status_code == 403
