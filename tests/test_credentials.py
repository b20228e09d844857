"""Login payload decoding, QR / student ID login and password reset tests."""

import json
import os
import tempfile

import pytest
from fastapi.testclient import TestClient

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="credentials_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name
os.environ["JWT_SECRET"] = "test-secret-key"

import canteen.database as _db_mod
from canteen.database import drop_all, get_db, init_db
from canteen.main import app
from canteen.services.account_service import AccountService
from canteen.services.auth import verify_token
from canteen.services.credentials import (
    GENERIC_LOGIN_ERROR,
    AuthenticationError,
    CredentialResolver,
    LegacyToken,
    MissingCredentialsError,
    ResetTokenError,
    StructuredCredential,
    decode_login_token,
    encode_structured_payload,
)


@pytest.fixture(autouse=True)
def _setup_db(monkeypatch):
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    monkeypatch.delenv("DEMO_QR_PINS", raising=False)
    monkeypatch.delenv("DEMO_PASSWORDS", raising=False)
    monkeypatch.delenv("EXPOSE_RESET_TOKEN", raising=False)
    conn = get_db()
    drop_all(conn)
    conn.close()
    init_db()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def resolver():
    return CredentialResolver()


@pytest.fixture
def student():
    return AccountService().create_account("Asha", "S1001", "1234", email="asha@example.com")


def _insert_demo_account(student_id: str, qr_code: str):
    conn = get_db()
    conn.execute(
        """INSERT INTO accounts (name, role, student_id, qr_code)
           VALUES ('Demo', 'student', ?, ?)""",
        (student_id, qr_code),
    )
    conn.commit()
    conn.close()


class TestDecodeLoginToken:

    def test_plain_string_is_legacy(self):
        assert decode_login_token("CANTEEN_S1001_1700000000000") == LegacyToken(
            "CANTEEN_S1001_1700000000000"
        )

    def test_structured_payload(self):
        raw = json.dumps({
            "type": "canteen_login", "studentId": "S1001",
            "pin": 1234, "issuedAt": "2024-01-01T00:00:00+00:00",
        })
        token = decode_login_token(raw)
        assert token == StructuredCredential(
            code="S1001", secret="1234", issued_at="2024-01-01T00:00:00+00:00"
        )

    def test_json_without_marker_is_legacy(self):
        raw = json.dumps({"studentId": "S1001"})
        assert decode_login_token(raw) == LegacyToken(raw)

    def test_json_non_object_is_legacy(self):
        assert decode_login_token("[1, 2]") == LegacyToken("[1, 2]")

    def test_marker_without_student_id_is_legacy(self):
        raw = json.dumps({"type": "canteen_login"})
        assert isinstance(decode_login_token(raw), LegacyToken)

    def test_encoded_payload_decodes_without_secret(self):
        token = decode_login_token(encode_structured_payload("S1001"))
        assert isinstance(token, StructuredCredential)
        assert token.code == "S1001"
        assert token.secret is None


class TestQrLogin:

    def test_legacy_qr_with_correct_pin(self, resolver, student):
        result = resolver.login_with_qr(student.qr_code, "1234")
        payload = verify_token(result["token"])
        assert payload["sub"] == str(student.id)
        assert payload["role"] == "student"
        assert result["user"]["student_id"] == "S1001"
        assert "pin_hash" not in result["user"]

    def test_login_updates_last_login(self, resolver, student):
        result = resolver.login_with_qr(student.qr_code, "1234")
        assert result["user"]["last_login"] is not None
        assert AccountService().get_account(student.id).last_login is not None

    def test_structured_qr_with_request_pin(self, resolver, student):
        raw = encode_structured_payload("S1001")
        result = resolver.login_with_qr(raw, "1234")
        assert result["user"]["id"] == student.id

    def test_structured_qr_with_embedded_pin(self, resolver, student):
        raw = json.dumps({"type": "canteen_login", "studentId": "S1001", "pin": "1234"})
        result = resolver.login_with_qr(raw, None)
        assert result["user"]["id"] == student.id

    def test_structured_qr_requires_some_pin(self, resolver, student):
        with pytest.raises(MissingCredentialsError):
            resolver.login_with_qr(encode_structured_payload("S1001"), None)

    def test_wrong_pin_and_unknown_code_are_indistinguishable(self, resolver, student):
        with pytest.raises(AuthenticationError) as wrong:
            resolver.login_with_qr(student.qr_code, "0000")
        with pytest.raises(AuthenticationError) as unknown:
            resolver.login_with_qr("CANTEEN_NOPE_1", "1234")
        assert str(wrong.value) == str(unknown.value) == GENERIC_LOGIN_ERROR

    def test_missing_fields(self, resolver):
        with pytest.raises(MissingCredentialsError):
            resolver.login_with_qr("", "1234")
        with pytest.raises(MissingCredentialsError):
            resolver.login_with_qr("CANTEEN_X_1", "")

    def test_demo_fallback_for_account_without_hash(self, resolver, monkeypatch):
        _insert_demo_account("DEMO_STUDENT", "DEMO_STUDENT")
        monkeypatch.setenv("DEMO_QR_PINS", json.dumps({"DEMO_STUDENT": "1234"}))
        result = resolver.login_with_qr("DEMO_STUDENT", "1234")
        assert result["user"]["student_id"] == "DEMO_STUDENT"

        with pytest.raises(AuthenticationError):
            resolver.login_with_qr("DEMO_STUDENT", "9999")

    def test_demo_fallback_disabled_by_default(self, resolver):
        _insert_demo_account("DEMO_STUDENT", "DEMO_STUDENT")
        with pytest.raises(AuthenticationError):
            resolver.login_with_qr("DEMO_STUDENT", "1234")

    def test_demo_table_ignored_for_hashed_accounts(self, resolver, student, monkeypatch):
        monkeypatch.setenv("DEMO_QR_PINS", json.dumps({student.qr_code: "9999"}))
        with pytest.raises(AuthenticationError):
            resolver.login_with_qr(student.qr_code, "9999")

    def test_structured_path_never_uses_demo_table(self, resolver, monkeypatch):
        _insert_demo_account("DEMO_STUDENT", "DEMO_STUDENT")
        monkeypatch.setenv("DEMO_QR_PINS", json.dumps({"DEMO_STUDENT": "1234"}))
        monkeypatch.setenv("DEMO_PASSWORDS", json.dumps({"DEMO_STUDENT": "1234"}))
        with pytest.raises(AuthenticationError):
            resolver.login_with_qr(encode_structured_payload("DEMO_STUDENT"), "1234")

    def test_malformed_demo_table_disables_fallback(self, resolver, monkeypatch):
        _insert_demo_account("DEMO_STUDENT", "DEMO_STUDENT")
        monkeypatch.setenv("DEMO_QR_PINS", "{not json")
        with pytest.raises(AuthenticationError):
            resolver.login_with_qr("DEMO_STUDENT", "1234")


class TestStudentIdLogin:

    def test_correct_password(self, resolver, student):
        result = resolver.login_with_student_id("S1001", "1234")
        assert result["user"]["id"] == student.id

    def test_wrong_password(self, resolver, student):
        with pytest.raises(AuthenticationError):
            resolver.login_with_student_id("S1001", "bad")

    def test_unknown_student(self, resolver):
        with pytest.raises(AuthenticationError):
            resolver.login_with_student_id("NOPE", "1234")

    def test_overlong_password_ignores_demo_table(self, resolver, student, monkeypatch):
        long_secret = "p" * 100
        monkeypatch.setenv("DEMO_PASSWORDS", json.dumps({"S1001": long_secret}))
        with pytest.raises(AuthenticationError):
            resolver.login_with_student_id("S1001", long_secret)

    def test_demo_password_fallback(self, resolver, monkeypatch):
        _insert_demo_account("DEMO_STAFF", "DEMO_STAFF")
        monkeypatch.setenv("DEMO_PASSWORDS", json.dumps({"DEMO_STAFF": "staff123"}))
        result = resolver.login_with_student_id("DEMO_STAFF", "staff123")
        assert result["user"]["student_id"] == "DEMO_STAFF"


class TestLoginRoutes:

    def test_login_success(self, client, student):
        resp = client.post("/api/auth/login", json={"qrCode": student.qr_code, "pin": "1234"})
        assert resp.status_code == 200
        data = resp.json()
        assert "token" in data
        assert data["user"]["name"] == "Asha"

    def test_numeric_pin_accepted(self, client, student):
        resp = client.post("/api/auth/login", json={"qrCode": student.qr_code, "pin": 1234})
        assert resp.status_code == 200

    def test_login_failure_is_generic_401(self, client, student):
        wrong = client.post("/api/auth/login", json={"qrCode": student.qr_code, "pin": "0000"})
        unknown = client.post("/api/auth/login", json={"qrCode": "CANTEEN_X_1", "pin": "1234"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"error": GENERIC_LOGIN_ERROR}

    def test_login_missing_fields_400(self, client):
        resp = client.post("/api/auth/login", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "QR Code and PIN are required"}

    def test_enhanced_login(self, client, student):
        resp = client.post(
            "/api/auth/enhanced-login", json={"studentId": "S1001", "password": "1234"}
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == student.id

    def test_enhanced_login_missing_fields(self, client):
        resp = client.post("/api/auth/enhanced-login", json={"studentId": "S1001"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Student ID and password are required"}


class TestPasswordReset:

    def test_request_for_unknown_account_returns_none(self, resolver):
        assert resolver.request_password_reset(student_id="NOPE") is None

    def test_request_requires_identifier(self, resolver):
        with pytest.raises(MissingCredentialsError):
            resolver.request_password_reset()

    def test_reset_flow(self, resolver, student):
        token = resolver.request_password_reset(email="asha@example.com")
        resolver.reset_password(token, "newpass")

        assert resolver.login_with_student_id("S1001", "newpass")["user"]["id"] == student.id
        with pytest.raises(AuthenticationError):
            resolver.login_with_student_id("S1001", "1234")

    def test_token_is_single_use(self, resolver, student):
        token = resolver.request_password_reset(student_id="S1001")
        resolver.reset_password(token, "newpass")
        with pytest.raises(ResetTokenError):
            resolver.reset_password(token, "again")

    def test_overlong_new_password_rejected(self, resolver, student):
        token = resolver.request_password_reset(student_id="S1001")
        with pytest.raises(ResetTokenError, match="72 bytes"):
            resolver.reset_password(token, "p" * 100)
        resolver.reset_password(token, "newpass")
        assert resolver.login_with_student_id("S1001", "newpass")["user"]["id"] == student.id

    def test_access_token_cannot_reset(self, resolver, student):
        access = resolver.login_with_student_id("S1001", "1234")["token"]
        with pytest.raises(ResetTokenError):
            resolver.reset_password(access, "newpass")

    def test_purge_expired_tokens(self, resolver, student):
        resolver.request_password_reset(student_id="S1001")
        conn = get_db()
        conn.execute(
            "UPDATE password_reset_tokens SET expires_at = '2000-01-01 00:00:00'"
        )
        conn.commit()
        conn.close()
        assert resolver.purge_expired_reset_tokens() == 1
        assert resolver.purge_expired_reset_tokens() == 0

    def test_request_route_same_answer_for_known_and_unknown(self, client, student):
        known = client.post("/api/auth/reset-password-request", json={"studentId": "S1001"})
        unknown = client.post("/api/auth/reset-password-request", json={"studentId": "NOPE"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_request_route_exposes_token_when_enabled(self, client, student, monkeypatch):
        monkeypatch.setenv("EXPOSE_RESET_TOKEN", "1")
        resp = client.post("/api/auth/reset-password-request", json={"studentId": "S1001"})
        token = resp.json()["resetToken"]

        resp = client.post(
            "/api/auth/reset-password", json={"token": token, "newPassword": "fresh"}
        )
        assert resp.status_code == 200
        resp = client.post(
            "/api/auth/enhanced-login", json={"studentId": "S1001", "password": "fresh"}
        )
        assert resp.status_code == 200

    def test_reset_route_rejects_bad_token(self, client):
        resp = client.post(
            "/api/auth/reset-password", json={"token": "junk", "newPassword": "x"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid or expired reset token"}

    def test_reset_route_rejects_overlong_password(self, client, student, monkeypatch):
        monkeypatch.setenv("EXPOSE_RESET_TOKEN", "1")
        resp = client.post("/api/auth/reset-password-request", json={"studentId": "S1001"})
        token = resp.json()["resetToken"]
        resp = client.post(
            "/api/auth/reset-password", json={"token": token, "newPassword": "p" * 100}
        )
        assert resp.status_code == 400
        assert "72 bytes" in resp.json()["error"]
