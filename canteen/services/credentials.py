"""
Credential resolver: turns a login payload into an authenticated identity.

Three kinds of login are accepted:

- a structured QR payload (JSON carrying ``"type": "canteen_login"`` and a
  ``studentId``), checked against the account's bcrypt hash;
- a legacy QR string matched verbatim against ``accounts.qr_code``;
- a student ID / password pair.

Accounts without a usable hash (demo accounts) can still log in through the
legacy QR and student ID paths when the password appears in the demo tables
configured via ``DEMO_QR_PINS`` / ``DEMO_PASSWORDS``. Those tables are a
convenience for demos, not a security boundary.

Every failure raises the same AuthenticationError so callers cannot tell an
unknown account from a wrong secret.
"""

import hmac
import json
import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from canteen.database import get_db
from canteen.services.account_service import public_user, row_to_account
from canteen.services.auth import (
    RESET_TOKEN,
    RESET_TOKEN_EXPIRE_HOURS,
    check_secret_length,
    create_reset_token,
    create_token,
    hash_password,
    verify_password,
    verify_token,
)

logger = logging.getLogger(__name__)

LOGIN_MARKER = "canteen_login"
GENERIC_LOGIN_ERROR = "Invalid credentials"


class AuthenticationError(Exception):
    """Login rejected. The message never says which part was wrong."""

    def __init__(self):
        super().__init__(GENERIC_LOGIN_ERROR)


class MissingCredentialsError(ValueError):
    """Required login fields were not supplied."""
    pass


class ResetTokenError(ValueError):
    """Password reset token is invalid, expired or already used."""
    pass


# ── Login payload decoding ─────────────────────────────────


@dataclass(frozen=True)
class LegacyToken:
    value: str


@dataclass(frozen=True)
class StructuredCredential:
    code: str
    secret: Optional[str] = None
    issued_at: Optional[str] = None


LoginToken = Union[LegacyToken, StructuredCredential]


def decode_login_token(raw: str) -> LoginToken:
    """Decode a scanned QR string into a StructuredCredential or a LegacyToken."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return LegacyToken(raw)

    if not isinstance(payload, dict) or payload.get("type") != LOGIN_MARKER:
        return LegacyToken(raw)

    code = payload.get("studentId")
    if not isinstance(code, str) or not code:
        return LegacyToken(raw)

    secret = payload.get("pin")
    return StructuredCredential(
        code=code,
        secret=str(secret) if secret is not None else None,
        issued_at=payload.get("issuedAt"),
    )


def encode_structured_payload(student_id: str) -> str:
    """Build the JSON QR payload for an account (the PIN is never embedded here)."""
    return json.dumps({
        "type": LOGIN_MARKER,
        "studentId": student_id,
        "issuedAt": datetime.now(timezone.utc).isoformat(timespec="seconds"),
    })


def load_demo_secrets(env_name: str) -> dict[str, str]:
    """Read a demo secret table (JSON object) from the environment; empty if unset."""
    raw = os.getenv(env_name, "")
    if not raw:
        return {}
    try:
        table = json.loads(raw)
    except ValueError:
        logger.warning("%s is not valid JSON, demo logins disabled", env_name)
        return {}
    if not isinstance(table, dict):
        logger.warning("%s must be a JSON object, demo logins disabled", env_name)
        return {}
    return {str(k): str(v) for k, v in table.items()}


# ── Resolver ───────────────────────────────────────────────


class CredentialResolver:
    """Validates login payloads and issues bearer tokens."""

    def login_with_qr(self, qr_code: str, pin: Optional[str]) -> dict:
        """
        QR + PIN login.

        Returns:
            {"token": ..., "user": {...}}

        Raises:
            MissingCredentialsError: no QR code, or no PIN anywhere.
            AuthenticationError: unknown code or wrong PIN.
        """
        if not qr_code:
            raise MissingCredentialsError("QR Code and PIN are required")

        token = decode_login_token(qr_code)

        if isinstance(token, StructuredCredential):
            secret = pin or token.secret
            if not secret:
                raise MissingCredentialsError("QR Code and PIN are required")
            row = self._find_account("student_id", token.code)
            if not row or not self._check_hash(row, secret):
                raise AuthenticationError()
            return self._issue(row, "structured-qr")

        if not pin:
            raise MissingCredentialsError("QR Code and PIN are required")
        row = self._find_account("qr_code", token.value)
        if not row or not self._check_secret(row, pin, token.value, "DEMO_QR_PINS"):
            raise AuthenticationError()
        return self._issue(row, "legacy-qr")

    def login_with_student_id(self, student_id: str, password: str) -> dict:
        """Student ID + password login. Same results and errors as login_with_qr."""
        if not student_id or not password:
            raise MissingCredentialsError("Student ID and password are required")

        row = self._find_account("student_id", student_id)
        if not row or not self._check_secret(row, password, student_id, "DEMO_PASSWORDS"):
            raise AuthenticationError()
        return self._issue(row, "student-id")

    @staticmethod
    def _find_account(column: str, value: str) -> Optional[sqlite3.Row]:
        db = get_db()
        try:
            return db.execute(
                f"SELECT * FROM accounts WHERE {column} = ?", (value,)
            ).fetchone()
        finally:
            db.close()

    @staticmethod
    def _check_hash(row: sqlite3.Row, secret: str) -> bool:
        try:
            return verify_password(secret, row["pin_hash"])
        except ValueError:
            return False

    @staticmethod
    def _check_secret(row: sqlite3.Row, secret: str, demo_key: str, demo_env: str) -> bool:
        try:
            return verify_password(secret, row["pin_hash"])
        except ValueError:
            expected = load_demo_secrets(demo_env).get(demo_key)
            if expected is None:
                return False
            logger.warning("Demo credential fallback used for account %d", row["id"])
            return hmac.compare_digest(expected.encode("utf-8"), secret.encode("utf-8"))

    @staticmethod
    def _issue(row: sqlite3.Row, method: str) -> dict:
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                "UPDATE accounts SET last_login = ? WHERE id = ?", (now, row["id"])
            )
            db.commit()
        finally:
            db.close()

        account = row_to_account(row)
        account.last_login = now
        logger.info("Login ok: account=%d role=%s via %s", account.id, account.role, method)
        return {
            "token": create_token(account.id, account.role),
            "user": public_user(account),
        }

    # ── Password reset ─────────────────────────────────────

    def request_password_reset(
        self, student_id: Optional[str] = None, email: Optional[str] = None
    ) -> Optional[str]:
        """
        Create a one-hour reset token for the matching account.

        Returns:
            The token, or None when no account matches (callers must answer identically).

        Raises:
            MissingCredentialsError: neither student ID nor email given.
        """
        if not student_id and not email:
            raise MissingCredentialsError("Student ID or email is required")

        column, value = ("student_id", student_id) if student_id else ("email", email)
        row = self._find_account(column, value)
        if not row:
            return None

        token = create_reset_token(row["id"])
        expires_at = (
            datetime.now() + timedelta(hours=RESET_TOKEN_EXPIRE_HOURS)
        ).strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            db.execute(
                """INSERT INTO password_reset_tokens (account_id, token, expires_at)
                   VALUES (?, ?, ?)""",
                (row["id"], token, expires_at),
            )
            db.commit()
        finally:
            db.close()
        logger.info("Password reset requested for account %d", row["id"])
        return token

    def reset_password(self, token: str, new_password: str) -> None:
        """
        Consume a reset token and store the new password hash.

        Raises:
            MissingCredentialsError: token or new password missing.
            ResetTokenError: token invalid, expired or already used, or the new password is too long.
        """
        if not token or not new_password:
            raise MissingCredentialsError("Token and new password are required")
        try:
            check_secret_length(new_password)
        except ValueError as e:
            raise ResetTokenError(str(e))

        try:
            payload = verify_token(token, expected_type=RESET_TOKEN)
        except ValueError:
            raise ResetTokenError("Invalid or expired reset token")

        account_id = int(payload["sub"])
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            record = db.execute(
                """SELECT id FROM password_reset_tokens
                   WHERE account_id = ? AND token = ? AND expires_at > ?""",
                (account_id, token, now),
            ).fetchone()
            if not record:
                raise ResetTokenError("Invalid or expired reset token")

            db.execute(
                "UPDATE accounts SET pin_hash = ? WHERE id = ?",
                (hash_password(new_password), account_id),
            )
            db.execute("DELETE FROM password_reset_tokens WHERE id = ?", (record["id"],))
            db.commit()
        finally:
            db.close()
        logger.info("Password reset for account %d", account_id)

    def purge_expired_reset_tokens(self) -> int:
        """Delete reset tokens past their expiry. Returns the number removed."""
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cur = db.execute(
                "DELETE FROM password_reset_tokens WHERE expires_at <= ?", (now,)
            )
            db.commit()
        finally:
            db.close()
        if cur.rowcount:
            logger.info("Purged %d expired reset tokens", cur.rowcount)
        return cur.rowcount
