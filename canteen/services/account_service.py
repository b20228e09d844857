"""Account management service: create, list, update and delete canteen accounts."""

import logging
import sqlite3
import time
from datetime import datetime

from canteen.database import get_db
from canteen.models.schemas import ROLES, Account
from canteen.services.auth import check_secret_length, hash_password
from canteen.services.money import cents_to_number, from_cents

logger = logging.getLogger(__name__)

ACTIVE_ORDER_STATUSES = ("pending", "preparing", "ready")


class AccountNotFoundError(LookupError):
    """No account with the given id."""
    pass


class AccountError(ValueError):
    """Invalid account data or a refused account operation."""
    pass


def row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        name=row["name"],
        role=row["role"],
        student_id=row["student_id"],
        wallet_balance=from_cents(row["wallet_balance_cents"]),
        email=row["email"],
        pin_hash=row["pin_hash"],
        qr_code=row["qr_code"],
        last_login=row["last_login"],
        created_at=row["created_at"],
    )


def public_user(account: Account) -> dict:
    """Account fields that are safe to return to clients."""
    return {
        "id": account.id,
        "name": account.name,
        "role": account.role,
        "student_id": account.student_id,
        "email": account.email,
        "wallet_balance": float(account.wallet_balance),
        "last_login": account.last_login,
        "created_at": account.created_at,
    }


class AccountService:
    """Account administration. Accounts are only ever created by an admin."""

    @staticmethod
    def _legacy_qr_code(student_id: str) -> str:
        return f"CANTEEN_{student_id}_{int(time.time() * 1000)}"

    def create_account(
        self,
        name: str,
        student_id: str,
        pin: str,
        role: str = "student",
        email: str | None = None,
    ) -> Account:
        """
        Create an account with a bcrypt-hashed PIN and a legacy QR login string.

        Raises:
            AccountError: missing fields, unknown role, over-long PIN or duplicate student ID / email.
        """
        if not name or not student_id or not pin:
            raise AccountError("Name, Student ID, and PIN are required")
        if role not in ROLES:
            raise AccountError(f"Invalid role: {role}")
        try:
            check_secret_length(pin)
        except ValueError as e:
            raise AccountError(str(e))

        pin_hash = hash_password(pin)
        qr_code = self._legacy_qr_code(student_id)
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            cursor = db.execute(
                """INSERT INTO accounts
                   (name, role, student_id, email, pin_hash, qr_code,
                    wallet_balance_cents, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, 0, ?)""",
                (name, role, student_id, email, pin_hash, qr_code, now),
            )
            db.commit()
        except sqlite3.IntegrityError as e:
            db.rollback()
            if "email" in str(e):
                raise AccountError("Email already exists") from e
            raise AccountError("Student ID already exists") from e
        finally:
            db.close()

        logger.info("Account created: student_id=%s role=%s", student_id, role)
        return Account(
            id=cursor.lastrowid,
            name=name,
            role=role,
            student_id=student_id,
            email=email,
            pin_hash=pin_hash,
            qr_code=qr_code,
            created_at=now,
        )

    def get_account(self, account_id: int) -> Account:
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        finally:
            db.close()
        if not row:
            raise AccountNotFoundError("User not found")
        return row_to_account(row)

    def list_accounts(self) -> list[dict]:
        """All accounts, newest first."""
        db = get_db()
        try:
            rows = db.execute(
                """SELECT id, name, student_id, role, email,
                          wallet_balance_cents, created_at
                   FROM accounts ORDER BY created_at DESC, id DESC"""
            ).fetchall()
        finally:
            db.close()
        return [
            {
                "id": r["id"],
                "name": r["name"],
                "student_id": r["student_id"],
                "role": r["role"],
                "email": r["email"],
                "wallet_balance": cents_to_number(r["wallet_balance_cents"]),
                "created_at": r["created_at"],
            }
            for r in rows
        ]

    def update_account(self, account_id: int, changes: dict) -> Account:
        """
        Admin edit of name / role / email. Absent keys are left unchanged.

        Raises:
            AccountNotFoundError: unknown account.
            AccountError: invalid role or duplicate email.
        """
        allowed = {k: v for k, v in changes.items() if k in ("name", "role", "email")}
        if "role" in allowed and allowed["role"] not in ROLES:
            raise AccountError(f"Invalid role: {allowed['role']}")
        if "name" in allowed and not allowed["name"]:
            raise AccountError("Name cannot be empty")

        if allowed:
            assignments = ", ".join(f"{k} = ?" for k in allowed)
            db = get_db()
            try:
                cursor = db.execute(
                    f"UPDATE accounts SET {assignments} WHERE id = ?",
                    (*allowed.values(), account_id),
                )
                db.commit()
            except sqlite3.IntegrityError as e:
                db.rollback()
                raise AccountError("Email already exists") from e
            finally:
                db.close()
            if cursor.rowcount == 0:
                raise AccountNotFoundError("User not found")
            if "role" in allowed:
                logger.info("Account %d role changed to %s", account_id, allowed["role"])

        return self.get_account(account_id)

    def delete_account(self, account_id: int) -> None:
        """
        Delete an account together with its finished orders and wallet history.

        Raises:
            AccountNotFoundError: unknown account.
            AccountError: the account still owns pending/preparing/ready orders.
        """
        placeholders = ", ".join("?" for _ in ACTIVE_ORDER_STATUSES)
        db = get_db()
        try:
            db.execute("BEGIN IMMEDIATE")
            row = db.execute(
                "SELECT id FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
            if not row:
                raise AccountNotFoundError("User not found")

            active = db.execute(
                f"""SELECT COUNT(*) AS cnt FROM orders
                    WHERE account_id = ? AND status IN ({placeholders})""",
                (account_id, *ACTIVE_ORDER_STATUSES),
            ).fetchone()["cnt"]
            if active:
                raise AccountError("Cannot delete user with active orders")

            db.execute("DELETE FROM wallet_transactions WHERE account_id = ?", (account_id,))
            db.execute(
                """DELETE FROM order_status_log
                   WHERE order_id IN (SELECT id FROM orders WHERE account_id = ?)""",
                (account_id,),
            )
            db.execute("DELETE FROM orders WHERE account_id = ?", (account_id,))
            db.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        logger.info("Account %d deleted", account_id)
