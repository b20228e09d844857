"""
Wallet service: balance lookups, admin recharge and the transaction ledger.

Balances live in accounts.wallet_balance_cents. Every change is a single
relative UPDATE (never read-modify-write) recorded in wallet_transactions in
the same transaction.
"""

import logging
from datetime import datetime
from decimal import Decimal

from canteen.database import get_db
from canteen.services import notification_service
from canteen.services.account_service import AccountNotFoundError
from canteen.services.money import cents_to_number, from_cents, parse_amount, to_cents

logger = logging.getLogger(__name__)


class InvalidAmountError(ValueError):
    pass


class WalletService:
    """Prepaid wallet operations."""

    def get_balance(self, account_id: int) -> Decimal:
        db = get_db()
        try:
            row = db.execute(
                "SELECT wallet_balance_cents FROM accounts WHERE id = ?",
                (account_id,),
            ).fetchone()
        finally:
            db.close()
        if not row:
            raise AccountNotFoundError("User not found")
        return from_cents(row["wallet_balance_cents"])

    def recharge(self, account_id: int, amount, performed_by: int | None = None) -> Decimal:
        """
        Credit ``amount`` to an account.

        Returns:
            The new balance.

        Raises:
            InvalidAmountError: amount missing, malformed or <= 0.
            AccountNotFoundError: unknown account.
        """
        try:
            value = parse_amount(amount)
        except ValueError as e:
            raise InvalidAmountError(str(e))
        if value <= 0:
            raise InvalidAmountError("Recharge amount must be greater than 0")
        cents = to_cents(value)

        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute("BEGIN IMMEDIATE")
            cursor = db.execute(
                """UPDATE accounts
                   SET wallet_balance_cents = wallet_balance_cents + ?
                   WHERE id = ?""",
                (cents, account_id),
            )
            if cursor.rowcount == 0:
                raise AccountNotFoundError("User not found")

            balance_cents = db.execute(
                "SELECT wallet_balance_cents FROM accounts WHERE id = ?",
                (account_id,),
            ).fetchone()["wallet_balance_cents"]

            db.execute(
                """INSERT INTO wallet_transactions
                   (account_id, type, amount_cents, balance_after_cents,
                    performed_by, description, created_at)
                   VALUES (?, 'recharge', ?, ?, ?, ?, ?)""",
                (account_id, cents, balance_cents, performed_by, "Wallet recharge", now),
            )
            notification_service.push(
                db,
                account_id,
                "wallet",
                "Wallet recharged",
                f"{value:.2f} has been added to your wallet.",
                {"amount": float(value), "balance": cents_to_number(balance_cents)},
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "Wallet recharged: account=%d amount=%s balance=%s",
            account_id, value, from_cents(balance_cents),
        )
        return from_cents(balance_cents)

    def list_transactions(self, account_id: int) -> list[dict]:
        """Ledger entries for an account, newest first."""
        db = get_db()
        try:
            rows = db.execute(
                """SELECT * FROM wallet_transactions
                   WHERE account_id = ?
                   ORDER BY created_at DESC, id DESC""",
                (account_id,),
            ).fetchall()
        finally:
            db.close()
        return [
            {
                "id": r["id"],
                "user_id": r["account_id"],
                "type": r["type"],
                "amount": cents_to_number(r["amount_cents"]),
                "balance_after": cents_to_number(r["balance_after_cents"]),
                "order_id": r["order_id"],
                "performed_by": r["performed_by"],
                "description": r["description"],
                "created_at": r["created_at"],
            }
            for r in rows
        ]
