"""
Order service: order placement paid from the wallet, and kitchen status tracking.

Placement debits the wallet and inserts the order inside one
``BEGIN IMMEDIATE`` transaction. The debit is a conditional UPDATE
(``... WHERE wallet_balance_cents >= total``), so concurrent placements
against the same account can never take the balance below zero, and an
order row never exists without its debit.

Status flow: pending -> preparing -> ready -> completed. ``cancelled`` is an
admin-only override from any non-terminal state. Every transition is logged
in order_status_log.
"""

import json
import logging
import random
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Optional

from canteen.database import get_db
from canteen.models.schemas import ORDER_STATUSES, Order, OrderLine, StatusChange
from canteen.services import notification_service
from canteen.services.account_service import AccountNotFoundError
from canteen.services.money import from_cents, parse_amount, to_cents

logger = logging.getLogger(__name__)

NEXT_STATUS = {
    "pending": "preparing",
    "preparing": "ready",
    "ready": "completed",
}

TERMINAL_STATUSES = ("completed", "cancelled")

STATUS_MESSAGES = {
    "preparing": "Your order #{token} is being prepared.",
    "ready": "Your order #{token} is ready for pickup.",
    "completed": "Your order #{token} has been completed.",
    "cancelled": "Your order #{token} has been cancelled.",
}


class OrderValidationError(ValueError):
    """Malformed order request."""
    pass


class InsufficientFundsError(ValueError):
    """Wallet balance is lower than the order total."""
    pass


class OrderNotFoundError(LookupError):
    pass


class InvalidTransitionError(ValueError):
    """Requested status change is not allowed from the current status."""
    pass


class TransitionForbiddenError(Exception):
    """Caller's role may not perform this transition."""
    pass


def parse_order_lines(items) -> list[OrderLine]:
    """
    Validate the submitted line items.

    Raises:
        OrderValidationError: empty list, or a line without name / positive price / quantity >= 1.
    """
    if not isinstance(items, list) or not items:
        raise OrderValidationError("Order must contain at least one item")

    lines = []
    for raw in items:
        if not isinstance(raw, dict):
            raise OrderValidationError("Invalid order item")
        name = raw.get("name")
        if not name or not isinstance(name, str):
            raise OrderValidationError("Each item needs a name")
        try:
            price = parse_amount(raw.get("price"))
        except ValueError:
            raise OrderValidationError(f"Invalid price for {name}")
        if price <= 0:
            raise OrderValidationError(f"Invalid price for {name}")
        quantity = raw.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise OrderValidationError(f"Invalid quantity for {name}")
        lines.append(OrderLine(name=name, price=price, quantity=quantity))
    return lines


def _lines_to_json(lines: list[OrderLine]) -> str:
    return json.dumps([
        {"name": l.name, "price": float(l.price), "quantity": l.quantity}
        for l in lines
    ])


def _row_to_order(row: sqlite3.Row) -> Order:
    lines = [
        OrderLine(name=i["name"], price=parse_amount(i["price"]), quantity=i["quantity"])
        for i in json.loads(row["items"])
    ]
    return Order(
        id=row["id"],
        account_id=row["account_id"],
        items=lines,
        total_amount=from_cents(row["total_cents"]),
        token_number=row["token_number"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "user_id": order.account_id,
        "items": [
            {"name": l.name, "price": float(l.price), "quantity": l.quantity}
            for l in order.items
        ],
        "total_amount": float(order.total_amount),
        "token_number": order.token_number,
        "status": order.status,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


class OrderService:
    """Order placement and status tracking."""

    @staticmethod
    def generate_token_number() -> int:
        """Four-digit display number for the kitchen screen. Not unique."""
        return random.randint(1000, 9999)

    def place_order(self, account_id: int, items, total_amount) -> Order:
        """
        Place an order and debit the wallet in one transaction.

        The claimed total must match the submitted lines; it is not re-priced
        against the catalog.

        Raises:
            OrderValidationError: bad items or total.
            InsufficientFundsError: balance below the total.
            AccountNotFoundError: account no longer exists.
        """
        lines = parse_order_lines(items)
        try:
            total = parse_amount(total_amount)
        except ValueError:
            raise OrderValidationError("Invalid total amount")
        if total <= 0:
            raise OrderValidationError("Total amount must be greater than 0")

        line_sum = sum((l.price * l.quantity for l in lines), Decimal("0"))
        if line_sum != total:
            raise OrderValidationError("Total amount does not match order items")

        total_cents = to_cents(total)
        token_number = self.generate_token_number()
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            db.execute("BEGIN IMMEDIATE")

            cursor = db.execute(
                """UPDATE accounts
                   SET wallet_balance_cents = wallet_balance_cents - ?
                   WHERE id = ? AND wallet_balance_cents >= ?""",
                (total_cents, account_id, total_cents),
            )
            if cursor.rowcount == 0:
                exists = db.execute(
                    "SELECT 1 FROM accounts WHERE id = ?", (account_id,)
                ).fetchone()
                if not exists:
                    raise AccountNotFoundError("User not found")
                raise InsufficientFundsError("Insufficient wallet balance")

            cursor = db.execute(
                """INSERT INTO orders
                   (account_id, items, total_cents, token_number, status, created_at)
                   VALUES (?, ?, ?, ?, 'pending', ?)""",
                (account_id, _lines_to_json(lines), total_cents, token_number, now),
            )
            order_id = cursor.lastrowid

            balance_cents = db.execute(
                "SELECT wallet_balance_cents FROM accounts WHERE id = ?",
                (account_id,),
            ).fetchone()["wallet_balance_cents"]

            db.execute(
                """INSERT INTO wallet_transactions
                   (account_id, type, amount_cents, balance_after_cents,
                    order_id, performed_by, description, created_at)
                   VALUES (?, 'debit', ?, ?, ?, ?, ?, ?)""",
                (account_id, total_cents, balance_cents, order_id, account_id,
                 f"Order #{token_number}", now),
            )
            db.execute(
                """INSERT INTO order_status_log
                   (order_id, from_status, to_status, changed_by, created_at)
                   VALUES (?, NULL, 'pending', ?, ?)""",
                (order_id, account_id, now),
            )
            db.commit()
        except InsufficientFundsError:
            db.rollback()
            logger.warning(
                "Order rejected, insufficient balance: account=%d total=%s",
                account_id, total,
            )
            raise
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "Order placed: id=%d account=%d token=%d total=%s",
            order_id, account_id, token_number, total,
        )
        return Order(
            id=order_id,
            account_id=account_id,
            items=lines,
            total_amount=total,
            token_number=token_number,
            status="pending",
            created_at=now,
        )

    def get_order(self, order_id: int) -> Order:
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM orders WHERE id = ?", (order_id,)
            ).fetchone()
        finally:
            db.close()
        if not row:
            raise OrderNotFoundError("Order not found")
        return _row_to_order(row)

    def list_for_account(self, account_id: int) -> list[dict]:
        """Orders owned by an account, newest first."""
        db = get_db()
        try:
            rows = db.execute(
                """SELECT * FROM orders WHERE account_id = ?
                   ORDER BY created_at DESC, id DESC""",
                (account_id,),
            ).fetchall()
        finally:
            db.close()
        return [order_to_dict(_row_to_order(r)) for r in rows]

    def list_all(self, status: Optional[str] = None) -> list[dict]:
        """
        All orders with the owner's name and student ID, newest first.

        Raises:
            OrderValidationError: unknown status filter.
        """
        where, params = "", []
        if status:
            if status not in ORDER_STATUSES:
                raise OrderValidationError(f"Invalid status: {status}")
            where, params = "WHERE o.status = ?", [status]

        db = get_db()
        try:
            rows = db.execute(
                f"""SELECT o.*, a.name AS user_name, a.student_id AS user_student_id
                    FROM orders o
                    JOIN accounts a ON a.id = o.account_id
                    {where}
                    ORDER BY o.created_at DESC, o.id DESC""",
                params,
            ).fetchall()
        finally:
            db.close()

        result = []
        for r in rows:
            d = order_to_dict(_row_to_order(r))
            d["users"] = {"name": r["user_name"], "student_id": r["user_student_id"]}
            result.append(d)
        return result

    def update_status(self, order_id: int, new_status: str, actor_id: int, actor_role: str) -> Order:
        """
        Move an order to ``new_status``.

        Staff and admins may advance one step along the flow; only admins may
        cancel, and only from a non-terminal status. The UPDATE is conditional
        on the status that was read, so racing updates cannot both apply.

        Raises:
            TransitionForbiddenError: caller is not staff/admin, or non-admin cancel.
            OrderNotFoundError: unknown order.
            InvalidTransitionError: transition not allowed from the current status.
        """
        if actor_role not in ("staff", "admin"):
            raise TransitionForbiddenError("Staff or Admin access required")
        if new_status not in ORDER_STATUSES:
            raise InvalidTransitionError(f"Invalid status: {new_status}")
        if new_status == "cancelled" and actor_role != "admin":
            raise TransitionForbiddenError("Admin access required")

        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute("BEGIN IMMEDIATE")
            row = db.execute(
                "SELECT * FROM orders WHERE id = ?", (order_id,)
            ).fetchone()
            if not row:
                raise OrderNotFoundError("Order not found")

            current = row["status"]
            if new_status == "cancelled":
                allowed = current not in TERMINAL_STATUSES
            else:
                allowed = NEXT_STATUS.get(current) == new_status
            if not allowed:
                raise InvalidTransitionError(
                    f"Cannot change order status from {current} to {new_status}"
                )

            cursor = db.execute(
                """UPDATE orders SET status = ?, updated_at = ?
                   WHERE id = ? AND status = ?""",
                (new_status, now, order_id, current),
            )
            if cursor.rowcount == 0:
                raise InvalidTransitionError("Order status changed concurrently, please retry")

            db.execute(
                """INSERT INTO order_status_log
                   (order_id, from_status, to_status, changed_by, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (order_id, current, new_status, actor_id, now),
            )
            notification_service.push(
                db,
                row["account_id"],
                "order",
                f"Order {new_status}",
                STATUS_MESSAGES[new_status].format(token=row["token_number"]),
                {"order_id": order_id, "status": new_status},
            )
            db.commit()

            updated = db.execute(
                "SELECT * FROM orders WHERE id = ?", (order_id,)
            ).fetchone()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "Order %d: %s -> %s by account %d", order_id, current, new_status, actor_id
        )
        return _row_to_order(updated)

    def status_history(self, order_id: int) -> list[StatusChange]:
        db = get_db()
        try:
            rows = db.execute(
                """SELECT * FROM order_status_log WHERE order_id = ?
                   ORDER BY id ASC""",
                (order_id,),
            ).fetchall()
        finally:
            db.close()
        return [
            StatusChange(
                order_id=r["order_id"],
                from_status=r["from_status"],
                to_status=r["to_status"],
                changed_by=r["changed_by"],
                created_at=r["created_at"],
            )
            for r in rows
        ]
