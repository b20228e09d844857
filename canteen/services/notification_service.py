"""Notification service: per-account inbox, read state, settings and broadcast."""

import json
import logging
import sqlite3
from datetime import datetime
from typing import Optional

from canteen.database import get_db
from canteen.models.schemas import NOTIFICATION_TYPES, ROLES, Notification
from canteen.services.account_service import AccountNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "orderUpdates": True,
    "walletUpdates": True,
    "promotions": True,
    "systemUpdates": True,
}

# notification type -> settings flag that mutes it
_SETTING_FOR_TYPE = {
    "order": "orderUpdates",
    "wallet": "walletUpdates",
    "promotion": "promotions",
    "system": "systemUpdates",
}

FILTERS = ("all", "unread", "order", "wallet", "system")


class NotificationNotFoundError(LookupError):
    pass


def _row_to_notification(row: sqlite3.Row) -> Notification:
    return Notification(
        id=row["id"],
        account_id=row["account_id"],
        type=row["type"],
        title=row["title"],
        message=row["message"],
        data=json.loads(row["data"] or "{}"),
        read=bool(row["is_read"]),
        read_at=row["read_at"],
        created_at=row["created_at"],
    )


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "user_id": n.account_id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "data": n.data,
        "read": n.read,
        "read_at": n.read_at,
        "created_at": n.created_at,
    }


def load_settings(db: sqlite3.Connection, account_id: int) -> dict:
    row = db.execute(
        "SELECT settings FROM notification_settings WHERE account_id = ?",
        (account_id,),
    ).fetchone()
    if not row:
        return dict(DEFAULT_SETTINGS)
    return {**DEFAULT_SETTINGS, **json.loads(row["settings"])}


def push(
    db: sqlite3.Connection,
    account_id: int,
    type_: str,
    title: str,
    message: str,
    data: Optional[dict] = None,
) -> bool:
    """
    Insert a notification on an open connection (caller commits).

    Skipped when the account has muted this notification type.
    Returns True when a row was written.
    """
    flag = _SETTING_FOR_TYPE.get(type_)
    if flag and not load_settings(db, account_id).get(flag, True):
        return False
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    db.execute(
        """INSERT INTO notifications (account_id, type, title, message, data, created_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (account_id, type_, title, message, json.dumps(data or {}), now),
    )
    return True


class NotificationService:
    """Inbox operations scoped to the calling account."""

    def list_for_account(self, account_id: int, filter_: str = "all") -> list[dict]:
        conditions = ["account_id = ?"]
        params: list = [account_id]
        if filter_ == "unread":
            conditions.append("is_read = 0")
        elif filter_ in ("order", "wallet", "system"):
            conditions.append("type = ?")
            params.append(filter_)

        db = get_db()
        try:
            rows = db.execute(
                f"""SELECT * FROM notifications
                    WHERE {' AND '.join(conditions)}
                    ORDER BY created_at DESC, id DESC""",
                params,
            ).fetchall()
        finally:
            db.close()
        return [notification_to_dict(_row_to_notification(r)) for r in rows]

    def mark_read(self, account_id: int, notification_id: int) -> dict:
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """UPDATE notifications SET is_read = 1, read_at = ?
                   WHERE id = ? AND account_id = ?""",
                (now, notification_id, account_id),
            )
            db.commit()
            if cursor.rowcount == 0:
                raise NotificationNotFoundError("Notification not found")
            row = db.execute(
                "SELECT * FROM notifications WHERE id = ?", (notification_id,)
            ).fetchone()
        finally:
            db.close()
        return notification_to_dict(_row_to_notification(row))

    def mark_all_read(self, account_id: int) -> int:
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """UPDATE notifications SET is_read = 1, read_at = ?
                   WHERE account_id = ? AND is_read = 0""",
                (now, account_id),
            )
            db.commit()
            return cursor.rowcount
        finally:
            db.close()

    def delete(self, account_id: int, notification_id: int) -> None:
        db = get_db()
        try:
            cursor = db.execute(
                "DELETE FROM notifications WHERE id = ? AND account_id = ?",
                (notification_id, account_id),
            )
            db.commit()
        finally:
            db.close()
        if cursor.rowcount == 0:
            raise NotificationNotFoundError("Notification not found")

    def get_settings(self, account_id: int) -> dict:
        db = get_db()
        try:
            return load_settings(db, account_id)
        finally:
            db.close()

    def update_settings(self, account_id: int, settings: dict) -> dict:
        """Merge known boolean flags into the stored settings document."""
        db = get_db()
        try:
            merged = load_settings(db, account_id)
            for key in DEFAULT_SETTINGS:
                if key in settings:
                    merged[key] = bool(settings[key])
            now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            db.execute(
                """INSERT INTO notification_settings (account_id, settings, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(account_id) DO UPDATE
                   SET settings = excluded.settings, updated_at = excluded.updated_at""",
                (account_id, json.dumps(merged), now),
            )
            db.commit()
            return merged
        finally:
            db.close()

    def create(
        self, account_id: int, type_: str, title: str, message: str, data: Optional[dict] = None
    ) -> dict:
        """
        Staff/admin-created notification for one account (ignores mute settings).

        Raises:
            ValueError: missing fields or unknown type.
            AccountNotFoundError: unknown account.
        """
        if not account_id or not type_ or not title or not message:
            raise ValueError("Missing required fields")
        if type_ not in NOTIFICATION_TYPES:
            raise ValueError(f"Invalid notification type: {type_}")
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """INSERT INTO notifications (account_id, type, title, message, data, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (account_id, type_, title, message, json.dumps(data or {}), now),
            )
            db.commit()
            row = db.execute(
                "SELECT * FROM notifications WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        except sqlite3.IntegrityError as e:
            db.rollback()
            raise AccountNotFoundError("User not found") from e
        finally:
            db.close()
        return notification_to_dict(_row_to_notification(row))

    def broadcast(
        self,
        type_: str,
        title: str,
        message: str,
        data: Optional[dict] = None,
        target_role: Optional[str] = None,
    ) -> int:
        """
        Send one notification to every account, or to every account of ``target_role``.

        Returns:
            Number of notifications created.
        """
        if not type_ or not title or not message:
            raise ValueError("Missing required fields")
        if type_ not in NOTIFICATION_TYPES:
            raise ValueError(f"Invalid notification type: {type_}")
        if target_role and target_role != "all" and target_role not in ROLES:
            raise ValueError(f"Invalid target role: {target_role}")

        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        payload = json.dumps(data or {})
        db = get_db()
        try:
            if target_role and target_role != "all":
                rows = db.execute(
                    "SELECT id FROM accounts WHERE role = ?", (target_role,)
                ).fetchall()
            else:
                rows = db.execute("SELECT id FROM accounts").fetchall()
            db.executemany(
                """INSERT INTO notifications (account_id, type, title, message, data, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [(r["id"], type_, title, message, payload, now) for r in rows],
            )
            db.commit()
        finally:
            db.close()
        logger.info("Broadcast '%s' sent to %d accounts", title, len(rows))
        return len(rows)
