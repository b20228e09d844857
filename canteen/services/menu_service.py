"""Menu catalog service: categories and items."""

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from canteen.database import get_db
from canteen.services.money import cents_to_number, parse_amount, to_cents

logger = logging.getLogger(__name__)


class MenuNotFoundError(LookupError):
    pass


class MenuValidationError(ValueError):
    pass


class CategoryInUseError(ValueError):
    """Category still owns items."""
    pass


def _category_dict(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"],
        "is_active": bool(row["is_active"]),
        "created_at": row["created_at"],
    }


def _item_dict(row: sqlite3.Row) -> dict:
    d = {
        "id": row["id"],
        "category_id": row["category_id"],
        "name": row["name"],
        "description": row["description"],
        "price": cents_to_number(row["price_cents"]),
        "image_url": row["image_url"],
        "is_available": bool(row["is_available"]),
        "created_at": row["created_at"],
    }
    if "category_name" in row.keys():
        d["categories"] = {
            "name": row["category_name"],
            "description": row["category_description"],
        }
    return d


def _price_cents(value) -> int:
    try:
        price = parse_amount(value)
    except ValueError:
        raise MenuValidationError("Invalid price")
    if price <= 0:
        raise MenuValidationError("Price must be greater than 0")
    return to_cents(price)


_ITEM_SELECT = """
    SELECT i.*, c.name AS category_name, c.description AS category_description
    FROM items i
    JOIN categories c ON c.id = i.category_id
"""


class MenuService:
    """Category and item CRUD. Writes are admin-only (enforced by the routes)."""

    # ── Categories ─────────────────────────────────────────

    def list_categories(self, include_inactive: bool = False) -> list[dict]:
        where = "" if include_inactive else "WHERE is_active = 1"
        db = get_db()
        try:
            rows = db.execute(
                f"SELECT * FROM categories {where} ORDER BY name"
            ).fetchall()
        finally:
            db.close()
        return [_category_dict(r) for r in rows]

    def get_category(self, category_id: int) -> dict:
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM categories WHERE id = ?", (category_id,)
            ).fetchone()
        finally:
            db.close()
        if not row:
            raise MenuNotFoundError("Category not found")
        return _category_dict(row)

    def create_category(self, name: str, description: Optional[str] = None) -> dict:
        if not name:
            raise MenuValidationError("Category name is required")
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """INSERT INTO categories (name, description, is_active, created_at)
                   VALUES (?, ?, 1, ?)""",
                (name, description, now),
            )
            db.commit()
        except sqlite3.IntegrityError as e:
            db.rollback()
            raise MenuValidationError("Category name already exists") from e
        finally:
            db.close()
        logger.info("Category created: %s", name)
        return self.get_category(cursor.lastrowid)

    def update_category(self, category_id: int, changes: dict) -> dict:
        fields = {}
        if "name" in changes:
            if not changes["name"]:
                raise MenuValidationError("Category name is required")
            fields["name"] = changes["name"]
        if "description" in changes:
            fields["description"] = changes["description"]
        if "is_active" in changes:
            fields["is_active"] = 1 if changes["is_active"] else 0

        if fields:
            assignments = ", ".join(f"{k} = ?" for k in fields)
            db = get_db()
            try:
                cursor = db.execute(
                    f"UPDATE categories SET {assignments} WHERE id = ?",
                    (*fields.values(), category_id),
                )
                db.commit()
            except sqlite3.IntegrityError as e:
                db.rollback()
                raise MenuValidationError("Category name already exists") from e
            finally:
                db.close()
            if cursor.rowcount == 0:
                raise MenuNotFoundError("Category not found")
        return self.get_category(category_id)

    def delete_category(self, category_id: int) -> None:
        """
        Delete an empty category.

        Raises:
            CategoryInUseError: the category still has items.
            MenuNotFoundError: unknown category.
        """
        db = get_db()
        try:
            db.execute("BEGIN IMMEDIATE")
            has_items = db.execute(
                "SELECT 1 FROM items WHERE category_id = ? LIMIT 1", (category_id,)
            ).fetchone()
            if has_items:
                raise CategoryInUseError(
                    "Cannot delete category with existing items. "
                    "Please delete or move items first."
                )
            cursor = db.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            if cursor.rowcount == 0:
                raise MenuNotFoundError("Category not found")
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        logger.info("Category %d deleted", category_id)

    # ── Items ──────────────────────────────────────────────

    def list_items(
        self, category_id: Optional[int] = None, available_only: bool = False
    ) -> list[dict]:
        conditions, params = [], []
        if category_id is not None:
            conditions.append("i.category_id = ?")
            params.append(category_id)
        if available_only:
            conditions.append("i.is_available = 1")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        db = get_db()
        try:
            rows = db.execute(
                f"{_ITEM_SELECT} {where} ORDER BY i.name", params
            ).fetchall()
        finally:
            db.close()
        return [_item_dict(r) for r in rows]

    def get_item(self, item_id: int) -> dict:
        db = get_db()
        try:
            row = db.execute(
                f"{_ITEM_SELECT} WHERE i.id = ?", (item_id,)
            ).fetchone()
        finally:
            db.close()
        if not row:
            raise MenuNotFoundError("Item not found")
        return _item_dict(row)

    def create_item(
        self,
        name: str,
        price,
        category_id: int,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> dict:
        if not name or price is None or not category_id:
            raise MenuValidationError("Name, price, and category are required")
        price_cents = _price_cents(price)

        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """INSERT INTO items
                   (category_id, name, description, price_cents, image_url,
                    is_available, created_at)
                   VALUES (?, ?, ?, ?, ?, 1, ?)""",
                (category_id, name, description, price_cents, image_url, now),
            )
            db.commit()
        except sqlite3.IntegrityError as e:
            db.rollback()
            raise MenuValidationError("Category does not exist") from e
        finally:
            db.close()
        logger.info("Item created: %s (category %d)", name, category_id)
        return self.get_item(cursor.lastrowid)

    def update_item(self, item_id: int, changes: dict) -> dict:
        fields = {}
        for key in ("name", "description", "image_url", "category_id"):
            if key in changes:
                fields[key] = changes[key]
        if "name" in fields and not fields["name"]:
            raise MenuValidationError("Item name is required")
        if "price" in changes:
            fields["price_cents"] = _price_cents(changes["price"])
        if "is_available" in changes:
            fields["is_available"] = 1 if changes["is_available"] else 0

        if fields:
            assignments = ", ".join(f"{k} = ?" for k in fields)
            db = get_db()
            try:
                cursor = db.execute(
                    f"UPDATE items SET {assignments} WHERE id = ?",
                    (*fields.values(), item_id),
                )
                db.commit()
            except sqlite3.IntegrityError as e:
                db.rollback()
                raise MenuValidationError("Category does not exist") from e
            finally:
                db.close()
            if cursor.rowcount == 0:
                raise MenuNotFoundError("Item not found")
        return self.get_item(item_id)

    def set_availability(self, item_id: int, is_available: bool) -> dict:
        return self.update_item(item_id, {"is_available": is_available})

    def delete_item(self, item_id: int) -> None:
        db = get_db()
        try:
            cursor = db.execute("DELETE FROM items WHERE id = ?", (item_id,))
            db.commit()
        finally:
            db.close()
        if cursor.rowcount == 0:
            raise MenuNotFoundError("Item not found")
        logger.info("Item %d deleted", item_id)
