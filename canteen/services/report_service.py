"""
Report data service: order / revenue statistics for the dashboards.

Students see their own figures; staff and admins see canteen-wide figures.
Amounts are summed as integer cents.
"""

import json
from datetime import date, datetime, timedelta
from typing import Optional

from canteen.database import get_db
from canteen.services.money import cents_to_number

DATE_RANGES = ("today", "week", "month", "quarter", "year", "custom")


def range_start(date_range: Optional[str], today: Optional[date] = None) -> Optional[str]:
    """Start timestamp for a named range (None means no lower bound)."""
    today = today or date.today()
    if date_range == "today":
        start = today
    elif date_range == "week":
        # weeks start on Sunday
        start = today - timedelta(days=(today.weekday() + 1) % 7)
    elif date_range == "month":
        start = today.replace(day=1)
    elif date_range == "quarter":
        start = today.replace(month=(today.month - 1) // 3 * 3 + 1, day=1)
    elif date_range == "year":
        start = today.replace(month=1, day=1)
    else:
        return None
    return f"{start.isoformat()} 00:00:00"


def _date_filter(date_range, start_date, end_date) -> tuple[str, list]:
    if date_range == "custom":
        if start_date and end_date:
            return (
                "o.created_at >= ? AND o.created_at <= ?",
                [f"{start_date} 00:00:00", f"{end_date} 23:59:59"],
            )
        return "1=1", []
    start = range_start(date_range)
    if start:
        return "o.created_at >= ?", [start]
    return "1=1", []


def _recent(rows, with_customer: bool) -> list[dict]:
    result = []
    for r in rows:
        entry = {
            "id": r["token_number"] or r["id"],
            "amount": cents_to_number(r["total_cents"]),
            "time": r["created_at"],
            "status": r["status"],
        }
        if with_customer:
            entry["customer"] = r["user_name"] or "Unknown"
        result.append(entry)
    return result


class ReportService:
    """Read-only aggregate queries over orders, accounts and the catalog."""

    def report_data(
        self,
        account_id: int,
        role: str,
        date_range: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> dict:
        if date_range and date_range not in DATE_RANGES:
            raise ValueError(f"Unsupported date range: {date_range}")
        where, params = _date_filter(date_range, start_date, end_date)

        db = get_db()
        try:
            if role == "student":
                return self._student_report(db, account_id, where, params)
            return self._canteen_report(db, where, params)
        finally:
            db.close()

    @staticmethod
    def _student_report(db, account_id: int, where: str, params: list) -> dict:
        row = db.execute(
            f"""SELECT COUNT(*) AS cnt, COALESCE(SUM(o.total_cents), 0) AS cents
                FROM orders o WHERE o.account_id = ? AND {where}""",
            [account_id, *params],
        ).fetchone()
        recent = db.execute(
            f"""SELECT o.* FROM orders o
                WHERE o.account_id = ? AND {where}
                ORDER BY o.created_at DESC, o.id DESC LIMIT 5""",
            [account_id, *params],
        ).fetchall()

        count, cents = row["cnt"], row["cents"]
        return {
            "totalOrders": count,
            "totalRevenue": cents_to_number(cents),
            "avgOrderValue": cents_to_number(cents / count) if count else 0,
            "recentOrders": _recent(recent, with_customer=False),
        }

    @staticmethod
    def _canteen_report(db, where: str, params: list) -> dict:
        orders = db.execute(
            f"""SELECT o.*, a.name AS user_name
                FROM orders o LEFT JOIN accounts a ON a.id = o.account_id
                WHERE {where}
                ORDER BY o.created_at DESC, o.id DESC""",
            params,
        ).fetchall()

        total_orders = len(orders)
        revenue_cents = sum(o["total_cents"] for o in orders)

        item_stats: dict[str, dict] = {}
        for o in orders:
            for line in json.loads(o["items"]):
                stat = item_stats.setdefault(
                    line["name"], {"name": line["name"], "orders": 0, "revenue_cents": 0}
                )
                stat["orders"] += line["quantity"]
                stat["revenue_cents"] += round(line["price"] * 100) * line["quantity"]
        top_items = sorted(item_stats.values(), key=lambda s: s["revenue_cents"], reverse=True)[:5]

        users = db.execute(
            "SELECT wallet_balance_cents, created_at FROM accounts"
        ).fetchall()
        cutoff = (datetime.now() - timedelta(days=30)).strftime("%Y-%m-%d %H:%M:%S")

        categories = db.execute(
            """SELECT c.name, COUNT(i.id) AS item_count,
                      COALESCE(AVG(i.price_cents), 0) AS avg_cents
               FROM categories c LEFT JOIN items i ON i.category_id = c.id
               GROUP BY c.id ORDER BY c.name"""
        ).fetchall()

        return {
            "totalOrders": total_orders,
            "totalRevenue": cents_to_number(revenue_cents),
            "totalUsers": len(users),
            "avgOrderValue": (
                cents_to_number(revenue_cents / total_orders) if total_orders else 0
            ),
            "topItems": [
                {
                    "name": s["name"],
                    "orders": s["orders"],
                    "revenue": cents_to_number(s["revenue_cents"]),
                }
                for s in top_items
            ],
            "recentOrders": _recent(orders[:10], with_customer=True),
            "userStats": {
                "activeUsers": sum(1 for u in users if u["wallet_balance_cents"] > 0),
                "newUsers": sum(1 for u in users if u["created_at"] > cutoff),
            },
            "categoryStats": [
                {
                    "name": c["name"],
                    "itemCount": c["item_count"],
                    "avgPrice": cents_to_number(round(c["avg_cents"])),
                }
                for c in categories
            ],
        }
