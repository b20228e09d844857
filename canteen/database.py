"""
SQLite connection management and schema initialisation.
Uses the synchronous sqlite3 module; get_db() hands out a fresh connection.
"""

import logging
import os
import sqlite3
from datetime import datetime
from pathlib import Path

import bcrypt
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data/canteen.db")


def get_db() -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and foreign keys enabled."""
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


# ── Tables ────────────────────────────────────────────────

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS accounts (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    name                 VARCHAR(128) NOT NULL,
    role                 VARCHAR(16)  NOT NULL DEFAULT 'student'
                         CHECK (role IN ('student', 'staff', 'admin')),
    student_id           VARCHAR(64)  NOT NULL UNIQUE,
    email                VARCHAR(128) UNIQUE,
    pin_hash             VARCHAR(128),
    wallet_balance_cents INTEGER      NOT NULL DEFAULT 0
                         CHECK (wallet_balance_cents >= 0),
    qr_code              VARCHAR(128) UNIQUE,
    last_login           DATETIME,
    created_at           DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS categories (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            VARCHAR(128) NOT NULL UNIQUE,
    description     TEXT,
    is_active       INTEGER      NOT NULL DEFAULT 1,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS items (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    category_id     INTEGER      NOT NULL REFERENCES categories(id),
    name            VARCHAR(128) NOT NULL,
    description     TEXT,
    price_cents     INTEGER      NOT NULL CHECK (price_cents > 0),
    image_url       TEXT,
    is_available    INTEGER      NOT NULL DEFAULT 1,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS orders (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id      INTEGER      NOT NULL REFERENCES accounts(id),
    items           TEXT         NOT NULL,
    total_cents     INTEGER      NOT NULL CHECK (total_cents > 0),
    token_number    INTEGER      NOT NULL,
    status          VARCHAR(16)  NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'preparing', 'ready',
                                      'completed', 'cancelled')),
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME
);

CREATE TABLE IF NOT EXISTS order_status_log (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id        INTEGER      NOT NULL REFERENCES orders(id),
    from_status     VARCHAR(16),
    to_status       VARCHAR(16)  NOT NULL,
    changed_by      INTEGER      REFERENCES accounts(id) ON DELETE SET NULL,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS wallet_transactions (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id          INTEGER      NOT NULL REFERENCES accounts(id),
    type                VARCHAR(16)  NOT NULL CHECK (type IN ('recharge', 'debit')),
    amount_cents        INTEGER      NOT NULL,
    balance_after_cents INTEGER      NOT NULL,
    order_id            INTEGER      REFERENCES orders(id),
    performed_by        INTEGER      REFERENCES accounts(id) ON DELETE SET NULL,
    description         TEXT,
    created_at          DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS notifications (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id      INTEGER      NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    type            VARCHAR(32)  NOT NULL,
    title           VARCHAR(256) NOT NULL,
    message         TEXT         NOT NULL,
    data            TEXT         NOT NULL DEFAULT '{}',
    is_read         INTEGER      NOT NULL DEFAULT 0,
    read_at         DATETIME,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS notification_settings (
    account_id      INTEGER      PRIMARY KEY REFERENCES accounts(id) ON DELETE CASCADE,
    settings        TEXT         NOT NULL,
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS password_reset_tokens (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id      INTEGER      NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    token           TEXT         NOT NULL,
    expires_at      DATETIME     NOT NULL,
    created_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);
"""

# ── Indexes ───────────────────────────────────────────────

_CREATE_INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_student_id
    ON accounts(student_id);
CREATE INDEX IF NOT EXISTS idx_accounts_role
    ON accounts(role);
CREATE INDEX IF NOT EXISTS idx_items_category
    ON items(category_id);
CREATE INDEX IF NOT EXISTS idx_orders_account_created
    ON orders(account_id, created_at);
CREATE INDEX IF NOT EXISTS idx_orders_status
    ON orders(status);
CREATE INDEX IF NOT EXISTS idx_orders_created_at
    ON orders(created_at);
CREATE INDEX IF NOT EXISTS idx_order_status_log_order
    ON order_status_log(order_id);
CREATE INDEX IF NOT EXISTS idx_wallet_transactions_account
    ON wallet_transactions(account_id, created_at);
CREATE INDEX IF NOT EXISTS idx_notifications_account
    ON notifications(account_id, is_read);
CREATE INDEX IF NOT EXISTS idx_password_reset_tokens_account
    ON password_reset_tokens(account_id);
"""

ALL_TABLES = (
    "password_reset_tokens",
    "notification_settings",
    "notifications",
    "wallet_transactions",
    "order_status_log",
    "orders",
    "items",
    "categories",
    "accounts",
)


# ── Initialisation ────────────────────────────────────────

def init_db() -> None:
    """Create the data directory, tables and indexes, then seed the default admin."""
    db_dir = Path(DB_PATH).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = get_db()
    try:
        conn.executescript(_CREATE_TABLES)
        conn.executescript(_CREATE_INDEXES)

        _create_default_admin(conn)
        if os.getenv("SEED_DEMO_DATA", "0") == "1":
            _seed_demo_data(conn)

        conn.commit()
    finally:
        conn.close()


def drop_all(conn: sqlite3.Connection) -> None:
    """Drop every application table (children first)."""
    conn.executescript(
        "".join(f"DROP TABLE IF EXISTS {name};\n" for name in ALL_TABLES)
    )


def _create_default_admin(conn: sqlite3.Connection) -> None:
    """Create an admin account from environment variables if no admin exists yet."""
    row = conn.execute(
        "SELECT COUNT(*) AS cnt FROM accounts WHERE role = 'admin'"
    ).fetchone()
    if row["cnt"] > 0:
        return

    student_id = os.getenv("ADMIN_STUDENT_ID", "ADMIN001")
    password = os.getenv("ADMIN_PASSWORD", "admin123")
    name = os.getenv("ADMIN_NAME", "Administrator")

    pin_hash = bcrypt.hashpw(
        password.encode("utf-8"), bcrypt.gensalt()
    ).decode("utf-8")

    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    conn.execute(
        """INSERT OR IGNORE INTO accounts (name, role, student_id, pin_hash, created_at)
           VALUES (?, 'admin', ?, ?, ?)""",
        (name, student_id, pin_hash, now),
    )
    logger.info("Default admin account created: %s", student_id)


_DEMO_ACCOUNTS = [
    ("Demo Admin", "admin", "DEMO_ADMIN", "DEMO_ADMIN", 0),
    ("Demo Staff", "staff", "DEMO_STAFF", "DEMO_STAFF", 0),
    ("Demo Student", "student", "DEMO_STUDENT", "DEMO_STUDENT", 50000),
]

_DEMO_MENU = {
    "Breakfast": [("Masala Dosa", 4000), ("Idli Vada", 3000)],
    "Beverages": [("Masala Chai", 1000), ("Cold Coffee", 3500)],
}


def _seed_demo_data(conn: sqlite3.Connection) -> None:
    """Insert demo accounts (no pin hash, demo fallback only) and a small menu."""
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    for name, role, student_id, qr_code, balance in _DEMO_ACCOUNTS:
        conn.execute(
            """INSERT OR IGNORE INTO accounts
               (name, role, student_id, qr_code, wallet_balance_cents, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (name, role, student_id, qr_code, balance, now),
        )

    for category, items in _DEMO_MENU.items():
        conn.execute(
            "INSERT OR IGNORE INTO categories (name, description) VALUES (?, ?)",
            (category, None),
        )
        category_id = conn.execute(
            "SELECT id FROM categories WHERE name = ?", (category,)
        ).fetchone()["id"]
        for item_name, price_cents in items:
            exists = conn.execute(
                "SELECT 1 FROM items WHERE category_id = ? AND name = ?",
                (category_id, item_name),
            ).fetchone()
            if not exists:
                conn.execute(
                    """INSERT INTO items (category_id, name, price_cents)
                       VALUES (?, ?, ?)""",
                    (category_id, item_name, price_cents),
                )
    logger.info("Demo data seeded")
