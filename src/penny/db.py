import json
import sqlite3
from pathlib import Path

from penny.recurrence import RECURRENCE_DEFAULTS, count_occurrences_until

INITIAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    initial_balance TEXT NOT NULL DEFAULT '0',
    current_balance TEXT NOT NULL DEFAULT '0',
    color TEXT,
    icon TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    category_type TEXT NOT NULL,
    color TEXT,
    icon TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY,
    account_id INTEGER NOT NULL,
    category_id INTEGER,
    type TEXT NOT NULL,
    amount TEXT NOT NULL,
    description TEXT NOT NULL,
    date TEXT NOT NULL,
    is_recurring INTEGER DEFAULT 0,
    recurrence_type TEXT DEFAULT 'none',
    recurrence_end_date TEXT,
    tags TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now')),
    FOREIGN KEY (account_id) REFERENCES accounts(id),
    FOREIGN KEY (category_id) REFERENCES categories(id)
);

CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id);
CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date);

CREATE TABLE IF NOT EXISTS budgets (
    id INTEGER PRIMARY KEY,
    category_id INTEGER NOT NULL,
    amount TEXT NOT NULL,
    month TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now')),
    UNIQUE (category_id, month),
    FOREIGN KEY (category_id) REFERENCES categories(id)
);
"""

DEFAULT_CATEGORIES = [
    # Expenses - (name, category_type, color, icon)
    ("Groceries", "expense", "#ef4444", "utensils"),
    ("Transport", "expense", "#f59e0b", "car"),
    ("Housing", "expense", "#7c3aed", "home"),
    ("Utilities", "expense", "#0ea5e9", "zap"),
    ("Subscriptions", "expense", "#ec4899", "credit-card"),
    ("Health", "expense", "#10b981", "heart"),
    ("Education", "expense", "#3b82f6", "book"),
    ("Leisure", "expense", "#06b6d4", "gamepad"),
    ("Shopping", "expense", "#84cc16", "shopping-bag"),
    ("Other Expenses", "expense", "#6b7280", "more-horizontal"),
    # Income
    ("Salary", "income", "#10b981", "briefcase"),
    ("Investments", "income", "#3b82f6", "trending-up"),
    ("Freelance", "income", "#8b5cf6", "code"),
    ("Other Income", "income", "#6b7280", "more-horizontal"),
]


def _create_initial_tables(conn: sqlite3.Connection) -> None:
    conn.executescript(INITIAL_SCHEMA)


def _add_transaction_status(conn: sqlite3.Connection) -> None:
    # Everything recorded before statuses existed had already hit the balance.
    conn.execute("ALTER TABLE transactions ADD COLUMN status TEXT NOT NULL DEFAULT 'completed'")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_status ON transactions(status)")


def _add_generated_dates(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE transactions ADD COLUMN generated_dates TEXT")
    conn.execute(
        "UPDATE transactions SET generated_dates = '[]' "
        "WHERE is_recurring = 1 AND generated_dates IS NULL"
    )


def _add_account_flags(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE accounts ADD COLUMN description TEXT")
    conn.execute("ALTER TABLE accounts ADD COLUMN exclude_from_total INTEGER NOT NULL DEFAULT 0")
    conn.execute("ALTER TABLE accounts ADD COLUMN is_archived INTEGER NOT NULL DEFAULT 0")
    conn.execute("ALTER TABLE accounts ADD COLUMN archived_at TEXT")


def _add_transfer_accounts(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE transactions ADD COLUMN from_account_id INTEGER REFERENCES accounts(id)")
    conn.execute("ALTER TABLE transactions ADD COLUMN to_account_id INTEGER REFERENCES accounts(id)")


def _add_occurrence_count(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE transactions ADD COLUMN recurrence_occurrences INTEGER")
    conn.execute("ALTER TABLE transactions ADD COLUMN is_installment INTEGER NOT NULL DEFAULT 0")
    conn.execute("ALTER TABLE transactions ADD COLUMN base_description TEXT")

    rows = conn.execute(
        "SELECT id, date, recurrence_type, recurrence_end_date, generated_dates FROM transactions "
        "WHERE is_recurring = 1 AND recurrence_type != 'none'"
    ).fetchall()
    for row in rows:
        if row["recurrence_end_date"]:
            count = count_occurrences_until(row["date"], row["recurrence_type"], row["recurrence_end_date"])
        else:
            count = RECURRENCE_DEFAULTS.get(row["recurrence_type"], 12)
        # Never cap a template below what it already produced.
        generated = json.loads(row["generated_dates"] or "[]")
        count = max(count, len(generated), 1)
        conn.execute(
            "UPDATE transactions SET recurrence_occurrences = ? WHERE id = ?",
            (count, row["id"]),
        )


# Position in this list is the schema version (PRAGMA user_version) it produces.
MIGRATIONS = [
    _create_initial_tables,
    _add_transaction_status,
    _add_generated_dates,
    _add_account_flags,
    _add_transfer_accounts,
    _add_occurrence_count,
]

SCHEMA_VERSION = len(MIGRATIONS)


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and foreign keys enabled."""
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def get_schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def apply_migrations(conn: sqlite3.Connection) -> list[int]:
    """Run every migration newer than the database's user_version. Returns the versions applied."""
    applied = []
    current = get_schema_version(conn)
    for version, migrate in enumerate(MIGRATIONS, start=1):
        if version <= current:
            continue
        migrate(conn)
        conn.execute(f"PRAGMA user_version = {version}")
        conn.commit()
        applied.append(version)
    return applied


def init_db(conn: sqlite3.Connection) -> None:
    """Bring the schema up to date and seed default categories. Idempotent."""
    apply_migrations(conn)

    cursor = conn.execute("SELECT count(*) FROM categories")
    if cursor.fetchone()[0] == 0:
        conn.executemany(
            "INSERT INTO categories (name, category_type, color, icon) VALUES (?, ?, ?, ?)",
            DEFAULT_CATEGORIES,
        )
        conn.commit()
