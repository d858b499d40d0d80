"""Record-level access to the ledger tables.

Every table is exposed as a ``Collection`` with the same small contract
(get / add / bulk_add / update / delete / all / find). Writes commit immediately
unless they run inside ``LedgerStore.atomic()``, in which case the whole block
commits or rolls back together.
"""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, fields, replace
from datetime import datetime, timezone
from decimal import Decimal

from penny.errors import StorageError
from penny.models import Account, Budget, Category, Transaction

# Money is kept as TEXT so balances never pick up binary float error.
sqlite3.register_adapter(Decimal, str)


def timestamp() -> str:
    """Current UTC time in the same format SQLite's datetime('now') produces."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


@contextmanager
def storage_errors():
    try:
        yield
    except sqlite3.Error as e:
        raise StorageError(str(e)) from e


class Collection:
    def __init__(
        self,
        store: "LedgerStore",
        table: str,
        model: type,
        decimal_fields: tuple[str, ...] = (),
        bool_fields: tuple[str, ...] = (),
        json_fields: tuple[str, ...] = (),
    ):
        self.store = store
        self.table = table
        self.model = model
        self.columns = [f.name for f in fields(model)]
        self.decimal_fields = decimal_fields
        self.bool_fields = bool_fields
        self.json_fields = json_fields

    def _from_row(self, row: sqlite3.Row):
        data = {key: row[key] for key in row.keys() if key in self.columns}
        for key in self.decimal_fields:
            if data.get(key) is not None:
                data[key] = Decimal(str(data[key]))
        for key in self.bool_fields:
            if key in data:
                data[key] = bool(data[key])
        for key in self.json_fields:
            if key in data:
                data[key] = json.loads(data[key]) if data[key] else []
        return self.model(**data)

    def _to_columns(self, values: dict) -> dict:
        out = dict(values)
        for key in self.json_fields:
            if key in out:
                out[key] = json.dumps(list(out[key] or []))
        for key in self.bool_fields:
            if key in out:
                out[key] = 1 if out[key] else 0
        return out

    def get(self, record_id: int):
        with storage_errors():
            row = self.store.conn.execute(
                f"SELECT * FROM {self.table} WHERE id = ?", (record_id,)
            ).fetchone()
        return self._from_row(row) if row is not None else None

    def _insert(self, record):
        now = timestamp()
        values = asdict(record)
        values.pop("id")
        values["created_at"] = values.get("created_at") or now
        values["updated_at"] = now
        columns = self._to_columns(values)
        names = ", ".join(columns)
        marks = ", ".join("?" for _ in columns)
        with storage_errors():
            cursor = self.store.conn.execute(
                f"INSERT INTO {self.table} ({names}) VALUES ({marks})",
                tuple(columns.values()),
            )
        return replace(record, id=cursor.lastrowid, created_at=values["created_at"], updated_at=now)

    def add(self, record):
        """Insert a record (its id is ignored) and return it with id and timestamps filled in."""
        saved = self._insert(record)
        self.store.commit()
        return saved

    def bulk_add(self, records) -> list:
        with self.store.atomic():
            return [self._insert(record) for record in records]

    def update(self, record_id: int, **changes):
        """Write the given fields and return the refreshed record, or None if it does not exist."""
        changes.pop("id", None)
        changes.pop("created_at", None)
        unknown = set(changes) - set(self.columns)
        if unknown:
            raise ValueError(f"Unknown {self.table} fields: {', '.join(sorted(unknown))}")
        changes["updated_at"] = timestamp()
        columns = self._to_columns(changes)
        assignments = ", ".join(f"{name} = ?" for name in columns)
        with storage_errors():
            cursor = self.store.conn.execute(
                f"UPDATE {self.table} SET {assignments} WHERE id = ?",
                (*columns.values(), record_id),
            )
        self.store.commit()
        if cursor.rowcount == 0:
            return None
        return self.get(record_id)

    def delete(self, record_id: int) -> bool:
        with storage_errors():
            cursor = self.store.conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (record_id,))
        self.store.commit()
        return cursor.rowcount > 0

    def all(self) -> list:
        with storage_errors():
            rows = self.store.conn.execute(f"SELECT * FROM {self.table} ORDER BY id").fetchall()
        return [self._from_row(row) for row in rows]

    def find(self, **criteria) -> list:
        """Records whose columns equal every given value."""
        clause = " AND ".join(f"{name} = ?" for name in criteria) or "1 = 1"
        with storage_errors():
            rows = self.store.conn.execute(
                f"SELECT * FROM {self.table} WHERE {clause} ORDER BY id",
                tuple(self._to_columns(criteria).values()),
            ).fetchall()
        return [self._from_row(row) for row in rows]


class LedgerStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._depth = 0
        self.accounts = Collection(
            self, "accounts", Account,
            decimal_fields=("initial_balance", "current_balance"),
            bool_fields=("exclude_from_total", "is_archived"),
        )
        self.categories = Collection(self, "categories", Category)
        self.transactions = Collection(
            self, "transactions", Transaction,
            decimal_fields=("amount",),
            bool_fields=("is_recurring", "is_installment"),
            json_fields=("generated_dates", "tags"),
        )
        self.budgets = Collection(self, "budgets", Budget, decimal_fields=("amount",))

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def commit(self) -> None:
        if self._depth == 0:
            with storage_errors():
                self.conn.commit()

    @contextmanager
    def atomic(self):
        """Group writes into one SQLite transaction. Nested blocks join the outermost one."""
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.conn.rollback()
            raise
        self._depth -= 1
        self.commit()

    def count_account_transactions(self, account_id: int) -> int:
        with storage_errors():
            row = self.conn.execute(
                "SELECT count(*) FROM transactions "
                "WHERE account_id = ? OR from_account_id = ? OR to_account_id = ?",
                (account_id, account_id, account_id),
            ).fetchone()
        return row[0]
