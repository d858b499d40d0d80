import sqlite3
from pathlib import Path

from penny.accounts import AccountService
from penny.balances import AccountBalanceService
from penny.db import get_connection, init_db
from penny.materializer import RecurrenceMaterializer
from penny.store import LedgerStore
from penny.transactions import TransactionManager


class Ledger:
    """Wires the store and services around one SQLite connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.store = LedgerStore(conn)
        self.balances = AccountBalanceService(self.store)
        self.accounts = AccountService(self.store)
        self.transactions = TransactionManager(self.store, self.balances)
        self.materializer = RecurrenceMaterializer(self.store)

    @classmethod
    def open(cls, db_path: Path) -> "Ledger":
        conn = get_connection(db_path)
        init_db(conn)
        return cls(conn)

    def close(self) -> None:
        self.conn.close()
