import pytest
import structlog

from penny.db import get_connection, init_db
from penny.ledger import Ledger


@pytest.fixture
def db(tmp_path):
    """Provide an initialized temp DB connection."""
    db_path = tmp_path / "test.db"
    conn = get_connection(db_path)
    init_db(conn)
    yield conn
    conn.close()


@pytest.fixture
def ledger(db):
    return Ledger(db)


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()
