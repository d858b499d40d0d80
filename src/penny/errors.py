class LedgerError(Exception):
    """Base class for every error the ledger core raises on purpose."""


class ValidationError(LedgerError):
    """User input was rejected before anything was written."""


class NotFoundError(LedgerError):
    def __init__(self, resource: str, key: object = None):
        self.resource = resource
        self.key = key
        detail = f"{resource} not found" if key is None else f"{resource} not found: {key}"
        super().__init__(detail)


class ConsistencyError(LedgerError):
    """The operation would break an account invariant (nonzero balance, existing transactions)."""


class StorageError(LedgerError):
    """The underlying SQLite database failed."""
