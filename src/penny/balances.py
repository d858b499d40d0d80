from decimal import Decimal

import structlog

from penny.errors import NotFoundError
from penny.models import Account
from penny.store import LedgerStore

logger = structlog.get_logger()


class AccountBalanceService:
    """Applies signed deltas to a single account's running balance."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def apply_delta(self, account_id: int, amount: Decimal) -> Account:
        account = self.store.accounts.get(account_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        new_balance = account.current_balance + amount
        logger.debug(
            "balance.delta",
            account_id=account_id,
            delta=str(amount),
            balance=str(new_balance),
        )
        return self.store.accounts.update(account_id, current_balance=new_balance)
