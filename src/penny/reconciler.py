from decimal import Decimal

from penny.errors import NotFoundError
from penny.store import LedgerStore
from penny.transactions import balance_legs


def recompute_balance(store: LedgerStore, account_id: int) -> Decimal:
    """Initial balance plus every completed transaction touching the account, summed from scratch."""
    account = store.accounts.get(account_id)
    if account is None:
        raise NotFoundError("Account", account_id)

    total = account.initial_balance
    for txn in store.transactions.find(status="completed"):
        for leg_account, delta in balance_legs(txn):
            if leg_account == account_id:
                total += delta
    return total


def check_balances(store: LedgerStore) -> list[dict]:
    """Compare every account's running balance with a full recomputation."""
    results = []
    for account in store.accounts.all():
        calculated = recompute_balance(store, account.id)
        discrepancy = account.current_balance - calculated
        results.append({
            "account_id": account.id,
            "name": account.name,
            "stored": account.current_balance,
            "calculated": calculated,
            "discrepancy": discrepancy,
            "is_consistent": discrepancy == 0,
        })
    return results
