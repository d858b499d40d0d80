import re
from decimal import Decimal

from penny.errors import NotFoundError, ValidationError
from penny.models import Budget
from penny.money import parse_amount
from penny.store import LedgerStore

_MONTH = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def set_budget(store: LedgerStore, category_id: int, month: str, amount: Decimal | str) -> Budget:
    """Create or replace the budget for a category in a YYYY-MM month."""
    if not _MONTH.match(month or ""):
        raise ValidationError(f"Month must look like YYYY-MM, got {month!r}")
    value = parse_amount(amount)
    if value <= 0:
        raise ValidationError("Budget amount must be greater than zero")
    if store.categories.get(category_id) is None:
        raise NotFoundError("Category", category_id)

    existing = store.budgets.find(category_id=category_id, month=month)
    if existing:
        return store.budgets.update(existing[0].id, amount=value)
    return store.budgets.add(Budget(id=None, category_id=category_id, amount=value, month=month))


def list_budgets(store: LedgerStore, month: str | None = None) -> list[Budget]:
    if month:
        return store.budgets.find(month=month)
    return store.budgets.all()


def delete_budget(store: LedgerStore, budget_id: int) -> None:
    if not store.budgets.delete(budget_id):
        raise NotFoundError("Budget", budget_id)
