from decimal import Decimal

import structlog

from penny.errors import ConsistencyError, NotFoundError, ValidationError
from penny.models import Account
from penny.money import parse_amount
from penny.store import LedgerStore, timestamp

logger = structlog.get_logger()

EDITABLE_FIELDS = {"name", "description", "color", "icon", "initial_balance", "exclude_from_total"}


def _clean_description(description: str | None) -> str | None:
    if description is None:
        return None
    return description.strip() or None


class AccountService:
    def __init__(self, store: LedgerStore):
        self.store = store

    def get(self, account_id: int) -> Account:
        account = self.store.accounts.get(account_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        return account

    def find_by_name(self, name: str) -> Account:
        matches = self.store.accounts.find(name=name)
        if not matches:
            raise NotFoundError("Account", name)
        return matches[0]

    def list(self, include_archived: bool = True) -> list[Account]:
        accounts = self.store.accounts.all()
        if include_archived:
            return accounts
        return [a for a in accounts if not a.is_archived]

    def create(
        self,
        name: str,
        initial_balance: Decimal | str | int = 0,
        description: str | None = None,
        color: str = "#6b7280",
        icon: str = "wallet",
        exclude_from_total: bool = False,
    ) -> Account:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Account name is required")
        balance = parse_amount(initial_balance)
        if balance < 0:
            raise ValidationError("Initial balance cannot be negative")

        account = self.store.accounts.add(Account(
            id=None,
            name=name,
            initial_balance=balance,
            current_balance=balance,
            description=_clean_description(description),
            color=color,
            icon=icon,
            exclude_from_total=exclude_from_total,
        ))
        logger.info("account.created", account_id=account.id, name=account.name, balance=str(balance))
        return account

    def update(self, account_id: int, **changes) -> Account:
        """Edit account attributes.

        Changing ``initial_balance`` shifts the running balance by the same
        difference, so the completed transactions keep their effect. The edit is
        refused if that would leave the current balance negative.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit account fields: {', '.join(sorted(unknown))}")
        account = self.get(account_id)

        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
            if not changes["name"]:
                raise ValidationError("Account name is required")
        if "description" in changes:
            changes["description"] = _clean_description(changes["description"])
        if "initial_balance" in changes:
            new_initial = parse_amount(changes["initial_balance"])
            if new_initial < 0:
                raise ValidationError("Initial balance cannot be negative")
            new_current = account.current_balance + (new_initial - account.initial_balance)
            if new_current < 0:
                raise ValidationError(
                    f"Current balance would become negative ({new_current}); edit refused"
                )
            changes["initial_balance"] = new_initial
            changes["current_balance"] = new_current

        updated = self.store.accounts.update(account_id, **changes)
        logger.info("account.updated", account_id=account_id, fields=sorted(changes))
        return updated

    def archive(self, account_id: int) -> Account:
        account = self.get(account_id)
        if account.current_balance != 0:
            raise ConsistencyError(
                f"Only accounts with a zero balance can be archived ({account.name}: {account.current_balance})"
            )
        logger.info("account.archived", account_id=account_id)
        return self.store.accounts.update(account_id, is_archived=True, archived_at=timestamp())

    def unarchive(self, account_id: int) -> Account:
        self.get(account_id)
        logger.info("account.unarchived", account_id=account_id)
        return self.store.accounts.update(account_id, is_archived=False, archived_at=None)

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        if account.current_balance != 0:
            raise ConsistencyError(
                f"Only accounts with a zero balance can be deleted ({account.name}: {account.current_balance})"
            )
        count = self.store.count_account_transactions(account_id)
        if count:
            raise ConsistencyError(
                f"{account.name} still has {count} transaction(s); delete or move them first"
            )
        self.store.accounts.delete(account_id)
        logger.info("account.deleted", account_id=account_id, name=account.name)

    def totals(self) -> dict:
        """Balances of active accounts split into available and reserve money."""
        available = Decimal("0.00")
        reserve = Decimal("0.00")
        for account in self.list(include_archived=False):
            if account.exclude_from_total:
                reserve += account.current_balance
            else:
                available += account.current_balance
        return {"available": available, "reserve": reserve, "total": available + reserve}
