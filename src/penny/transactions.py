"""Transaction lifecycle: create, edit, complete and delete, keeping balances in step.

A transaction moves the running balance of its account(s) only while its status
is ``completed``. Every mutation that touches more than one record runs inside a
single ``LedgerStore.atomic()`` block, so a failure in any balance leg leaves
accounts and the transaction row exactly as they were.
"""

from dataclasses import asdict, replace
from datetime import date
from decimal import Decimal

import structlog

from penny.balances import AccountBalanceService
from penny.errors import NotFoundError, ValidationError
from penny.models import TRANSACTION_STATUSES, TRANSACTION_TYPES, Transaction
from penny.money import parse_amount
from penny.recurrence import as_date, validate_occurrences
from penny.store import LedgerStore

logger = structlog.get_logger()

READ_ONLY_FIELDS = {"id", "generated_dates", "created_at", "updated_at"}
_RELABEL_FIELDS = {"description", "is_installment", "recurrence_occurrences"}


def balance_legs(txn: Transaction) -> list[tuple[int, Decimal]]:
    """Signed (account_id, delta) pairs a completed transaction contributes."""
    if txn.type == "transfer":
        return [(txn.from_account_id, -txn.amount), (txn.to_account_id, txn.amount)]
    sign = 1 if txn.type == "income" else -1
    return [(txn.account_id, sign * txn.amount)]


def installment_label(base: str, number: int, total: int) -> str:
    return f"{base} - {number}/{total}"


def _outflow(txn: Transaction, account_id: int | None) -> Decimal:
    """Money a completed transfer takes out of account_id."""
    if txn.type == "transfer" and txn.status == "completed" and txn.from_account_id == account_id:
        return txn.amount
    return Decimal("0")


class TransactionManager:
    def __init__(self, store: LedgerStore, balances: AccountBalanceService):
        self.store = store
        self.balances = balances

    def get(self, txn_id: int) -> Transaction:
        txn = self.store.transactions.get(txn_id)
        if txn is None:
            raise NotFoundError("Transaction", txn_id)
        return txn

    def list(
        self,
        account_id: int | None = None,
        category_id: int | None = None,
        start: date | str | None = None,
        end: date | str | None = None,
    ) -> list[Transaction]:
        """Transactions ordered by date, optionally filtered. Read only."""
        try:
            start_iso = as_date(start).isoformat() if start else None
            end_iso = as_date(end).isoformat() if end else None
        except ValueError:
            raise ValidationError(f"Not a valid date range: {start!r} to {end!r}") from None
        result = []
        for txn in self.store.transactions.all():
            if account_id is not None and account_id not in (
                txn.account_id, txn.from_account_id, txn.to_account_id
            ):
                continue
            if category_id is not None and txn.category_id != category_id:
                continue
            if start_iso and txn.date < start_iso:
                continue
            if end_iso and txn.date > end_iso:
                continue
            result.append(txn)
        return sorted(result, key=lambda t: (t.date, t.id))

    def create(self, txn: Transaction) -> Transaction:
        txn = self._validate(txn)
        if txn.is_installment:
            txn = replace(
                txn,
                base_description=txn.description,
                description=installment_label(txn.description, 1, txn.recurrence_occurrences),
            )

        with self.store.atomic():
            saved = self.store.transactions.add(txn)
            if saved.status == "completed":
                self._apply(saved)

        logger.info(
            "transaction.created",
            transaction_id=saved.id,
            type=saved.type,
            status=saved.status,
            amount=str(saved.amount),
        )
        return saved

    def update(self, txn_id: int, **changes) -> Transaction:
        """Patch a transaction.

        A completed transaction always has its old effect reversed and the merged
        record's effect applied, even when only the description changes. Moving a
        completed transaction to another account therefore shifts the money from
        the old account to the new one.

        The source-funds check of a transfer only runs when the edit takes more
        money out of the source account than before, so renaming a transfer whose
        source has since been spent down still succeeds. On a transfer,
        ``account_id`` is an alias for ``from_account_id``.
        """
        blocked = set(changes) & READ_ONLY_FIELDS
        if blocked:
            raise ValidationError(f"Cannot edit transaction fields: {', '.join(sorted(blocked))}")
        old = self.get(txn_id)
        changes = self._transfer_aliases(old, changes)
        try:
            merged = replace(old, **changes)
        except TypeError as e:
            raise ValidationError(str(e)) from None
        merged = self._validate(merged)
        merged = self._relabel(old, merged, changes)

        with self.store.atomic():
            if old.status == "completed":
                self._reverse(old)
            if merged.status == "completed":
                source = merged.from_account_id
                self._apply(merged, check_funds=_outflow(merged, source) > _outflow(old, source))
            values = asdict(merged)
            for name in READ_ONLY_FIELDS:
                values.pop(name, None)
            updated = self.store.transactions.update(txn_id, **values)

        logger.info(
            "transaction.updated",
            transaction_id=txn_id,
            fields=sorted(changes),
            status=updated.status,
        )
        return updated

    def delete(self, txn_id: int) -> None:
        txn = self.get(txn_id)
        with self.store.atomic():
            if txn.status == "completed":
                self._reverse(txn)
            self.store.transactions.delete(txn_id)
        logger.info("transaction.deleted", transaction_id=txn_id, was_completed=txn.status == "completed")

    def complete(self, txn_id: int) -> Transaction:
        """Mark a pending transaction completed and apply its effect. Completed ones are left alone."""
        txn = self.get(txn_id)
        if txn.status == "completed":
            logger.info("transaction.already_completed", transaction_id=txn_id)
            return txn

        with self.store.atomic():
            completed = self.store.transactions.update(txn_id, status="completed")
            self._apply(completed)

        logger.info("transaction.completed", transaction_id=txn_id, amount=str(completed.amount))
        return completed

    def _apply(self, txn: Transaction, check_funds: bool = True) -> None:
        if txn.type == "transfer" and check_funds:
            source = self.store.accounts.get(txn.from_account_id)
            if source is None:
                raise NotFoundError("Account", txn.from_account_id)
            if source.current_balance < txn.amount:
                raise ValidationError(
                    f"Insufficient balance in {source.name}: {source.current_balance} available, {txn.amount} needed"
                )
        for account_id, delta in balance_legs(txn):
            self.balances.apply_delta(account_id, delta)

    def _transfer_aliases(self, old: Transaction, changes: dict) -> dict:
        if changes.get("type", old.type) != "transfer" or "account_id" not in changes:
            return changes
        source = changes.get("from_account_id", changes["account_id"])
        if source != changes["account_id"]:
            raise ValidationError("On a transfer the account is the source account; account_id and from_account_id must match")
        return {**changes, "from_account_id": source}

    def _reverse(self, txn: Transaction) -> None:
        for account_id, delta in balance_legs(txn):
            try:
                self.balances.apply_delta(account_id, -delta)
            except NotFoundError:
                # The account was removed outside the normal guards; nothing left to restore.
                logger.warning(
                    "balance.leg_skipped",
                    transaction_id=txn.id,
                    account_id=account_id,
                    delta=str(-delta),
                )

    def _require_account(self, account_id: int | None, label: str) -> None:
        if account_id is None:
            raise ValidationError(f"{label} is required")
        if self.store.accounts.get(account_id) is None:
            raise NotFoundError("Account", account_id)

    def _validate(self, txn: Transaction) -> Transaction:
        """Check a candidate record and return it normalized, or raise before anything is written."""
        if txn.type not in TRANSACTION_TYPES:
            raise ValidationError(f"Unknown transaction type: {txn.type}")
        if txn.status not in TRANSACTION_STATUSES:
            raise ValidationError(f"Unknown transaction status: {txn.status}")

        amount = parse_amount(txn.amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        try:
            txn_date = as_date(txn.date).isoformat()
        except (TypeError, ValueError):
            raise ValidationError(f"Not a valid date: {txn.date!r}") from None
        description = (txn.description or "").strip()
        tags = [t.strip() for t in (txn.tags or []) if t and t.strip()]

        if txn.type == "transfer":
            self._require_account(txn.from_account_id, "Source account")
            self._require_account(txn.to_account_id, "Destination account")
            if txn.from_account_id == txn.to_account_id:
                raise ValidationError("Choose two different accounts for a transfer")
            if not description:
                source = self.store.accounts.get(txn.from_account_id)
                target = self.store.accounts.get(txn.to_account_id)
                description = f"{source.name} → {target.name}"
            txn = replace(txn, account_id=txn.from_account_id, category_id=None)
        else:
            self._require_account(txn.account_id, "Account")
            if txn.category_id is None:
                raise ValidationError("Category is required")
            if self.store.categories.get(txn.category_id) is None:
                raise NotFoundError("Category", txn.category_id)
            if not description:
                raise ValidationError("Description is required")
            txn = replace(txn, from_account_id=None, to_account_id=None)

        if txn.is_recurring:
            validate_occurrences(txn.recurrence_type, txn.recurrence_occurrences)
            if txn.is_installment and txn.recurrence_type != "monthly":
                raise ValidationError("Installments are only available for monthly schedules")
            if txn.is_installment and txn.recurrence_occurrences < 2:
                raise ValidationError("An installment plan needs at least 2 installments")
        else:
            txn = replace(txn, recurrence_type="none", recurrence_occurrences=None, is_installment=False)

        return replace(txn, amount=amount, date=txn_date, description=description, tags=tags)

    def _relabel(self, old: Transaction, merged: Transaction, changes: dict) -> Transaction:
        """Keep the "n/total" suffix of an installment template in line with an edit."""
        if merged.is_installment:
            if not (set(changes) & _RELABEL_FIELDS):
                return merged
            if "description" in changes or not old.is_installment:
                base = merged.description
            else:
                base = old.base_description or merged.description
            return replace(
                merged,
                base_description=base,
                description=installment_label(base, 1, merged.recurrence_occurrences),
            )
        if old.is_installment and "description" not in changes:
            return replace(merged, description=old.base_description or merged.description, base_description=None)
        return replace(merged, base_description=None)
