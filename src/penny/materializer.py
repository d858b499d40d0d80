"""Turns recurring templates into dated, pending transaction instances."""

import threading
from datetime import date

import structlog

from penny.errors import LedgerError
from penny.models import Transaction
from penny.recurrence import due_occurrences
from penny.store import LedgerStore
from penny.transactions import installment_label

logger = structlog.get_logger()


def dedup_key(txn: Transaction) -> tuple:
    return (txn.description, txn.category_id, txn.account_id, txn.amount, txn.date)


class RecurrenceMaterializer:
    """Generates the missing occurrences of every recurring template.

    Instances are created pending, so they never touch a balance until someone
    completes them. A template's ``generated_dates`` only ever grows, which is
    what makes repeated runs idempotent; the dedup key on existing rows is a
    second guard for instances written before their dates were recorded.
    """

    def __init__(self, store: LedgerStore):
        self.store = store
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def materialize(self, today: date | None = None) -> list[Transaction]:
        if self._in_progress:
            logger.debug("recurring.skipped", reason="run already in progress")
            return []
        self._in_progress = True
        try:
            return self._run(today or date.today())
        finally:
            self._in_progress = False

    def _run(self, today: date) -> list[Transaction]:
        transactions = self.store.transactions.all()
        existing = {dedup_key(t) for t in transactions}
        created: list[Transaction] = []
        for template in transactions:
            if not template.is_recurring or template.recurrence_type == "none":
                continue
            try:
                created.extend(self._materialize_template(template, existing, today))
            except LedgerError:
                logger.exception("recurring.template_failed", transaction_id=template.id)
        if created:
            logger.info("recurring.materialized", count=len(created), today=today.isoformat())
        return created

    def _materialize_template(self, template: Transaction, existing: set, today: date) -> list[Transaction]:
        total = template.recurrence_occurrences
        if not total:
            return []
        # An installment template is itself installment 1 of total.
        offset = 1 if template.is_installment else 0
        due = due_occurrences(
            template.date, template.recurrence_type, total - offset, template.generated_dates, today
        )
        if not due:
            return []

        base = template.base_description or template.description
        instances = []
        for number, iso in due:
            description = installment_label(base, number + offset, total) if template.is_installment else template.description
            instance = Transaction(
                id=None,
                account_id=template.account_id,
                category_id=template.category_id,
                type=template.type,
                status="pending",
                amount=template.amount,
                description=description,
                date=iso,
                from_account_id=template.from_account_id,
                to_account_id=template.to_account_id,
                tags=list(template.tags),
            )
            key = dedup_key(instance)
            if key in existing:
                logger.info("recurring.duplicate_skipped", transaction_id=template.id, date=iso)
                continue
            existing.add(key)
            instances.append(instance)

        with self.store.atomic():
            saved = self.store.transactions.bulk_add(instances)
            self.store.transactions.update(
                template.id,
                generated_dates=template.generated_dates + [iso for _, iso in due],
            )
        return saved


class RecurringScheduler:
    """Runs the materializer on a fixed interval until stopped."""

    def __init__(self, materializer: RecurrenceMaterializer, interval_seconds: float = 3600):
        self.materializer = materializer
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()

    def run_once(self) -> int:
        try:
            created = self.materializer.materialize()
        except Exception:
            # No retry before the next tick.
            logger.exception("recurring.run_failed")
            return 0
        return len(created)

    def run_forever(self, max_runs: int | None = None) -> int:
        runs = 0
        while not self._stop.is_set():
            self.run_once()
            runs += 1
            if max_runs is not None and runs >= max_runs:
                break
            self._stop.wait(self.interval_seconds)
        return runs

    def stop(self) -> None:
        self._stop.set()
