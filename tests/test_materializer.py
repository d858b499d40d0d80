from datetime import date
from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from penny.materializer import RecurringScheduler
from penny.models import Transaction


@pytest.fixture
def wallet(ledger):
    return ledger.accounts.create("Wallet", "1000")


@pytest.fixture
def housing(ledger):
    return ledger.store.categories.find(name="Housing")[0].id


def _template(ledger, account, category_id, **extra):
    fields = dict(
        id=None, account_id=account.id, category_id=category_id, type="expense",
        status="completed", amount=Decimal("500"), description="Rent", date="2024-01-15",
        is_recurring=True, recurrence_type="monthly", recurrence_occurrences=3,
    )
    fields.update(extra)
    return ledger.transactions.create(Transaction(**fields))


def _instances(ledger, template):
    return [t for t in ledger.store.transactions.all() if t.id != template.id]


def test_rent_scenario_creates_pending_instances(ledger, wallet, housing):
    template = _template(ledger, wallet, housing)
    assert ledger.store.accounts.get(wallet.id).current_balance == Decimal("500")

    created = ledger.materializer.materialize(today=date(2024, 4, 20))

    assert [t.date for t in created] == ["2024-02-15", "2024-03-15", "2024-04-15"]
    assert all(t.status == "pending" for t in created)
    assert all(t.description == "Rent" and t.amount == Decimal("500") for t in created)
    assert not any(t.is_recurring for t in created)
    assert ledger.store.accounts.get(wallet.id).current_balance == Decimal("500")
    assert ledger.transactions.get(template.id).generated_dates == ["2024-02-15", "2024-03-15", "2024-04-15"]


def test_second_run_is_a_no_op(ledger, wallet, housing):
    template = _template(ledger, wallet, housing)
    ledger.materializer.materialize(today=date(2024, 4, 20))
    assert ledger.materializer.materialize(today=date(2024, 4, 20)) == []
    assert len(_instances(ledger, template)) == 3


def test_lifetime_cap_holds_across_runs(ledger, wallet, housing):
    template = _template(ledger, wallet, housing)
    ledger.materializer.materialize(today=date(2024, 2, 20))
    ledger.materializer.materialize(today=date(2024, 3, 20))
    ledger.materializer.materialize(today=date(2030, 1, 1))
    assert len(_instances(ledger, template)) == 3


def test_nothing_generated_beyond_current_month(ledger, wallet, housing):
    _template(ledger, wallet, housing, recurrence_occurrences=12)
    created = ledger.materializer.materialize(today=date(2024, 3, 1))
    assert [t.date for t in created] == ["2024-02-15", "2024-03-15"]


def test_completing_an_instance_moves_the_balance(ledger, wallet, housing):
    _template(ledger, wallet, housing)
    first = ledger.materializer.materialize(today=date(2024, 2, 20))[0]
    ledger.transactions.complete(first.id)
    assert ledger.store.accounts.get(wallet.id).current_balance == Decimal("0")


def test_installments_are_numbered_after_the_template(ledger, wallet, housing):
    template = _template(
        ledger, wallet, housing, description="Phone", amount=Decimal("99"),
        date="2024-01-10", recurrence_occurrences=12, is_installment=True,
    )
    assert template.description == "Phone - 1/12"

    created = ledger.materializer.materialize(today=date(2025, 6, 1))
    assert [t.description for t in created] == [f"Phone - {n}/12" for n in range(2, 13)]
    assert created[-1].date == "2024-12-10"
    assert ledger.materializer.materialize(today=date(2026, 1, 1)) == []


def test_installment_numbering_continues_between_runs(ledger, wallet, housing):
    _template(
        ledger, wallet, housing, description="Sofa", date="2024-01-10",
        recurrence_occurrences=6, is_installment=True,
    )
    first = ledger.materializer.materialize(today=date(2024, 3, 15))
    second = ledger.materializer.materialize(today=date(2024, 5, 1))
    assert [t.description for t in first] == ["Sofa - 2/6", "Sofa - 3/6"]
    assert [t.description for t in second] == ["Sofa - 4/6", "Sofa - 5/6"]


def test_existing_identical_row_is_not_duplicated(ledger, wallet, housing):
    template = _template(ledger, wallet, housing, status="pending")
    ledger.store.transactions.add(Transaction(
        id=None, account_id=wallet.id, category_id=housing, type="expense", status="pending",
        amount=Decimal("500.00"), description="Rent", date="2024-02-15",
    ))

    created = ledger.materializer.materialize(today=date(2024, 3, 20))

    assert [t.date for t in created] == ["2024-03-15"]
    assert ledger.transactions.get(template.id).generated_dates == ["2024-02-15", "2024-03-15"]


def test_recurring_transfer_copies_both_accounts(ledger, wallet):
    savings = ledger.accounts.create("Savings")
    template = ledger.transactions.create(Transaction(
        id=None, account_id=wallet.id, category_id=None, type="transfer", status="pending",
        amount=Decimal("50"), description="", date="2024-01-01", from_account_id=wallet.id,
        to_account_id=savings.id, is_recurring=True, recurrence_type="weekly", recurrence_occurrences=2,
        tags=["savings"],
    ))

    created = ledger.materializer.materialize(today=date(2024, 1, 20))

    assert [t.date for t in created] == ["2024-01-08", "2024-01-15"]
    for instance in created:
        assert instance.type == "transfer"
        assert (instance.from_account_id, instance.to_account_id) == (wallet.id, savings.id)
        assert instance.category_id is None
        assert instance.description == template.description
        assert instance.tags == ["savings"]


def test_broken_template_is_logged_and_others_still_run(ledger, db, wallet, housing):
    broken = _template(ledger, wallet, housing, description="Broken", status="pending")
    _template(ledger, wallet, housing, status="pending")
    db.execute("UPDATE transactions SET recurrence_type = 'fortnightly' WHERE id = ?", (broken.id,))
    db.commit()

    with capture_logs() as logs:
        created = ledger.materializer.materialize(today=date(2024, 2, 20))

    assert [t.description for t in created] == ["Rent"]
    failures = [e for e in logs if e["event"] == "recurring.template_failed"]
    assert failures and failures[0]["transaction_id"] == broken.id
    assert ledger.transactions.get(broken.id).generated_dates == []


def test_reentrant_call_is_skipped(ledger, wallet, housing, monkeypatch):
    _template(ledger, wallet, housing)
    materializer = ledger.materializer
    original_all = ledger.store.transactions.all
    nested_results = []

    def all_with_reentry():
        assert materializer.in_progress
        nested_results.append(materializer.materialize(today=date(2024, 4, 20)))
        return original_all()

    monkeypatch.setattr(ledger.store.transactions, "all", all_with_reentry)
    created = materializer.materialize(today=date(2024, 4, 20))

    assert nested_results == [[]]
    assert len(created) == 3
    assert not materializer.in_progress


def test_flag_is_cleared_after_a_failure(ledger, monkeypatch):
    def explode():
        raise RuntimeError("database went away")

    monkeypatch.setattr(ledger.store.transactions, "all", explode)
    with pytest.raises(RuntimeError):
        ledger.materializer.materialize()
    assert not ledger.materializer.in_progress


class _FakeMaterializer:
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    def materialize(self):
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def test_scheduler_stops_after_max_runs():
    fake = _FakeMaterializer([["a"], [], ["b", "c"]])
    scheduler = RecurringScheduler(fake, interval_seconds=0)
    assert scheduler.run_forever(max_runs=3) == 3
    assert fake.calls == 3


def test_scheduler_run_once_reports_count():
    scheduler = RecurringScheduler(_FakeMaterializer([["a", "b"]]), interval_seconds=0)
    assert scheduler.run_once() == 2


def test_scheduler_keeps_going_after_a_failure():
    fake = _FakeMaterializer([RuntimeError("locked"), ["a"]])
    scheduler = RecurringScheduler(fake, interval_seconds=0)

    with capture_logs() as logs:
        assert scheduler.run_forever(max_runs=2) == 2

    assert fake.calls == 2
    assert [e["event"] for e in logs if e["log_level"] == "error"] == ["recurring.run_failed"]


def test_stopped_scheduler_does_not_run():
    fake = _FakeMaterializer([])
    scheduler = RecurringScheduler(fake, interval_seconds=0)
    scheduler.stop()
    assert scheduler.run_forever() == 0
    assert fake.calls == 0
