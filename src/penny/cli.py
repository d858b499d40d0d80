from contextlib import contextmanager
from datetime import date
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from penny.db import get_connection, init_db
from penny.errors import LedgerError, NotFoundError
from penny.ledger import Ledger
from penny.log import configure_logging
from penny.models import CATEGORY_TYPES, Category, Transaction
from penny.money import format_amount
from penny.recurrence import RECURRENCE_DEFAULTS, as_date
from penny.settings import DEFAULTS, get_db_path, load_settings, save_settings

app = typer.Typer(help="Penny: personal ledger with running account balances.", invoke_without_command=True)
console = Console()


@app.callback()
def main():
    """Penny: personal ledger with running account balances."""
    configure_logging(load_settings()["log_level"])


@contextmanager
def open_ledger():
    """Open the configured ledger; ledger errors become a red message and exit code 1."""
    db_path = get_db_path()
    if not db_path.exists():
        typer.echo("No ledger found. Run `penny init` first.")
        raise typer.Exit(1)
    ledger = Ledger.open(db_path)
    try:
        yield ledger
    except LedgerError as e:
        console.print(str(e), style="red", markup=False)
        raise typer.Exit(1)
    finally:
        ledger.close()


def _money(value) -> str:
    return format_amount(value, load_settings()["currency_symbol"])


def _category_id(ledger: Ledger, name: str, category_type: str | None = None) -> int:
    matches = ledger.store.categories.find(name=name)
    if category_type:
        matches = [c for c in matches if c.category_type == category_type] or matches
    if not matches:
        raise NotFoundError("Category", name)
    return matches[0].id


def _account_names(ledger: Ledger) -> dict[int, str]:
    return {a.id: a.name for a in ledger.store.accounts.all()}


@app.command()
def init(
    data_dir: str = typer.Option(None, "--data-dir", help="Path for Penny data (default: ~/Documents/penny)"),
):
    """Set up Penny: choose a data directory and initialize the database."""
    settings = load_settings()

    if data_dir:
        settings["data_dir"] = str(Path(data_dir).expanduser().resolve())
    elif settings == DEFAULTS:
        # First run, prompt for data dir
        default = settings["data_dir"]
        chosen = typer.prompt("Data directory", default=default)
        settings["data_dir"] = str(Path(chosen).expanduser().resolve())

    save_settings(settings)

    resolved = Path(settings["data_dir"])
    resolved.mkdir(parents=True, exist_ok=True)

    conn = get_connection(resolved / "penny.db")
    init_db(conn)
    conn.close()

    typer.echo(f"Initialized penny at {resolved}")


# --- Accounts ---

accounts_app = typer.Typer(help="Manage accounts.")
app.add_typer(accounts_app, name="accounts")


@accounts_app.command("add")
def accounts_add(
    name: str = typer.Argument(help="Account name, e.g. 'Wallet'"),
    balance: str = typer.Option("0", help="Initial balance"),
    description: str = typer.Option(None, help="Free-form description"),
    color: str = typer.Option("#6b7280", help="Display color"),
    reserve: bool = typer.Option(False, "--reserve", help="Keep this account out of the available total"),
):
    """Add a new account."""
    with open_ledger() as ledger:
        account = ledger.accounts.create(
            name, balance, description=description, color=color, exclude_from_total=reserve,
        )
    typer.echo(f"Added account: {account.name} ({_money(account.current_balance)})")


@accounts_app.command("list")
def accounts_list(
    all_accounts: bool = typer.Option(False, "--all", help="Include archived accounts"),
):
    """List accounts with their running balances."""
    with open_ledger() as ledger:
        accounts = ledger.accounts.list(include_archived=all_accounts)

    table = Table(title="Accounts")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Balance", justify="right")
    table.add_column("Initial", justify="right", style="dim")
    table.add_column("Reserve")
    table.add_column("Archived")
    for a in accounts:
        color = "green" if a.current_balance >= 0 else "red"
        table.add_row(
            str(a.id), a.name,
            f"[{color}]{_money(a.current_balance)}[/{color}]",
            _money(a.initial_balance),
            "yes" if a.exclude_from_total else "",
            "yes" if a.is_archived else "",
        )
    console.print(table)


@accounts_app.command("edit")
def accounts_edit(
    account: str = typer.Argument(help="Account name"),
    name: str = typer.Option(None, help="New name"),
    balance: str = typer.Option(None, help="New initial balance (running balance shifts by the difference)"),
    description: str = typer.Option(None, help="New description"),
    reserve: bool = typer.Option(None, "--reserve/--available", help="Move in or out of the reserve"),
):
    """Edit an account."""
    changes = {}
    if name is not None:
        changes["name"] = name
    if balance is not None:
        changes["initial_balance"] = balance
    if description is not None:
        changes["description"] = description
    if reserve is not None:
        changes["exclude_from_total"] = reserve
    with open_ledger() as ledger:
        target = ledger.accounts.find_by_name(account)
        updated = ledger.accounts.update(target.id, **changes)
    typer.echo(f"Updated account: {updated.name} ({_money(updated.current_balance)})")


@accounts_app.command("archive")
def accounts_archive(account: str = typer.Argument(help="Account name")):
    """Archive an account with a zero balance."""
    with open_ledger() as ledger:
        ledger.accounts.archive(ledger.accounts.find_by_name(account).id)
    typer.echo(f"Archived account: {account}")


@accounts_app.command("unarchive")
def accounts_unarchive(account: str = typer.Argument(help="Account name")):
    """Bring an archived account back."""
    with open_ledger() as ledger:
        ledger.accounts.unarchive(ledger.accounts.find_by_name(account).id)
    typer.echo(f"Unarchived account: {account}")


@accounts_app.command("delete")
def accounts_delete(account: str = typer.Argument(help="Account name")):
    """Delete an account with a zero balance and no transactions."""
    with open_ledger() as ledger:
        ledger.accounts.delete(ledger.accounts.find_by_name(account).id)
    typer.echo(f"Deleted account: {account}")


from penny.reconciler import check_balances


@accounts_app.command("check")
def accounts_check():
    """Recompute every balance from scratch and compare with the running balance."""
    with open_ledger() as ledger:
        results = check_balances(ledger.store)

    table = Table(title="Balance Check")
    table.add_column("Account")
    table.add_column("Stored", justify="right")
    table.add_column("Calculated", justify="right")
    table.add_column("Status")
    for r in results:
        status = "[green]ok[/green]" if r["is_consistent"] else f"[red]off by {_money(r['discrepancy'])}[/red]"
        table.add_row(r["name"], _money(r["stored"]), _money(r["calculated"]), status)
    console.print(table)

    if not all(r["is_consistent"] for r in results):
        raise typer.Exit(1)


# --- Categories ---

categories_app = typer.Typer(help="Manage categories.")
app.add_typer(categories_app, name="categories")


@categories_app.command("add")
def categories_add(
    name: str = typer.Argument(help="Category name"),
    type: str = typer.Option(help="Category type: income or expense"),
    color: str = typer.Option("#6b7280", help="Display color"),
    icon: str = typer.Option("tag", help="Icon name"),
):
    """Add a category."""
    if type not in CATEGORY_TYPES:
        typer.echo(f"Unknown category type: {type}")
        raise typer.Exit(1)
    with open_ledger() as ledger:
        ledger.store.categories.add(Category(id=None, name=name, category_type=type, color=color, icon=icon))
    typer.echo(f"Added category: {name}")


@categories_app.command("list")
def categories_list():
    """List categories."""
    with open_ledger() as ledger:
        categories = ledger.store.categories.all()

    table = Table(title="Categories")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Type")
    for c in sorted(categories, key=lambda c: (c.category_type, c.name)):
        table.add_row(str(c.id), c.name, c.category_type)
    console.print(table)


# --- Transactions ---

tx_app = typer.Typer(help="Record and manage transactions.")
app.add_typer(tx_app, name="tx")


@tx_app.command("add")
def tx_add(
    amount: str = typer.Option(help="Amount (always positive)"),
    account: str = typer.Option(help="Account name"),
    category: str = typer.Option(help="Category name"),
    description: str = typer.Option(help="Description"),
    type: str = typer.Option("expense", help="Transaction type: income or expense"),
    on: str = typer.Option(None, "--date", help="Date: YYYY-MM-DD (default: today)"),
    pending: bool = typer.Option(False, "--pending", help="Record without touching the balance yet"),
    recurring: str = typer.Option(None, help="Repeat: daily, weekly, monthly, yearly"),
    occurrences: int = typer.Option(None, help="How many times it repeats"),
    installment: bool = typer.Option(False, "--installment", help="Number monthly repeats as n/total"),
    tag: list[str] = typer.Option(None, "--tag", help="Tag (repeatable)"),
):
    """Record an income or expense."""
    with open_ledger() as ledger:
        if recurring and occurrences is None:
            occurrences = RECURRENCE_DEFAULTS.get(recurring)
        txn = ledger.transactions.create(Transaction(
            id=None,
            account_id=ledger.accounts.find_by_name(account).id,
            category_id=_category_id(ledger, category, type),
            type=type,
            status="pending" if pending else "completed",
            amount=amount,
            description=description,
            date=on or date.today().isoformat(),
            is_recurring=bool(recurring),
            recurrence_type=recurring or "none",
            recurrence_occurrences=occurrences,
            is_installment=installment,
            tags=list(tag or []),
        ))
    typer.echo(f"Recorded #{txn.id}: {txn.description} {_money(txn.amount)} ({txn.status})")


@tx_app.command("transfer")
def tx_transfer(
    amount: str = typer.Option(help="Amount to move"),
    from_account: str = typer.Option(..., "--from", help="Source account name"),
    to_account: str = typer.Option(..., "--to", help="Destination account name"),
    description: str = typer.Option(None, help="Description (default: 'From → To')"),
    on: str = typer.Option(None, "--date", help="Date: YYYY-MM-DD (default: today)"),
    pending: bool = typer.Option(False, "--pending", help="Record without moving money yet"),
):
    """Move money between two accounts."""
    with open_ledger() as ledger:
        source = ledger.accounts.find_by_name(from_account)
        target = ledger.accounts.find_by_name(to_account)
        txn = ledger.transactions.create(Transaction(
            id=None,
            account_id=source.id,
            category_id=None,
            type="transfer",
            status="pending" if pending else "completed",
            amount=amount,
            description=description or "",
            date=on or date.today().isoformat(),
            from_account_id=source.id,
            to_account_id=target.id,
        ))
    typer.echo(f"Transfer #{txn.id}: {txn.description} {_money(txn.amount)} ({txn.status})")


@tx_app.command("edit")
def tx_edit(
    txn_id: int = typer.Argument(help="Transaction ID"),
    amount: str = typer.Option(None, help="New amount"),
    description: str = typer.Option(None, help="New description"),
    on: str = typer.Option(None, "--date", help="New date: YYYY-MM-DD"),
    account: str = typer.Option(None, help="Move to another account"),
    from_account: str = typer.Option(None, "--from", help="New source account (transfers)"),
    to_account: str = typer.Option(None, "--to", help="New destination account (transfers)"),
    category: str = typer.Option(None, help="New category name"),
    type: str = typer.Option(None, help="New type: income, expense"),
    status: str = typer.Option(None, help="New status: pending, completed"),
):
    """Edit a transaction; balances are re-synced automatically."""
    changes = {}
    if amount is not None:
        changes["amount"] = amount
    if description is not None:
        changes["description"] = description
    if on is not None:
        changes["date"] = on
    if type is not None:
        changes["type"] = type
    if status is not None:
        changes["status"] = status
    with open_ledger() as ledger:
        if account is not None:
            changes["account_id"] = ledger.accounts.find_by_name(account).id
        if from_account is not None:
            changes["from_account_id"] = ledger.accounts.find_by_name(from_account).id
        if to_account is not None:
            changes["to_account_id"] = ledger.accounts.find_by_name(to_account).id
        if category is not None:
            changes["category_id"] = _category_id(ledger, category, type)
        txn = ledger.transactions.update(txn_id, **changes)
    typer.echo(f"Updated #{txn.id}: {txn.description} {_money(txn.amount)} ({txn.status})")


@tx_app.command("delete")
def tx_delete(txn_id: int = typer.Argument(help="Transaction ID")):
    """Delete a transaction, reversing its balance effect if it was completed."""
    with open_ledger() as ledger:
        ledger.transactions.delete(txn_id)
    typer.echo(f"Deleted #{txn_id}")


@tx_app.command("complete")
def tx_complete(txn_id: int = typer.Argument(help="Transaction ID")):
    """Mark a pending transaction as completed."""
    with open_ledger() as ledger:
        txn = ledger.transactions.complete(txn_id)
    typer.echo(f"Completed #{txn.id}: {txn.description} {_money(txn.amount)}")


@tx_app.command("list")
def tx_list(
    account: str = typer.Option(None, help="Only this account (transfers included)"),
    category: str = typer.Option(None, help="Only this category"),
    from_date: str = typer.Option(None, "--from", help="Start date: YYYY-MM-DD"),
    to_date: str = typer.Option(None, "--to", help="End date: YYYY-MM-DD"),
):
    """List transactions."""
    with open_ledger() as ledger:
        account_id = ledger.accounts.find_by_name(account).id if account else None
        category_id = _category_id(ledger, category) if category else None
        rows = ledger.transactions.list(
            account_id=account_id, category_id=category_id, start=from_date, end=to_date,
        )
        names = _account_names(ledger)

    if not rows:
        typer.echo("No transactions.")
        return

    table = Table(title=f"Transactions ({len(rows)})")
    table.add_column("ID", style="dim")
    table.add_column("Date")
    table.add_column("Description")
    table.add_column("Account")
    table.add_column("Status")
    table.add_column("Amount", justify="right")
    for t in rows:
        if t.type == "transfer":
            where = f"{names.get(t.from_account_id, '(deleted)')} → {names.get(t.to_account_id, '(deleted)')}"
            color = "blue"
        else:
            where = names.get(t.account_id, "(deleted)")
            color = "green" if t.type == "income" else "red"
        table.add_row(
            str(t.id), t.date, t.description, where, t.status,
            f"[{color}]{_money(t.amount)}[/{color}]",
        )
    console.print(table)


# --- Recurring ---

from penny.materializer import RecurringScheduler

recurring_app = typer.Typer(help="Generate recurring transactions.")
app.add_typer(recurring_app, name="recurring")


@recurring_app.command("run")
def recurring_run(
    today: str = typer.Option(None, help="Pretend today is YYYY-MM-DD"),
):
    """Generate every due occurrence of recurring transactions (as pending)."""
    try:
        as_of = as_date(today) if today else None
    except ValueError:
        typer.echo(f"Not a valid date: {today}")
        raise typer.Exit(1)
    with open_ledger() as ledger:
        created = ledger.materializer.materialize(as_of)
    typer.echo(f"{len(created)} recurring transaction(s) generated")


@recurring_app.command("watch")
def recurring_watch(
    interval: int = typer.Option(None, help="Minutes between runs (default from settings)"),
    max_runs: int = typer.Option(None, hidden=True),
):
    """Keep generating recurring transactions on a fixed interval until interrupted."""
    minutes = interval if interval is not None else load_settings()["recurring_interval_minutes"]
    with open_ledger() as ledger:
        scheduler = RecurringScheduler(ledger.materializer, interval_seconds=minutes * 60)
        typer.echo(f"Checking recurring transactions every {minutes} minute(s). Ctrl+C to stop.")
        try:
            runs = scheduler.run_forever(max_runs=max_runs)
        except KeyboardInterrupt:
            scheduler.stop()
            runs = None
    if runs is not None:
        typer.echo(f"Stopped after {runs} run(s)")


# --- Budgets ---

from penny.budgets import delete_budget, list_budgets, set_budget

budgets_app = typer.Typer(help="Monthly budgets per category.")
app.add_typer(budgets_app, name="budgets")


@budgets_app.command("set")
def budgets_set(
    category: str = typer.Argument(help="Category name"),
    month: str = typer.Argument(help="Month: YYYY-MM"),
    amount: str = typer.Argument(help="Budgeted amount"),
):
    """Set the budget of a category for a month."""
    with open_ledger() as ledger:
        budget = set_budget(ledger.store, _category_id(ledger, category), month, amount)
    typer.echo(f"Budget for {category} in {budget.month}: {_money(budget.amount)}")


@budgets_app.command("list")
def budgets_list(month: str = typer.Option(None, help="Month filter: YYYY-MM")):
    """List budgets."""
    with open_ledger() as ledger:
        budgets = list_budgets(ledger.store, month)
        categories = {c.id: c.name for c in ledger.store.categories.all()}

    table = Table(title="Budgets")
    table.add_column("ID", style="dim")
    table.add_column("Month")
    table.add_column("Category")
    table.add_column("Amount", justify="right")
    for b in budgets:
        table.add_row(str(b.id), b.month, categories.get(b.category_id, "(deleted)"), _money(b.amount))
    console.print(table)


@budgets_app.command("delete")
def budgets_delete(budget_id: int = typer.Argument(help="Budget ID")):
    """Delete a budget."""
    with open_ledger() as ledger:
        delete_budget(ledger.store, budget_id)
    typer.echo(f"Deleted budget #{budget_id}")


# --- Reports ---

report_app = typer.Typer(help="Generate reports.")
app.add_typer(report_app, name="report")


@report_app.command("balance")
def report_balance():
    """Cash position: available money versus reserves."""
    with open_ledger() as ledger:
        accounts = ledger.accounts.list(include_archived=False)
        totals = ledger.accounts.totals()

    table = Table(title="Cash Position")
    table.add_column("Account")
    table.add_column("Kind", style="dim")
    table.add_column("Balance", justify="right")
    for a in accounts:
        color = "green" if a.current_balance >= 0 else "red"
        table.add_row(
            a.name, "reserve" if a.exclude_from_total else "available",
            f"[{color}]{_money(a.current_balance)}[/{color}]",
        )
    table.add_row("[bold]Available[/bold]", "", f"[bold]{_money(totals['available'])}[/bold]")
    table.add_row("[bold]Reserve[/bold]", "", f"[bold]{_money(totals['reserve'])}[/bold]")
    console.print(table)
    console.print(f"\nTotal: {_money(totals['total'])}")


if __name__ == "__main__":
    app()
