import json

from typer.testing import CliRunner

from penny.cli import app

runner = CliRunner()


def _init(tmp_path, monkeypatch):
    """Point settings at tmp_path and run init with a custom data dir."""
    config_dir = tmp_path / "config"
    monkeypatch.setattr("penny.settings.CONFIG_DIR", config_dir)
    monkeypatch.setattr("penny.settings.SETTINGS_PATH", config_dir / "settings.json")
    data_dir = tmp_path / "data"
    result = runner.invoke(app, ["init", "--data-dir", str(data_dir)])
    assert result.exit_code == 0
    return data_dir


def _invoke(*args):
    return runner.invoke(app, list(args))


def test_init_creates_data_dir_and_db(tmp_path, monkeypatch):
    data_dir = _init(tmp_path, monkeypatch)
    assert (data_dir / "penny.db").exists()


def test_init_writes_settings(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    assert (tmp_path / "config" / "settings.json").exists()


def test_init_is_idempotent(tmp_path, monkeypatch):
    data_dir = _init(tmp_path, monkeypatch)
    result = runner.invoke(app, ["init", "--data-dir", str(data_dir)])
    assert result.exit_code == 0


def test_commands_need_an_initialized_ledger(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    monkeypatch.setattr("penny.settings.CONFIG_DIR", config_dir)
    monkeypatch.setattr("penny.settings.SETTINGS_PATH", config_dir / "settings.json")
    config_dir.mkdir()
    (config_dir / "settings.json").write_text(json.dumps({"data_dir": str(tmp_path / "nowhere")}))

    result = _invoke("accounts", "list")
    assert result.exit_code == 1
    assert "penny init" in result.output


def test_accounts_add_and_list(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)

    result = _invoke("accounts", "add", "Wallet", "--balance", "1000")
    assert result.exit_code == 0
    assert "Wallet ($1,000.00)" in result.output

    result = _invoke("accounts", "list")
    assert result.exit_code == 0
    assert "Wallet" in result.output


def test_accounts_add_rejects_negative_balance(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    result = _invoke("accounts", "add", "Wallet", "--balance", "-5")
    assert result.exit_code == 1
    assert "negative" in result.output


def test_tx_add_and_list(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    _invoke("accounts", "add", "Wallet", "--balance", "1000")

    result = _invoke(
        "tx", "add", "--amount", "200", "--account", "Wallet", "--category", "Groceries",
        "--description", "Market", "--date", "2025-03-01",
    )
    assert result.exit_code == 0
    assert "Recorded #1: Market $200.00 (completed)" in result.output

    result = _invoke("tx", "list")
    assert result.exit_code == 0
    assert "Market" in result.output

    result = _invoke("report", "balance")
    assert "Total: $800.00" in result.output


def test_tx_list_empty(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    result = _invoke("tx", "list")
    assert result.exit_code == 0
    assert "No transactions." in result.output


def test_tx_edit_complete_and_delete(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    _invoke("accounts", "add", "Wallet", "--balance", "100")
    _invoke(
        "tx", "add", "--amount", "40", "--account", "Wallet", "--category", "Salary",
        "--description", "Refund", "--type", "income", "--pending",
    )

    result = _invoke("tx", "edit", "1", "--amount", "50")
    assert result.exit_code == 0
    assert "$50.00 (pending)" in result.output

    result = _invoke("tx", "complete", "1")
    assert result.exit_code == 0
    assert "Total: $150.00" in _invoke("report", "balance").output

    result = _invoke("tx", "delete", "1")
    assert result.exit_code == 0
    assert "Total: $100.00" in _invoke("report", "balance").output


def test_transfer_and_insufficient_funds(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    _invoke("accounts", "add", "Wallet", "--balance", "1000")
    _invoke("accounts", "add", "Savings", "--reserve")

    result = _invoke("tx", "transfer", "--amount", "150", "--from", "Wallet", "--to", "Savings")
    assert result.exit_code == 0
    assert "Wallet → Savings $150.00 (completed)" in result.output

    result = _invoke("tx", "transfer", "--amount", "5000", "--from", "Wallet", "--to", "Savings")
    assert result.exit_code == 1
    assert "Insufficient balance" in result.output

    result = _invoke("accounts", "check")
    assert result.exit_code == 0


def test_unknown_account_exits_1(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    result = _invoke(
        "tx", "add", "--amount", "1", "--account", "Nope", "--category", "Groceries", "--description", "x",
    )
    assert result.exit_code == 1
    assert "Account not found: Nope" in result.output


def test_recurring_run(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    _invoke("accounts", "add", "Wallet", "--balance", "1000")
    _invoke(
        "tx", "add", "--amount", "500", "--account", "Wallet", "--category", "Housing",
        "--description", "Rent", "--date", "2024-01-15", "--recurring", "monthly", "--occurrences", "3",
    )

    result = _invoke("recurring", "run", "--today", "2024-04-20")
    assert result.exit_code == 0
    assert "3 recurring transaction(s) generated" in result.output

    result = _invoke("recurring", "run", "--today", "2024-04-20")
    assert "0 recurring transaction(s) generated" in result.output


def test_recurring_run_rejects_bad_date(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    result = _invoke("recurring", "run", "--today", "soon")
    assert result.exit_code == 1
    assert "Not a valid date" in result.output


def test_recurring_watch_single_run(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    result = _invoke("recurring", "watch", "--interval", "0", "--max-runs", "1")
    assert result.exit_code == 0
    assert "Stopped after 1 run(s)" in result.output


def test_budgets_set_list_delete(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    result = _invoke("budgets", "set", "Groceries", "2025-03", "400")
    assert result.exit_code == 0
    assert "Budget for Groceries in 2025-03: $400.00" in result.output

    result = _invoke("budgets", "list", "--month", "2025-03")
    assert "Groceries" in result.output

    assert _invoke("budgets", "delete", "1").exit_code == 0
    assert _invoke("budgets", "delete", "1").exit_code == 1


def test_accounts_archive_requires_zero_balance(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    _invoke("accounts", "add", "Wallet", "--balance", "10")
    _invoke("accounts", "add", "Old")

    assert _invoke("accounts", "archive", "Wallet").exit_code == 1
    assert _invoke("accounts", "archive", "Old").exit_code == 0
    assert "Old" not in _invoke("accounts", "list").output
    assert "Old" in _invoke("accounts", "list", "--all").output


def test_categories_add_and_list(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    assert _invoke("categories", "add", "Pets", "--type", "expense").exit_code == 0
    assert "Pets" in _invoke("categories", "list").output
    assert _invoke("categories", "add", "Gifts", "--type", "refund").exit_code == 1


def test_tx_edit_transfer_accounts(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    _invoke("accounts", "add", "Wallet", "--balance", "1000")
    _invoke("accounts", "add", "Card", "--balance", "500")
    _invoke("accounts", "add", "Savings")
    _invoke("tx", "transfer", "--amount", "150", "--from", "Wallet", "--to", "Savings")

    result = _invoke("tx", "edit", "1", "--from", "Card")
    assert result.exit_code == 0
    assert _invoke("accounts", "check").exit_code == 0

    output = _invoke("tx", "list", "--account", "Wallet").output
    assert "No transactions." in output


def test_tx_list_rejects_bad_dates(tmp_path, monkeypatch):
    _init(tmp_path, monkeypatch)
    result = _invoke("tx", "list", "--from", "yesterday")
    assert result.exit_code == 1
    assert "Not a valid date" in result.output
