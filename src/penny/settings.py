"""User settings, stored as JSON in ~/.config/penny/settings.json.

Saved values are merged over DEFAULTS on every load, so new keys appear for
existing installs:

- ``data_dir``: where ``penny.db`` lives (see ``get_db_path``)
- ``currency_symbol``: prefix used when amounts are printed
- ``recurring_interval_minutes``: default tick of ``penny recurring watch``
- ``log_level``: structlog filter level applied by the CLI callback
"""

import json
from pathlib import Path

CONFIG_DIR = Path.home() / ".config" / "penny"
SETTINGS_PATH = CONFIG_DIR / "settings.json"

DEFAULT_DATA_DIR = Path.home() / "Documents" / "penny"

DEFAULTS = {
    "data_dir": str(DEFAULT_DATA_DIR),
    "currency_symbol": "$",
    "recurring_interval_minutes": 60,
    "log_level": "WARNING",
}


def load_settings() -> dict:
    if SETTINGS_PATH.exists():
        with open(SETTINGS_PATH) as f:
            saved = json.loads(f.read())
        return {**DEFAULTS, **saved}
    return dict(DEFAULTS)


def save_settings(settings: dict) -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    with open(SETTINGS_PATH, "w") as f:
        f.write(json.dumps(settings, indent=2) + "\n")


def get_data_dir() -> Path:
    return Path(load_settings()["data_dir"])


def get_db_path() -> Path:
    return get_data_dir() / "penny.db"
