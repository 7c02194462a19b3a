"""XDG-compliant locations for podsync files."""

from pathlib import Path

import platformdirs

APP_NAME = "podsync"


def get_config_dir() -> Path:
    return Path(platformdirs.user_config_dir(APP_NAME))


def get_config_file() -> Path:
    return get_config_dir() / "config.yaml"


def get_data_dir() -> Path:
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_history_file() -> Path:
    """Transaction history, kept across sync cycles."""
    return get_data_dir() / "transactions.json"


def get_log_dir() -> Path:
    return Path(platformdirs.user_log_dir(APP_NAME))
