from __future__ import annotations

import os
from pathlib import Path

RATINGS_FILE = "ratings.json"
LEDGER_FILE = "sent.json"
CONFIG_FILE = "config.json"


def default_data_dir(profile: str | None = None) -> Path:
    base = Path.home() / ".config" / "ratetrack"
    return base / profile if profile else base


def resolve_data_dir(data_arg: str | None, profile: str | None) -> Path:
    if data_arg:
        return Path(data_arg).expanduser().resolve()
    env = os.environ.get("RATETRACK_HOME")
    if env:
        return Path(env).expanduser().resolve()
    return default_data_dir(profile).expanduser().resolve()


def resolve_config_path(config_arg: str | None, data_dir: Path) -> Path:
    if config_arg:
        return Path(config_arg).expanduser().resolve()
    return data_dir / CONFIG_FILE
