from __future__ import annotations

import os
from pathlib import Path

_STATE_DIR_ENV = "TANZIL_STATE_DIR"
_DB_PATH_ENV = "TANZIL_DB"
DB_FILENAME = "tanzil.db"
LAST_READ_FILENAME = "last-read.json"


def state_dir() -> Path:
    env_dir = os.environ.get(_STATE_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".local" / "share" / "tanzil"


def default_db_path() -> Path:
    env_path = os.environ.get(_DB_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return state_dir() / DB_FILENAME


def default_last_read_path() -> Path:
    return state_dir() / LAST_READ_FILENAME
