from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "FocusGuard"


def data_directory() -> Path:
    override = os.environ.get("FOCUSGUARD_HOME")
    if override:
        return Path(override)
    if sys.platform == "win32":
        local_appdata = os.environ.get("LOCALAPPDATA")
        base = Path(local_appdata) if local_appdata else Path.home() / "AppData" / "Local"
        return base / APP_DIR_NAME
    xdg_data = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg_data) if xdg_data else Path.home() / ".local" / "share"
    return base / APP_DIR_NAME.lower()


def database_path() -> Path:
    return data_directory() / "focusguard.sqlite3"


def log_directory() -> Path:
    return data_directory() / "logs"


def log_file_path() -> Path:
    return log_directory() / "focusguard.log"


def ensure_directories() -> None:
    log_directory().mkdir(parents=True, exist_ok=True)
