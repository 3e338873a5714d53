"""Configuration constants for procprio.

Values that an operator may want to move (data directory, database, log
level) can be overridden through environment variables. Everything that
describes rules or scripts lives in the rule store instead.
"""

import os
from pathlib import Path

import psutil


def _default_data_dir() -> Path:
    if psutil.WINDOWS:
        return Path(os.environ.get("PROGRAMDATA", "C:\\ProgramData")) / "procprio"
    return Path.home() / ".local" / "share" / "procprio"


DATA_DIR = Path(os.environ.get("PROCPRIO_HOME") or _default_data_dir())
DB_PATH = Path(os.environ.get("PROCPRIO_DB") or DATA_DIR / "rules.db")
LOG_PATH = DATA_DIR / "procprio.log"

LOG_LEVEL = os.environ.get("PROCPRIO_LOG_LEVEL", "INFO").upper()

# Seconds between process list polls.
POLL_INTERVAL = 0.5
MIN_POLL_INTERVAL = 0.1

# Short names of processes that may host several OS services.
SERVICE_HOST_NAMES = frozenset({"svchost"})

HASH_SALT = "procprio:8f3c1a;Vq*7Lr|e2Wn~"
