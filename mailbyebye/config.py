"""
Settings: constants, KEY=VALUE config file loading and the per-run context.
"""
import os
import stat
from dataclasses import dataclass, field
from datetime import datetime

from mailbyebye.errors import ValidationError

# Config
CONFIG_FILE_LOCAL = ".mailbyebye_config"
CONFIG_FILE_HOME = os.path.expanduser("~/.mailbyebye_config")

GMAIL_SCOPES = ['https://mail.google.com/']
VAULT_SCOPES = ['https://www.googleapis.com/auth/ediscovery']

BACKEND_REMOTE = "remote-mail"
BACKEND_BULK = "bulk-search"
BACKENDS = (BACKEND_REMOTE, BACKEND_BULK)

# Remote-mail pacing
DELETE_BATCH_LIMIT = 20  # Sub-requests per HTTP batch
FETCH_PAGE_LIMIT = 200
FETCH_PAGE_MULTIPLIER = 4
MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 2
BATCH_PAUSE_SECONDS = 0.2

# Bulk-search pacing
POLL_INTERVAL_SECONDS = 30
DEFAULT_WAIT_MINUTES = 10
EXTENDED_WAIT_MINUTES = 120
PURGE_CHUNK_LIMIT = 1000  # Gmail batchDelete max ids per call

MAX_RANGE_DAYS = 365

# Defaults
DEFAULT_CONFIG = {
    "SERVICE_ACCOUNT_FILE": None,
    "ADMIN_EMAIL": None,  # Vault calls run as this admin
    "CREDENTIALS_FILE": "credentials.json",
    "TOKEN_FILE": "token.json",
    "BACKEND": BACKEND_REMOTE,
    "PAGE_SIZE": 50,  # Fetch pages are 4x this, capped at 200
    "MAX_WAIT_MINUTES": DEFAULT_WAIT_MINUTES,
    "LOG_DIR": ".",
    "DAYS_OLD": None,
    "CUTOFF_DATE": None,
    "START_DATE": None,
    "END_DATE": None,
}

INT_KEYS = ("PAGE_SIZE", "MAX_WAIT_MINUTES", "DAYS_OLD")


def find_config_file():
    """Return the first config file that exists, or None."""
    for path in (CONFIG_FILE_LOCAL, CONFIG_FILE_HOME):
        if os.path.exists(path):
            return path
    return None


def load_config(config_file=None):
    """Load settings from config file."""
    config = dict(DEFAULT_CONFIG)

    if config_file is None:
        config_file = find_config_file()
    if not config_file:
        return config
    if not os.path.exists(config_file):
        raise ValidationError(f"Config file not found: {config_file}", usage="--config /path/to/.mailbyebye_config")

    with open(config_file) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip()

            if key not in DEFAULT_CONFIG:
                continue
            if key in INT_KEYS:
                try:
                    val = int(value)
                except ValueError:
                    val = 0
                if val <= 0:
                    print(f"Warning: {key} must be a positive number, using default ({DEFAULT_CONFIG[key]})")
                    continue
                config[key] = val
            else:
                config[key] = value or None

    print(f"Loaded config from {config_file}")

    # Warn if config file is readable by others (points at credentials)
    file_mode = os.stat(config_file).st_mode
    if file_mode & (stat.S_IRGRP | stat.S_IROTH):
        print(f"WARNING: {config_file} is readable by other users!")
        print(f"  Run: chmod 600 {config_file}")

    return config


@dataclass
class RunTotals:
    """Aggregate over every target of one run."""
    targets: int = 0
    deleted: int = 0
    failed: int = 0
    would_delete: int = 0
    purged: int = 0
    errors: int = 0

    def add_tally(self, tally):
        self.targets += 1
        self.deleted += tally.deleted
        self.failed += tally.failed
        self.would_delete += tally.would_delete

    def add_bulk(self, result):
        self.targets += 1
        self.purged += result.item_count
        self.would_delete += result.would_purge


@dataclass
class RunContext:
    """Everything one invocation needs, built once and passed down."""
    config: dict
    audit: object
    gate: object
    backend: str = BACKEND_REMOTE
    dry_run: bool = False
    check_only: bool = False
    extended_wait: bool = False
    remove_holds: bool = False
    page_size: int = 50
    started_at: datetime = field(default_factory=datetime.now)
    totals: RunTotals = field(default_factory=RunTotals)

    @property
    def max_wait_minutes(self):
        if self.extended_wait:
            return EXTENDED_WAIT_MINUTES
        return self.config.get("MAX_WAIT_MINUTES") or DEFAULT_WAIT_MINUTES

    def elapsed(self):
        return (datetime.now() - self.started_at).total_seconds()
