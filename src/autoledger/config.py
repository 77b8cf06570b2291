"""
autoledger - Configuration

All runtime settings are read from environment variables, optionally loaded
from a `.env` file in the working directory.

Database:
    LEDGER_DB_BACKEND   sqlite (default) or mysql
    LEDGER_DB_PATH      path of the SQLite file
    DB_USER, DB_PASSWORD, DB_HOST, DB_PORT, DB_NAME   MySQL credentials

Scheduler:
    LEDGER_SCHEDULER_INTERVAL      seconds between ticks
    LEDGER_BALANCE_CHECK_TIME      HH:MM of the daily insufficient-balance sweep
    LEDGER_DEFAULT_EXECUTION_TIME  HH:MM used when a plan omits executionTime
    LEDGER_DUE_REMINDER_DAYS       credit due reminder threshold in days

Logging / API:
    LEDGER_LOG_LEVEL, LEDGER_LOG_JSON, SECRET_KEY
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables (database credentials, SECRET_KEY, etc.)
load_dotenv()

DEFAULT_DB_PATH = Path(__file__).parent / "data" / "autoledger.db"


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    db_backend: str = "sqlite"
    db_path: Path = DEFAULT_DB_PATH
    mysql: dict = field(default_factory=dict)
    scheduler_interval: float = 60.0
    balance_check_time: str = "08:00"
    default_execution_time: str = "09:00"
    due_reminder_days: int = 3
    log_level: str = "INFO"
    log_json: bool = False
    secret_key: str = "dev-secret-key-change-in-production"

    @classmethod
    def from_env(cls):
        """Build settings from the current process environment."""
        return cls(
            db_backend=os.getenv("LEDGER_DB_BACKEND", "sqlite").lower(),
            db_path=Path(os.getenv("LEDGER_DB_PATH", str(DEFAULT_DB_PATH))),
            mysql={
                'user': os.getenv('DB_USER'),
                'password': os.getenv('DB_PASSWORD'),
                'host': os.getenv('DB_HOST', 'localhost'),
                'port': int(os.getenv('DB_PORT', 3306)),
                'database': os.getenv('DB_NAME', 'autoledger'),
            },
            scheduler_interval=float(os.getenv("LEDGER_SCHEDULER_INTERVAL", 60)),
            balance_check_time=os.getenv("LEDGER_BALANCE_CHECK_TIME", "08:00"),
            default_execution_time=os.getenv("LEDGER_DEFAULT_EXECUTION_TIME", "09:00"),
            due_reminder_days=int(os.getenv("LEDGER_DUE_REMINDER_DAYS", 3)),
            log_level=os.getenv("LEDGER_LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LEDGER_LOG_JSON"),
            secret_key=os.getenv("SECRET_KEY", "dev-secret-key-change-in-production"),
        )


_settings = None


def get_settings():
    """Return process-wide settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
