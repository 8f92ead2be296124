import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite:///data/jobs.db"


def load_env() -> None:
    """Load .env from the working directory if present.
    Variables already set in the environment win over the file.
    """
    env_path = Path.cwd() / ".env"
    if not env_path.exists():
        return
    load_dotenv(dotenv_path=env_path, override=False)


def get_database_url() -> str:
    return os.getenv("JOBINFO_DATABASE_URL", DEFAULT_DATABASE_URL)


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def get_log_level() -> str:
    level = os.getenv("JOBINFO_LOG_LEVEL", "INFO").strip().upper()
    if level not in LOG_LEVELS:
        raise ValueError(
            f"JOBINFO_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {level!r}"
        )
    return level


def get_log_dir() -> Optional[Path]:
    value = os.getenv("JOBINFO_LOG_DIR", "").strip()
    return Path(value) if value else None


def get_txn_retries() -> int:
    """Number of retries for transient transaction failures (default 3)."""
    raw = os.getenv("JOBINFO_TXN_RETRIES", "3")
    try:
        retries = int(raw)
    except ValueError:
        raise ValueError(f"JOBINFO_TXN_RETRIES must be an integer, got {raw!r}")
    if retries < 0:
        raise ValueError(f"JOBINFO_TXN_RETRIES must be >= 0, got {retries}")
    return retries
