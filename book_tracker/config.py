"""
Configuration constants and environment settings for the book tracker.
"""
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

# --- Ownership Scanning ---
# Scan results are reused for this long before the collection is walked again.
DEFAULT_SCAN_TTL_SECONDS = 60 * 60  # 1 hour

# Trailing "(2023)" / "(hardcover)" style annotations on book folders.
# Folder organization only, never part of the title.
TITLE_SUFFIX_PATTERN = r'\s*\([^)]*\)\s*$'

# --- Catalog ---
DEFAULT_DATABASE_PATH = Path("./data/books.db")
DEFAULT_LIST_LIMIT = 50

# --- Logging ---
LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}

# --- Environment Variables ---
ENV_COLLECTION_ROOT = "COLLECTION_ROOT"
ENV_DATABASE_PATH = "DATABASE_PATH"
ENV_SCAN_TTL = "OWNERSHIP_SCAN_TTL"
ENV_LOG_LEVEL = "LOG_LEVEL"


@dataclass
class Settings:
    """
    Process configuration, read once at startup.
    """
    collection_root: Optional[Path] = None
    database_path: Path = DEFAULT_DATABASE_PATH
    scan_ttl_seconds: float = DEFAULT_SCAN_TTL_SECONDS
    log_level: int = logging.INFO

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Builds settings from environment variables.

        Args:
            env: Mapping to read instead of os.environ (used by tests).
        """
        env = env if env is not None else os.environ

        root = env.get(ENV_COLLECTION_ROOT)
        db_path = env.get(ENV_DATABASE_PATH)

        return cls(
            collection_root=Path(root) if root else None,
            database_path=Path(db_path) if db_path else DEFAULT_DATABASE_PATH,
            scan_ttl_seconds=_parse_ttl(env.get(ENV_SCAN_TTL)),
            log_level=_parse_log_level(env.get(ENV_LOG_LEVEL)),
        )


def _parse_ttl(value: Optional[str]) -> float:
    if value is None or not value.strip():
        return DEFAULT_SCAN_TTL_SECONDS
    try:
        ttl = float(value)
    except ValueError:
        logging.warning(f"Invalid {ENV_SCAN_TTL} '{value}', defaulting to {DEFAULT_SCAN_TTL_SECONDS}s")
        return DEFAULT_SCAN_TTL_SECONDS
    if not math.isfinite(ttl) or ttl < 0:
        logging.warning(f"Out of range {ENV_SCAN_TTL} '{value}', defaulting to {DEFAULT_SCAN_TTL_SECONDS}s")
        return DEFAULT_SCAN_TTL_SECONDS
    return ttl


def _parse_log_level(value: Optional[str]) -> int:
    if not value:
        return logging.INFO
    level = LOG_LEVELS.get(value.strip().lower())
    if level is None:
        logging.warning(f"Invalid {ENV_LOG_LEVEL} '{value}', defaulting to 'info'")
        return logging.INFO
    return level
