"""Configuration management for the budget engine.

This module centralizes all configuration values including paths,
defaults, and environment variable overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

# Base project root - assumes this file is in budget_engine/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("BUDGET_ENGINE_DATA_DIR", _PROJECT_ROOT / "data"))

# Database
DB_PATH = Path(
    os.getenv("BUDGET_ENGINE_DB_PATH", DATA_DIR / "budgets.db")
).resolve()

# Number of full months of history used for averaging
MONTHS_TO_ANALYZE = int(os.getenv("BUDGET_ENGINE_MONTHS_TO_ANALYZE", "6"))

# Share of the months with any data a category must appear in to be averaged
# over the whole analysis window instead of over the months it appeared in.
DENSE_THRESHOLD = float(os.getenv("BUDGET_ENGINE_DENSE_THRESHOLD", "0.8"))

LOG_LEVEL = os.getenv("BUDGET_ENGINE_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    for directory in [DATA_DIR, DB_PATH.parent]:
        directory.mkdir(parents=True, exist_ok=True)


def get_db_path() -> str:
    """Get the database path as a string (for sqlite3.connect)."""
    return str(DB_PATH)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts using the engine."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
