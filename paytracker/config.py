"""Configuration for the pay tracker.

Values come from environment variables with sensible local defaults.
Nothing is created on import; call ``ensure_data_directories`` first.
"""

from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from typing import Optional

SAVES_DIR = Path(os.getenv("PAYTRACKER_DATA_DIR", "saves"))
DEFAULT_SAVE = os.getenv("PAYTRACKER_SAVE", "default")
LOG_LEVEL = os.getenv("PAYTRACKER_LOG_LEVEL", "WARNING").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def ensure_data_directories(directory: Optional[Path] = None) -> Path:
    target = Path(directory or SAVES_DIR)
    target.mkdir(parents=True, exist_ok=True)
    return target


def save_path(name: Optional[str] = None, directory: Optional[Path] = None) -> Path:
    return Path(directory or SAVES_DIR) / f"{name or DEFAULT_SAVE}.json"


def current_year() -> int:
    """Year templates are expanded into; PAYTRACKER_YEAR overrides today's."""
    override = os.getenv("PAYTRACKER_YEAR")
    if override and override.strip().isdigit():
        return int(override)
    return date.today().year
