"""
supply/paths.py -- Path resolution for corpus data and settings.

Uses platformdirs for the per-user data directory.  ``QUIZ_SUPPLY_DATA_DIR``
overrides it (handy for tests and shared installs).
"""

from __future__ import annotations

import os

from platformdirs import user_data_dir

_APP_NAME = "QuizSupply"
_APP_AUTHOR = "QuizSupply"

DATA_DIR_ENV = "QUIZ_SUPPLY_DATA_DIR"


def get_user_data_dir() -> str:
    """Return the platform-appropriate user data directory (created if needed)."""
    path = os.environ.get(DATA_DIR_ENV) or user_data_dir(_APP_NAME, _APP_AUTHOR)
    os.makedirs(path, exist_ok=True)
    return path


def get_settings_path(data_dir: str | None = None) -> str:
    """Return the path of the JSON settings file inside *data_dir*."""
    return os.path.join(data_dir or get_user_data_dir(), "settings.json")
