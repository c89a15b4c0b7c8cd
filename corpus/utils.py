"""
Shared utility functions for the quiz content-supply corpus.

Holds the small helpers every corpus module needs: atomic JSON I/O for
settings files and mirror documents, item id generation, and timestamps.

All JSON writes use atomic temp-file-then-os.replace() so a crash never
leaves a half-written document behind.
"""

import json
import logging
import os
import tempfile
import time
import uuid
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Identifiers and time
# ---------------------------------------------------------------------------

def new_item_id() -> str:
    """Return a fresh opaque item identifier."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """UTC timestamp for created_at / updated_at columns."""
    return datetime.now(timezone.utc).isoformat()


def now_millis() -> int:
    """Return wall-clock time in milliseconds (image retention ordering)."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Settings and mirror documents
# ---------------------------------------------------------------------------

def safe_read_json(path, default=None):
    """Load a settings file or mirror document.

    A missing, unreadable or malformed file yields *default*.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return default


def safe_write_json(path, data, *, indent=2):
    """Persist *data* to *path* through a sibling temp file and ``os.replace``."""
    path = str(path)
    parent = os.path.dirname(path)
    os.makedirs(parent, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=indent, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def chunked(seq, size):
    """Yield successive slices of *seq* holding at most *size* elements."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(seq), size):
        yield seq[start:start + size]
