"""
corpus/remote_mirror.py -- Optional mirror of the item corpus.

The local SQLite store is authoritative.  A mirror holds a copy of every
item record so several installations can share one growing corpus.  This
implementation keeps one JSON document per item under
``<mirror_dir>/items/<id>.json`` (e.g. a synced or network folder), written
atomically.

Like hosted document stores, a mirror refuses batch writes larger than
``max_batch``; callers must split work with ``corpus.utils.chunked``.

Usage:
    from corpus.remote_mirror import JsonDirectoryMirror

    mirror = JsonDirectoryMirror("/mnt/shared/quiz-corpus")
    mirror.put_many([item.to_record() for item in items])
    records = mirror.fetch_all()
"""

import logging
import os
import re
from pathlib import Path

from corpus.utils import now_iso, safe_read_json, safe_write_json

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH = 400

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonDirectoryMirror:
    """Document-per-item mirror stored in a directory tree.

    Parameters
    ----------
    mirror_dir : str
        Root directory of the mirror.  Created if missing.
    max_batch : int
        Largest number of documents accepted by one batch call.
    """

    def __init__(self, mirror_dir: str, max_batch: int = DEFAULT_MAX_BATCH):
        self.root = Path(mirror_dir).resolve()
        self.items_dir = self.root / "items"
        self.max_batch = max_batch
        os.makedirs(str(self.items_dir), exist_ok=True)

    def _doc_path(self, item_id: str) -> Path:
        if not _SAFE_ID_RE.match(item_id):
            raise ValueError(f"Unsafe item id for mirror: {item_id!r}")
        return self.items_dir / f"{item_id}.json"

    def _check_batch(self, size: int) -> None:
        if size > self.max_batch:
            raise ValueError(
                f"Batch of {size} exceeds mirror limit of {self.max_batch}"
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put_many(self, records: list[dict]) -> int:
        """Write (merge) item records.  Returns the number written."""
        self._check_batch(len(records))
        for record in records:
            path = self._doc_path(record["id"])
            existing = safe_read_json(str(path), default={}) or {}
            merged = dict(existing)
            merged.update(record)
            merged.setdefault("mirrored_at", now_iso())
            safe_write_json(str(path), merged)
        return len(records)

    def update_fields(self, item_id: str, fields: dict) -> bool:
        """Merge *fields* into an existing document; unknown ids are a no-op."""
        path = self._doc_path(item_id)
        existing = safe_read_json(str(path))
        if not isinstance(existing, dict):
            return False
        existing.update(fields)
        safe_write_json(str(path), existing)
        return True

    def delete_many(self, item_ids: list[str]) -> int:
        """Remove documents; missing ones are ignored.  Returns the number removed."""
        self._check_batch(len(item_ids))
        removed = 0
        for item_id in item_ids:
            try:
                os.remove(str(self._doc_path(item_id)))
                removed += 1
            except FileNotFoundError:
                continue
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_all(self) -> list[dict]:
        """Return every readable document, sorted by id."""
        records = []
        for path in sorted(self.items_dir.glob("*.json")):
            data = safe_read_json(str(path))
            if isinstance(data, dict) and data.get("id"):
                records.append(data)
            else:
                logger.warning("Skipping unreadable mirror document %s", path.name)
        return records

    def count(self) -> int:
        return sum(1 for _ in self.items_dir.glob("*.json"))
