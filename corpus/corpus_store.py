"""
corpus/corpus_store.py -- SQLite persistence for synthesized items and images.

Two tables live in ``<data_dir>/corpus.db``:

    items   one row per corpus record, indexed by category; the full item
            is kept as a JSON document next to a few queryable columns.
    images  generated illustrations keyed by prompt text.  A row is either
            image bytes or the blocked marker (set when a learner flags the
            picture as wrong).  Only the newest ``image_cap`` rows survive;
            eviction ignores the blocked marker.

Updating or deleting an id that is not stored is a no-op that returns
``False`` / ``0``.

All methods are synchronous and guarded by one ``threading.RLock`` so the
async gateway can run them on worker threads.

Usage:
    from corpus.corpus_store import CorpusStore

    store = CorpusStore("/path/to/data")
    store.put(item)
    n = store.count_by_category(Category.MATH)
    replay = store.random_by_category(Category.MATH)
    store.close()
"""

import json
import logging
import os
import random
import sqlite3
import threading
from pathlib import Path

from corpus.models.items import MAX_DIFFICULTY, MIN_DIFFICULTY, Category, IllustrationRecord, Item
from corpus.utils import now_iso, now_millis

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_CAP = 150


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    kind TEXT NOT NULL,
    text TEXT NOT NULL,
    difficulty_level INTEGER NOT NULL,
    illustration_prompt TEXT,
    data JSON NOT NULL,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS images (
    prompt TEXT PRIMARY KEY,
    image BLOB,
    blocked INTEGER NOT NULL DEFAULT 0,
    stored_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_category ON items(category);
CREATE INDEX IF NOT EXISTS idx_images_stored_at ON images(stored_at);
"""


# ---------------------------------------------------------------------------
# CorpusStore
# ---------------------------------------------------------------------------

class CorpusStore:
    """Key-value store for corpus items with a by-category index.

    Parameters
    ----------
    data_dir : str
        Directory that holds ``corpus.db``.  Created if missing.
    image_cap : int
        Maximum number of rows kept in the image sub-store.
    """

    def __init__(self, data_dir: str, image_cap: int = DEFAULT_IMAGE_CAP):
        self.root = Path(data_dir).resolve()
        os.makedirs(str(self.root), exist_ok=True)
        self.db_path = self.root / "corpus.db"
        self.image_cap = image_cap
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Items: writes
    # ------------------------------------------------------------------

    def put(self, item: Item) -> None:
        """Insert or replace one item."""
        self.put_many([item])

    def put_many(self, items: list[Item]) -> int:
        """Insert or replace several items in one transaction."""
        rows = [self._item_row(item) for item in items]
        with self._lock:
            self._conn.executemany(
                """
                INSERT INTO items (id, category, kind, text, difficulty_level,
                                   illustration_prompt, data, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    category = excluded.category,
                    kind = excluded.kind,
                    text = excluded.text,
                    difficulty_level = excluded.difficulty_level,
                    illustration_prompt = excluded.illustration_prompt,
                    data = excluded.data
                """,
                rows,
            )
            self._conn.commit()
        return len(rows)

    def update_difficulty(self, item_id: str, new_level: int) -> bool:
        """Set the stored difficulty of *item_id*.

        Returns ``False`` (and changes nothing) when the id is unknown.
        """
        if not MIN_DIFFICULTY <= new_level <= MAX_DIFFICULTY:
            raise ValueError(f"difficulty {new_level} outside {MIN_DIFFICULTY}..{MAX_DIFFICULTY}")
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM items WHERE id = ?", (item_id,)
            ).fetchone()
            if row is None:
                return False
            data = json.loads(row["data"])
            data["difficulty_level"] = new_level
            self._conn.execute(
                "UPDATE items SET difficulty_level = ?, data = ? WHERE id = ?",
                (new_level, json.dumps(data, ensure_ascii=False), item_id),
            )
            self._conn.commit()
        return True

    def delete_many(self, item_ids: list[str]) -> int:
        """Delete the given ids; unknown ids are ignored.  Returns rows removed."""
        if not item_ids:
            return 0
        with self._lock:
            cur = self._conn.executemany(
                "DELETE FROM items WHERE id = ?", [(i,) for i in item_ids]
            )
            self._conn.commit()
            return cur.rowcount if cur.rowcount is not None and cur.rowcount >= 0 else 0

    # ------------------------------------------------------------------
    # Items: reads
    # ------------------------------------------------------------------

    def get(self, item_id: str) -> Item | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM items WHERE id = ?", (item_id,)
            ).fetchone()
        return self._row_to_item(row) if row else None

    def count_by_category(self, category: Category) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM items WHERE category = ?",
                (Category(category).value,),
            ).fetchone()
        return int(row["n"])

    def random_by_category(
        self, category: Category, rng: random.Random | None = None
    ) -> Item | None:
        """Return a random stored item of *category*, reissued with a fresh id.

        The returned item remembers the stored id in ``source_id``.
        Returns ``None`` when the category is empty.
        """
        rng = rng or random
        with self._lock:
            ids = [
                r["id"] for r in self._conn.execute(
                    "SELECT id FROM items WHERE category = ? ORDER BY rowid",
                    (Category(category).value,),
                ).fetchall()
            ]
            if not ids:
                return None
            stored = self.get(rng.choice(ids))
        return stored.reissued() if stored else None

    def all_items(self, category: Category | None = None) -> list[Item]:
        """Return stored items in insertion order, optionally for one category."""
        with self._lock:
            if category is None:
                rows = self._conn.execute(
                    "SELECT data FROM items ORDER BY rowid"
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT data FROM items WHERE category = ? ORDER BY rowid",
                    (Category(category).value,),
                ).fetchall()
        items = []
        for row in rows:
            item = self._row_to_item(row)
            if item is not None:
                items.append(item)
        return items

    def illustration_prompts(self) -> list[str]:
        """Distinct illustration prompts referenced by stored items."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT DISTINCT illustration_prompt FROM items
                WHERE illustration_prompt IS NOT NULL AND illustration_prompt != ''
                ORDER BY illustration_prompt
                """
            ).fetchall()
        return [r["illustration_prompt"] for r in rows]

    def get_stats(self) -> dict:
        """Per-category item counts plus the image count."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT category, COUNT(*) AS n FROM items GROUP BY category"
            ).fetchall()
            image_count = self._conn.execute(
                "SELECT COUNT(*) AS n FROM images"
            ).fetchone()["n"]
        by_category = {c.value: 0 for c in Category}
        for r in rows:
            by_category[r["category"]] = int(r["n"])
        return {
            "by_category": by_category,
            "total_items": sum(by_category.values()),
            "image_count": int(image_count),
        }

    # ------------------------------------------------------------------
    # Image sub-store
    # ------------------------------------------------------------------

    def get_image(self, prompt: str) -> IllustrationRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT prompt, image, blocked, stored_at FROM images WHERE prompt = ?",
                (prompt,),
            ).fetchone()
        if row is None:
            return None
        return IllustrationRecord(
            prompt=row["prompt"],
            image=bytes(row["image"]) if row["image"] is not None else None,
            blocked=bool(row["blocked"]),
            stored_at=row["stored_at"],
        )

    def put_image(self, prompt: str, image: bytes) -> None:
        self._write_image(prompt, image, blocked=False)

    def block_image(self, prompt: str) -> None:
        """Replace any stored image for *prompt* with the blocked marker."""
        self._write_image(prompt, None, blocked=True)

    def image_count(self) -> int:
        with self._lock:
            return int(self._conn.execute("SELECT COUNT(*) AS n FROM images").fetchone()["n"])

    def _write_image(self, prompt: str, image: bytes | None, blocked: bool) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO images (prompt, image, blocked, stored_at) "
                "VALUES (?, ?, ?, ?)",
                (prompt, image, 1 if blocked else 0, now_millis()),
            )
            evicted = self._evict_images()
            self._conn.commit()
        if evicted:
            logger.debug("Evicted %d old illustration(s)", evicted)

    def _evict_images(self) -> int:
        """Drop the oldest rows beyond ``image_cap``.  Caller holds the lock."""
        cur = self._conn.execute(
            """
            DELETE FROM images WHERE prompt IN (
                SELECT prompt FROM images
                ORDER BY stored_at DESC, rowid DESC
                LIMIT -1 OFFSET ?
            )
            """,
            (self.image_cap,),
        )
        return cur.rowcount or 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _item_row(item: Item) -> tuple:
        return (
            item.id,
            item.category.value,
            item.kind.value,
            item.text,
            item.difficulty_level,
            item.illustration_prompt,
            json.dumps(item.to_record(), ensure_ascii=False),
            now_iso(),
        )

    @staticmethod
    def _row_to_item(row) -> Item | None:
        try:
            return Item.from_record(json.loads(row["data"]))
        except (ValueError, TypeError):
            logger.warning("Skipping unreadable corpus row", exc_info=True)
            return None

    def close(self) -> None:
        with self._lock:
            self._conn.close()
