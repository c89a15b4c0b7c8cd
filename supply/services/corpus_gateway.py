"""
supply/services/corpus_gateway.py -- Async facade over the corpus store.

The SQLite store is synchronous; every call here runs it on a worker
thread (``asyncio.to_thread``) so the event loop never blocks on disk I/O.
When a mirror is configured, writes are mirrored after the local write
succeeds.  Mirror failures are logged and swallowed: the local store is
authoritative and the mirror can be re-pushed with ``push_to_mirror``.

Batch operations against the mirror are split into chunks of at most
``batch_size`` documents.
"""

from __future__ import annotations

import asyncio
import logging
import random

from corpus.corpus_store import CorpusStore
from corpus.models.items import Category, IllustrationRecord, Item
from corpus.remote_mirror import JsonDirectoryMirror
from corpus.utils import chunked

logger = logging.getLogger(__name__)


class CorpusGateway:
    """Async access to the local corpus and its optional mirror.

    Parameters
    ----------
    store : CorpusStore
        Local authoritative store.
    mirror : JsonDirectoryMirror | None
        Optional remote copy.
    batch_size : int
        Upper bound for one mirror batch call.
    """

    def __init__(
        self,
        store: CorpusStore,
        mirror: JsonDirectoryMirror | None = None,
        batch_size: int = 400,
    ):
        self.store = store
        self.mirror = mirror
        self.batch_size = batch_size

    @property
    def has_mirror(self) -> bool:
        return self.mirror is not None

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def put(self, item: Item) -> None:
        """Persist *item* locally, then mirror it (mirror errors are logged)."""
        await asyncio.to_thread(self.store.put, item)
        if self.mirror is not None:
            try:
                await asyncio.to_thread(self.mirror.put_many, [item.to_record()])
            except Exception:
                logger.warning("Mirror write failed for %s", item.id, exc_info=True)

    async def get(self, item_id: str) -> Item | None:
        return await asyncio.to_thread(self.store.get, item_id)

    async def count_by_category(self, category: Category) -> int:
        return await asyncio.to_thread(self.store.count_by_category, category)

    async def random_by_category(
        self, category: Category, rng: random.Random | None = None
    ) -> Item | None:
        return await asyncio.to_thread(self.store.random_by_category, category, rng)

    async def update_difficulty(self, item_id: str, new_level: int) -> bool:
        """Update the stored level; ``False`` when the id is not in the corpus."""
        updated = await asyncio.to_thread(self.store.update_difficulty, item_id, new_level)
        if updated and self.mirror is not None:
            try:
                await asyncio.to_thread(
                    self.mirror.update_fields, item_id, {"difficulty_level": new_level}
                )
            except Exception:
                logger.warning("Mirror difficulty update failed for %s", item_id, exc_info=True)
        return updated

    async def all_items(self, category: Category | None = None) -> list[Item]:
        return await asyncio.to_thread(self.store.all_items, category)

    async def illustration_prompts(self) -> list[str]:
        return await asyncio.to_thread(self.store.illustration_prompts)

    async def get_stats(self) -> dict:
        return await asyncio.to_thread(self.store.get_stats)

    async def delete_local(self, item_ids: list[str]) -> int:
        return await asyncio.to_thread(self.store.delete_many, list(item_ids))

    async def delete_mirrored(self, item_ids: list[str]) -> int:
        """Delete from the mirror in bounded batches.  Returns documents removed."""
        if self.mirror is None:
            return 0
        removed = 0
        for batch in chunked(list(item_ids), self.batch_size):
            removed += await asyncio.to_thread(self.mirror.delete_many, batch)
        return removed

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def get_image(self, prompt: str) -> IllustrationRecord | None:
        return await asyncio.to_thread(self.store.get_image, prompt)

    async def put_image(self, prompt: str, image: bytes) -> None:
        await asyncio.to_thread(self.store.put_image, prompt, image)

    async def block_image(self, prompt: str) -> None:
        await asyncio.to_thread(self.store.block_image, prompt)

    # ------------------------------------------------------------------
    # Mirror sync
    # ------------------------------------------------------------------

    async def push_to_mirror(self) -> int:
        """Copy every local item to the mirror.  Returns documents written."""
        if self.mirror is None:
            raise RuntimeError("No mirror configured")
        items = await self.all_items()
        records = [item.to_record() for item in items]
        written = 0
        for batch in chunked(records, self.batch_size):
            written += await asyncio.to_thread(self.mirror.put_many, batch)
        logger.info("Pushed %d item(s) to mirror", written)
        return written

    async def pull_from_mirror(self) -> int:
        """Copy every mirror document into the local store.  Returns items stored."""
        if self.mirror is None:
            raise RuntimeError("No mirror configured")
        records = await asyncio.to_thread(self.mirror.fetch_all)
        items = []
        for record in records:
            try:
                items.append(Item.from_record(record))
            except ValueError:
                logger.warning("Skipping invalid mirror record %s", record.get("id"))
        stored = 0
        for batch in chunked(items, self.batch_size):
            stored += await asyncio.to_thread(self.store.put_many, batch)
        logger.info("Pulled %d item(s) from mirror", stored)
        return stored

    async def mirror_count(self) -> int:
        """Documents in the mirror, or -1 when no mirror is configured."""
        if self.mirror is None:
            return -1
        return await asyncio.to_thread(self.mirror.count)
