"""
supply/services/illustrations.py -- Illustration resolution.

Resolves an illustration prompt to image bytes, looking in order at:

    1. An in-memory cache (bounded, most recently used kept)
    2. The image sub-store of the corpus
    3. The generative backend

A prompt flagged by the learner carries the blocked marker; it resolves to
``None`` from then on and is never sent to the backend again.  A block that
lands while a lookup or a write is pending still wins.

Failures anywhere simply yield ``None``: an illustration is optional and
must never delay or break item delivery.  Newly generated images are
persisted in a detached task.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict

from supply.services.corpus_gateway import CorpusGateway
from supply.services.generative_client import GenerativeBackend

logger = logging.getLogger(__name__)

class IllustrationResolver:
    """Cache-through illustration lookup with a blocked marker."""

    def __init__(self, gateway: CorpusGateway, backend: GenerativeBackend, cache_size: int = 64):
        self._gateway = gateway
        self.backend = backend
        self._cache_size = cache_size
        self._cache: OrderedDict[str, bytes] = OrderedDict()
        self._blocked: set[str] = set()
        self._pending: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    async def resolve(self, prompt: str | None) -> bytes | None:
        """Return image bytes for *prompt*, or ``None``.

        Concurrent calls for the same prompt share one lookup.
        """
        if not prompt:
            return None

        if prompt in self._blocked:
            return None
        cached = self._cache_get(prompt)
        if cached is not None:
            return cached

        task = self._pending.get(prompt)
        if task is None:
            task = asyncio.create_task(self._lookup(prompt))
            self._pending[prompt] = task
            task.add_done_callback(lambda _t, p=prompt: self._pending.pop(p, None))
        try:
            return await asyncio.shield(task)
        except Exception:
            logger.warning("Illustration lookup failed for %r", prompt, exc_info=True)
            return None

    async def block(self, prompt: str) -> None:
        """Set the blocked marker for *prompt* and drop any cached image."""
        self._blocked.add(prompt)
        self._cache.pop(prompt, None)
        await self._gateway.block_image(prompt)

    def is_blocked(self, prompt: str) -> bool:
        return prompt in self._blocked

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _lookup(self, prompt: str) -> bytes | None:
        try:
            record = await self._gateway.get_image(prompt)
        except Exception:
            logger.warning("Image store read failed for %r", prompt, exc_info=True)
            record = None

        # A block may have landed while the store was being read.
        if self.is_blocked(prompt):
            return None

        if record is not None:
            if record.blocked:
                self._blocked.add(prompt)
                return None
            if record.image:
                self._cache_put(prompt, record.image)
                return record.image

        try:
            image = await self.backend.synthesize_illustration(prompt)
        except Exception:
            logger.warning("Illustration synthesis failed for %r", prompt, exc_info=True)
            return None
        if not image:
            return None

        # A block may have landed while the backend was working.
        if self.is_blocked(prompt):
            return None

        self._cache_put(prompt, image)
        self._spawn(self._persist(prompt, image))
        return image

    async def _persist(self, prompt: str, image: bytes) -> None:
        if self.is_blocked(prompt):
            logger.debug("Not saving illustration for blocked prompt %r", prompt)
            return
        try:
            await self._gateway.put_image(prompt, image)
        except Exception:
            logger.warning("Failed to save illustration for %r", prompt, exc_info=True)
        else:
            # Blocked while the write was in flight; the store row must stay blocked.
            if self.is_blocked(prompt):
                await self._gateway.block_image(prompt)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cache_get(self, prompt: str):
        value = self._cache.get(prompt)
        if value is not None:
            self._cache.move_to_end(prompt)
        return value

    def _cache_put(self, prompt: str, value: bytes) -> None:
        self._cache[prompt] = value
        self._cache.move_to_end(prompt)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    async def drain(self) -> None:
        """Wait for detached persistence writes (tests and shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
