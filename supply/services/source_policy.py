"""
supply/services/source_policy.py -- Decide where the next item comes from.

For every requested item the policy chooses between replaying a stored item
and synthesizing a new one:

    PRE-CHECK -- PLACEMENT
        In the placement category at low difficulty, with a fixed small
        probability, build a placement challenge locally.  Never after
        another placement item, and only when the caller allows it (the
        buffer forbids it once one was served this session or one is
        already queued).

    TIERED SOURCE CHOICE
        The corpus size of the category selects a tier; each tier maps to a
        probability of forcing synthesis.  A cold corpus (first tier) always
        synthesizes, a mature one mostly replays.  An empty corpus always
        synthesizes.

    FALLBACK CHAIN
        Synthesis failure -> replay from the corpus regardless of the tier
        roll -> static built-in item.  ``select_item`` never raises.

A synthesized item is persisted in a detached task; the caller gets it
without waiting for the write, and a failed write is only logged.

Usage::

    policy = SourceSelectionPolicy(config, backend, gateway)
    item = await policy.select_item(Category.MATH, difficulty=1)
    stricter = policy.reconfigure(banned_topics=("Dinosaurs",))
"""

from __future__ import annotations

import asyncio
import bisect
import logging
import random
from typing import Any

from corpus.builtin import build_placement_item, fallback_item, pick_sub_topic
from corpus.models.items import Category, Item, ItemKind
from supply.services.config import EngineConfig
from supply.services.corpus_gateway import CorpusGateway
from supply.services.generative_client import (
    GenerativeBackend,
    SynthesisRequest,
    create_backend,
)

logger = logging.getLogger(__name__)

# Config fields that require a new backend client when they change
_BACKEND_FIELDS = frozenset({
    "api_key", "item_model", "illustration_model", "request_timeout", "temperature",
})


class SourceSelectionPolicy:
    """Synthesize-or-reuse decision with a layered fallback.

    Parameters
    ----------
    config : EngineConfig
        Tier table, placement settings, formatting options.
    backend : GenerativeBackend
        Remote item synthesis.
    gateway : CorpusGateway
        Corpus access for counts, replay and persistence.
    rng : random.Random | None
        Source of randomness (seed it for reproducible tests).
    """

    def __init__(
        self,
        config: EngineConfig,
        backend: GenerativeBackend,
        gateway: CorpusGateway,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.backend = backend
        self.gateway = gateway
        self._rng = rng or random.Random()
        self._tasks: set[asyncio.Task] = set()

    def reconfigure(self, backend: GenerativeBackend | None = None, **changes: Any) -> "SourceSelectionPolicy":
        """Return a new policy with *changes* applied to the config.

        The current instance is left untouched.  When backend settings
        change and no *backend* is given, a fresh backend is created.
        """
        config = self.config.with_changes(**changes)
        if backend is None:
            backend = create_backend(config) if _BACKEND_FIELDS & changes.keys() else self.backend
        return SourceSelectionPolicy(config, backend, self.gateway, self._rng)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def synthesis_probability(self, corpus_size: int) -> float:
        """Probability of forcing synthesis for a category of *corpus_size* items."""
        tier = bisect.bisect_right(self.config.tier_thresholds, corpus_size)
        return self.config.tier_probabilities[tier]

    def wants_placement(
        self,
        category: Category,
        difficulty: int,
        previous_kind: ItemKind | None,
        allow_placement: bool,
    ) -> bool:
        """Roll the placement pre-check."""
        if not allow_placement:
            return False
        if category != self.config.placement_category:
            return False
        if difficulty > self.config.placement_max_difficulty:
            return False
        if previous_kind == ItemKind.PLACEMENT:
            return False
        return self._rng.random() < self.config.placement_probability

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select_item(
        self,
        category: Category,
        difficulty: int | None = None,
        corpus_size: int | None = None,
        previous_kind: ItemKind | None = None,
        allow_placement: bool = True,
    ) -> Item:
        """Return one item for *category*; never raises.

        Parameters
        ----------
        category : Category
            Corpus partition to serve from.
        difficulty : int | None
            Requested level; the configured level for *category* if omitted.
        corpus_size : int | None
            Known corpus size; counted from the store if omitted.
        previous_kind : ItemKind | None
            Kind of the item served (or queued) just before this one.
        allow_placement : bool
            Whether a placement challenge may be produced at all.
        """
        category = Category(category)
        if difficulty is None:
            difficulty = self.config.difficulty_for(category)

        # Runs before the first await so concurrent callers see its result
        # in the queue before they make their own decision.
        if self.wants_placement(category, difficulty, previous_kind, allow_placement):
            logger.debug("Placement challenge for %s", category.value)
            return build_placement_item(difficulty, category, self._rng)

        try:
            if corpus_size is None:
                corpus_size = await self.gateway.count_by_category(category)
            probability = self.synthesis_probability(corpus_size)
            force_synthesis = probability >= 1.0 or self._rng.random() < probability
            logger.debug(
                "%s: corpus=%d p(synthesize)=%.2f -> %s",
                category.value, corpus_size, probability,
                "synthesize" if force_synthesis else "reuse",
            )

            if not force_synthesis:
                reused = await self.gateway.random_by_category(category, self._rng)
                if reused is not None:
                    return reused
                logger.debug("%s corpus empty, synthesizing instead", category.value)

            return await self._synthesize(category, difficulty, previous_kind)

        except Exception:
            logger.warning("Item synthesis failed for %s, trying corpus", category.value, exc_info=True)

        try:
            rescued = await self.gateway.random_by_category(category, self._rng)
            if rescued is not None:
                logger.info("Synthesis failed, rescued by corpus (%s)", category.value)
                return rescued
        except Exception:
            logger.warning("Corpus rescue failed for %s", category.value, exc_info=True)

        return fallback_item(category, difficulty, self._rng)

    async def _synthesize(
        self,
        category: Category,
        difficulty: int,
        previous_kind: ItemKind | None,
    ) -> Item:
        request = SynthesisRequest(
            category=category,
            difficulty=difficulty,
            sub_topic=pick_sub_topic(category, self._rng),
            use_digits=self.config.use_digits,
            uppercase=self.config.uppercase,
            previous_kind=previous_kind,
            banned_topics=self.config.active_banned_topics,
        )
        item = await self.backend.synthesize_item(request)
        self._persist_later(item)
        return item

    # ------------------------------------------------------------------
    # Detached persistence
    # ------------------------------------------------------------------

    def _persist_later(self, item: Item) -> None:
        task = asyncio.create_task(self._persist(item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _persist(self, item: Item) -> None:
        try:
            await self.gateway.put(item)
        except Exception:
            logger.warning("Failed to save item %s to corpus", item.id, exc_info=True)

    @property
    def pending_writes(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for pending corpus writes (tests and shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
