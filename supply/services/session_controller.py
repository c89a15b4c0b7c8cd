"""
supply/services/session_controller.py -- The engine as seen by the presentation layer.

Handles:
    - Starting a session for one category (fresh buffer generation)
    - Handing out the next item
    - Outcome reporting and per-session statistics
    - "Too hard" escalation of the stored difficulty
    - Flagging a wrong illustration
    - Swapping in a reconfigured source selection policy
    - Shutdown of detached work

One controller owns one event bus; the prefetch buffer, the displayed-item
holder and the illustration resolver all hang off it.

Usage::

    controller = SessionController(config, gateway)
    await controller.start_session(Category.MATH)
    item = await controller.take_next()
    controller.report_outcome(item.id, correct=True)
    await controller.aclose()
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any

from corpus.models.items import MAX_DIFFICULTY, Category, Item
from supply.services.config import EngineConfig
from supply.services.corpus_gateway import CorpusGateway
from supply.services.event_bus import (
    DifficultyEscalated,
    DisplayedItemHolder,
    EventBus,
    IllustrationBlocked,
    OutcomeReported,
)
from supply.services.generative_client import GenerativeBackend, create_backend
from supply.services.illustrations import IllustrationResolver
from supply.services.prefetch_buffer import PrefetchBuffer
from supply.services.source_policy import SourceSelectionPolicy

logger = logging.getLogger(__name__)


@dataclass
class SessionStats:
    answered: int = 0
    correct: int = 0
    streak: int = 0
    best_streak: int = 0

    @property
    def accuracy(self) -> float:
        return self.correct / self.answered if self.answered else 0.0

    def record(self, correct: bool) -> None:
        self.answered += 1
        if correct:
            self.correct += 1
            self.streak += 1
            self.best_streak = max(self.best_streak, self.streak)
        else:
            self.streak = 0


class SessionController:
    """Consumer side of the engine.

    Parameters
    ----------
    config : EngineConfig
        Initial configuration.
    gateway : CorpusGateway
        Corpus access shared with the policy and the resolver.
    backend : GenerativeBackend | None
        Generative backend; built from *config* when omitted.
    rng : random.Random | None
        Randomness for the policy (seed it in tests).
    """

    def __init__(
        self,
        config: EngineConfig,
        gateway: CorpusGateway,
        backend: GenerativeBackend | None = None,
        rng: random.Random | None = None,
    ):
        backend = backend or create_backend(config)
        self.gateway = gateway
        self.bus = EventBus()
        self.holder = DisplayedItemHolder(self.bus)
        self.resolver = IllustrationResolver(gateway, backend)
        self.policy = SourceSelectionPolicy(config, backend, gateway, rng)
        self.buffer = PrefetchBuffer(self.policy, self.resolver, self.bus, self.holder)
        self.stats = SessionStats()

        self._served: dict[str, Item] = {}
        self._retired: list[SourceSelectionPolicy] = []

    @property
    def config(self) -> EngineConfig:
        return self.policy.config

    @property
    def category(self) -> Category | None:
        return self.buffer.category

    @property
    def current_item(self) -> Item | None:
        return self.holder.item

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_session(self, category: Category) -> int:
        """Abandon any previous session and start prefetching for *category*.

        Returns the number of selections dispatched to fill the buffer.
        """
        category = Category(category)
        self.buffer.reset(category)
        self.holder.item = None
        self.stats = SessionStats()
        self._served.clear()
        logger.info("Session started: %s", category.value)
        return self.buffer.ensure_filled()

    async def take_next(self) -> Item:
        """Return the next item to display.  Never returns ``None``."""
        if self.buffer.category is None:
            raise RuntimeError("take_next() called before start_session()")
        item = await self.buffer.take_next()
        self._served[item.id] = item
        return item

    # ------------------------------------------------------------------
    # Feedback from the presentation layer
    # ------------------------------------------------------------------

    def report_outcome(self, item_id: str, correct: bool) -> None:
        """Record an answer.  A wrong answer tops the buffer up."""
        self.stats.record(correct)
        self.bus.outcome_reported.emit(OutcomeReported(item_id, correct))
        if not correct and self.buffer.category is not None:
            self.buffer.ensure_filled()

    async def report_too_hard(self, item_id: str) -> bool:
        """Raise the stored difficulty of a served item by one level.

        Returns ``True`` when the corpus record was updated.  An item the
        corpus does not know (not yet persisted, or built in) is a no-op.
        """
        item = self._served.get(item_id)
        if item is None:
            logger.warning("Too-hard report for unknown item %s", item_id)
            return False

        new_level = min(MAX_DIFFICULTY, item.difficulty_level + 1)
        updated = await self.gateway.update_difficulty(item.corpus_id, new_level)
        if updated:
            item.difficulty_level = new_level
            logger.info("Item %s escalated to level %d", item.corpus_id, new_level)
            self.bus.difficulty_escalated.emit(
                DifficultyEscalated(item_id, item.corpus_id, new_level)
            )
        else:
            logger.debug("Item %s not in corpus, nothing to escalate", item.corpus_id)

        if self.buffer.category is not None:
            self.buffer.ensure_filled()
        return updated

    async def report_bad_illustration(self, prompt: str) -> None:
        """Block *prompt* and drop its image everywhere it is attached."""
        await self.resolver.block(prompt)
        self.bus.illustration_blocked.emit(IllustrationBlocked(prompt))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def reconfigure(self, **changes: Any) -> SourceSelectionPolicy:
        """Swap in a policy built from *changes*.  Queued items are kept."""
        old = self.policy
        self.policy = old.reconfigure(**changes)
        # Retired policies are only kept while their corpus writes are pending.
        self._retired = [p for p in self._retired if p.pending_writes]
        self._retired.append(old)
        self.buffer.policy = self.policy
        self.resolver.backend = self.policy.backend
        logger.info("Reconfigured: %s", ", ".join(sorted(changes)) or "no changes")
        return self.policy

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Cancel buffer work, then wait for pending corpus writes."""
        await self.buffer.cancel_all()
        for policy in [*self._retired, self.policy]:
            await policy.drain()
        await self.resolver.drain()
        self.holder.detach()
        logger.debug("Session controller closed")
