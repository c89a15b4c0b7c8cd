"""
supply/services/prefetch_buffer.py -- Look-ahead queue of ready items.

Keeps up to ``buffer_target_size`` items ready so the learner never waits on
synthesis latency.

    ensure_filled()
        ``needed = target - (queued + in_flight)``.  When positive, exactly
        ``needed`` independent selections are dispatched as detached tasks.
        Each completed selection is appended at the tail (arrival order) and
        releases its in-flight slot, success or failure.  Calling it again
        before anything settles dispatches nothing.

    take_next()
        Pops the head.  On an empty queue it fetches one item directly
        through the source selection policy, so something is always
        returned; a session switch during that fetch repeats it for the new
        category.  Either way the queue is topped up afterwards.

    reset(category)
        Starts a new generation: clears the queue and the in-flight count.
        Outstanding selections are not cancelled; their results carry the
        old generation token and are discarded when they arrive.

Illustrations are decoupled from item readiness: an item is queued as soon
as it exists, and its illustration is resolved in a separate task that
announces ``illustration_resolved`` on the event bus.  The buffer patches
queued items from that event; the displayed-item holder patches the item
on screen.

All state is touched only from the event loop thread, which is what makes
the read-then-dispatch in ``ensure_filled`` safe.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from corpus.models.items import Category, Item, ItemKind
from supply.services.event_bus import (
    DisplayedItemHolder,
    EventBus,
    IllustrationBlocked,
    IllustrationResolved,
)
from supply.services.illustrations import IllustrationResolver
from supply.services.source_policy import SourceSelectionPolicy

logger = logging.getLogger(__name__)


class PrefetchBuffer:
    """Per-session FIFO of ready items plus in-flight bookkeeping.

    Parameters
    ----------
    policy : SourceSelectionPolicy
        Where items come from.  May be swapped (``buffer.policy = ...``)
        after a reconfigure; queued items are kept.
    resolver : IllustrationResolver
        Resolves illustration prompts in detached tasks.
    bus : EventBus
        Receives ``item_ready``, ``item_served`` and illustration events.
    holder : DisplayedItemHolder
        Read-only view of the item on screen, used for the previous-kind
        context when the queue is empty.
    """

    def __init__(
        self,
        policy: SourceSelectionPolicy,
        resolver: IllustrationResolver,
        bus: EventBus,
        holder: DisplayedItemHolder,
    ):
        self.policy = policy
        self._resolver = resolver
        self._bus = bus
        self._holder = holder

        self._queue: deque[Item] = deque()
        self._in_flight = 0
        self._generation = 0
        self._category: Category | None = None
        self._placement_served = False
        self._tasks: set[asyncio.Task] = set()

        bus.illustration_resolved.connect(self._on_illustration)
        bus.illustration_blocked.connect(self._on_blocked)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def target_size(self) -> int:
        return self.policy.config.buffer_target_size

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def category(self) -> Category | None:
        return self._category

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def placement_served(self) -> bool:
        return self._placement_served

    def snapshot(self) -> list[Item]:
        """Queued items, head first (a copy of the list, same objects)."""
        return list(self._queue)

    def previous_kind(self) -> ItemKind | None:
        """Kind at the tail of the queue, else of the displayed item."""
        if self._queue:
            return self._queue[-1].kind
        return self._holder.kind

    def placement_allowed(self) -> bool:
        """At most one placement challenge per session, never two queued."""
        if self._placement_served:
            return False
        return not any(item.is_placement for item in self._queue)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def reset(self, category: Category) -> None:
        """Drop queued items and abandon in-flight selections."""
        self._generation += 1
        self._queue.clear()
        self._in_flight = 0
        self._category = Category(category)
        self._placement_served = False
        logger.debug("Buffer reset for %s (generation %d)", self._category.value, self._generation)

    # ------------------------------------------------------------------
    # Production
    # ------------------------------------------------------------------

    def ensure_filled(self, category: Category | None = None) -> int:
        """Top the buffer up to its target size.

        Must be called from within the running event loop.  Returns the
        number of selections dispatched (0 when already full).
        """
        if category is not None and Category(category) != self._category:
            self.reset(category)
        if self._category is None:
            raise RuntimeError("ensure_filled() called before a session category was set")

        needed = self.target_size - (len(self._queue) + self._in_flight)
        if needed <= 0:
            return 0

        previous = self.previous_kind()
        for _ in range(needed):
            self._in_flight += 1
            self._spawn(self._fetch_one(self._category, previous, self._generation))
        logger.debug(
            "Dispatched %d selection(s) for %s (queued=%d, in_flight=%d)",
            needed, self._category.value, len(self._queue), self._in_flight,
        )
        return needed

    async def _fetch_one(
        self,
        category: Category,
        previous_kind: ItemKind | None,
        generation: int,
    ) -> None:
        item: Item | None = None
        try:
            item = await self.policy.select_item(
                category,
                previous_kind=previous_kind,
                allow_placement=self.placement_allowed(),
            )
        except Exception:
            logger.exception("Buffer selection failed for %s", category.value)
        finally:
            if generation == self._generation:
                self._in_flight -= 1

        if item is None:
            return
        if generation != self._generation:
            logger.debug("Discarding late item %s from abandoned session", item.id)
            return

        self._queue.append(item)
        self._bus.item_ready.emit(item)
        self._start_illustration(item)

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    async def take_next(self) -> Item:
        """Return the next item, fetching one directly if the queue is empty."""
        if self._category is None:
            raise RuntimeError("take_next() called before a session category was set")

        if self._queue:
            item = self._queue.popleft()
        else:
            item = await self._fetch_direct()

        if item.is_placement:
            self._placement_served = True
        self._bus.item_served.emit(item)
        self.ensure_filled()
        return item

    async def _fetch_direct(self) -> Item:
        """Select one item for the current session, bypassing the queue.

        A session switch during the await makes the result stale; the
        selection is then repeated for the new category.
        """
        while True:
            generation = self._generation
            category = self._category
            logger.info("Buffer empty, fetching %s item directly", category.value)
            item = await self.policy.select_item(
                category,
                previous_kind=self._holder.kind,
                allow_placement=self.placement_allowed(),
            )
            if generation == self._generation:
                self._start_illustration(item)
                return item
            logger.debug("Discarding direct fetch %s from abandoned session", item.id)

    # ------------------------------------------------------------------
    # Illustrations
    # ------------------------------------------------------------------

    def _start_illustration(self, item: Item) -> None:
        if item.illustration_prompt and item.attached_image is None:
            self._spawn(self._resolve_illustration(item.id, item.illustration_prompt))

    async def _resolve_illustration(self, item_id: str, prompt: str) -> None:
        image = await self._resolver.resolve(prompt)
        if image and not self._resolver.is_blocked(prompt):
            self._bus.illustration_resolved.emit(IllustrationResolved(item_id, prompt, image))

    def _on_illustration(self, event: IllustrationResolved) -> None:
        for item in self._queue:
            if item.id == event.item_id:
                item.attached_image = event.image

    def _on_blocked(self, event: IllustrationBlocked) -> None:
        for item in self._queue:
            if item.illustration_prompt == event.prompt:
                item.attached_image = None

    # ------------------------------------------------------------------
    # Task bookkeeping
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def settle(self) -> None:
        """Wait until every detached task has finished (tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel detached tasks.  Only for process shutdown."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
