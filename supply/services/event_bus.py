"""
supply/services/event_bus.py -- In-process pub/sub for engine events.

A small signal/slot registry modelled on Qt signals (``connect``,
``disconnect``, ``emit``) without requiring a Qt event loop.  Components
subscribe to the events they care about instead of reaching into each
other's state; in particular both the prefetch buffer and the displayed-item
holder subscribe to ``illustration_resolved`` and patch their own items.

Slots run synchronously, in connection order, on the emitting thread (the
asyncio loop thread for every emitter in this package).  A failing slot is
logged and does not stop delivery to the remaining slots.

The bus is an ordinary object: each session controller owns one and hands
it to its collaborators.

Usage::

    from supply.services.event_bus import EventBus, IllustrationResolved

    bus = EventBus()
    bus.illustration_resolved.connect(my_handler)
    bus.illustration_resolved.emit(IllustrationResolved("id-1", "A cat", b"..."))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from corpus.models.items import Item

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Event payloads
# ------------------------------------------------------------------

@dataclass(frozen=True)
class IllustrationResolved:
    """An illustration finished resolving for the item with ``item_id``."""
    item_id: str
    prompt: str
    image: bytes


@dataclass(frozen=True)
class IllustrationBlocked:
    """The learner flagged the picture for ``prompt`` as wrong."""
    prompt: str


@dataclass(frozen=True)
class OutcomeReported:
    item_id: str
    correct: bool


@dataclass(frozen=True)
class DifficultyEscalated:
    item_id: str
    corpus_id: str
    new_level: int


# ------------------------------------------------------------------
# Signal
# ------------------------------------------------------------------

class Signal:
    """A named list of slots."""

    def __init__(self, name: str = ""):
        self.name = name
        self._slots: list[Callable[..., Any]] = []

    def connect(self, slot: Callable[..., Any]) -> Callable[[], None]:
        """Register *slot*; returns a zero-argument disconnect callable."""
        self._slots.append(slot)
        return lambda: self.disconnect(slot)

    def disconnect(self, slot: Callable[..., Any]) -> bool:
        try:
            self._slots.remove(slot)
            return True
        except ValueError:
            return False

    def emit(self, *args: Any) -> None:
        for slot in list(self._slots):
            try:
                slot(*args)
            except Exception:
                logger.exception("Slot %r failed for signal %s", slot, self.name)

    def __len__(self) -> int:
        return len(self._slots)


class EventBus:
    """Engine-wide signals.

    Signals
    -------
    item_ready(Item)
        A synthesized or reused item was appended to the prefetch queue.
    item_served(Item)
        An item was handed to the presentation layer.
    illustration_resolved(IllustrationResolved)
        An image is available for a queued or displayed item.
    illustration_blocked(IllustrationBlocked)
        A prompt was flagged; any attached image must be dropped.
    outcome_reported(OutcomeReported)
        The learner answered an item.
    difficulty_escalated(DifficultyEscalated)
        An item was judged too hard and its stored level raised.
    """

    def __init__(self):
        self.item_ready = Signal("item_ready")
        self.item_served = Signal("item_served")
        self.illustration_resolved = Signal("illustration_resolved")
        self.illustration_blocked = Signal("illustration_blocked")
        self.outcome_reported = Signal("outcome_reported")
        self.difficulty_escalated = Signal("difficulty_escalated")


class DisplayedItemHolder:
    """Holds the item currently shown to the learner.

    Follows ``item_served`` and subscribes to illustration events so late
    images land on the displayed item when it is the one they were resolved
    for (matched by id).
    """

    def __init__(self, bus: EventBus):
        self.item: Item | None = None
        self._disconnects = [
            bus.item_served.connect(self._on_served),
            bus.illustration_resolved.connect(self._on_illustration),
            bus.illustration_blocked.connect(self._on_blocked),
        ]

    @property
    def kind(self):
        return self.item.kind if self.item is not None else None

    def _on_served(self, item: Item) -> None:
        self.item = item

    def _on_illustration(self, event: IllustrationResolved) -> None:
        if self.item is not None and self.item.id == event.item_id:
            self.item.attached_image = event.image

    def _on_blocked(self, event: IllustrationBlocked) -> None:
        if self.item is not None and self.item.illustration_prompt == event.prompt:
            self.item.attached_image = None

    def detach(self) -> None:
        for disconnect in self._disconnects:
            disconnect()
        self._disconnects = []
