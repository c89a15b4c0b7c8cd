"""
corpus/models/items.py -- Pydantic v2 models for quiz items.

An ``Item`` is the unit of content served to the learner.  Two kinds share
the same envelope (id, category, difficulty, explanation) but carry
different payloads:

    - ``MULTIPLE_CHOICE``: ``options`` plus ``correct_index``
    - ``PLACEMENT``: a ``PlacementConfig`` describing an interactive
      drag-into-container challenge

``attached_image`` and ``source_id`` are runtime-only fields.  They are
excluded from serialisation so they never reach the corpus store.

Usage::

    from corpus.models import Item, Category

    item = Item(category=Category.MATH, text="WHAT IS 2 + 3?",
                options=["4", "5", "6", "7"], correct_index=1,
                difficulty_level=1)
    record = item.to_record()
    same = Item.from_record(record)
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from corpus.utils import new_item_id

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5


class Category(str, Enum):
    """Subject partition of the corpus."""
    MATH = "MATH"
    LANGUAGE = "LANGUAGE"
    LOGIC = "LOGIC"
    SCIENCE = "SCIENCE"


class ItemKind(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    PLACEMENT = "PLACEMENT"


class PlacementConfig(BaseModel):
    """Payload of a placement challenge: load exactly ``target_count`` of
    ``total_items`` pieces into ``container_name``."""

    model_config = ConfigDict(extra="forbid")

    item_emoji: str
    item_name: str
    target_count: int = Field(ge=1)
    total_items: int = Field(ge=1)
    container_name: str

    @model_validator(mode="after")
    def _enough_pieces(self) -> "PlacementConfig":
        if self.total_items < self.target_count:
            raise ValueError("total_items must be >= target_count")
        return self


class Item(BaseModel):
    """A quiz item, either freshly synthesized or reused from the corpus."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_item_id)
    category: Category
    kind: ItemKind = ItemKind.MULTIPLE_CHOICE
    text: str
    options: Optional[list[str]] = None
    correct_index: Optional[int] = None
    placement: Optional[PlacementConfig] = None
    explanation: str = ""
    difficulty_level: int = Field(default=1, ge=MIN_DIFFICULTY, le=MAX_DIFFICULTY)
    illustration_prompt: Optional[str] = None

    # Runtime only
    attached_image: Optional[bytes] = Field(default=None, exclude=True)
    source_id: Optional[str] = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "Item":
        if self.kind == ItemKind.MULTIPLE_CHOICE:
            if not self.options or len(self.options) < 2:
                raise ValueError("multiple-choice items need at least two options")
            if self.correct_index is None or not 0 <= self.correct_index < len(self.options):
                raise ValueError(
                    f"correct_index {self.correct_index!r} out of range "
                    f"for {len(self.options)} options"
                )
        elif self.placement is None:
            raise ValueError("placement items need a placement config")
        return self

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def to_record(self) -> dict[str, Any]:
        """Return the JSON-safe persisted form (runtime fields dropped)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Item":
        return cls.model_validate(record)

    def reissued(self) -> "Item":
        """Return a copy with a fresh id, remembering the stored id.

        Consumers key their views by id, so a replayed item must never
        reuse the id it had the last time it was served.
        """
        return self.model_copy(
            update={
                "id": new_item_id(),
                "source_id": self.source_id or self.id,
                "attached_image": None,
            }
        )

    @property
    def corpus_id(self) -> str:
        """Id of the stored record this item came from."""
        return self.source_id or self.id

    @property
    def is_placement(self) -> bool:
        return self.kind == ItemKind.PLACEMENT


class IllustrationRecord(BaseModel):
    """An entry in the image sub-store, keyed by prompt text."""

    prompt: str
    image: Optional[bytes] = None
    blocked: bool = False
    stored_at: int = 0
