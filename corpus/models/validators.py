"""
corpus/models/validators.py -- Validation of generative backend payloads.

The backend answers with a loosely structured JSON object.  This module is
the gate between that object and a trusted ``Item``:

    1. ``ItemPayload`` checks structure (types, option count, index range).
    2. ``payload_to_item`` normalises text (whitespace, optional uppercase)
       and builds the ``Item`` envelope with the requested category and
       difficulty.

Anything that fails here is treated by callers as a synthesis failure.

Usage::

    from corpus.models.validators import ItemPayload, payload_to_item

    payload = ItemPayload.model_validate(raw_json)
    item = payload_to_item(payload, Category.MATH, difficulty=2)
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from corpus.models.items import Category, Item, ItemKind

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")

MIN_OPTIONS = 2
MAX_OPTIONS = 6


def _squash(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


class ItemPayload(BaseModel):
    """Structured output expected from the backend for one item."""

    model_config = ConfigDict(extra="ignore")

    question_text: str = Field(min_length=1)
    options: list[str] = Field(min_length=MIN_OPTIONS, max_length=MAX_OPTIONS)
    correct_answer_index: int
    explanation: str = ""
    illustration_prompt: Optional[str] = None

    @field_validator("question_text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question_text is blank")
        return value

    @field_validator("options")
    @classmethod
    def _options_not_blank(cls, value: list[str]) -> list[str]:
        if any(not opt.strip() for opt in value):
            raise ValueError("options must not be blank")
        return value

    @field_validator("illustration_prompt")
    @classmethod
    def _blank_prompt_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip() or value.strip().lower() in ("null", "none"):
            return None
        return value

    @model_validator(mode="after")
    def _index_in_range(self) -> "ItemPayload":
        if not 0 <= self.correct_answer_index < len(self.options):
            raise ValueError(
                f"correct_answer_index {self.correct_answer_index} out of range "
                f"for {len(self.options)} options"
            )
        return self


def payload_to_item(
    payload: ItemPayload,
    category: Category,
    difficulty: int,
    *,
    uppercase: bool = True,
) -> Item:
    """Build a multiple-choice ``Item`` from a validated payload."""

    def norm(value: str) -> str:
        value = _squash(value)
        return value.upper() if uppercase else value

    prompt = payload.illustration_prompt
    return Item(
        category=category,
        kind=ItemKind.MULTIPLE_CHOICE,
        text=norm(payload.question_text),
        options=[norm(o) for o in payload.options],
        correct_index=payload.correct_answer_index,
        explanation=norm(payload.explanation),
        difficulty_level=difficulty,
        # Illustration prompts are fed to an image model; keep their case.
        illustration_prompt=_squash(prompt) if prompt else None,
    )
