"""
supply/services/generative_client.py -- Generative backend contract and clients.

The engine consumes two remote calls through ``GenerativeBackend``:

    synthesize_item(request)         -> Item            (raises SynthesisError)
    synthesize_illustration(prompt)  -> bytes | None

Two implementations, chosen by ``create_backend`` in order:

    1. ``AnthropicBackend`` -- Anthropic SDK (async client).  Items come back
       through a forced tool call whose input schema is ``ItemPayload``;
       illustrations are requested as self-contained SVG markup.
    2. ``OfflineBackend`` -- no credentials: every item request fails with a
       ``SynthesisError`` so callers fall back to the corpus and built-ins.

There is no retry here.  Recovery is the source selection policy's job.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

import anthropic
from pydantic import ValidationError

from corpus.models.items import Category, Item, ItemKind
from corpus.models.validators import ItemPayload, payload_to_item
from supply.services.config import EngineConfig

logger = logging.getLogger(__name__)

ITEM_TOOL_NAME = "emit_quiz_item"

_RATE_LIMIT_MARKERS = ("429", "quota", "rate limit", "rate_limit", "resource_exhausted", "resource exhausted")

_SVG_RE = re.compile(r"<svg\b[\s\S]*?</svg>", re.IGNORECASE)

_SYSTEM_PROMPT = (
    "You write short quiz questions for a six-year-old learner. "
    "Ask the question directly, no greetings. Always answer by calling the "
    f"{ITEM_TOOL_NAME} tool exactly once."
)


class SynthesisError(RuntimeError):
    """A backend call failed or returned something unusable."""

    def __init__(self, message: str, *, rate_limited: bool = False):
        super().__init__(message)
        self.rate_limited = rate_limited


def is_rate_limit_error(exc: BaseException) -> bool:
    """True if *exc* signals a quota or rate limit."""
    if isinstance(exc, SynthesisError):
        return exc.rate_limited
    if isinstance(exc, anthropic.RateLimitError):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


@dataclass(frozen=True)
class SynthesisRequest:
    """Everything the backend needs to write one item."""
    category: Category
    difficulty: int
    sub_topic: str
    use_digits: bool = True
    uppercase: bool = True
    previous_kind: ItemKind | None = None
    banned_topics: tuple[str, ...] = field(default_factory=tuple)


class GenerativeBackend(Protocol):
    async def synthesize_item(self, request: SynthesisRequest) -> Item: ...

    async def synthesize_illustration(self, prompt: str) -> bytes | None: ...


# ------------------------------------------------------------------
# Prompt building
# ------------------------------------------------------------------

_CATEGORY_CONTEXT = {
    Category.MATH: "Mathematics. Use a train theme where it fits.",
    Category.LANGUAGE: "Language and words.",
    Category.LOGIC: "Logic and reasoning.",
    Category.SCIENCE: "Nature, science and technology.",
}


def build_item_prompt(request: SynthesisRequest) -> str:
    """Return the user-turn instruction for one item."""
    if request.difficulty <= 1:
        level = "LEVEL: PRESCHOOL (very easy). Use simple concepts."
    else:
        level = f"LEVEL: {request.difficulty} (1 = easy, 5 = hard)."

    if request.use_digits:
        numbers = "WRITE ALL NUMBERS AS DIGITS (1, 2, 3), never as words."
    else:
        numbers = "Write small numbers as words (ONE, TWO, THREE) where it reads naturally."

    lines = [
        "Create one multiple-choice quiz question.",
        f"1. Subject: {request.category.value}. {_CATEGORY_CONTEXT[request.category]}",
        f"2. {level}",
        f"3. FOCUS: {request.sub_topic}.",
        "4. Exactly 4 answer options, one correct.",
        f"5. {numbers}",
    ]
    if request.uppercase:
        lines.append("6. Write question, options and explanation in UPPERCASE.")
    if request.banned_topics:
        lines.append("Do NOT ask about: " + ", ".join(request.banned_topics) + ".")
    lines.append(
        "illustration_prompt: a short English description of the correct answer "
        "if it is a concrete object or animal (e.g. 'A green T-Rex dinosaur'); "
        "leave it empty for abstract answers (numbers, logic)."
    )
    return "\n".join(lines)


def _item_tool() -> dict:
    return {
        "name": ITEM_TOOL_NAME,
        "description": "Return the quiz item.",
        "input_schema": ItemPayload.model_json_schema(),
    }


# ------------------------------------------------------------------
# Anthropic SDK backend
# ------------------------------------------------------------------

class AnthropicBackend:
    """Generative backend backed by the Anthropic Messages API.

    Parameters
    ----------
    config : EngineConfig
        Supplies the API key, model names, temperature and request timeout.
    client : anthropic.AsyncAnthropic | None
        Injected client (tests); built from *config* when omitted.
    """

    def __init__(self, config: EngineConfig, client: anthropic.AsyncAnthropic | None = None):
        self._config = config
        self._client = client or anthropic.AsyncAnthropic(
            api_key=config.api_key or None,
            timeout=config.request_timeout,
        )

    async def synthesize_item(self, request: SynthesisRequest) -> Item:
        try:
            response = await self._client.messages.create(
                model=self._config.item_model,
                max_tokens=1024,
                temperature=self._config.temperature,
                system=_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_item_prompt(request)}],
                tools=[_item_tool()],
                tool_choice={"type": "tool", "name": ITEM_TOOL_NAME},
            )
        except anthropic.RateLimitError as exc:
            raise SynthesisError(f"Rate limited: {exc}", rate_limited=True) from exc
        except anthropic.APIError as exc:
            raise SynthesisError(str(exc), rate_limited=is_rate_limit_error(exc)) from exc

        tool_uses = [
            block for block in response.content
            if getattr(block, "type", "") == "tool_use" and block.name == ITEM_TOOL_NAME
        ]
        if not tool_uses:
            raise SynthesisError("Backend returned no item")

        try:
            payload = ItemPayload.model_validate(dict(tool_uses[0].input))
            return payload_to_item(
                payload, request.category, request.difficulty,
                uppercase=request.uppercase,
            )
        except ValidationError as exc:
            raise SynthesisError(f"Malformed item payload: {exc}") from exc

    async def synthesize_illustration(self, prompt: str) -> bytes | None:
        """Return SVG bytes for *prompt*, or ``None`` if nothing usable came back."""
        if not prompt:
            return None
        response = await self._client.messages.create(
            model=self._config.illustration_model,
            max_tokens=4096,
            messages=[{
                "role": "user",
                "content": (
                    "Draw a cute, cartoon style, child friendly illustration of: "
                    f"{prompt}. White background, clear lines, colourful. "
                    "Reply with a single self-contained <svg> element and nothing else."
                ),
            }],
        )
        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", "") == "text"
        )
        match = _SVG_RE.search(text)
        if not match:
            logger.debug("No SVG in illustration response for %r", prompt)
            return None
        return match.group(0).encode("utf-8")


# ------------------------------------------------------------------
# Offline fallback
# ------------------------------------------------------------------

class OfflineBackend:
    """Backend used when no credentials are configured."""

    async def synthesize_item(self, request: SynthesisRequest) -> Item:
        raise SynthesisError("Offline: no ANTHROPIC_API_KEY configured")

    async def synthesize_illustration(self, prompt: str) -> bytes | None:
        return None


def create_backend(config: EngineConfig) -> GenerativeBackend:
    """Return the best available backend for *config*."""
    if config.api_key:
        logger.info("Generative backend: Anthropic SDK (%s)", config.item_model)
        return AnthropicBackend(config)
    logger.info("Generative backend: offline mode")
    return OfflineBackend()
