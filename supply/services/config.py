"""
supply/services/config.py -- Engine configuration.

``EngineConfig`` is an immutable value passed explicitly to the services
that need it.  Nothing reads configuration from module globals; changing a
setting means building a new config (``with_changes``) and, for the source
selection policy, a new policy instance (``SourceSelectionPolicy.reconfigure``).

Sources, lowest to highest precedence:

    1. Defaults below
    2. Environment (``EngineConfig.from_env``)
    3. The user's JSON settings file (``load_settings``)

Usage::

    from supply.services.config import EngineConfig, load_settings

    config = load_settings(settings_path, base=EngineConfig.from_env())
    harder = config.with_changes(difficulty={**config.difficulty, Category.MATH: 3})
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from corpus.models.items import MAX_DIFFICULTY, MIN_DIFFICULTY, Category
from corpus.utils import safe_read_json, safe_write_json

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

DEFAULT_BANNED_TOPICS = (
    "The wheel",
    "Ice/Water",
    "What plants need",
    "Heart/Blood",
    "The sun",
    "Photosynthesis",
)

# Keys persisted in the user settings file
_SETTINGS_KEYS = (
    "use_digits",
    "uppercase",
    "enable_banned_topics",
    "banned_topics",
    "difficulty",
    "buffer_target_size",
)


def _default_difficulty() -> dict[Category, int]:
    return {
        Category.MATH: 1,
        Category.LANGUAGE: 2,
        Category.LOGIC: 2,
        Category.SCIENCE: 2,
    }


@dataclass(frozen=True)
class EngineConfig:
    """All tunables of the content-supply engine."""

    # Generative backend
    api_key: str = ""
    item_model: str = DEFAULT_MODEL
    illustration_model: str = DEFAULT_MODEL
    request_timeout: float = 120.0
    temperature: float = 0.8

    # Formatting and content options
    use_digits: bool = True
    uppercase: bool = True
    enable_banned_topics: bool = True
    banned_topics: tuple[str, ...] = DEFAULT_BANNED_TOPICS
    difficulty: dict[Category, int] = field(default_factory=_default_difficulty)

    # Buffer and source selection
    buffer_target_size: int = 5
    tier_thresholds: tuple[int, ...] = (50, 100, 200)
    tier_probabilities: tuple[float, ...] = (1.0, 0.2, 0.1, 0.05)
    placement_probability: float = 0.3
    placement_category: Category = Category.MATH
    placement_max_difficulty: int = 2

    # Storage
    data_dir: str = ""
    mirror_dir: str = ""
    image_cap: int = 150
    remote_batch_size: int = 400

    def __post_init__(self):
        if len(self.tier_probabilities) != len(self.tier_thresholds) + 1:
            raise ValueError("tier_probabilities needs exactly one entry more than tier_thresholds")
        if list(self.tier_thresholds) != sorted(self.tier_thresholds):
            raise ValueError("tier_thresholds must be ascending")
        if any(not 0.0 <= p <= 1.0 for p in self.tier_probabilities):
            raise ValueError("tier_probabilities must lie in [0, 1]")
        if not 0.0 <= self.placement_probability <= 1.0:
            raise ValueError("placement_probability must lie in [0, 1]")
        if self.buffer_target_size < 0:
            raise ValueError("buffer_target_size must be >= 0")
        # Normalise keys so settings files can use plain strings
        normalised = {Category(k): int(v) for k, v in self.difficulty.items()}
        for category, level in normalised.items():
            if not MIN_DIFFICULTY <= level <= MAX_DIFFICULTY:
                raise ValueError(f"difficulty for {category.value} must be {MIN_DIFFICULTY}..{MAX_DIFFICULTY}")
        object.__setattr__(self, "difficulty", normalised)
        object.__setattr__(self, "banned_topics", tuple(self.banned_topics))

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def difficulty_for(self, category: Category) -> int:
        return self.difficulty.get(Category(category), MIN_DIFFICULTY)

    @property
    def active_banned_topics(self) -> tuple[str, ...]:
        return self.banned_topics if self.enable_banned_topics else ()

    def with_changes(self, **changes: Any) -> "EngineConfig":
        """Return a copy with *changes* applied (validated again)."""
        return dataclasses.replace(self, **changes)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls, **overrides: Any) -> "EngineConfig":
        """Build a config from environment variables plus *overrides*."""
        values: dict[str, Any] = {
            "api_key": os.environ.get("ANTHROPIC_API_KEY", ""),
            "data_dir": os.environ.get("QUIZ_SUPPLY_DATA_DIR", ""),
            "mirror_dir": os.environ.get("QUIZ_SUPPLY_MIRROR_DIR", ""),
        }
        model = os.environ.get("QUIZ_SUPPLY_MODEL")
        if model:
            values["item_model"] = model
            values["illustration_model"] = model
        values.update(overrides)
        return cls(**values)

    def settings_dict(self) -> dict[str, Any]:
        """User-facing settings in JSON-safe form."""
        return {
            "use_digits": self.use_digits,
            "uppercase": self.uppercase,
            "enable_banned_topics": self.enable_banned_topics,
            "banned_topics": list(self.banned_topics),
            "difficulty": {c.value: lvl for c, lvl in self.difficulty.items()},
            "buffer_target_size": self.buffer_target_size,
        }


def load_settings(path: str, base: EngineConfig | None = None) -> EngineConfig:
    """Overlay the JSON settings file at *path* onto *base*.

    Missing or corrupt files leave *base* unchanged.  Unknown keys are
    ignored; invalid values are logged and skipped.
    """
    base = base or EngineConfig()
    data = safe_read_json(path, default=None)
    if not isinstance(data, dict):
        return base

    changes = {k: data[k] for k in _SETTINGS_KEYS if k in data}
    if "banned_topics" in changes:
        changes["banned_topics"] = tuple(changes["banned_topics"] or ())
    if "difficulty" in changes:
        changes["difficulty"] = {**base.difficulty, **(changes["difficulty"] or {})}

    try:
        return base.with_changes(**changes)
    except (ValueError, TypeError):
        logger.warning("Ignoring invalid settings in %s", path, exc_info=True)
        return base


def save_settings(path: str, config: EngineConfig) -> None:
    """Persist the user-facing settings of *config* atomically."""
    safe_write_json(path, config.settings_dict())
