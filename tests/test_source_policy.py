"""
Tests for supply/services/source_policy.py -- tiers, placement, fallback chain.
"""

import asyncio
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from corpus.builtin import FALLBACK_ITEMS, SUB_TOPICS
from corpus.models.items import Category, ItemKind
from supply.services.generative_client import AnthropicBackend
from supply.services.source_policy import SourceSelectionPolicy


class _FixedRandom(random.Random):
    """``random()`` always returns *value*; everything else is seeded."""

    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


@pytest.fixture
def policy(config, fake_backend, gateway, rng):
    return SourceSelectionPolicy(config, fake_backend, gateway, rng)


# ---------------------------------------------------------------------------
# Tier table
# ---------------------------------------------------------------------------

class TestTiers:
    @pytest.mark.parametrize("size, expected", [
        (0, 1.0), (49, 1.0),
        (50, 0.2), (99, 0.2),
        (100, 0.1), (199, 0.1),
        (200, 0.05), (10_000, 0.05),
    ])
    def test_synthesis_probability(self, policy, size, expected):
        assert policy.synthesis_probability(size) == expected

    def test_cold_corpus_always_synthesizes(self, config, fake_backend, gateway, store, make_item):
        """Below the first threshold the roll is irrelevant: always synthesize."""
        store.put_many([make_item(f"STORED {i}") for i in range(10)])
        policy = SourceSelectionPolicy(config, fake_backend, gateway, _FixedRandom(0.999))

        async def scenario():
            items = [await policy.select_item(Category.MATH) for _ in range(20)]
            await policy.drain()
            return items

        items = asyncio.run(scenario())
        assert len(fake_backend.item_calls) == 20
        assert all(item.source_id is None for item in items)

    def test_mature_corpus_reuses_on_high_roll(self, config, fake_backend, gateway, store, make_item):
        stored = make_item()
        store.put(stored)
        policy = SourceSelectionPolicy(config, fake_backend, gateway, _FixedRandom(0.5))

        item = asyncio.run(policy.select_item(Category.MATH, corpus_size=500))

        assert fake_backend.item_calls == []
        assert item.source_id == stored.id
        assert item.id != stored.id

    def test_mature_corpus_synthesizes_on_low_roll(self, config, fake_backend, gateway, store, make_item):
        store.put(make_item())
        policy = SourceSelectionPolicy(config, fake_backend, gateway, _FixedRandom(0.01))
        asyncio.run(policy.select_item(Category.MATH, corpus_size=500))
        assert len(fake_backend.item_calls) == 1

    def test_empty_corpus_synthesizes_even_when_roll_says_reuse(self, config, fake_backend, gateway):
        policy = SourceSelectionPolicy(config, fake_backend, gateway, _FixedRandom(0.99))
        item = asyncio.run(policy.select_item(Category.LOGIC, corpus_size=500))
        assert len(fake_backend.item_calls) == 1
        assert item.category == Category.LOGIC


# ---------------------------------------------------------------------------
# Synthesis request and persistence
# ---------------------------------------------------------------------------

class TestSynthesis:
    def test_request_carries_settings(self, config, fake_backend, gateway, rng):
        config = config.with_changes(use_digits=False, banned_topics=("Trains",))
        policy = SourceSelectionPolicy(config, fake_backend, gateway, rng)
        asyncio.run(policy.select_item(Category.SCIENCE, previous_kind=ItemKind.MULTIPLE_CHOICE))

        (request,) = fake_backend.item_calls
        assert request.category == Category.SCIENCE
        assert request.difficulty == config.difficulty_for(Category.SCIENCE)
        assert request.sub_topic in SUB_TOPICS[Category.SCIENCE]
        assert request.use_digits is False
        assert request.banned_topics == ("Trains",)
        assert request.previous_kind == ItemKind.MULTIPLE_CHOICE

    def test_banned_topics_disabled(self, config, fake_backend, gateway, rng):
        config = config.with_changes(enable_banned_topics=False)
        policy = SourceSelectionPolicy(config, fake_backend, gateway, rng)
        asyncio.run(policy.select_item(Category.MATH))
        assert fake_backend.item_calls[0].banned_topics == ()

    def test_explicit_difficulty(self, policy, fake_backend):
        item = asyncio.run(policy.select_item(Category.MATH, difficulty=4))
        assert item.difficulty_level == 4

    def test_synthesized_item_persisted(self, policy, store):
        async def scenario():
            item = await policy.select_item(Category.MATH)
            await policy.drain()
            return item

        item = asyncio.run(scenario())
        assert store.get(item.id) == item

    def test_persistence_failure_does_not_lose_item(self, config, fake_backend, rng):
        gateway = MagicMock()
        gateway.count_by_category = AsyncMock(return_value=0)
        gateway.put = AsyncMock(side_effect=OSError("disk full"))
        policy = SourceSelectionPolicy(config, fake_backend, gateway, rng)

        async def scenario():
            item = await policy.select_item(Category.MATH)
            await policy.drain()
            return item

        assert asyncio.run(scenario()).text.startswith("SYNTHESIZED")
        gateway.put.assert_awaited_once()


# ---------------------------------------------------------------------------
# Fallback chain
# ---------------------------------------------------------------------------

class TestFallbackChain:
    def test_corpus_rescues_failed_synthesis(self, policy, fake_backend, store, make_item):
        stored = make_item(category=Category.LANGUAGE)
        store.put(stored)
        fake_backend.fail_items = True

        item = asyncio.run(policy.select_item(Category.LANGUAGE))

        assert len(fake_backend.item_calls) == 1
        assert item.source_id == stored.id

    def test_builtin_when_everything_fails(self, policy, fake_backend):
        fake_backend.fail_items = True
        item = asyncio.run(policy.select_item(Category.SCIENCE))
        assert item.category == Category.SCIENCE
        assert item.text in {entry["text"] for entry in FALLBACK_ITEMS}

    def test_never_raises_when_store_is_down(self, config, fake_backend, rng):
        gateway = MagicMock()
        gateway.count_by_category = AsyncMock(side_effect=RuntimeError("db locked"))
        gateway.random_by_category = AsyncMock(side_effect=RuntimeError("db locked"))
        policy = SourceSelectionPolicy(config, fake_backend, gateway, rng)

        item = asyncio.run(policy.select_item(Category.LOGIC))

        assert item.category == Category.LOGIC
        assert fake_backend.item_calls == []


# ---------------------------------------------------------------------------
# Placement pre-check
# ---------------------------------------------------------------------------

class TestPlacement:
    @pytest.fixture
    def eager(self, config, fake_backend, gateway, rng):
        return SourceSelectionPolicy(
            config.with_changes(placement_probability=1.0), fake_backend, gateway, rng
        )

    def test_placement_built_locally(self, eager, fake_backend):
        item = asyncio.run(eager.select_item(Category.MATH, difficulty=1))
        assert item.is_placement
        assert fake_backend.item_calls == []

    def test_never_twice_in_a_row(self, eager):
        item = asyncio.run(eager.select_item(
            Category.MATH, difficulty=1, previous_kind=ItemKind.PLACEMENT
        ))
        assert not item.is_placement

    def test_only_when_allowed(self, eager):
        assert eager.wants_placement(Category.MATH, 1, None, allow_placement=True)
        assert not eager.wants_placement(Category.MATH, 1, None, allow_placement=False)

    def test_only_in_placement_category_and_low_difficulty(self, eager):
        assert not eager.wants_placement(Category.LOGIC, 1, None, True)
        assert eager.wants_placement(Category.MATH, 2, None, True)
        assert not eager.wants_placement(Category.MATH, 3, None, True)

    def test_disabled_by_zero_probability(self, policy):
        assert not policy.wants_placement(Category.MATH, 1, None, True)


# ---------------------------------------------------------------------------
# Reconfiguration
# ---------------------------------------------------------------------------

class TestReconfigure:
    def test_returns_new_instance(self, policy, fake_backend):
        updated = policy.reconfigure(use_digits=False)
        assert updated is not policy
        assert updated.config.use_digits is False
        assert policy.config.use_digits is True
        assert updated.backend is fake_backend
        assert updated.gateway is policy.gateway

    def test_backend_rebuilt_when_credentials_change(self, policy, fake_backend):
        updated = policy.reconfigure(api_key="sk-new")
        assert isinstance(updated.backend, AnthropicBackend)
        assert policy.backend is fake_backend

    def test_explicit_backend(self, policy):
        other = MagicMock()
        assert policy.reconfigure(backend=other, api_key="sk-new").backend is other

    def test_invalid_change_raises(self, policy):
        with pytest.raises(ValueError):
            policy.reconfigure(placement_probability=2.0)
