"""
Tests for supply/services/session_controller.py -- the presentation-facing API.
"""

import asyncio

import pytest

from corpus.models.items import Category
from supply.services.session_controller import SessionController, SessionStats


@pytest.fixture
def controller(config, gateway, fake_backend, rng):
    return SessionController(config, gateway, fake_backend, rng)


class TestSessionLifecycle:
    def test_start_session_fills_buffer(self, controller):
        async def scenario():
            dispatched = await controller.start_session(Category.LOGIC)
            await controller.buffer.settle()
            queued = controller.buffer.queue_length
            await controller.aclose()
            return dispatched, queued

        assert asyncio.run(scenario()) == (5, 5)
        assert controller.category == Category.LOGIC

    def test_take_next_displays_item(self, controller):
        async def scenario():
            await controller.start_session(Category.LOGIC)
            await controller.buffer.settle()
            item = await controller.take_next()
            shown = controller.current_item
            await controller.aclose()
            return item, shown

        item, shown = asyncio.run(scenario())
        assert shown is item
        assert item.category == Category.LOGIC

    def test_take_next_before_start(self, controller):
        with pytest.raises(RuntimeError):
            asyncio.run(controller.take_next())

    def test_restart_resets_stats(self, controller):
        async def scenario():
            await controller.start_session(Category.MATH)
            controller.report_outcome("x", True)
            await controller.start_session(Category.SCIENCE)
            await controller.aclose()
            return controller.stats

        assert asyncio.run(scenario()).answered == 0

    def test_works_offline(self, config, gateway, rng):
        """No credentials: the controller still serves built-in items."""
        controller = SessionController(config, gateway, rng=rng)

        async def scenario():
            await controller.start_session(Category.SCIENCE)
            await controller.buffer.settle()
            item = await controller.take_next()
            await controller.aclose()
            return item

        assert asyncio.run(scenario()).category == Category.SCIENCE


class TestOutcomes:
    def test_stats_and_streak(self):
        stats = SessionStats()
        for correct in (True, True, False, True):
            stats.record(correct)
        assert stats.answered == 4
        assert stats.correct == 3
        assert stats.streak == 1
        assert stats.best_streak == 2
        assert stats.accuracy == pytest.approx(0.75)

    def test_empty_accuracy(self):
        assert SessionStats().accuracy == 0.0

    def test_report_outcome_emits_and_counts(self, controller):
        received = []
        controller.bus.outcome_reported.connect(received.append)

        async def scenario():
            await controller.start_session(Category.MATH)
            controller.report_outcome("item-1", True)
            await controller.aclose()

        asyncio.run(scenario())
        assert controller.stats.correct == 1
        assert received[0].item_id == "item-1"
        assert received[0].correct is True

    def test_wrong_answer_tops_up(self, controller):
        async def scenario():
            await controller.start_session(Category.LOGIC)
            await controller.buffer.settle()
            controller.reconfigure(buffer_target_size=6)
            controller.report_outcome("item-1", False)
            in_flight = controller.buffer.in_flight
            await controller.aclose()
            return in_flight

        assert asyncio.run(scenario()) == 1


class TestTooHard:
    @pytest.fixture
    def replaying(self, config, gateway, fake_backend, rng):
        """Controller that always replays from the corpus when it can."""
        config = config.with_changes(tier_probabilities=(0.0, 0.0, 0.0, 0.0))
        return SessionController(config, gateway, fake_backend, rng)

    def test_escalates_stored_record(self, replaying, store, make_item):
        stored = make_item("WHICH ANIMAL SAYS MOO?", category=Category.SCIENCE, difficulty_level=2)
        store.put(stored)
        events = []
        replaying.bus.difficulty_escalated.connect(events.append)

        async def scenario():
            await replaying.start_session(Category.SCIENCE)
            await replaying.buffer.settle()
            item = await replaying.take_next()
            updated = await replaying.report_too_hard(item.id)
            await replaying.aclose()
            return item, updated

        item, updated = asyncio.run(scenario())
        assert item.id != stored.id
        assert updated is True
        assert store.get(stored.id).difficulty_level == 3
        assert events[0].corpus_id == stored.id
        assert events[0].new_level == 3

    def test_capped_at_maximum(self, replaying, store, make_item):
        stored = make_item(category=Category.SCIENCE, difficulty_level=5)
        store.put(stored)

        async def scenario():
            await replaying.start_session(Category.SCIENCE)
            await replaying.buffer.settle()
            item = await replaying.take_next()
            await replaying.report_too_hard(item.id)
            await replaying.aclose()

        asyncio.run(scenario())
        assert store.get(stored.id).difficulty_level == 5

    def test_unknown_item_is_noop(self, controller):
        async def scenario():
            await controller.start_session(Category.MATH)
            result = await controller.report_too_hard("never-served")
            await controller.aclose()
            return result

        assert asyncio.run(scenario()) is False

    def test_builtin_item_not_in_corpus(self, config, gateway, fake_backend, rng):
        fake_backend.fail_items = True
        controller = SessionController(
            config.with_changes(buffer_target_size=0), gateway, fake_backend, rng
        )

        async def scenario():
            await controller.start_session(Category.LOGIC)
            item = await controller.take_next()
            result = await controller.report_too_hard(item.id)
            await controller.aclose()
            return result

        assert asyncio.run(scenario()) is False


class TestBadIllustration:
    def test_blocks_and_clears_displayed_image(self, controller, store, make_item):
        shown = make_item(illustration_prompt="A cat", attached_image=b"cat")
        blocked = []
        controller.bus.illustration_blocked.connect(blocked.append)

        async def scenario():
            await controller.start_session(Category.MATH)
            controller.bus.item_served.emit(shown)
            await controller.report_bad_illustration("A cat")
            await controller.aclose()

        asyncio.run(scenario())
        assert shown.attached_image is None
        assert store.get_image("A cat").blocked
        assert controller.resolver.is_blocked("A cat")
        assert blocked[0].prompt == "A cat"


class TestReconfigure:
    def test_swaps_policy_everywhere(self, controller, fake_backend):
        old = controller.policy
        new = controller.reconfigure(use_digits=False)
        assert new is not old
        assert controller.policy is new
        assert controller.buffer.policy is new
        assert controller.config.use_digits is False
        assert old.config.use_digits is True
        assert controller.resolver.backend is fake_backend

    def test_queued_items_survive(self, controller):
        async def scenario():
            await controller.start_session(Category.LOGIC)
            await controller.buffer.settle()
            before = controller.buffer.snapshot()
            controller.reconfigure(uppercase=False)
            after = controller.buffer.snapshot()
            await controller.aclose()
            return before, after

        before, after = asyncio.run(scenario())
        assert after == before

    def test_idle_retired_policies_dropped(self, controller):
        for digits in (False, True, False, True):
            controller.reconfigure(use_digits=digits)
        assert len(controller._retired) == 1

    def test_retired_policy_kept_until_writes_finish(self, controller, store, make_item):
        async def scenario():
            busy = controller.policy
            busy._persist_later(make_item("WHAT IS 7 + 5?"))
            controller.reconfigure(use_digits=False)
            controller.reconfigure(use_digits=True)
            kept = busy in controller._retired
            await controller.aclose()
            controller.reconfigure(uppercase=False)
            return kept, busy in controller._retired

        kept, kept_after_drain = asyncio.run(scenario())
        assert kept
        assert not kept_after_drain
        assert store.count_by_category(Category.MATH) == 1
