"""
Shared pytest fixtures for the quiz content-supply test suite.

Provides:
    - store: a CorpusStore in a temporary directory
    - mirror: a JsonDirectoryMirror in a temporary directory
    - gateway: a CorpusGateway over ``store`` (no mirror)
    - config: an EngineConfig pointed at the temporary directory
    - fake_backend: a deterministic in-memory generative backend
    - make_item: factory for valid multiple-choice items
    - rng: a seeded random.Random
"""

import random
import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure corpus/ and supply/ are importable regardless of where pytest runs
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from corpus.corpus_store import CorpusStore  # noqa: E402
from corpus.models.items import Category, Item  # noqa: E402
from corpus.remote_mirror import JsonDirectoryMirror  # noqa: E402
from supply.services.config import EngineConfig  # noqa: E402
from supply.services.corpus_gateway import CorpusGateway  # noqa: E402
from supply.services.generative_client import SynthesisError  # noqa: E402


# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------

class FakeBackend:
    """Generative backend that never leaves the process.

    Attributes
    ----------
    fail_items : bool
        Every item request raises ``SynthesisError``.
    rate_limited : bool
        Every item request raises a rate-limited ``SynthesisError``.
    illustration_prompt : str | None
        Prompt attached to every synthesized item.
    images : dict[str, bytes]
        Illustration bytes per prompt; unknown prompts resolve to ``None``.
    gate : asyncio.Event | None
        When set, item requests wait on it before answering.
    """

    def __init__(self):
        self.item_calls = []
        self.illustration_calls = []
        self.fail_items = False
        self.rate_limited = False
        self.illustration_prompt = None
        self.images = {}
        self.gate = None

    async def synthesize_item(self, request):
        self.item_calls.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.rate_limited:
            raise SynthesisError("429 quota exceeded", rate_limited=True)
        if self.fail_items:
            raise SynthesisError("backend unavailable")
        n = len(self.item_calls)
        return Item(
            category=request.category,
            text=f"SYNTHESIZED QUESTION NUMBER {n}",
            options=["ONE", "TWO", "THREE", "FOUR"],
            correct_index=n % 4,
            difficulty_level=request.difficulty,
            illustration_prompt=self.illustration_prompt,
        )

    async def synthesize_illustration(self, prompt):
        self.illustration_calls.append(prompt)
        return self.images.get(prompt)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store(tmp_path):
    """Return a CorpusStore backed by a temporary database."""
    s = CorpusStore(str(tmp_path / "data"))
    yield s
    s.close()


@pytest.fixture
def mirror(tmp_path):
    return JsonDirectoryMirror(str(tmp_path / "mirror"))


@pytest.fixture
def gateway(store):
    return CorpusGateway(store)


@pytest.fixture
def config(tmp_path):
    """Return an offline EngineConfig with placement challenges disabled."""
    return EngineConfig(data_dir=str(tmp_path / "data"), placement_probability=0.0)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def make_item():
    """Return a factory for valid multiple-choice items.

    Usage::

        item = make_item("WHAT IS 2 + 2?", category=Category.MATH)
    """

    def _make(text="WHAT IS 2 + 2?", category=Category.MATH, **kwargs):
        kwargs.setdefault("options", ["3", "4", "5", "6"])
        kwargs.setdefault("correct_index", 1)
        return Item(category=category, text=text, **kwargs)

    return _make
