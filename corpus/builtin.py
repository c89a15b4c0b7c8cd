"""
corpus/builtin.py -- Built-in content that needs no backend.

    FALLBACK_ITEMS      Static multiple-choice items used as the last-resort
                        safety net when both synthesis and corpus reuse fail.
    SUB_TOPICS          Per-category focus areas; each synthesis request
                        picks one to keep the corpus varied.
    build_placement_item
                        Locally constructed placement challenge (load an
                        exact number of pieces into a train car).
"""

from __future__ import annotations

import random
from typing import Optional

from corpus.models.items import Category, Item, ItemKind, PlacementConfig

# ---------------------------------------------------------------------------
# Static fallback set
# ---------------------------------------------------------------------------

FALLBACK_ITEMS: list[dict] = [
    {
        "text": "WHICH PLANET IS CLOSEST TO THE SUN?",
        "options": ["EARTH", "MARS", "MERCURY", "VENUS"],
        "correct_index": 2,
        "explanation": "MERCURY IS THE SMALLEST PLANET AND THE CLOSEST ONE TO THE SUN.",
        "illustration_prompt": "Planet Mercury in space",
    },
    {
        "text": "WHAT IS 5 + 5?",
        "options": ["8", "9", "10", "11"],
        "correct_index": 2,
        "explanation": "5 PLUS 5 IS 10. YOU HAVE 10 FINGERS!",
    },
    {
        "text": "WHICH OF THESE IS NOT AN ANIMAL?",
        "options": ["CAT", "DOG", "BUS", "HORSE"],
        "correct_index": 2,
        "explanation": "A BUS IS A VEHICLE, NOT AN ANIMAL.",
        "illustration_prompt": "A yellow bus",
    },
    {
        "text": "WHAT RHYMES WITH 'HOUSE'?",
        "options": ["CAR", "MOUSE", "CAT", "TRAIN"],
        "correct_index": 1,
        "explanation": "HOUSE AND MOUSE END WITH THE SAME SOUND.",
        "illustration_prompt": "A cute mouse",
    },
    {
        "text": "WHICH SHAPE HAS 3 CORNERS?",
        "options": ["CIRCLE", "SQUARE", "TRIANGLE", "RECTANGLE"],
        "correct_index": 2,
        "explanation": "A TRIANGLE HAS THREE SIDES AND THREE CORNERS.",
        "illustration_prompt": "A green triangle shape",
    },
    {
        "text": "THE OPPOSITE OF 'WARM' IS...?",
        "options": ["STRONG", "HAPPY", "COLD", "SOFT"],
        "correct_index": 2,
        "explanation": "IF YOU ARE NOT WARM, YOU ARE COLD.",
        "illustration_prompt": "Ice cubes and snow",
    },
    {
        "text": "WHAT DO PLANTS NEED TO LIVE?",
        "options": ["CANDY", "WATER", "PETROL", "MILK"],
        "correct_index": 1,
        "explanation": "PLANTS DRINK WATER AND NEED SUNLIGHT.",
        "illustration_prompt": "A watering can watering a flower",
    },
    {
        "text": "WHICH NUMBER IS THE BIGGEST?",
        "options": ["2", "5", "9", "1"],
        "correct_index": 2,
        "explanation": "9 IS THE HIGHEST NUMBER IN THE LIST.",
    },
    {
        "text": "WHAT DOES A TRAIN USE TO ROLL?",
        "options": ["FEET", "WHEELS", "WINGS", "FINS"],
        "correct_index": 1,
        "explanation": "A TRAIN HAS METAL WHEELS THAT ROLL ON THE RAILS.",
        "illustration_prompt": "Train wheels close up",
    },
    {
        "text": "WHAT COLOUR DO YOU GET IF YOU MIX RED AND YELLOW?",
        "options": ["BLUE", "GREEN", "ORANGE", "PURPLE"],
        "correct_index": 2,
        "explanation": "RED AND YELLOW TOGETHER MAKE ORANGE.",
        "illustration_prompt": "Orange paint bucket",
    },
]


def fallback_item(
    category: Category,
    difficulty: int,
    rng: Optional[random.Random] = None,
) -> Item:
    """Return a random static item tagged with *category* and *difficulty*.

    Always succeeds; the id is fresh on every call.
    """
    rng = rng or random
    base = rng.choice(FALLBACK_ITEMS)
    return Item(category=category, difficulty_level=difficulty, **base)


# ---------------------------------------------------------------------------
# Sub-topics
# ---------------------------------------------------------------------------

SUB_TOPICS: dict[Category, list[str]] = {
    Category.MATH: [
        "COUNTING (How many ...?)",
        "SIMPLE ADDITION",
        "SIMPLE SUBTRACTION",
        "CLOCK AND TIME (whole and half hours)",
        "MONEY AND SHOPPING",
        "GEOMETRIC SHAPES",
        "NUMBER PATTERNS (What comes next? 2, 4, 6 ...)",
        "DOUBLE AND HALF",
        "ORDERING BY SIZE (smallest to biggest)",
    ],
    Category.LANGUAGE: [
        "RHYMES",
        "OPPOSITES (big/small, warm/cold)",
        "SYNONYMS (words that mean the same thing)",
        "COMPOUND WORDS (sun + glasses)",
        "WHICH LETTER DOES THE WORD START WITH?",
        "SPELLING (which word is spelled correctly?)",
        "GUESS THE WORD (I have four legs and I bark ...)",
        "VOCABULARY (What is a ...?)",
    ],
    Category.LOGIC: [
        "ODD ONE OUT",
        "SHAPE PATTERNS (what comes next?)",
        "CAUSE AND EFFECT (what happens if ...?)",
        "SORTING (which things belong together?)",
        "SPATIAL REASONING (rotating shapes in your head)",
        "RIDDLES AND BRAIN TEASERS",
    ],
    Category.SCIENCE: [
        "SPACE (planets, stars, the moon)",
        "ANIMALS (what they eat, where they live)",
        "THE HUMAN BODY (heart, teeth, senses, skeleton)",
        "WATER AND AIR (float/sink, ice/steam)",
        "EVERYDAY TECHNOLOGY (tools, simple machines, the wheel)",
        "MATERIALS (hard, soft, magnetic, wood/metal)",
        "WEATHER AND SEASONS",
        "DINOSAURS AND PREHISTORY",
        "PLANTS AND TREES",
    ],
}


def pick_sub_topic(category: Category, rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return rng.choice(SUB_TOPICS[category])


# ---------------------------------------------------------------------------
# Placement challenge
# ---------------------------------------------------------------------------

_PLACEMENT_PIECES = [
    ("\U0001F404", "COWS", "CATTLE CAR"),
    ("\U0001F4E6", "CRATES", "FREIGHT CAR"),
    ("\U0001FAB5", "LOGS", "TIMBER CAR"),
    ("\U0001F9F3", "SUITCASES", "PASSENGER CAR"),
    ("⚙️", "GEARS", "WORKSHOP CAR"),
]


def build_placement_item(
    difficulty: int,
    category: Category = Category.MATH,
    rng: Optional[random.Random] = None,
) -> Item:
    """Construct a placement challenge without touching corpus or backend.

    Level 1 asks for 1-5 pieces; higher levels ask for 4-10.  The pile
    always holds 2-5 more pieces than the target.
    """
    rng = rng or random
    emoji, name, container = rng.choice(_PLACEMENT_PIECES)
    if difficulty <= 1:
        target = rng.randint(1, 5)
    else:
        target = rng.randint(4, 10)
    total = target + rng.randint(2, 5)

    return Item(
        category=category,
        kind=ItemKind.PLACEMENT,
        text=f"LOADING DOCK: LOAD EXACTLY {target} {name} ONTO THE {container}.",
        explanation=f"WELL DONE! NOW THE TRAIN CARRIES {target} {name}.",
        difficulty_level=difficulty,
        placement=PlacementConfig(
            item_emoji=emoji,
            item_name=name,
            target_count=target,
            total_items=total,
            container_name=container,
        ),
    )
