"""
corpus/similarity.py -- Text similarity and numeric fingerprints.

Two primitives used by the deduplication pass:

    similarity(a, b)
        ``1 - levenshtein(a, b) / max(len(a), len(b))``, compared
        case-insensitively.  Insert, delete and substitute each cost 1.

    fingerprint(text)
        Every maximal run of digits in *text*, converted to an integer,
        sorted, and joined with commas.  ``"WHAT IS 12 + 3?"`` becomes
        ``"3,12"``.  Two texts whose fingerprints differ are never
        duplicates: arithmetic items that differ only by their operands
        must all survive.

Usage::

    from corpus.similarity import similarity, fingerprint

    similarity("kitten", "sitting")     # 0.571...
    fingerprint("WHAT IS 1+1?")         # "1,1"
"""

import re

_DIGIT_RUN_RE = re.compile(r"\d+")


def edit_distance(a: str, b: str) -> int:
    """Classic dynamic-programming Levenshtein distance.

    Keeps only two rows of the table, so memory is O(min(len(a), len(b))).
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Return a case-insensitive similarity score in ``[0, 1]``.

    Two empty strings are identical (1.0).
    """
    a = a.lower()
    b = b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - edit_distance(a, b) / longest


def extract_numbers(text: str) -> list[int]:
    """Return every maximal digit run in *text* as an integer, in order."""
    return [int(run) for run in _DIGIT_RUN_RE.findall(text)]


def fingerprint(text: str) -> str:
    """Return the canonical numeric fingerprint of *text*.

    Text without digits has the empty fingerprint ``""``.
    """
    return ",".join(str(n) for n in sorted(extract_numbers(text)))
