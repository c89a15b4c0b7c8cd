"""
corpus/dedup.py -- Near-duplicate identification over corpus items.

``identify_duplicates`` is a pure function: it takes a batch of items and
returns the ids that should be deleted.  It performs no I/O; applying the
deletions (locally and in any remote mirror) is the caller's job.

Rules, applied in input order:

    - Items whose text is degenerate (fewer than ``MIN_TEXT_LENGTH``
      non-space characters) are skipped: neither kept nor flagged.
    - A candidate is compared against every item kept so far.  A kept item
      in another category, or with a different numeric fingerprint, can
      never match.  Otherwise the candidate is flagged when its similarity
      to the kept item is strictly greater than ``SIMILARITY_THRESHOLD``.
      The first match wins.
    - Unflagged candidates join the kept list, so the earliest occurrence
      of a duplicate group is always the survivor.

The scan is pairwise O(n^2) in the number of kept items, which is fine
for corpora in the low hundreds per category.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from corpus.models.items import Item
from corpus.similarity import fingerprint, similarity

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.85
MIN_TEXT_LENGTH = 2


@dataclass
class _Kept:
    id: str
    category: str
    text: str
    fingerprint: str


def is_degenerate(text: str) -> bool:
    return len(text.strip()) < MIN_TEXT_LENGTH


def identify_duplicates(
    items: Iterable[Item],
    threshold: float = SIMILARITY_THRESHOLD,
) -> list[str]:
    """Return the ids of items that duplicate an earlier item.

    Parameters
    ----------
    items : Iterable[Item]
        Corpus items in the order that decides survivors.
    threshold : float
        Similarity above which two same-category, same-fingerprint texts
        are duplicates.

    Returns
    -------
    list[str]
        Ids to delete, in input order.
    """
    kept: list[_Kept] = []
    flagged: list[str] = []

    for item in items:
        text = item.text or ""
        if is_degenerate(text):
            continue

        category = item.category.value
        fp = fingerprint(text)
        match = None
        for survivor in kept:
            if survivor.category != category:
                continue
            if survivor.fingerprint != fp:
                continue
            if similarity(text, survivor.text) > threshold:
                match = survivor
                break

        if match is not None:
            logger.debug("Item %s duplicates %s", item.id, match.id)
            flagged.append(item.id)
        else:
            kept.append(_Kept(item.id, category, text, fp))

    return flagged
