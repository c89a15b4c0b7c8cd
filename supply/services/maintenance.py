"""
supply/services/maintenance.py -- Offline jobs over the corpus.

Handles:
    - Batch item synthesis (categories in rotation)
    - Batch illustration generation for prompts with no stored image
    - Duplicate cleanup pass (local store and mirror)
    - Corpus statistics
    - Mirror push / pull

Batch jobs report progress through an ``on_progress(done)`` callback and
stop issuing backend calls at the first rate-limit signal, which is passed
to ``on_error(message)``.  Any other per-item failure is logged and the job
moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from corpus.builtin import pick_sub_topic
from corpus.dedup import SIMILARITY_THRESHOLD, identify_duplicates
from corpus.models.items import Category
from supply.services.config import EngineConfig
from supply.services.corpus_gateway import CorpusGateway
from supply.services.generative_client import (
    GenerativeBackend,
    SynthesisRequest,
    is_rate_limit_error,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
ErrorCallback = Callable[[str], None]

_ROTATION = (Category.MATH, Category.LANGUAGE, Category.LOGIC, Category.SCIENCE)


@dataclass
class BatchResult:
    """Outcome of a batch job."""
    requested: int
    succeeded: int = 0
    failed: int = 0
    rate_limited: bool = False

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed


@dataclass
class CleanupReport:
    """Outcome of a duplicate cleanup pass."""
    scanned: int = 0
    duplicate_ids: list[str] = field(default_factory=list)
    deleted_local: int = 0
    deleted_mirror: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MaintenanceService:
    """Batch operations that run outside a learning session.

    Parameters
    ----------
    config : EngineConfig
        Formatting options, banned topics and per-category difficulty.
    gateway : CorpusGateway
        Corpus and mirror access.
    backend : GenerativeBackend
        Used by the batch synthesis jobs.
    """

    def __init__(self, config: EngineConfig, gateway: CorpusGateway, backend: GenerativeBackend):
        self.config = config
        self.gateway = gateway
        self.backend = backend

    # ------------------------------------------------------------------
    # Batch synthesis
    # ------------------------------------------------------------------

    async def batch_generate(
        self,
        count: int,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> BatchResult:
        """Synthesize and store *count* items, rotating through categories."""
        result = BatchResult(requested=count)
        for i in range(count):
            category = _ROTATION[i % len(_ROTATION)]
            request = SynthesisRequest(
                category=category,
                difficulty=self.config.difficulty_for(category),
                sub_topic=pick_sub_topic(category),
                use_digits=self.config.use_digits,
                uppercase=self.config.uppercase,
                banned_topics=self.config.active_banned_topics,
            )
            try:
                item = await self.backend.synthesize_item(request)
                await self.gateway.put(item)
            except Exception as exc:
                result.failed += 1
                if is_rate_limit_error(exc):
                    result.rate_limited = True
                    logger.warning("Batch generation stopped at %d/%d: rate limited", i, count)
                    if on_error is not None:
                        on_error(f"Rate limit reached after {result.succeeded} item(s): {exc}")
                    break
                logger.warning("Batch generation error at index %d", i, exc_info=True)
                continue

            result.succeeded += 1
            if on_progress is not None:
                on_progress(result.succeeded)

        logger.info("Batch generation: %d/%d item(s) stored", result.succeeded, count)
        return result

    async def missing_illustration_prompts(self) -> list[str]:
        """Prompts referenced by stored items that have no image record yet.

        Blocked prompts have a record and are therefore not listed.
        """
        missing = []
        for prompt in await self.gateway.illustration_prompts():
            if await self.gateway.get_image(prompt) is None:
                missing.append(prompt)
        return missing

    async def batch_generate_illustrations(
        self,
        prompts: list[str] | None = None,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> BatchResult:
        """Generate and store images for *prompts* (default: every missing one)."""
        if prompts is None:
            prompts = await self.missing_illustration_prompts()

        result = BatchResult(requested=len(prompts))
        for prompt in prompts:
            try:
                image = await self.backend.synthesize_illustration(prompt)
            except Exception as exc:
                result.failed += 1
                if is_rate_limit_error(exc):
                    result.rate_limited = True
                    logger.warning("Illustration batch stopped: rate limited")
                    if on_error is not None:
                        on_error(f"Rate limit reached after {result.succeeded} image(s): {exc}")
                    break
                logger.warning("Illustration failed for %r", prompt, exc_info=True)
                continue

            if not image:
                result.failed += 1
                continue
            await self.gateway.put_image(prompt, image)
            result.succeeded += 1
            if on_progress is not None:
                on_progress(result.succeeded)

        logger.info("Illustration batch: %d/%d image(s) stored", result.succeeded, len(prompts))
        return result

    # ------------------------------------------------------------------
    # Duplicate cleanup
    # ------------------------------------------------------------------

    async def run_dedup_cleanup(self, threshold: float = SIMILARITY_THRESHOLD) -> CleanupReport:
        """Find near-duplicates and delete them locally and in the mirror.

        When identification fails nothing is deleted.
        """
        report = CleanupReport()
        try:
            items = await self.gateway.all_items()
            report.scanned = len(items)
            report.duplicate_ids = identify_duplicates(items, threshold)
        except Exception as exc:
            logger.exception("Duplicate identification failed, nothing deleted")
            report.error = str(exc)
            return report

        if not report.duplicate_ids:
            logger.info("Dedup: %d item(s) scanned, no duplicates", report.scanned)
            return report

        report.deleted_local = await self.gateway.delete_local(report.duplicate_ids)
        if self.gateway.has_mirror:
            try:
                report.deleted_mirror = await self.gateway.delete_mirrored(report.duplicate_ids)
            except Exception as exc:
                logger.warning("Mirror cleanup failed", exc_info=True)
                report.error = f"mirror: {exc}"

        logger.info(
            "Dedup: %d scanned, %d duplicate(s), %d deleted locally, %d in mirror",
            report.scanned, len(report.duplicate_ids), report.deleted_local, report.deleted_mirror,
        )
        return report

    # ------------------------------------------------------------------
    # Stats and mirror sync
    # ------------------------------------------------------------------

    async def stats(self) -> dict:
        """Local corpus statistics plus the mirror document count (-1 if none)."""
        stats = await self.gateway.get_stats()
        stats["mirror_count"] = await self.gateway.mirror_count()
        return stats

    async def push(self) -> int:
        return await self.gateway.push_to_mirror()

    async def pull(self) -> int:
        return await self.gateway.pull_from_mirror()
