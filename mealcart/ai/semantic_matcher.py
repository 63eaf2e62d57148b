"""LLM-assisted matching of shopping list items to captured products."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from mealcart import metrics
from mealcart.ai.prompts import NULL_MATCH, build_match_prompt
from mealcart.config import settings
from mealcart.pricing.cache import PriceCacheStore
from mealcart.pricing.models import CacheEntry

logger = logging.getLogger(__name__)

# Requests no longer than this skip the substring pass
MIN_SUBSTRING_LENGTH = 3

CompletionFn = Callable[[str], Awaitable[str]]


async def _default_completion(prompt: str) -> str:
    from mealcart.ai.llm_service import llm_service

    return await llm_service.complete(
        prompt,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )


class SemanticMatcher:
    """
    Finds the captured product that best stands in for a requested item.

    Features:
    - Cheap substring pass over captured display names
    - LLM pick among the most recent captures
    - Exact-answer validation against the candidate list
    - Errors and timeouts degrade to "no match"
    """

    def __init__(
        self,
        cache: PriceCacheStore,
        completion: Optional[CompletionFn] = None,
        candidate_limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.cache = cache
        self._complete = completion or _default_completion
        self.candidate_limit = candidate_limit or settings.semantic_match_candidate_limit
        self.timeout = timeout or settings.semantic_match_timeout_seconds

    def _candidates(self, platform: str) -> List[Tuple[str, CacheEntry]]:
        entries = self.cache.entries_for_platform(platform, real_only=True)
        entries.sort(key=lambda pair: pair[1].stored_at, reverse=True)
        return entries

    async def find_best_match(self, platform: str, requested: str) -> Optional[str]:
        """
        Find a cache key whose real capture is the best match for an item.

        Args:
            platform: Platform identifier
            requested: Item name as written (or normalized)

        Returns:
            Matching cache key, or None
        """
        candidates = self._candidates(platform)
        if not candidates:
            return None

        lowered = requested.strip().lower()
        if len(lowered) > MIN_SUBSTRING_LENGTH:
            for key, entry in candidates:
                if lowered in entry.display_name.lower():
                    metrics.record_semantic_match(platform, "substring")
                    return key

        pool = candidates[:self.candidate_limit]
        names = [entry.display_name for _, entry in pool]
        prompt = build_match_prompt(requested, names)

        try:
            answer = await asyncio.wait_for(self._complete(prompt), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{platform}] Semantic match timed out for {requested!r}")
            metrics.record_semantic_match(platform, "error")
            return None
        except Exception as e:
            logger.warning(f"[{platform}] Semantic match failed for {requested!r}: {e}")
            metrics.record_semantic_match(platform, "error")
            return None

        cleaned = (answer or "").strip().strip("\"'`").strip()
        if not cleaned or cleaned.lower() == NULL_MATCH:
            metrics.record_semantic_match(platform, "none")
            return None

        for key, entry in pool:
            if entry.display_name == cleaned:
                logger.info(f"[{platform}] Semantic match: {requested!r} -> {cleaned!r}")
                metrics.record_semantic_match(platform, "llm")
                return key

        logger.debug(f"[{platform}] LLM answer {cleaned!r} is not a known candidate")
        metrics.record_semantic_match(platform, "none")
        return None
