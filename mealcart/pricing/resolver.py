"""Price resolution with a cache, semantic match and estimate fallback chain."""

import logging
from typing import Optional

from mealcart import metrics
from mealcart.ai.semantic_matcher import SemanticMatcher
from mealcart.normalize.name_normalizer import normalize_item_name
from mealcart.pricing.cache import PriceCacheStore
from mealcart.pricing.estimates import EstimateTable
from mealcart.pricing.models import PriceObservation

logger = logging.getLogger(__name__)


class PriceResolver:
    """
    Resolves a price for any (platform, item) pair.

    Fallback order:
    1. Real price from the cache (exact or substring key match)
    2. Semantic match to a real capture, remembered as an alias entry
    3. Estimated price already in the cache
    4. Fresh estimate from the market-rate table, stored in the cache
    """

    def __init__(
        self,
        cache: PriceCacheStore,
        matcher: Optional[SemanticMatcher] = None,
        estimates: Optional[EstimateTable] = None,
    ):
        self.cache = cache
        self.matcher = matcher
        self.estimates = estimates or EstimateTable()

    async def _semantic_hit(
        self,
        platform: str,
        raw_item_name: str,
    ) -> Optional[tuple]:
        """Return (key, observation) for a real capture the matcher picks."""
        if self.matcher is None:
            return None
        key = await self.matcher.find_best_match(platform, raw_item_name)
        if not key:
            return None
        entry = self.cache.get_entry(key)
        if entry is None or entry.value.is_estimate:
            return None
        return key, entry.value

    async def resolve_price(
        self,
        platform: str,
        raw_item_name: str,
        *,
        allow_semantic_match: bool = True,
    ) -> PriceObservation:
        """
        Resolve a price for an item on a platform. Never raises.

        Args:
            platform: Platform identifier
            raw_item_name: Item name as written on the shopping list
            allow_semantic_match: Whether the LLM-assisted step may run

        Returns:
            Real or estimated observation
        """
        normalized = normalize_item_name(raw_item_name)
        cached = self.cache.get(platform, normalized) if normalized else None

        if cached is not None and not cached.is_estimate:
            logger.debug(f"[{platform}] HIT (exact): {raw_item_name!r} -> INR {cached.price}")
            metrics.record_resolution(platform, "exact")
            return cached

        if allow_semantic_match:
            hit = await self._semantic_hit(platform, raw_item_name)
            if hit is not None:
                key, observation = hit
                logger.info(f"[{platform}] HIT (semantic): {raw_item_name!r} -> {key!r} (INR {observation.price})")
                if normalized:
                    self.cache.set(platform, normalized, observation.as_alias(key))
                metrics.record_resolution(platform, "semantic")
                return observation

        if cached is not None:
            logger.debug(f"[{platform}] HIT (estimate): {raw_item_name!r} -> INR {cached.price}")
            metrics.record_resolution(platform, "cached_estimate")
            return cached

        estimate = self.estimates.estimate(normalized, platform)
        if normalized:
            self.cache.set(platform, normalized, estimate)
        logger.debug(f"[{platform}] MISS: estimate for {raw_item_name!r} -> INR {estimate.price}")
        metrics.record_resolution(platform, "new_estimate")
        return estimate

    async def resolve_item_name(self, platform: str, raw_item_name: str) -> str:
        """
        Best real product name for an item, for searching a store.

        Args:
            platform: Platform identifier
            raw_item_name: Item name as written on the shopping list

        Returns:
            Captured product name if known, else the raw name unchanged
        """
        normalized = normalize_item_name(raw_item_name)
        cached = self.cache.get(platform, normalized) if normalized else None
        if cached is not None and not cached.is_estimate and cached.original_name:
            return cached.original_name

        hit = await self._semantic_hit(platform, raw_item_name)
        if hit is not None and hit[1].original_name:
            return hit[1].original_name

        return raw_item_name
