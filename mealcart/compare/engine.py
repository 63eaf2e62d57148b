"""Concurrent multi-platform price comparison for a shopping list.

Every item is priced on every platform through the resolver, scaled to the
requested quantity, and aggregated into per-platform totals. A platform is
only recommended when it covers at least half the list.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from mealcart import metrics
from mealcart.config import settings
from mealcart.db.plan_store import MealPlanStore, ShoppingListItem
from mealcart.normalize.name_normalizer import normalize_item_name
from mealcart.pricing.models import PriceObservation, parse_datetime, to_decimal, utcnow
from mealcart.pricing.resolver import PriceResolver
from mealcart.pricing.units import calculate_total

logger = logging.getLogger(__name__)

NO_PLATFORM = "N/A"
INSUFFICIENT_DATA = "Could not compare prices due to insufficient data."


class EmptyShoppingListError(ValueError):
    """Raised when there is nothing to compare."""

    pass


@dataclass
class PlatformMetadata:
    """How one item's price on one platform was obtained."""

    is_estimate: bool = False
    matched_name: Optional[str] = None
    source_unit: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_estimate": self.is_estimate,
            "matched_name": self.matched_name,
            "source_unit": self.source_unit,
        }


@dataclass
class ItemComparison:
    """Per-platform prices for one shopping list line."""

    item: str
    qty: str
    per_platform_price: Dict[str, Optional[Decimal]] = field(default_factory=dict)
    per_platform_metadata: Dict[str, PlatformMetadata] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item": self.item,
            "qty": self.qty,
            "prices": {
                platform: float(price) if price is not None else None
                for platform, price in self.per_platform_price.items()
            },
            "metadata": {
                platform: meta.to_dict()
                for platform, meta in self.per_platform_metadata.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemComparison":
        return cls(
            item=data["item"],
            qty=data.get("qty") or "1 unit",
            per_platform_price={
                platform: to_decimal(price) if price is not None else None
                for platform, price in (data.get("prices") or {}).items()
            },
            per_platform_metadata={
                platform: PlatformMetadata(**meta)
                for platform, meta in (data.get("metadata") or {}).items()
            },
        )


@dataclass
class ComparisonResult:
    """Outcome of comparing one shopping list across all platforms."""

    per_item: List[ItemComparison]
    totals: Dict[str, Decimal]
    found_counts: Dict[str, int]
    best_platform: str
    recommendation: str
    last_updated: datetime

    @property
    def total_items(self) -> int:
        return len(self.per_item)

    def coverage(self, platform: str) -> float:
        if not self.per_item:
            return 0.0
        return self.found_counts.get(platform, 0) / len(self.per_item)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [item.to_dict() for item in self.per_item],
            "totals": {p: float(total) for p, total in self.totals.items()},
            "found_counts": dict(self.found_counts),
            "best_platform": self.best_platform,
            "recommendation": self.recommendation,
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComparisonResult":
        return cls(
            per_item=[ItemComparison.from_dict(item) for item in data.get("results") or []],
            totals={p: to_decimal(total) for p, total in (data.get("totals") or {}).items()},
            found_counts={p: int(n) for p, n in (data.get("found_counts") or {}).items()},
            best_platform=data.get("best_platform") or NO_PLATFORM,
            recommendation=data.get("recommendation") or INSUFFICIENT_DATA,
            last_updated=parse_datetime(data.get("last_updated")) or utcnow(),
        )

    def flatten(self) -> List[Dict[str, Any]]:
        """One row per item and platform, for tabular display."""
        rows = []
        for item in self.per_item:
            for platform, price in item.per_platform_price.items():
                meta = item.per_platform_metadata.get(platform) or PlatformMetadata()
                rows.append({
                    "item": item.item,
                    "qty": item.qty,
                    "platform": platform,
                    "price": float(price) if price is not None else None,
                    "is_estimate": meta.is_estimate,
                    "matched_name": meta.matched_name,
                    "source_unit": meta.source_unit,
                })
        return rows


def is_comparison_stale(
    last_updated: Optional[datetime],
    latest_capture: Optional[datetime],
) -> bool:
    """True when a real price was captured after the comparison was made."""
    if last_updated is None:
        return True
    if latest_capture is None:
        return False
    return latest_capture > last_updated


def build_recommendation(
    best_platform: str,
    totals: Dict[str, Decimal],
    per_item: Sequence[ItemComparison],
) -> str:
    """Human-readable recommendation naming the best platform."""
    if best_platform == NO_PLATFORM:
        return INSUFFICIENT_DATA

    recommendation = f"Best platform: {best_platform.upper()} - INR {totals[best_platform]:.2f}"
    uncertain = 0
    for item in per_item:
        price = item.per_platform_price.get(best_platform)
        meta = item.per_platform_metadata.get(best_platform)
        if price is None or (meta is not None and meta.is_estimate):
            uncertain += 1
    if uncertain:
        recommendation += f" ({uncertain} items estimated/missing)"
    return recommendation


def apply_comparison_to_items(
    items: Sequence[ShoppingListItem],
    result: ComparisonResult,
    platforms: Sequence[str],
) -> List[ShoppingListItem]:
    """
    Copy compared prices onto shopping list items.

    Each item takes the best platform's price, else the lowest available
    price, else keeps its current price. Items are matched to comparison
    rows by case-insensitive name, so items left out of the comparison
    keep their prices.

    Returns:
        Updated copies of the items, in the original order
    """
    rows: Dict[str, List[ItemComparison]] = {}
    for row in result.per_item:
        rows.setdefault(row.item.casefold(), []).append(row)

    updated = []
    for item in items:
        pending = rows.get(item.item.casefold())
        if not pending:
            updated.append(item.model_copy())
            continue
        row = pending.pop(0)

        price = item.price
        best_price = row.per_platform_price.get(result.best_platform)
        if result.best_platform != NO_PLATFORM and best_price is not None:
            price = best_price
        else:
            available = [
                row.per_platform_price[p]
                for p in platforms
                if row.per_platform_price.get(p) is not None
            ]
            if available:
                price = min(available)
        updated.append(item.model_copy(update={"price": price}))
    return updated


def _coerce_items(shopping_list: Iterable[Any]) -> List[ShoppingListItem]:
    return [
        item if isinstance(item, ShoppingListItem) else ShoppingListItem.model_validate(item)
        for item in shopping_list
    ]


class ComparisonEngine:
    """
    Compares a shopping list across platforms.

    Features:
    - Bounded item concurrency, all platforms of an item in parallel
    - Per-run memo so duplicate items are resolved once per platform
    - Per-cell failure isolation
    - Coverage-gated best platform selection
    - Write-back of prices and the comparison onto the owning meal plan
    """

    def __init__(
        self,
        resolver: PriceResolver,
        plan_store: Optional[MealPlanStore] = None,
        platforms: Optional[Sequence[str]] = None,
        concurrency: Optional[int] = None,
        coverage_threshold: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.resolver = resolver
        self.plan_store = plan_store
        self.platforms = list(platforms or settings.platforms)
        self.concurrency = concurrency or settings.comparison_concurrency
        self.coverage_threshold = (
            coverage_threshold
            if coverage_threshold is not None
            else settings.comparison_coverage_threshold
        )
        self._clock = clock or utcnow

    async def _price_cell(
        self,
        platform: str,
        item: ShoppingListItem,
        memo: Dict[Tuple[str, str], "asyncio.Task[PriceObservation]"],
    ) -> Tuple[Optional[Decimal], PlatformMetadata]:
        """Resolve and scale one item's price on one platform."""
        memo_key = (platform, normalize_item_name(item.item))
        task = memo.get(memo_key)
        if task is None:
            task = asyncio.ensure_future(self.resolver.resolve_price(platform, item.item))
            memo[memo_key] = task

        observation = await task
        calculated = calculate_total(observation, item.qty)
        metadata = PlatformMetadata(
            is_estimate=observation.is_estimate,
            matched_name=observation.original_name,
            source_unit=observation.unit,
        )
        return (calculated.price if calculated else None), metadata

    async def _compare_item(
        self,
        index: int,
        item: ShoppingListItem,
        semaphore: asyncio.Semaphore,
        memo: Dict[Tuple[str, str], "asyncio.Task[PriceObservation]"],
    ) -> Tuple[int, ItemComparison]:
        async with semaphore:
            cells = await asyncio.gather(
                *(self._price_cell(platform, item, memo) for platform in self.platforms),
                return_exceptions=True,
            )

        comparison = ItemComparison(item=item.item, qty=item.qty)
        for platform, cell in zip(self.platforms, cells):
            if isinstance(cell, BaseException):
                logger.warning(f"[{platform}] Pricing {item.item!r} failed: {cell}")
                metrics.record_cell_error(platform)
                comparison.per_platform_price[platform] = None
                comparison.per_platform_metadata[platform] = PlatformMetadata()
                continue
            price, metadata = cell
            comparison.per_platform_price[platform] = price
            comparison.per_platform_metadata[platform] = metadata
        return index, comparison

    def _select_best(self, totals: Dict[str, Decimal], found: Dict[str, int], total_items: int) -> str:
        best = NO_PLATFORM
        best_total: Optional[Decimal] = None
        for platform in self.platforms:
            if found[platform] / total_items < self.coverage_threshold:
                continue
            if best_total is None or totals[platform] < best_total:
                best = platform
                best_total = totals[platform]
        return best

    async def compare(
        self,
        shopping_list: Sequence[Any],
        owner_plan_id: Optional[int] = None,
    ) -> ComparisonResult:
        """
        Compare a shopping list across all platforms.

        Args:
            shopping_list: ShoppingListItem objects or {item, qty} dicts
            owner_plan_id: Meal plan to write prices and the comparison back to

        Returns:
            ComparisonResult with per-item rows in input order

        Raises:
            EmptyShoppingListError: If the list is empty
        """
        items = _coerce_items(shopping_list)
        if not items:
            raise EmptyShoppingListError("Shopping list is empty")

        started = time.monotonic()
        logger.info(f"Comparing prices for {len(items)} items across {len(self.platforms)} platforms")

        semaphore = asyncio.Semaphore(self.concurrency)
        memo: Dict[Tuple[str, str], asyncio.Task] = {}
        try:
            tagged = await asyncio.gather(
                *(self._compare_item(i, item, semaphore, memo) for i, item in enumerate(items))
            )
        except Exception:
            metrics.record_comparison(False, time.monotonic() - started)
            raise
        tagged.sort(key=lambda pair: pair[0])
        per_item = [comparison for _, comparison in tagged]

        totals = {platform: Decimal("0") for platform in self.platforms}
        found = {platform: 0 for platform in self.platforms}
        for row in per_item:
            for platform in self.platforms:
                price = row.per_platform_price.get(platform)
                if price is not None:
                    totals[platform] += price
                    found[platform] += 1

        best = self._select_best(totals, found, len(items))
        result = ComparisonResult(
            per_item=per_item,
            totals=totals,
            found_counts=found,
            best_platform=best,
            recommendation=build_recommendation(best, totals, per_item),
            last_updated=self._clock(),
        )

        duration = time.monotonic() - started
        metrics.record_comparison(True, duration)
        logger.info(f"Comparison done in {duration:.2f}s: {result.recommendation}")

        if owner_plan_id is not None:
            await self._persist(owner_plan_id, result)
        return result

    async def _persist(self, plan_id: int, result: ComparisonResult):
        """Write compared prices and the comparison onto a plan; failures are logged."""
        if self.plan_store is None:
            logger.warning(f"No plan store configured, not saving comparison for plan {plan_id}")
            return
        try:
            items = await self.plan_store.get_shopping_list(plan_id)
            updated = apply_comparison_to_items(items, result, self.platforms)
            await self.plan_store.save_shopping_list_and_comparison(plan_id, updated, result.to_dict())
        except Exception as e:
            metrics.record_plan_persist_error()
            logger.error(f"Failed to save price comparison for plan {plan_id}: {e}")

    async def compare_plan(
        self,
        plan_id: int,
        refresh: bool = False,
        skip_items: Iterable[str] = (),
    ) -> Tuple[ComparisonResult, bool]:
        """
        Compare a stored meal plan, reusing its saved comparison when still valid.

        A saved comparison is reused when it is younger than
        settings.comparison_reuse_hours, no refresh is requested, no items
        are skipped and no real price has been captured since.

        Args:
            plan_id: Meal plan ID
            refresh: Force a new comparison
            skip_items: Item names to leave out (case-insensitive)

        Returns:
            (result, reused) tuple

        Raises:
            PlanNotFoundError: If the plan does not exist
            PlanDecodeError: If the plan is malformed
            EmptyShoppingListError: If nothing is left to compare
        """
        if self.plan_store is None:
            raise RuntimeError("ComparisonEngine has no plan store")

        payload = await self.plan_store.get_payload(plan_id)
        skipped = {name.strip().casefold() for name in skip_items if name and name.strip()}

        if not refresh and not skipped and payload.price_comparison:
            existing = self._reusable(payload.price_comparison)
            if existing is not None:
                logger.info(f"Reusing stored comparison for plan {plan_id}")
                return existing, True

        items = [item for item in payload.shopping_list if item.item.strip().casefold() not in skipped]
        if not items:
            raise EmptyShoppingListError(f"Meal plan {plan_id} has no items to compare")

        result = await self.compare(items, owner_plan_id=plan_id)
        return result, False

    def _reusable(self, stored: Dict[str, Any]) -> Optional[ComparisonResult]:
        try:
            existing = ComparisonResult.from_dict(stored)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable stored comparison: {e}")
            return None

        if self._clock() - existing.last_updated >= timedelta(hours=settings.comparison_reuse_hours):
            return None
        latest = self.resolver.cache.latest_real_capture_timestamp()
        if is_comparison_stale(existing.last_updated, latest):
            logger.info("Stored comparison is older than the latest price capture")
            return None
        return existing
