"""Ingestion of real prices captured from retail pages."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from mealcart import metrics
from mealcart.config import settings
from mealcart.normalize.name_normalizer import normalize_item_name
from mealcart.pricing.cache import PriceCacheStore, make_key
from mealcart.pricing.models import SOURCE_EXTENSION, PriceObservation, to_decimal, utcnow

logger = logging.getLogger(__name__)

DEFAULT_USER = "extension_user"

_SCHEME_PATTERN = re.compile(r"^[a-z][a-z0-9+.-]*://")


class IngestError(ValueError):
    """Raised for a capture that cannot be stored."""

    pass


@dataclass
class IngestResult:
    """A stored capture."""

    key: str
    platform: str
    observation: PriceObservation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "platform": self.platform,
            "value": self.observation.to_dict(),
        }


def normalize_platform(platform: str) -> str:
    """
    Reduce a platform name or store URL to its identifier.

    "https://www.bigbasket.com/pd/123" and "Blinkit.com" become
    "bigbasket" and "blinkit".
    """
    cleaned = (platform or "").strip().lower()
    cleaned = _SCHEME_PATTERN.sub("", cleaned)
    cleaned = cleaned.split("/", 1)[0]
    if cleaned.startswith("www."):
        cleaned = cleaned[4:]
    return cleaned.split(".", 1)[0]


class PriceIngestor:
    """Stores captured prices as real (non-estimate) cache entries."""

    def __init__(
        self,
        cache: PriceCacheStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.cache = cache
        self._clock = clock or utcnow

    def ingest(
        self,
        platform: str,
        name: str,
        price: Any,
        unit: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> IngestResult:
        """
        Store one captured price.

        Args:
            platform: Platform name or store URL
            name: Product name as shown on the store
            price: Positive price in INR
            unit: Pack size the price applies to, e.g. "500 g"
            user_id: Who captured the price

        Returns:
            IngestResult with the cache key and stored observation

        Raises:
            IngestError: If a field is missing or the price is not positive
        """
        platform_id = normalize_platform(platform)
        display_name = (name or "").strip()
        if not platform_id or not display_name or price is None:
            metrics.record_ingest(platform_id or "unknown", success=False)
            raise IngestError("Missing required fields: platform, name, price")

        normalized = normalize_item_name(display_name)
        if not normalized:
            metrics.record_ingest(platform_id, success=False)
            raise IngestError(f"Product name {display_name!r} has no usable words")

        try:
            observation = PriceObservation(
                price=to_decimal(price),
                unit=(unit or "").strip() or "1 unit",
                is_estimate=False,
                original_name=display_name,
                source=SOURCE_EXTENSION,
                captured_at=self._clock(),
                user_id=user_id or DEFAULT_USER,
            )
        except ValueError as e:
            metrics.record_ingest(platform_id, success=False)
            raise IngestError(f"Invalid price value: {price!r}") from e

        if platform_id not in settings.platforms:
            logger.warning(f"[INGEST] Capture from unknown platform {platform_id!r}")

        self.cache.set(platform_id, normalized, observation)
        metrics.record_ingest(platform_id, success=True)
        logger.info(
            f"[INGEST] {platform_id.upper()} | {display_name} | INR {observation.price} / "
            f"{observation.unit} (user: {observation.user_id})"
        )
        return IngestResult(
            key=make_key(platform_id, normalized),
            platform=platform_id,
            observation=observation,
        )

    def ingest_bulk(
        self,
        user_id: Optional[str],
        captures: Iterable[Dict[str, Any]],
    ) -> Dict[str, int]:
        """
        Store a batch of captures; one bad capture does not stop the rest.

        Args:
            user_id: Who captured the prices
            captures: Dicts with platform, name, price and optional unit/quantity

        Returns:
            Dictionary with saved and total counts
        """
        saved = 0
        total = 0
        for capture in captures:
            total += 1
            try:
                self.ingest(
                    platform=capture.get("platform"),
                    name=capture.get("name"),
                    price=capture.get("price"),
                    unit=capture.get("unit") or capture.get("quantity"),
                    user_id=user_id,
                )
                saved += 1
            except (IngestError, AttributeError) as e:
                logger.error(f"[INGEST] Failed for {capture!r}: {e}")

        logger.info(f"[INGEST] Bulk completed: {saved}/{total} items saved")
        return {"saved": saved, "failed": total - saved, "total": total}
