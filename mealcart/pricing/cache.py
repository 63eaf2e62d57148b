"""Persistent price cache with TTL expiry and fuzzy lookup.

Entries are keyed by "<platform>:<normalized name>" and hold either a real
price captured from a retail page or an estimate from the market-rate table.
The whole map lives in memory and is written through to a single JSON file
on every mutation; a scheduled autosave re-writes it as a safety net.
"""

import asyncio
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from mealcart import metrics
from mealcart.config import settings
from mealcart.pricing.models import CacheEntry, PriceObservation, utcnow

logger = logging.getLogger(__name__)

# Requested names this short are never fuzzy matched
MIN_FUZZY_NAME_LENGTH = 3


@dataclass
class CacheStats:
    """Summary of cache contents."""

    total: int = 0
    estimated: int = 0
    captured: int = 0
    per_platform_captured: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "estimated": self.estimated,
            "captured": self.captured,
            "per_platform_captured": dict(self.per_platform_captured),
        }


def make_key(platform: str, normalized_name: str) -> str:
    """Build a cache key."""
    return f"{platform}:{normalized_name}"


class PriceCacheStore:
    """
    Process-wide price cache backed by a JSON file.

    Features:
    - Exact key lookup with substring fallback per platform
    - 24h TTL, expired entries evicted on access
    - Write-through persistence on every mutation
    - Statistics and bulk clearing for administration
    """

    def __init__(
        self,
        path: Optional[str | Path] = None,
        ttl: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
        persist: bool = True,
    ):
        """
        Initialize the cache.

        Args:
            path: JSON file to persist to (defaults to settings.price_cache_path)
            ttl: Entry lifetime (defaults to settings.price_cache_ttl_hours)
            clock: Returns the current aware UTC time; injectable for tests
            persist: Disable to keep the cache purely in memory
        """
        self.path = Path(path or settings.price_cache_path)
        self.ttl = ttl or timedelta(hours=settings.price_cache_ttl_hours)
        self._clock = clock or utcnow
        self._persist = persist
        self._entries: Dict[str, CacheEntry] = {}
        # Write-through saves and the autosave thread share one temp file
        self._save_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """
        Load entries from disk, replacing the in-memory map.

        Malformed entries are skipped; an unreadable file leaves the cache empty.

        Returns:
            Number of entries loaded
        """
        self._entries = {}
        if not self._persist or not self.path.exists():
            return 0

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load price cache from {self.path}: {e}")
            return 0

        skipped = 0
        for item in raw if isinstance(raw, list) else []:
            try:
                entry = CacheEntry.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                skipped += 1
                logger.warning(f"Skipping malformed price cache entry: {e}")
                continue
            self._entries[entry.key] = entry

        if skipped:
            logger.warning(f"Skipped {skipped} malformed price cache entries")
        logger.info(f"Loaded {len(self._entries)} price cache entries from {self.path}")
        self._update_gauge()
        return len(self._entries)

    def save(self) -> bool:
        """
        Write the whole cache to disk atomically.

        Returns:
            True on success; failures are logged, never raised
        """
        if not self._persist:
            return True
        return self._write(self._snapshot())

    def _snapshot(self) -> str:
        return json.dumps([entry.to_dict() for entry in list(self._entries.values())], indent=2)

    def _write(self, text: str) -> bool:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with self._save_lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(text, encoding="utf-8")
                os.replace(tmp_path, self.path)
                return True
            except OSError as e:
                logger.error(f"Failed to save price cache to {self.path}: {e}")
                return False

    async def save_async(self) -> bool:
        """Save without blocking the event loop; the snapshot is taken on the loop."""
        if not self._persist:
            return True
        saved = await asyncio.to_thread(self._write, self._snapshot())
        if saved:
            logger.debug(f"Auto-saved {len(self._entries)} price cache entries")
        return saved

    def _changed(self):
        self._update_gauge()
        self.save()

    def _update_gauge(self):
        estimated = sum(1 for e in self._entries.values() if e.value.is_estimate)
        metrics.update_cache_entries(estimated, len(self._entries) - estimated)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.stored_at > self.ttl

    def _evict(self, key: str):
        if self._entries.pop(key, None) is not None:
            logger.debug(f"Evicted expired price cache entry {key}")
            self._changed()

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Exact key lookup; expired entries are evicted and treated as absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            self._evict(key)
            return None
        return entry

    def get(self, platform: str, normalized_name: str) -> Optional[PriceObservation]:
        """
        Look up a price for a platform and normalized item name.

        Tries the exact key first, then the first entry on the same platform
        whose name contains the requested name ("milk" finds
        "blinkit:taaza milk").

        Args:
            platform: Platform identifier
            normalized_name: Output of normalize_item_name

        Returns:
            Cached observation or None
        """
        entry = self.get_entry(make_key(platform, normalized_name))
        if entry is not None:
            return entry.value

        if len(normalized_name) < MIN_FUZZY_NAME_LENGTH:
            return None

        prefix = f"{platform}:"
        expired: List[str] = []
        match: Optional[CacheEntry] = None
        for key, candidate in self._entries.items():
            if not key.startswith(prefix) or normalized_name not in candidate.name:
                continue
            if self._is_expired(candidate):
                expired.append(key)
                continue
            match = candidate
            break

        for key in expired:
            self._evict(key)

        if match is not None:
            logger.debug(f"Fuzzy cache match: {normalized_name!r} -> {match.key!r}")
            return match.value
        return None

    def entries_for_platform(
        self,
        platform: str,
        real_only: bool = False,
    ) -> List[Tuple[str, CacheEntry]]:
        """Live entries for a platform, optionally only captured (non-estimate) ones."""
        prefix = f"{platform}:"
        return [
            (key, entry)
            for key, entry in list(self._entries.items())
            if key.startswith(prefix)
            and not self._is_expired(entry)
            and not (real_only and entry.value.is_estimate)
        ]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set(self, platform: str, normalized_name: str, observation: PriceObservation):
        """Insert or overwrite an entry and persist."""
        key = make_key(platform, normalized_name)
        self._entries[key] = CacheEntry(key=key, value=observation, stored_at=self._clock())
        self._changed()

    def clear_all(self) -> int:
        """Remove every entry."""
        cleared = len(self._entries)
        self._entries.clear()
        self._changed()
        logger.info(f"Cleared all {cleared} cached prices")
        return cleared

    def clear_estimates(self) -> int:
        """Remove estimated entries, keeping captured prices."""
        estimate_keys = [k for k, e in self._entries.items() if e.value.is_estimate]
        for key in estimate_keys:
            del self._entries[key]
        self._changed()
        logger.info(f"Cleared {len(estimate_keys)} estimated prices")
        return len(estimate_keys)

    def purge_expired(self) -> int:
        """Drop every expired entry."""
        expired = [k for k, e in self._entries.items() if self._is_expired(e)]
        for key in expired:
            del self._entries[key]
        if expired:
            self._changed()
            logger.info(f"Purged {len(expired)} expired price cache entries")
        return len(expired)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def stats(self) -> CacheStats:
        """Count entries by kind and captured entries by platform."""
        stats = CacheStats(
            total=len(self._entries),
            per_platform_captured={p: 0 for p in settings.platforms},
        )
        for entry in self._entries.values():
            if entry.value.is_estimate:
                stats.estimated += 1
                continue
            stats.captured += 1
            platform = entry.platform
            stats.per_platform_captured[platform] = stats.per_platform_captured.get(platform, 0) + 1
        return stats

    def latest_real_capture_timestamp(self) -> Optional[datetime]:
        """Most recent capture time across non-estimate entries."""
        latest: Optional[datetime] = None
        for entry in self._entries.values():
            if entry.value.is_estimate:
                continue
            captured = entry.value.captured_at or entry.stored_at
            if latest is None or captured > latest:
                latest = captured
        return latest
