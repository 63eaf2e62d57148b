"""APScheduler job definitions for price cache maintenance."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mealcart import metrics
from mealcart.config import settings
from mealcart.pricing.cache import PriceCacheStore

logger = logging.getLogger(__name__)


async def autosave_price_cache(cache: PriceCacheStore):
    """Write the price cache to disk."""
    saved = await cache.save_async()
    metrics.record_scheduler_run("cache_autosave", saved)
    if saved:
        logger.info(f"[Cache] Auto-saved {len(cache)} items")


async def purge_expired_prices(cache: PriceCacheStore):
    """Drop cache entries older than the TTL."""
    try:
        purged = cache.purge_expired()
    except Exception as e:
        metrics.record_scheduler_run("cache_purge", False)
        logger.error(f"[Cache] Purge failed: {e}")
        return
    metrics.record_scheduler_run("cache_purge", True)
    logger.debug(f"[Cache] Purge removed {purged} entries")


def setup_scheduler(cache: PriceCacheStore) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Autosave writes the cache every settings.price_cache_autosave_minutes
    - Purge drops expired entries every settings.price_cache_purge_hours

    Args:
        cache: Price cache owned by the application

    Returns:
        Configured scheduler instance (not started)
    """
    scheduler = AsyncIOScheduler()
    autosave_minutes = max(1, int(settings.price_cache_autosave_minutes))
    purge_hours = max(1, int(settings.price_cache_purge_hours))

    scheduler.add_job(
        autosave_price_cache,
        IntervalTrigger(minutes=autosave_minutes),
        args=[cache],
        id="price_cache_autosave",
        name="Auto-save price cache",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        purge_expired_prices,
        IntervalTrigger(hours=purge_hours),
        args=[cache],
        id="price_cache_purge",
        name="Purge expired cached prices",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        f"Scheduler configured: autosave every {autosave_minutes}m, purge every {purge_hours}h"
    )
    return scheduler
