"""Tests for the persistent price cache."""

import asyncio
import json
from datetime import timedelta
from decimal import Decimal

import pytest

from mealcart.pricing.cache import PriceCacheStore
from mealcart.pricing.models import SOURCE_ESTIMATE, SOURCE_EXTENSION, PriceObservation


def real(price, name, unit="1 unit", captured_at=None):
    return PriceObservation(
        price=Decimal(price),
        unit=unit,
        original_name=name,
        source=SOURCE_EXTENSION,
        captured_at=captured_at,
    )


def estimate(price):
    return PriceObservation(price=Decimal(price), is_estimate=True, source=SOURCE_ESTIMATE)


def test_observation_rejects_non_positive_price():
    with pytest.raises(ValueError):
        PriceObservation(price=Decimal("0"))
    with pytest.raises(ValueError):
        PriceObservation(price=Decimal("-5"))


def test_estimate_cannot_carry_captured_name():
    with pytest.raises(ValueError):
        PriceObservation(price=Decimal("10"), is_estimate=True, original_name="Hybrid Tomato")


def test_exact_lookup(cache):
    cache.set("blinkit", "taaza milk", real("27", "Amul Taaza Milk", "500 ml"))

    hit = cache.get("blinkit", "taaza milk")

    assert hit.price == Decimal("27")
    assert hit.original_name == "Amul Taaza Milk"
    assert cache.get("zepto", "taaza milk") is None


def test_substring_lookup_stays_on_platform(cache):
    cache.set("blinkit", "taaza milk", real("27", "Amul Taaza Milk"))

    assert cache.get("blinkit", "milk").price == Decimal("27")
    assert cache.get("zepto", "milk") is None


def test_short_names_are_not_substring_matched(cache):
    cache.set("blinkit", "taaza milk", real("27", "Amul Taaza Milk"))

    assert cache.get("blinkit", "mi") is None


def test_entry_present_just_before_ttl(cache, clock):
    cache.set("bigbasket", "tomato", estimate("40"))

    clock.advance(hours=23, minutes=59)

    assert cache.get("bigbasket", "tomato") is not None


def test_entry_evicted_just_after_ttl(cache, clock):
    cache.set("bigbasket", "tomato", estimate("40"))

    clock.advance(hours=24, minutes=1)

    assert cache.get("bigbasket", "tomato") is None
    assert "bigbasket:tomato" not in cache


def test_expired_entries_skipped_by_substring_lookup(cache, clock):
    cache.set("blinkit", "taaza milk", real("27", "Amul Taaza Milk"))
    clock.advance(hours=25)

    assert cache.get("blinkit", "milk") is None
    assert len(cache) == 0


def test_clear_estimates_keeps_captured_prices(cache):
    cache.set("bigbasket", "tomato", estimate("40"))
    cache.set("blinkit", "tomato", estimate("46"))
    cache.set("blinkit", "taaza milk", real("27", "Amul Taaza Milk"))

    cleared = cache.clear_estimates()

    assert cleared == 2
    assert len(cache) == 1
    assert cache.get("blinkit", "taaza milk") is not None
    assert cache.stats().estimated == 0


def test_clear_all(cache):
    cache.set("bigbasket", "tomato", estimate("40"))
    cache.set("blinkit", "taaza milk", real("27", "Amul Taaza Milk"))

    assert cache.clear_all() == 2
    assert len(cache) == 0


def test_persistence_round_trip(cache, cache_path, clock):
    cache.set("blinkit", "taaza milk", real("27.50", "Amul Taaza Milk", "500 ml", captured_at=clock()))
    cache.set("bigbasket", "tomato", estimate("40"))

    reloaded = PriceCacheStore(path=cache_path, clock=clock)
    assert reloaded.load() == 2

    hit = reloaded.get("blinkit", "taaza milk")
    assert hit.price == Decimal("27.50")
    assert hit.unit == "500 ml"
    assert hit.captured_at == clock()
    assert reloaded.get("bigbasket", "tomato").is_estimate


def test_load_skips_malformed_entries(cache_path, clock):
    good = {
        "key": "zepto:onion",
        "value": {"price": "38", "unit": "1 kg", "is_estimate": False, "original_name": "Onion"},
        "stored_at": clock().isoformat(),
    }
    bad_price = {"key": "zepto:garlic", "value": {"price": "-1"}, "stored_at": clock().isoformat()}
    missing_value = {"key": "zepto:ginger"}
    cache_path.write_text(json.dumps([good, bad_price, missing_value]), encoding="utf-8")

    store = PriceCacheStore(path=cache_path, clock=clock)

    assert store.load() == 1
    assert store.get("zepto", "onion").price == Decimal("38")


def test_load_unreadable_file_leaves_cache_empty(cache_path, clock):
    cache_path.write_text("{not json", encoding="utf-8")

    store = PriceCacheStore(path=cache_path, clock=clock)

    assert store.load() == 0
    assert len(store) == 0


def test_purge_expired(cache, clock):
    cache.set("bigbasket", "tomato", estimate("40"))
    clock.advance(hours=12)
    cache.set("bigbasket", "onion", estimate("40"))
    clock.advance(hours=13)

    assert cache.purge_expired() == 1
    assert "bigbasket:onion" in cache


def test_stats_count_captured_by_platform(cache):
    cache.set("bigbasket", "tomato", estimate("40"))
    cache.set("blinkit", "taaza milk", real("27", "Amul Taaza Milk"))
    cache.set("blinkit", "hybrid tomato", real("32", "Hybrid Tomato"))
    cache.set("zepto", "onion", real("38", "Onion"))

    stats = cache.stats()

    assert stats.total == 4
    assert stats.estimated == 1
    assert stats.captured == 3
    assert stats.per_platform_captured["blinkit"] == 2
    assert stats.per_platform_captured["zepto"] == 1
    assert stats.per_platform_captured["instamart"] == 0


def test_latest_real_capture_timestamp(cache, clock):
    assert cache.latest_real_capture_timestamp() is None

    first = clock()
    cache.set("blinkit", "taaza milk", real("27", "Amul Taaza Milk", captured_at=first))
    later = clock.advance(hours=2)
    cache.set("zepto", "onion", real("38", "Onion", captured_at=later))
    clock.advance(hours=1)
    cache.set("bigbasket", "tomato", estimate("40"))

    assert cache.latest_real_capture_timestamp() == later


@pytest.mark.asyncio
async def test_save_async_writes_file(cache, cache_path):
    cache.set("bigbasket", "tomato", estimate("40"))
    cache_path.unlink()

    assert await cache.save_async() is True
    assert cache_path.exists()


@pytest.mark.asyncio
async def test_concurrent_saves_all_succeed(cache, cache_path):
    cache.set("bigbasket", "tomato", estimate("40"))

    async def write_through(n):
        await asyncio.sleep(0)
        cache.set("zepto", f"item {n}", estimate("10"))
        return cache.save()

    results = await asyncio.gather(
        *(cache.save_async() for _ in range(10)),
        *(write_through(n) for n in range(10)),
    )

    assert all(results)
    assert not cache_path.with_suffix(cache_path.suffix + ".tmp").exists()
    assert len(json.loads(cache_path.read_text(encoding="utf-8"))) >= 1
