"""Tests for the price resolution fallback chain."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from mealcart.pricing.models import SOURCE_EXTENSION, PriceObservation
from mealcart.pricing.resolver import PriceResolver


def capture(price, name, unit="1 unit"):
    return PriceObservation(price=Decimal(price), unit=unit, original_name=name, source=SOURCE_EXTENSION)


def make_matcher(key=None):
    matcher = MagicMock()
    matcher.find_best_match = AsyncMock(return_value=key)
    return matcher


@pytest.mark.asyncio
async def test_miss_stores_estimate(cache):
    resolver = PriceResolver(cache)

    observation = await resolver.resolve_price("blinkit", "Tomato 1kg")

    assert observation.is_estimate
    assert observation.price == Decimal("46.00")
    assert cache.get_entry("blinkit:tomato").value.is_estimate


@pytest.mark.asyncio
async def test_real_hit_skips_matcher(cache):
    cache.set("zepto", "onion", capture("38", "Onion", "1 kg"))
    matcher = make_matcher("zepto:other")
    resolver = PriceResolver(cache, matcher=matcher)

    observation = await resolver.resolve_price("zepto", "Pyaz")

    assert observation.price == Decimal("38")
    matcher.find_best_match.assert_not_awaited()


@pytest.mark.asyncio
async def test_semantic_match_writes_alias(cache):
    cache.set("blinkit", "roma pomodoro", capture("32", "Roma Pomodoro", "500 g"))
    matcher = make_matcher("blinkit:roma pomodoro")
    resolver = PriceResolver(cache, matcher=matcher)

    first = await resolver.resolve_price("blinkit", "Tomato")

    assert first.price == Decimal("32")
    assert first.is_estimate is False
    alias = cache.get_entry("blinkit:tomato")
    assert alias.value.source_alias == "blinkit:roma pomodoro"
    assert alias.value.original_name == "Roma Pomodoro"

    second = await resolver.resolve_price("blinkit", "Tomato")

    assert second.price == Decimal("32")
    assert matcher.find_best_match.await_count == 1


@pytest.mark.asyncio
async def test_semantic_match_preferred_over_cached_estimate(cache):
    cache.set("blinkit", "tomato", PriceObservation(price=Decimal("46"), is_estimate=True))
    cache.set("blinkit", "roma pomodoro", capture("32", "Roma Pomodoro"))
    resolver = PriceResolver(cache, matcher=make_matcher("blinkit:roma pomodoro"))

    observation = await resolver.resolve_price("blinkit", "Tomato")

    assert observation.price == Decimal("32")
    assert not cache.get_entry("blinkit:tomato").value.is_estimate


@pytest.mark.asyncio
async def test_cached_estimate_used_when_no_match(cache):
    cache.set("blinkit", "tomato", PriceObservation(price=Decimal("46"), is_estimate=True))
    matcher = make_matcher(None)
    resolver = PriceResolver(cache, matcher=matcher)

    observation = await resolver.resolve_price("blinkit", "Tomato")

    assert observation.is_estimate
    assert observation.price == Decimal("46")
    matcher.find_best_match.assert_awaited_once()


@pytest.mark.asyncio
async def test_semantic_match_can_be_disabled(cache):
    cache.set("blinkit", "roma pomodoro", capture("32", "Roma Pomodoro"))
    matcher = make_matcher("blinkit:roma pomodoro")
    resolver = PriceResolver(cache, matcher=matcher)

    observation = await resolver.resolve_price("blinkit", "Tomato", allow_semantic_match=False)

    assert observation.is_estimate
    matcher.find_best_match.assert_not_awaited()


@pytest.mark.asyncio
async def test_matched_estimate_is_ignored(cache):
    cache.set("blinkit", "cherry pomodoro", PriceObservation(price=Decimal("90"), is_estimate=True))
    resolver = PriceResolver(cache, matcher=make_matcher("blinkit:cherry pomodoro"))

    observation = await resolver.resolve_price("blinkit", "Tamatar")

    assert observation.is_estimate
    assert observation.price == Decimal("46.00")


@pytest.mark.asyncio
async def test_unnamed_item_is_estimated_but_not_stored(cache):
    resolver = PriceResolver(cache)

    observation = await resolver.resolve_price("bigbasket", "500g")

    assert observation.price == Decimal("75.00")
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_resolve_item_name_prefers_captured_name(cache):
    cache.set("blinkit", "taaza milk", capture("27", "Amul Taaza Milk"))
    resolver = PriceResolver(cache)

    assert await resolver.resolve_item_name("blinkit", "Milk") == "Amul Taaza Milk"


@pytest.mark.asyncio
async def test_resolve_item_name_uses_semantic_match(cache):
    cache.set("zepto", "roma pomodoro", capture("32", "Roma Pomodoro"))
    resolver = PriceResolver(cache, matcher=make_matcher("zepto:roma pomodoro"))

    assert await resolver.resolve_item_name("zepto", "Tomato") == "Roma Pomodoro"


@pytest.mark.asyncio
async def test_resolve_item_name_falls_back_to_raw(cache):
    cache.set("zepto", "tomato", PriceObservation(price=Decimal("44.80"), is_estimate=True))
    resolver = PriceResolver(cache, matcher=make_matcher(None))

    assert await resolver.resolve_item_name("zepto", "Tomato 1kg") == "Tomato 1kg"


@pytest.mark.asyncio
async def test_cleared_estimate_is_estimated_again(cache, clock):
    matcher = make_matcher(None)
    resolver = PriceResolver(cache, matcher=matcher)
    await resolver.resolve_price("blinkit", "Tomato")

    assert cache.clear_estimates() == 1
    assert cache.get_entry("blinkit:tomato") is None

    clock.advance(hours=1)
    again = await resolver.resolve_price("blinkit", "Tomato")

    assert again.is_estimate
    assert again.price == Decimal("46.00")
    entry = cache.get_entry("blinkit:tomato")
    assert entry.value.is_estimate
    assert entry.stored_at == clock()
    assert matcher.find_best_match.await_count == 2
