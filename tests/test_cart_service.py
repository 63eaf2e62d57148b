"""Tests for the meal plan to cart workflow."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from mealcart.cart.automation import (
    REASON_BLOCKED,
    CartDriver,
    CartItemOutcome,
    CartRunResult,
)
from mealcart.cart.service import (
    ORDER_STATUS_FAILED,
    ORDER_STATUS_MANUAL,
    ORDER_STATUS_PENDING_PAYMENT,
    CartAutomationService,
    UnsupportedPlatformError,
)
from mealcart.compare.engine import EmptyShoppingListError
from mealcart.db.plan_store import MealPlanPayload, MealPlanStore, PlanNotFoundError, ShoppingListItem
from mealcart.pricing.models import PriceObservation
from mealcart.pricing.resolver import PriceResolver


def make_driver(blocked=False, checkout_opens=True):
    driver = MagicMock(spec=CartDriver)

    async def add_items(platform, lines):
        reason = REASON_BLOCKED if blocked else None
        return CartRunResult(
            platform=platform,
            details=[
                CartItemOutcome(item=line.item, success=not blocked, quantity=0 if blocked else line.clicks, reason=reason)
                for line in lines
            ],
        )

    driver.add_items = AsyncMock(side_effect=add_items)
    driver.open_checkout = AsyncMock(return_value=checkout_opens)
    driver.stop = AsyncMock(return_value=True)
    return driver


@pytest.fixture
def plan_store(db_session_factory):
    return MealPlanStore(db_session_factory)


@pytest.fixture
def resolver(cache):
    cache.set(
        "blinkit",
        "toor dal",
        PriceObservation(price=Decimal("150"), unit="1 kg", original_name="Tata Sampann Toor Dal"),
    )
    return PriceResolver(cache)


async def create_plan(plan_store, user_id="user-1", items=None):
    payload = MealPlanPayload(
        shopping_list=items
        if items is not None
        else [
            ShoppingListItem(item="Toor Dal", qty="1 kg"),
            ShoppingListItem(item="Banana", qty="6 pcs"),
            ShoppingListItem(item="Salt", qty="1 kg"),
        ]
    )
    return await plan_store.create_plan(user_id, payload)


@pytest.mark.asyncio
async def test_add_uses_captured_product_names(resolver, plan_store):
    driver = make_driver()
    service = CartAutomationService(resolver, plan_store, driver)
    plan_id = await create_plan(plan_store)

    result = await service.add_plan_to_cart("user-1", plan_id, "blinkit", skip_items=["salt"])

    platform, lines = driver.add_items.await_args.args
    assert platform == "blinkit"
    assert [(line.item, line.qty) for line in lines] == [
        ("Tata Sampann Toor Dal", "1 kg"),
        ("Banana", "6 pcs"),
    ]
    assert result.added == 2
    assert result.details[1].quantity == 5
    driver.open_checkout.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejects_unsupported_platform(resolver, plan_store):
    driver = make_driver()
    service = CartAutomationService(resolver, plan_store, driver, platforms=["blinkit"])
    plan_id = await create_plan(plan_store)

    with pytest.raises(UnsupportedPlatformError):
        await service.add_plan_to_cart("user-1", plan_id, "instamart")
    driver.add_items.assert_not_awaited()


@pytest.mark.asyncio
async def test_other_users_plan_is_not_found(resolver, plan_store):
    service = CartAutomationService(resolver, plan_store, make_driver())
    plan_id = await create_plan(plan_store, user_id="owner")

    with pytest.raises(PlanNotFoundError):
        await service.add_plan_to_cart("intruder", plan_id, "blinkit")


@pytest.mark.asyncio
async def test_empty_and_fully_skipped_lists(resolver, plan_store):
    service = CartAutomationService(resolver, plan_store, make_driver())
    empty_id = await create_plan(plan_store, items=[])
    plan_id = await create_plan(plan_store)

    with pytest.raises(EmptyShoppingListError):
        await service.add_plan_to_cart("user-1", empty_id, "blinkit")
    with pytest.raises(EmptyShoppingListError):
        await service.add_plan_to_cart("user-1", plan_id, "blinkit", skip_items=["toor dal", "BANANA", "Salt"])


@pytest.mark.asyncio
async def test_checkout_records_pending_payment(resolver, plan_store):
    driver = make_driver()
    service = CartAutomationService(resolver, plan_store, driver)
    plan_id = await create_plan(plan_store)

    result = await service.checkout_plan("user-1", plan_id, "zepto")

    driver.open_checkout.assert_awaited_once_with("zepto")
    assert result.checkout_opened is True
    history = await service.order_history("user-1")
    assert len(history) == 1
    assert history[0]["id"] == result.order_attempt_id
    assert history[0]["status"] == ORDER_STATUS_PENDING_PAYMENT
    assert history[0]["items_added"] == 3
    assert history[0]["meal_plan_id"] == plan_id


@pytest.mark.asyncio
async def test_blocked_checkout_needs_manual_action(resolver, plan_store):
    driver = make_driver(blocked=True)
    service = CartAutomationService(resolver, plan_store, driver)
    plan_id = await create_plan(plan_store)

    result = await service.checkout_plan("user-1", plan_id, "blinkit")

    driver.open_checkout.assert_not_awaited()
    assert result.manual_required is True
    history = await service.order_history("user-1")
    assert history[0]["status"] == ORDER_STATUS_MANUAL
    assert history[0]["items_failed"] == 3


@pytest.mark.asyncio
async def test_checkout_page_failure_is_recorded(resolver, plan_store):
    service = CartAutomationService(resolver, plan_store, make_driver(checkout_opens=False))
    plan_id = await create_plan(plan_store)

    await service.checkout_plan("user-1", plan_id, "bigbasket")

    history = await service.order_history("user-1")
    assert history[0]["status"] == ORDER_STATUS_FAILED


@pytest.mark.asyncio
async def test_cancel_stops_driver(resolver, plan_store):
    driver = make_driver()
    service = CartAutomationService(resolver, plan_store, driver)

    assert await service.cancel() is True
    driver.stop.assert_awaited_once()
