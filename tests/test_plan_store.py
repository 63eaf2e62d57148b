"""Tests for meal plan persistence."""

from decimal import Decimal

import pytest

from mealcart.db.models import MealPlan
from mealcart.db.plan_store import (
    MealPlanPayload,
    MealPlanStore,
    PlanDecodeError,
    PlanNotFoundError,
    ShoppingListItem,
)


@pytest.fixture
def store(db_session_factory):
    return MealPlanStore(db_session_factory)


def test_shopping_list_item_defaults():
    item = ShoppingListItem.model_validate({"item": "Rice", "qty": "", "category": "grains"})

    assert item.qty == "1 unit"
    assert item.price is None
    assert item.model_dump(mode="json")["category"] == "grains"


def test_shopping_list_item_requires_name():
    with pytest.raises(ValueError):
        ShoppingListItem.model_validate({"item": "", "qty": "1 kg"})


@pytest.mark.asyncio
async def test_create_and_read_plan(store):
    payload = MealPlanPayload(
        shopping_list=[ShoppingListItem(item="Paneer", qty="200 g", price=Decimal("90.5"))],
        days=[{"day": "Monday"}],
    )

    plan_id = await store.create_plan("user-1", payload)

    loaded = await store.get_payload(plan_id)
    assert loaded.shopping_list[0].price == Decimal("90.5")
    assert loaded.model_extra["days"] == [{"day": "Monday"}]
    assert await store.get_owner(plan_id) == "user-1"
    assert [i.item for i in await store.get_shopping_list(plan_id)] == ["Paneer"]


@pytest.mark.asyncio
async def test_missing_plan(store):
    with pytest.raises(PlanNotFoundError):
        await store.get_payload(12345)
    with pytest.raises(PlanNotFoundError):
        await store.get_owner(12345)


@pytest.mark.asyncio
async def test_malformed_plan_raises_decode_error(store, db_session_factory):
    async with db_session_factory() as session:
        plan = MealPlan(user_id="user-1", plan_data={"shopping_list": [{"qty": "1 kg"}]})
        session.add(plan)
        await session.commit()
        plan_id = plan.id

    with pytest.raises(PlanDecodeError):
        await store.get_payload(plan_id)


@pytest.mark.asyncio
async def test_save_recomputes_total(store):
    plan_id = await store.create_plan(
        "user-1",
        MealPlanPayload(shopping_list=[ShoppingListItem(item="Rice")], shopping_list_stale=True),
    )

    await store.save_shopping_list_and_comparison(
        plan_id,
        [
            ShoppingListItem(item="Rice", price=Decimal("70")),
            ShoppingListItem(item="Dal", price=Decimal("120.50")),
            ShoppingListItem(item="Salt"),
        ],
        {"best_platform": "zepto"},
    )

    payload = await store.get_payload(plan_id)
    assert payload.total_cost == Decimal("190.5")
    assert payload.price_comparison == {"best_platform": "zepto"}
    assert payload.shopping_list_stale is False
    assert len(payload.shopping_list) == 3


@pytest.mark.asyncio
async def test_latest_plan_id(store):
    assert await store.latest_plan_id("user-1") is None

    await store.create_plan("user-1", MealPlanPayload())
    second = await store.create_plan("user-1", MealPlanPayload())
    await store.create_plan("user-2", MealPlanPayload())

    assert await store.latest_plan_id("user-1") == second


@pytest.mark.asyncio
async def test_order_history_is_per_user_and_newest_first(store):
    first = await store.record_order_attempt("user-1", 1, "blinkit", "pending_payment", 3, 1)
    second = await store.record_order_attempt(
        "user-1", 1, "zepto", "manual_required", 0, 4, details=[{"item": "Milk"}], notes="blocked"
    )
    await store.record_order_attempt("user-2", 2, "zepto", "pending_payment", 2, 0)

    history = await store.order_history("user-1")

    assert [h["id"] for h in history] == [second, first]
    assert history[0]["details"] == [{"item": "Milk"}]
    assert history[0]["notes"] == "blocked"
    assert history[1]["details"] == []
    assert history[1]["items_added"] == 3
