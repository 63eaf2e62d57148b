"""Cart workflow: meal plan to resolved product names to a filled cart."""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from mealcart import metrics
from mealcart.cart.automation import CartDriver, CartLine, CartRunResult
from mealcart.compare.engine import EmptyShoppingListError
from mealcart.config import settings
from mealcart.db.plan_store import MealPlanStore, PlanNotFoundError
from mealcart.pricing.resolver import PriceResolver

logger = logging.getLogger(__name__)

ORDER_STATUS_PENDING_PAYMENT = "pending_payment"
ORDER_STATUS_MANUAL = "manual_required"
ORDER_STATUS_FAILED = "checkout_failed"


class UnsupportedPlatformError(ValueError):
    """Raised when cart automation is requested for a platform it cannot drive."""

    pass


class CartAutomationService:
    """
    Puts a meal plan's shopping list into a platform cart.

    Generic item names are swapped for the captured product names the
    platform actually sells, so the store search lands on the right product.
    Results are best effort; nothing is rolled back.
    """

    def __init__(
        self,
        resolver: PriceResolver,
        plan_store: MealPlanStore,
        driver: CartDriver,
        platforms: Optional[Sequence[str]] = None,
    ):
        self.resolver = resolver
        self.plan_store = plan_store
        self.driver = driver
        self.platforms = list(platforms or settings.cart_platforms)

    def _check_platform(self, platform: str):
        if platform not in self.platforms:
            raise UnsupportedPlatformError(
                f"Invalid platform. Choose: {', '.join(self.platforms)}"
            )

    async def _prepare_lines(
        self,
        user_id: str,
        plan_id: int,
        platform: str,
        skip_items: Iterable[str] = (),
    ) -> List[CartLine]:
        if await self.plan_store.get_owner(plan_id) != user_id:
            raise PlanNotFoundError(f"Meal plan {plan_id} not found")

        shopping_list = await self.plan_store.get_shopping_list(plan_id)
        if not shopping_list:
            raise EmptyShoppingListError("Shopping list is empty")

        skipped = {str(name).strip().casefold() for name in skip_items}
        remaining = [i for i in shopping_list if i.item.strip().casefold() not in skipped]
        if not remaining:
            raise EmptyShoppingListError("All items are marked as already at home")

        logger.info(f"[Cart] Resolving product names for {platform}...")
        names = await asyncio.gather(
            *(self.resolver.resolve_item_name(platform, item.item) for item in remaining)
        )
        lines = []
        for item, name in zip(remaining, names):
            if name != item.item:
                logger.info(f"[Cart] Map: {item.item!r} -> {name!r}")
            lines.append(CartLine(item=name, qty=item.qty))
        return lines

    def _record(self, result: CartRunResult):
        for outcome in result.details:
            metrics.record_cart_item(result.platform, outcome.success)

    async def add_plan_to_cart(
        self,
        user_id: str,
        plan_id: int,
        platform: str,
        skip_items: Iterable[str] = (),
    ) -> CartRunResult:
        """
        Add a plan's shopping list to a platform cart.

        Args:
            user_id: Plan owner
            plan_id: Meal plan ID
            platform: One of the cart platforms
            skip_items: Item names the user already has

        Returns:
            CartRunResult with per-item outcomes

        Raises:
            UnsupportedPlatformError: If the platform cannot be automated
            PlanNotFoundError: If the plan does not exist or belongs to someone else
            EmptyShoppingListError: If nothing is left to add
        """
        self._check_platform(platform)
        lines = await self._prepare_lines(user_id, plan_id, platform, skip_items)

        logger.info(f"[Cart] Starting cart automation for {platform} ({len(lines)} items)")
        result = await self.driver.add_items(platform, lines)
        self._record(result)
        return result

    async def checkout_plan(
        self,
        user_id: str,
        plan_id: int,
        platform: str,
        skip_items: Iterable[str] = (),
    ) -> CartRunResult:
        """
        Fill the cart, open checkout and record the order attempt.

        Payment is always left to the user.
        """
        result = await self.add_plan_to_cart(user_id, plan_id, platform, skip_items)

        if not result.manual_required:
            result.checkout_opened = await self.driver.open_checkout(platform)

        if result.manual_required:
            status = ORDER_STATUS_MANUAL
        elif result.checkout_opened:
            status = ORDER_STATUS_PENDING_PAYMENT
        else:
            status = ORDER_STATUS_FAILED

        result.order_attempt_id = await self.plan_store.record_order_attempt(
            user_id=user_id,
            plan_id=plan_id,
            platform=platform,
            status=status,
            items_added=result.added,
            items_failed=result.failed,
            details=[d.to_dict() for d in result.details],
        )
        logger.info(f"[Cart] Order attempt {result.order_attempt_id} recorded as {status}")
        return result

    async def cancel(self) -> bool:
        """Stop the running browser session, if any."""
        return await self.driver.stop()

    async def order_history(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.plan_store.order_history(user_id)
