"""Meal-plan persistence: shopping lists, stored comparisons and order attempts."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mealcart import metrics
from mealcart.db.models import MealPlan, OrderAttempt

logger = logging.getLogger(__name__)


class PlanNotFoundError(LookupError):
    """Raised when a meal plan does not exist."""

    pass


class PlanDecodeError(ValueError):
    """Raised when a stored meal plan payload fails validation."""

    pass


class ShoppingListItem(BaseModel):
    """One shopping list line; unknown keys are kept as-is."""

    model_config = ConfigDict(extra="allow")

    item: str = Field(..., min_length=1)
    qty: str = "1 unit"
    price: Optional[Decimal] = None

    @field_validator("qty", mode="before")
    @classmethod
    def default_qty(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return "1 unit"
        return str(v)

    @field_serializer("price")
    def serialize_price(self, price: Optional[Decimal]):
        return float(price) if price is not None else None


class MealPlanPayload(BaseModel):
    """The JSON document stored per meal plan."""

    model_config = ConfigDict(extra="allow")

    shopping_list: List[ShoppingListItem] = Field(default_factory=list)
    total_cost: Optional[Decimal] = None
    price_comparison: Optional[Dict[str, Any]] = None
    shopping_list_stale: bool = False

    @field_serializer("total_cost")
    def serialize_total(self, total: Optional[Decimal]):
        return float(total) if total is not None else None


class MealPlanStore:
    """
    Reads and writes meal plans through an async session factory.

    Payloads are validated on every read; a malformed plan is reported
    as PlanDecodeError rather than silently coerced.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    def _decode(self, plan: MealPlan) -> MealPlanPayload:
        try:
            return MealPlanPayload.model_validate(plan.plan_data or {})
        except ValidationError as e:
            metrics.record_plan_decode_error()
            logger.error(f"Meal plan {plan.id} has a malformed payload: {e}")
            raise PlanDecodeError(f"Meal plan {plan.id} is malformed") from e

    async def _load(self, session: AsyncSession, plan_id: int) -> MealPlan:
        plan = await session.get(MealPlan, plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Meal plan {plan_id} not found")
        return plan

    async def create_plan(self, user_id: str, payload: MealPlanPayload) -> int:
        """Store a new plan and return its id."""
        async with self.session_factory() as session:
            plan = MealPlan(user_id=user_id, plan_data=payload.model_dump(mode="json"))
            session.add(plan)
            await session.commit()
            return plan.id

    async def get_payload(self, plan_id: int) -> MealPlanPayload:
        """
        Load and validate a plan payload.

        Raises:
            PlanNotFoundError: If the plan does not exist
            PlanDecodeError: If the stored payload is malformed
        """
        async with self.session_factory() as session:
            plan = await self._load(session, plan_id)
            return self._decode(plan)

    async def get_owner(self, plan_id: int) -> str:
        async with self.session_factory() as session:
            plan = await self._load(session, plan_id)
            return plan.user_id

    async def get_shopping_list(self, plan_id: int) -> List[ShoppingListItem]:
        payload = await self.get_payload(plan_id)
        return payload.shopping_list

    async def save_shopping_list_and_comparison(
        self,
        plan_id: int,
        items: List[ShoppingListItem],
        comparison: Dict[str, Any],
    ):
        """
        Replace the shopping list, recompute the total cost and attach a comparison.

        Args:
            plan_id: Meal plan ID
            items: Shopping list with updated prices
            comparison: Serialized comparison result
        """
        async with self.session_factory() as session:
            plan = await self._load(session, plan_id)
            payload = self._decode(plan)
            payload.shopping_list = list(items)
            payload.total_cost = sum(
                (item.price for item in items if item.price is not None),
                Decimal("0"),
            )
            payload.price_comparison = comparison
            payload.shopping_list_stale = False
            plan.plan_data = payload.model_dump(mode="json")
            await session.commit()
        logger.debug(f"Saved comparison onto meal plan {plan_id}")

    async def latest_plan_id(self, user_id: str) -> Optional[int]:
        """Most recently created plan for a user."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(MealPlan.id)
                .where(MealPlan.user_id == user_id)
                .order_by(MealPlan.created_at.desc(), MealPlan.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def record_order_attempt(
        self,
        user_id: str,
        plan_id: Optional[int],
        platform: str,
        status: str,
        items_added: int,
        items_failed: int,
        details: Optional[List[Dict[str, Any]]] = None,
        notes: Optional[str] = None,
    ) -> int:
        """Insert an order attempt row and return its id."""
        async with self.session_factory() as session:
            attempt = OrderAttempt(
                user_id=user_id,
                meal_plan_id=plan_id,
                platform=platform,
                status=status,
                items_added=items_added,
                items_failed=items_failed,
                details=details,
                notes=notes,
            )
            session.add(attempt)
            await session.commit()
            return attempt.id

    async def order_history(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent order attempts for a user, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(OrderAttempt)
                .where(OrderAttempt.user_id == user_id)
                .order_by(OrderAttempt.created_at.desc(), OrderAttempt.id.desc())
                .limit(limit)
            )
            return [
                {
                    "id": attempt.id,
                    "meal_plan_id": attempt.meal_plan_id,
                    "platform": attempt.platform,
                    "status": attempt.status,
                    "items_added": attempt.items_added,
                    "items_failed": attempt.items_failed,
                    "details": attempt.details or [],
                    "notes": attempt.notes,
                    "created_at": attempt.created_at.isoformat() if attempt.created_at else None,
                }
                for attempt in result.scalars().all()
            ]
