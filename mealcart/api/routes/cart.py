"""Cart automation routes."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from mealcart.api.deps import get_cart_service, get_user_id
from mealcart.cart.automation import CartAutomationError
from mealcart.cart.service import CartAutomationService, UnsupportedPlatformError
from mealcart.compare.engine import EmptyShoppingListError
from mealcart.db.plan_store import PlanDecodeError, PlanNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])


class CartRequest(BaseModel):
    platform: str
    meal_plan_id: int
    skip_items: List[str] = Field(default_factory=list)


async def _run(action, request: CartRequest, user_id: str):
    try:
        return await action(user_id, request.meal_plan_id, request.platform, request.skip_items)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PlanNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PlanDecodeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except EmptyShoppingListError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CartAutomationError as e:
        logger.error(f"[Cart] Automation unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/add")
async def add_to_cart(
    request: CartRequest,
    user_id: str = Depends(get_user_id),
    service: CartAutomationService = Depends(get_cart_service),
):
    """Fill a platform cart from a meal plan; checkout is left to the user."""
    result = await _run(service.add_plan_to_cart, request, user_id)
    return {"success": True, **result.to_dict()}


@router.post("/checkout")
async def checkout(
    request: CartRequest,
    user_id: str = Depends(get_user_id),
    service: CartAutomationService = Depends(get_cart_service),
):
    """Fill the cart, open checkout and record the order attempt."""
    result = await _run(service.checkout_plan, request, user_id)
    return {"success": True, **result.to_dict()}


@router.post("/cancel")
async def cancel(service: CartAutomationService = Depends(get_cart_service)):
    """Stop the running browser session."""
    stopped = await service.cancel()
    return {
        "success": stopped,
        "message": "Automation stopped successfully." if stopped else "No active automation found.",
    }


@router.get("/history")
async def order_history(
    user_id: str = Depends(get_user_id),
    service: CartAutomationService = Depends(get_cart_service),
):
    """Recent order attempts for the calling user."""
    orders = await service.order_history(user_id)
    return {"success": True, "orders": orders}
