"""FastAPI dependencies."""

from fastapi import Header, HTTPException, Request, status

from mealcart.cart.service import CartAutomationService
from mealcart.compare.engine import ComparisonEngine
from mealcart.config import settings
from mealcart.db.plan_store import MealPlanStore
from mealcart.ingest.price_ingest import DEFAULT_USER, PriceIngestor
from mealcart.pricing.cache import PriceCacheStore


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return service


def get_price_cache(request: Request) -> PriceCacheStore:
    return _state(request, "price_cache")


def get_comparison_engine(request: Request) -> ComparisonEngine:
    return _state(request, "comparison_engine")


def get_plan_store(request: Request) -> MealPlanStore:
    return _state(request, "plan_store")


def get_price_ingestor(request: Request) -> PriceIngestor:
    return _state(request, "price_ingestor")


def get_cart_service(request: Request) -> CartAutomationService:
    return _state(request, "cart_service")


async def get_user_id(
    x_user_id: str = Header(..., alias="X-User-Id")
) -> str:
    """Dependency for the calling user's ID."""
    if not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user ID",
        )
    return x_user_id.strip()


async def get_capture_user_id(
    x_user_id: str = Header(DEFAULT_USER, alias="X-User-Id")
) -> str:
    """User ID for price captures; anonymous captures come from the browser extension."""
    return x_user_id.strip() or DEFAULT_USER


async def require_admin_api_key(
    x_admin_api_key: str = Header(..., alias="X-Admin-API-Key")
) -> None:
    """
    Dependency to require admin API key for protected endpoints.

    Args:
        x_admin_api_key: Admin API key from X-Admin-API-Key header

    Raises:
        HTTPException: 503 if no key is configured, 403 if invalid
    """
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API key not configured"
        )

    if x_admin_api_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key"
        )
