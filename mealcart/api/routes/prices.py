"""Price capture, cache administration and comparison routes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from mealcart.api.deps import (
    get_capture_user_id,
    get_comparison_engine,
    get_plan_store,
    get_price_cache,
    get_price_ingestor,
    get_user_id,
    require_admin_api_key,
)
from mealcart.compare.engine import ComparisonEngine, ComparisonResult, EmptyShoppingListError
from mealcart.db.plan_store import MealPlanStore, PlanDecodeError, PlanNotFoundError
from mealcart.ingest.price_ingest import IngestError, PriceIngestor
from mealcart.pricing.cache import PriceCacheStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/prices", tags=["prices"])


class PriceCapture(BaseModel):
    platform: str
    name: str
    price: float
    unit: Optional[str] = None
    quantity: Optional[str] = None


class BulkPriceCapture(BaseModel):
    prices: List[dict] = Field(default_factory=list)


class CompareItem(BaseModel):
    item: str = Field(..., min_length=1)
    qty: str = "1 unit"


class CompareRequest(BaseModel):
    items: List[CompareItem]


class PlanCompareRequest(BaseModel):
    refresh: bool = False
    skip_items: List[str] = Field(default_factory=list)


def _comparison_response(result: ComparisonResult, reused: bool = False) -> dict:
    return {
        "reused": reused,
        "comparison": result.to_dict(),
        "rows": result.flatten(),
    }


@router.post("/ingest")
async def ingest_price(
    capture: PriceCapture,
    user_id: str = Depends(get_capture_user_id),
    ingestor: PriceIngestor = Depends(get_price_ingestor),
):
    """Store one price captured from a store page."""
    try:
        result = ingestor.ingest(
            platform=capture.platform,
            name=capture.name,
            price=capture.price,
            unit=capture.unit or capture.quantity,
            user_id=user_id,
        )
    except IngestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "message": f"Price ingested: {capture.name.strip()} - INR {result.observation.price}",
        "cache_key": result.key,
        "data": result.to_dict(),
    }


@router.post("/ingest/bulk")
async def ingest_bulk(
    batch: BulkPriceCapture,
    user_id: str = Depends(get_capture_user_id),
    ingestor: PriceIngestor = Depends(get_price_ingestor),
):
    """Store a batch of captures; invalid captures are skipped."""
    summary = ingestor.ingest_bulk(user_id, batch.prices)
    return {"success": True, **summary}


@router.get("/cache/stats")
async def cache_stats(cache: PriceCacheStore = Depends(get_price_cache)):
    """Count cached prices by kind and platform."""
    stats = cache.stats().to_dict()
    latest = cache.latest_real_capture_timestamp()
    stats["latest_capture_at"] = latest.isoformat() if latest else None
    return stats


@router.post("/cache/clear-estimates", dependencies=[Depends(require_admin_api_key)])
async def clear_estimates(cache: PriceCacheStore = Depends(get_price_cache)):
    """Drop estimated prices, keeping captured ones."""
    cleared = cache.clear_estimates()
    return {"success": True, "cleared": cleared}


@router.delete("/cache", dependencies=[Depends(require_admin_api_key)])
async def clear_cache(cache: PriceCacheStore = Depends(get_price_cache)):
    """Drop every cached price."""
    cleared = cache.clear_all()
    return {"success": True, "cleared": cleared}


@router.post("/compare")
async def compare_items(
    request: CompareRequest,
    engine: ComparisonEngine = Depends(get_comparison_engine),
):
    """Compare an ad-hoc shopping list without saving anything."""
    try:
        result = await engine.compare([item.model_dump() for item in request.items])
    except EmptyShoppingListError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _comparison_response(result)


async def _compare_stored_plan(
    engine: ComparisonEngine,
    plan_id: int,
    request: Optional[PlanCompareRequest],
) -> dict:
    options = request or PlanCompareRequest()
    try:
        result, reused = await engine.compare_plan(
            plan_id,
            refresh=options.refresh,
            skip_items=options.skip_items,
        )
    except PlanNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PlanDecodeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except EmptyShoppingListError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _comparison_response(result, reused)


@router.post("/compare/latest")
async def compare_latest_plan(
    request: Optional[PlanCompareRequest] = None,
    user_id: str = Depends(get_user_id),
    plan_store: MealPlanStore = Depends(get_plan_store),
    engine: ComparisonEngine = Depends(get_comparison_engine),
):
    """Compare the caller's most recent meal plan."""
    plan_id = await plan_store.latest_plan_id(user_id)
    if plan_id is None:
        raise HTTPException(status_code=404, detail="No meal plan found")
    return await _compare_stored_plan(engine, plan_id, request)


@router.post("/compare/{plan_id}")
async def compare_plan(
    plan_id: int,
    request: Optional[PlanCompareRequest] = None,
    engine: ComparisonEngine = Depends(get_comparison_engine),
):
    """Compare a meal plan's shopping list and save the result onto the plan."""
    return await _compare_stored_plan(engine, plan_id, request)
