"""Main application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mealcart import metrics
from mealcart.ai.llm_service import llm_service
from mealcart.ai.semantic_matcher import SemanticMatcher
from mealcart.api.routes import cart, prices
from mealcart.cart.automation import CartDriver, PlaywrightCartDriver
from mealcart.cart.service import CartAutomationService
from mealcart.compare.engine import ComparisonEngine
from mealcart.config import settings
from mealcart.db.models import Base
from mealcart.db.plan_store import MealPlanStore
from mealcart.db.session import AsyncSessionLocal, engine
from mealcart.ingest.price_ingest import PriceIngestor
from mealcart.logging_config import setup_logging
from mealcart.pricing.cache import PriceCacheStore
from mealcart.pricing.resolver import PriceResolver
from mealcart.worker.scheduler import setup_scheduler

# Configure structured logging
setup_logging()
logger = logging.getLogger(__name__)


def init_services(
    app: FastAPI,
    cache: PriceCacheStore,
    session_factory: async_sessionmaker[AsyncSession],
    driver: Optional[CartDriver] = None,
):
    """Build the price and cart services around one cache and attach them to app.state."""
    matcher = SemanticMatcher(cache) if settings.semantic_match_enabled else None
    resolver = PriceResolver(cache, matcher=matcher)
    plan_store = MealPlanStore(session_factory)

    app.state.price_cache = cache
    app.state.price_resolver = resolver
    app.state.plan_store = plan_store
    app.state.price_ingestor = PriceIngestor(cache)
    app.state.comparison_engine = ComparisonEngine(resolver, plan_store=plan_store)
    app.state.cart_service = CartAutomationService(
        resolver,
        plan_store,
        driver or PlaywrightCartDriver(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting MealCart price service...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    cache = PriceCacheStore()
    cache.load()
    init_services(app, cache, AsyncSessionLocal)

    scheduler = setup_scheduler(cache)
    scheduler.start()
    logger.info("Scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    scheduler.shutdown()

    if not cache.save():
        logger.error("Final price cache save failed")

    try:
        await app.state.cart_service.cancel()
    except Exception:
        logger.exception("Error stopping cart automation")

    await llm_service.close()
    await engine.dispose()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="MealCart",
    description="Grocery price resolution, comparison and cart automation",
    version="0.1.0",
    lifespan=lifespan,
)

metrics.app_info.info({"version": "0.1.0"})

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(prices.router)
app.include_router(cart.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/api/llm/stats")
async def llm_stats():
    """Completion provider and call counts."""
    return llm_service.get_stats()


if __name__ == "__main__":
    uvicorn.run(
        "mealcart.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
