"""Prometheus metrics for MealCart."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("mealcart", "MealCart application info")
app_info.info({"version": "0.1.0", "name": "mealcart"})

# Resolution metrics
price_resolutions_total = Counter(
    "price_resolutions_total",
    "Total number of price resolutions by outcome",
    ["platform", "outcome"],
)

semantic_matches_total = Counter(
    "semantic_matches_total",
    "Total number of semantic match attempts by result",
    ["platform", "result"],
)

llm_calls_total = Counter(
    "llm_calls_total",
    "Total number of text-completion calls",
    ["provider", "status"],
)

# Cache metrics
price_cache_entries = Gauge(
    "price_cache_entries",
    "Number of entries in the price cache",
    ["kind"],
)

price_captures_ingested_total = Counter(
    "price_captures_ingested_total",
    "Total number of ingested price captures",
    ["platform", "status"],
)

# Comparison metrics
comparisons_total = Counter(
    "comparisons_total",
    "Total number of price comparisons",
    ["status"],
)

comparison_duration_seconds = Histogram(
    "comparison_duration_seconds",
    "Time spent comparing a shopping list across platforms",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

comparison_cell_errors_total = Counter(
    "comparison_cell_errors_total",
    "Total number of item/platform cells that failed to resolve",
    ["platform"],
)

# Store metrics
plan_decode_errors_total = Counter(
    "plan_decode_errors_total",
    "Total number of stored meal plans that failed validation",
)

plan_persist_errors_total = Counter(
    "plan_persist_errors_total",
    "Total number of failed comparison write-backs",
)

# Cart metrics
cart_items_total = Counter(
    "cart_items_total",
    "Total number of cart automation item attempts",
    ["platform", "status"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_resolution(platform: str, outcome: str):
    """Record how a price was resolved (exact, semantic, cached_estimate, new_estimate)."""
    price_resolutions_total.labels(platform=platform, outcome=outcome).inc()


def record_semantic_match(platform: str, result: str):
    """Record a semantic match attempt (substring, llm, none, error)."""
    semantic_matches_total.labels(platform=platform, result=result).inc()


def record_llm_call(provider: str, success: bool):
    """Record a completion call."""
    status = "success" if success else "error"
    llm_calls_total.labels(provider=provider, status=status).inc()


def update_cache_entries(estimated: int, captured: int):
    """Update the cache-entries gauge."""
    price_cache_entries.labels(kind="estimated").set(estimated)
    price_cache_entries.labels(kind="captured").set(captured)


def record_ingest(platform: str, success: bool):
    """Record an ingested capture."""
    status = "success" if success else "error"
    price_captures_ingested_total.labels(platform=platform, status=status).inc()


def record_comparison(success: bool, duration: float):
    """Record a comparison run."""
    status = "success" if success else "error"
    comparisons_total.labels(status=status).inc()
    comparison_duration_seconds.observe(duration)


def record_cell_error(platform: str):
    """Record an item/platform cell that failed."""
    comparison_cell_errors_total.labels(platform=platform).inc()


def record_plan_decode_error():
    """Record a stored plan that failed validation."""
    plan_decode_errors_total.inc()


def record_plan_persist_error():
    """Record a failed comparison write-back."""
    plan_persist_errors_total.inc()


def record_cart_item(platform: str, success: bool):
    """Record a cart automation item attempt."""
    status = "success" if success else "error"
    cart_items_total.labels(platform=platform, status=status).inc()


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    import time
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
