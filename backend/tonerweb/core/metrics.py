"""
Prometheus metrics for the assistant.

Metrics Categories:
- RED metrics: HTTP rate, errors, duration
- Routing: query classifications, strategy outcomes, end-to-end latency
- Providers: call latency and failures per provider and error category
- Cache: hits, misses and evictions per pool
- Resources: process CPU and memory (psutil)

Naming follows Prometheus conventions (_total counters, _seconds histograms).
All series are prefixed with ``tonerweb_``.
"""
from typing import Optional

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from tonerweb.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS
# ============================================================================

http_requests_total = Counter(
    "tonerweb_http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "tonerweb_http_errors_total",
    "Total number of HTTP responses with status >= 400",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "tonerweb_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

rate_limit_rejections_total = Counter(
    "tonerweb_rate_limit_rejections_total",
    "Requests rejected by the per-client rate limiter",
    registry=registry,
)

# ============================================================================
# ROUTING METRICS
# ============================================================================

query_classifications_total = Counter(
    "tonerweb_query_classifications_total",
    "Queries classified, by type and chosen strategy",
    ["query_type", "strategy"],
    registry=registry,
)

query_classification_confidence = Histogram(
    "tonerweb_query_classification_confidence",
    "Distribution of classification confidence",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
    registry=registry,
)

orchestration_requests_total = Counter(
    "tonerweb_orchestration_requests_total",
    "Handled chat requests, by strategy and outcome",
    ["strategy", "outcome"],  # outcome: success, cache_hit, failure
    registry=registry,
)

orchestration_duration_seconds = Histogram(
    "tonerweb_orchestration_duration_seconds",
    "End-to-end orchestration latency in seconds",
    ["strategy"],
    buckets=[0.01, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 45.0, 60.0, 90.0],
    registry=registry,
)

# ============================================================================
# PROVIDER METRICS
# ============================================================================

provider_call_duration_seconds = Histogram(
    "tonerweb_provider_call_duration_seconds",
    "Latency of calls to upstream AI providers",
    ["provider"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 45.0],
    registry=registry,
)

provider_errors_total = Counter(
    "tonerweb_provider_errors_total",
    "Failed calls to upstream AI providers",
    ["provider", "category"],
    registry=registry,
)

vision_fallbacks_total = Counter(
    "tonerweb_vision_fallbacks_total",
    "Image analyses replaced by the placeholder text",
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

cache_hits_total = Counter(
    "tonerweb_cache_hits_total",
    "Total number of cache hits",
    ["pool"],  # "search" or "reasoning"
    registry=registry,
)

cache_misses_total = Counter(
    "tonerweb_cache_misses_total",
    "Total number of cache misses",
    ["pool"],
    registry=registry,
)

cache_evictions_total = Counter(
    "tonerweb_cache_evictions_total",
    "Entries removed to respect the pool size bound",
    ["pool"],
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

process_cpu_usage_percent = Gauge(
    "tonerweb_process_cpu_usage_percent",
    "Process CPU usage percentage",
    registry=registry,
)

process_memory_rss_bytes = Gauge(
    "tonerweb_process_memory_rss_bytes",
    "Process resident memory in bytes",
    registry=registry,
)


def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics labels.

    Drops query strings and trailing slashes so label cardinality stays bounded.
    """
    if "?" in path:
        path = path.split("?")[0]
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return path or "/"


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_rate_limit_rejection() -> None:
    rate_limit_rejections_total.inc()


def record_classification(query_type: str, strategy: str, confidence: float) -> None:
    query_classifications_total.labels(query_type=query_type, strategy=strategy).inc()
    query_classification_confidence.observe(confidence)


def record_orchestration(strategy: str, outcome: str, duration_seconds: Optional[float] = None) -> None:
    """
    Record one handled request.

    Args:
        strategy: Strategy value, e.g. "search-only"
        outcome: "success", "cache_hit" or "failure"
        duration_seconds: End-to-end latency (omitted when unknown)
    """
    orchestration_requests_total.labels(strategy=strategy, outcome=outcome).inc()
    if duration_seconds is not None:
        orchestration_duration_seconds.labels(strategy=strategy).observe(duration_seconds)


def record_provider_call(provider: str, duration_seconds: float) -> None:
    provider_call_duration_seconds.labels(provider=provider).observe(duration_seconds)


def record_provider_error(provider: str, category: str) -> None:
    provider_errors_total.labels(provider=provider, category=category).inc()


def record_vision_fallback() -> None:
    vision_fallbacks_total.inc()


def record_cache_hit(pool: str) -> None:
    cache_hits_total.labels(pool=pool).inc()


def record_cache_miss(pool: str) -> None:
    cache_misses_total.labels(pool=pool).inc()


def record_cache_eviction(pool: str, count: int = 1) -> None:
    cache_evictions_total.labels(pool=pool).inc(count)


def update_resource_metrics() -> None:
    """Refresh CPU and memory gauges. Called on every scrape."""
    try:
        process = psutil.Process()
        process_cpu_usage_percent.set(process.cpu_percent(interval=None))
        process_memory_rss_bytes.set(process.memory_info().rss)
    except psutil.Error as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Prometheus text exposition of the registry."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
