"""Prometheus metrics for tracking runs."""

import logging

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, Info, push_to_gateway

from pricewatch.config import settings

logger = logging.getLogger(__name__)

# Application info
app_info = Info("pricewatch", "Price tracking engine info")
app_info.info({"version": "0.1.0", "name": "pricewatch"})

# Attempt metrics
tracking_attempts_total = Counter(
    "tracking_attempts_total",
    "Total number of tracking attempts",
    ["strategy", "outcome"],
)

tracking_errors_total = Counter(
    "tracking_errors_total",
    "Total number of failed tracking attempts",
    ["strategy", "error_kind"],
)

tracking_duration_seconds = Histogram(
    "tracking_duration_seconds",
    "Time spent tracking one product",
    ["strategy"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

# Observation metrics
observations_recorded_total = Counter(
    "observations_recorded_total",
    "Total number of price observations written",
    ["merchant"],
)

price_changes_total = Counter(
    "price_changes_total",
    "Total number of price changes detected",
    ["merchant", "direction"],
)

# Run metrics
tracking_runs_total = Counter(
    "tracking_runs_total",
    "Total number of tracking runs",
    ["status"],
)

tracking_last_success_timestamp = Gauge(
    "tracking_last_success_timestamp",
    "Unix time of the last tracking run that completed",
)


def record_attempt(strategy: str, success: bool, duration_ms: float, error_kind: str | None = None):
    """Record one tracking attempt."""
    tracking_attempts_total.labels(strategy=strategy, outcome="success" if success else "failure").inc()
    tracking_duration_seconds.labels(strategy=strategy).observe(duration_ms / 1000)
    if not success:
        tracking_errors_total.labels(strategy=strategy, error_kind=error_kind or "unknown").inc()


def record_observation(merchant: str, old_price=None, new_price=None):
    """Record a written observation and, when there was a previous one, its direction."""
    observations_recorded_total.labels(merchant=merchant).inc()
    if old_price is not None and new_price is not None and old_price != new_price:
        direction = "up" if new_price > old_price else "down"
        price_changes_total.labels(merchant=merchant, direction=direction).inc()


def record_run(status: str):
    tracking_runs_total.labels(status=status).inc()
    if status == "completed":
        tracking_last_success_timestamp.set_to_current_time()


def push_metrics():
    """Push the registry to the configured Pushgateway, if any."""
    if not settings.metrics_pushgateway_url:
        return
    try:
        push_to_gateway(settings.metrics_pushgateway_url, job=settings.metrics_job_name, registry=REGISTRY)
        logger.debug(f"Pushed metrics to {settings.metrics_pushgateway_url}")
    except OSError as e:
        logger.warning(f"Failed to push metrics: {e}")
