"""
Prometheus metrics for the enhancer service.
Covers dispatch jobs, refunds, provider errors and batch admission.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry, CONTENT_TYPE_LATEST, generate_latest
from fastapi import Response
import structlog

logger = structlog.get_logger(__name__)

# Create custom registry for our metrics
registry = CollectorRegistry()

# Job Processing Metrics
job_total = Counter(
    'enhancer_jobs_total',
    'Total number of processing jobs dispatched',
    ['backend', 'status'],
    registry=registry
)

job_duration = Histogram(
    'enhancer_job_duration_seconds',
    'Processing job duration in seconds',
    ['backend', 'status'],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float('inf')],
    registry=registry
)

credits_debited = Counter(
    'enhancer_credits_debited_total',
    'Total credits debited for processing jobs',
    ['backend'],
    registry=registry
)

# Refund Metrics
refunds_total = Counter(
    'enhancer_refunds_total',
    'Refund attempts after failed jobs',
    ['backend', 'outcome'],
    registry=registry
)

# Provider Metrics
provider_errors = Counter(
    'enhancer_provider_errors_total',
    'Total number of normalized provider errors',
    ['backend', 'error_code'],
    registry=registry
)

provider_retries = Counter(
    'enhancer_provider_retries_total',
    'Rate limited provider calls retried with backoff',
    ['provider'],
    registry=registry
)

# Admission Metrics
batch_rejections = Counter(
    'enhancer_batch_rejections_total',
    'Jobs rejected by the batch limiter',
    ['tier'],
    registry=registry
)


class MetricsCollector:
    """Centralized metrics collection and helper methods."""

    def __init__(self):
        self.registry = registry

    def get_metrics_response(self) -> Response:
        """Return Prometheus metrics as HTTP response."""
        metrics_data = generate_latest(self.registry)
        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )


# Global metrics collector instance
metrics = MetricsCollector()


def increment_job_counter(backend: str, status: str):
    """Increment job counter with labels."""
    job_total.labels(backend=backend, status=status).inc()
    logger.debug("job_counter_incremented", backend=backend, status=status)


def observe_job_latency(backend: str, status: str, duration_seconds: float):
    """Record job processing latency."""
    job_duration.labels(backend=backend, status=status).observe(duration_seconds)


def increment_credits_debited(backend: str, amount: int):
    credits_debited.labels(backend=backend).inc(amount)


def increment_refund(backend: str, outcome: str):
    """Count a refund attempt, outcome is "succeeded" or "failed"."""
    refunds_total.labels(backend=backend, outcome=outcome).inc()


def increment_provider_error(backend: str, error_code: str):
    """Increment provider error counter."""
    provider_errors.labels(backend=backend, error_code=error_code).inc()
    logger.warning("provider_error_recorded", backend=backend, error_code=error_code)


def increment_provider_retry(provider: str):
    provider_retries.labels(provider=provider).inc()


def increment_batch_rejection(tier: str):
    batch_rejections.labels(tier=tier).inc()
