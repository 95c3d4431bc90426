"""
Monitoring and observability package for the enhancer service.
"""

from .prometheus_metrics import (
    metrics,
    increment_job_counter,
    observe_job_latency,
    increment_credits_debited,
    increment_refund,
    increment_provider_error,
    increment_provider_retry,
    increment_batch_rejection,
)

__all__ = [
    "metrics",
    "increment_job_counter",
    "observe_job_latency",
    "increment_credits_debited",
    "increment_refund",
    "increment_provider_error",
    "increment_provider_retry",
    "increment_batch_rejection",
]
