"""
Bounded retry with exponential backoff for rate limited provider calls.

Only rate limit failures are retried. Every other error, and the last rate
limit error once attempts run out, propagates unchanged to the caller.
"""
import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from enhancer.core.monitoring import increment_provider_retry
from enhancer.worker.normalizers import is_rate_limit_error

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
BASE_DELAY = 1.0  # Base delay in seconds
MAX_JITTER = 0.2  # ±20% jitter


def calculate_delay(attempt: int, base_delay: float = BASE_DELAY, max_jitter: float = MAX_JITTER) -> float:
    """Calculate exponential backoff delay with jitter."""
    exponential_delay = base_delay * (2 ** attempt)
    jitter = random.uniform(-max_jitter, max_jitter) * exponential_delay
    return max(0, exponential_delay + jitter)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    provider: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = BASE_DELAY,
    max_jitter: float = MAX_JITTER,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """
    Await ``operation``, retrying rate limit failures.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        provider: Provider name for logs and metrics
        max_attempts: Total attempts including the first one
        base_delay: Backoff base in seconds
        max_jitter: Relative jitter applied to each delay
        sleep: Awaitable sleep, replaced in tests

    Returns:
        The operation result
    """
    sleep = sleep or asyncio.sleep
    attempts = max(1, max_attempts)

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as e:
            if not is_rate_limit_error(e) or attempt >= attempts - 1:
                if is_rate_limit_error(e):
                    logger.error(
                        "Provider still rate limited after all retries",
                        provider=provider,
                        attempts=attempts,
                        error=str(e)
                    )
                raise

            delay = calculate_delay(attempt, base_delay, max_jitter)
            increment_provider_retry(provider)
            logger.warning(
                "Provider rate limited, will retry",
                provider=provider,
                attempt=attempt + 1,
                max_attempts=attempts,
                delay=delay,
                error=str(e)
            )
            await sleep(delay)

    # range() above always returns or raises
    raise RuntimeError(f"{provider} call failed after {attempts} attempts")
