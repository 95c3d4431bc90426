"""
Batch admission control.

Bounds how many jobs a user may start in a sliding window. The Redis and
store backends do check-and-increment as one atomic step. The in-memory
backend is per process and is NOT safe when more than one API instance
serves traffic.
"""

import time
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional

import structlog

from enhancer.core.config import SubscriptionTier
from enhancer.core.exceptions import BatchLimitExceededError
from enhancer.core.monitoring import increment_batch_rejection
from enhancer.core.settings import Settings, settings as app_settings
from enhancer.api.services.store import BatchLimitResult, CreditStore

logger = structlog.get_logger(__name__)

# KEYS[1] window key; ARGV limit, window ms, now ms, member
SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

-- Remove entries outside the window
redis.call('ZREMRANGEBYSCORE', key, 0, now - window)

local current = redis.call('ZCARD', key)
local allowed = 0
if current < limit then
    redis.call('ZADD', key, now, ARGV[4])
    current = current + 1
    allowed = 1
end
redis.call('PEXPIRE', key, window)

local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = now
if oldest[2] then
    oldest_score = tonumber(oldest[2])
end
return {allowed, current, oldest_score}
"""


class BatchLimiter(ABC):
    """Sliding window job admission per user."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or app_settings

    @property
    def window_seconds(self) -> float:
        return self.settings.batch_window_hours * 3600

    def limit_for(self, tier: SubscriptionTier) -> int:
        return self.settings.batch_limit_for(SubscriptionTier(tier))

    @abstractmethod
    async def check_and_increment(self, user_id: str, tier: SubscriptionTier) -> BatchLimitResult:
        """Admit one job if the user is under the tier limit."""

    async def enforce(self, user_id: str, tier: SubscriptionTier) -> BatchLimitResult:
        """Admit one job or raise BatchLimitExceededError."""
        result = await self.check_and_increment(user_id, tier)
        if not result.allowed:
            tier_value = SubscriptionTier(tier).value
            increment_batch_rejection(tier_value)
            logger.warning(
                "Batch limit exceeded",
                user_id=user_id,
                tier=tier_value,
                current=result.current_count,
                limit=result.limit,
                reset_at=result.reset_at
            )
            raise BatchLimitExceededError(result.current_count, result.limit, result.reset_at)
        return result


class RedisBatchLimiter(BatchLimiter):
    """Atomic sliding window in a Redis sorted set, one key per user."""

    def __init__(self, redis, settings: Optional[Settings] = None, key_prefix: str = "batch"):
        super().__init__(settings)
        self.redis = redis
        self.key_prefix = key_prefix

    def _make_key(self, user_id: str) -> str:
        return f"{self.key_prefix}:{user_id}"

    async def check_and_increment(self, user_id: str, tier: SubscriptionTier) -> BatchLimitResult:
        limit = self.limit_for(tier)
        window_ms = int(self.window_seconds * 1000)
        now_ms = int(time.time() * 1000)

        allowed, current, oldest = await self.redis.eval(
            SLIDING_WINDOW_LUA,
            1,
            self._make_key(user_id),
            limit,
            window_ms,
            now_ms,
            f"{now_ms}:{uuid.uuid4().hex}",
        )
        return BatchLimitResult(
            allowed=bool(int(allowed)),
            current_count=int(current),
            limit=limit,
            reset_at=int(oldest) + window_ms,
        )


class InMemoryBatchLimiter(BatchLimiter):
    """
    Per-process sliding window.

    Only for single-instance deployments: each process keeps its own
    counters, so N instances admit up to N times the limit.
    """

    def __init__(self, settings: Optional[Settings] = None, clock=time.time):
        super().__init__(settings)
        self._clock = clock
        self._starts: Dict[str, List[float]] = defaultdict(list)
        self._last_cleanup = clock()
        logger.warning("Using in-memory batch limiter; not safe for horizontally scaled deployments")

    def _prune(self, user_id: str, now: float) -> List[float]:
        cutoff = now - self.window_seconds
        starts = [t for t in self._starts.get(user_id, []) if t > cutoff]
        if starts:
            self._starts[user_id] = starts
        else:
            self._starts.pop(user_id, None)
        return starts

    def cleanup(self) -> int:
        """Drop expired entries for every user; returns users removed."""
        now = self._clock()
        before = len(self._starts)
        for user_id in list(self._starts):
            self._prune(user_id, now)
        self._last_cleanup = now
        return before - len(self._starts)

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup >= self.settings.batch_cleanup_interval_sec:
            removed = self.cleanup()
            logger.debug("Batch limiter cleanup", users_removed=removed)

    async def check_and_increment(self, user_id: str, tier: SubscriptionTier) -> BatchLimitResult:
        # No await between check and append, so one event loop cannot interleave
        now = self._clock()
        self._maybe_cleanup(now)
        limit = self.limit_for(tier)
        starts = self._prune(user_id, now)

        allowed = len(starts) < limit
        if allowed:
            starts.append(now)
            self._starts[user_id] = starts

        oldest = starts[0] if starts else now
        return BatchLimitResult(
            allowed=allowed,
            current_count=len(starts),
            limit=limit,
            reset_at=int((oldest + self.window_seconds) * 1000),
        )


class StoreBatchLimiter(BatchLimiter):
    """Delegates to the credit store's atomic batch counter."""

    def __init__(self, store: CreditStore, settings: Optional[Settings] = None):
        super().__init__(settings)
        self.store = store

    async def check_and_increment(self, user_id: str, tier: SubscriptionTier) -> BatchLimitResult:
        return await self.store.check_and_increment_batch(
            user_id, self.limit_for(tier), self.settings.batch_window_hours
        )


def build_batch_limiter(settings: Settings, store: Optional[CreditStore] = None) -> BatchLimiter:
    """Limiter for the configured backend."""
    backend = settings.batch_limiter_backend
    if backend == "redis":
        from redis import asyncio as aioredis

        client = aioredis.from_url(settings.redis_url, decode_responses=True)
        return RedisBatchLimiter(client, settings)
    if backend == "store":
        if store is None:
            raise ValueError("Store batch limiter requires a credit store")
        return StoreBatchLimiter(store, settings)
    return InMemoryBatchLimiter(settings)
