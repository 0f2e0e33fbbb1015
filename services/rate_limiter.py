"""
Sliding-window rate limiters keyed by client identity.

Two interchangeable backends implement the same contract: a Redis backend shared
by every worker process and an in-process fallback used when Redis is not
configured. Both count consumed points inside a trailing window and may block a
key for a fixed duration once its budget is exhausted.
"""

import math
import secrets
import time

import logfire

from abc import ABC, abstractmethod
from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from schema.security import RateLimitResult
from utils.config import Settings

LOGIN_KEY_PREFIX = "login_limit"
GLOBAL_KEY_PREFIX = "global_limit"


class RateLimiter(ABC):
    """Contract shared by all rate limiter backends.

    Args:
        points: Points a key may consume within `duration`.
        duration: Length of the sliding window in seconds.
        block_duration: Seconds a key stays blocked once it exceeds its budget.
            Zero disables blocking; the key is then limited by the window only.
        key_prefix: Namespace separating limiters that share a backend.
        fail_open: Allow requests when the backend itself fails.
    """

    def __init__(
        self,
        points: int,
        duration: int,
        block_duration: int = 0,
        key_prefix: str = "rate_limit",
        fail_open: bool = True,
    ):
        if points <= 0 or duration <= 0:
            raise ValueError("points and duration must be positive")
        self.points = points
        self.duration = duration
        self.block_duration = max(0, block_duration)
        self.key_prefix = key_prefix
        self.fail_open = fail_open

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def _denied(self, retry_after: float) -> RateLimitResult:
        return RateLimitResult(
            allowed=False, retry_after_seconds=max(1, math.ceil(retry_after)), remaining=0
        )

    def _on_backend_error(self, key: str, exc: Exception) -> RateLimitResult:
        if self.fail_open:
            logfire.warning(
                f"Rate limiter '{self.key_prefix}' unavailable, allowing request for {key}: {exc!r}"
            )
            return RateLimitResult(allowed=True, retry_after_seconds=0, remaining=self.points)

        logfire.error(
            f"Rate limiter '{self.key_prefix}' unavailable, rejecting request for {key}: {exc!r}"
        )
        return self._denied(self.block_duration or self.duration)

    @abstractmethod
    async def consume(self, key: str) -> RateLimitResult:
        """Consume one point for `key`."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Forget everything recorded for `key`, including an active block."""


class _WindowState:
    __slots__ = ("hits", "blocked_until")

    def __init__(self):
        self.hits: Deque[float] = deque()
        self.blocked_until: float = 0.0


class MemoryRateLimiter(RateLimiter):
    """In-process sliding-window limiter.

    State lives in a dict guarded by a lock so that increment-and-check is
    atomic per key. Only suitable for a single process.
    """

    def __init__(
        self,
        points: int,
        duration: int,
        block_duration: int = 0,
        key_prefix: str = "rate_limit",
        fail_open: bool = True,
        cleanup_interval: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(points, duration, block_duration, key_prefix, fail_open)
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._states: Dict[str, _WindowState] = {}
        self._lock = Lock()
        self._last_cleanup = clock()

        logfire.info(
            f"In-memory rate limiter '{key_prefix}' initialized: {points} points per {duration}s"
        )

    def _cleanup_idle_keys(self, now: float) -> None:
        """Drop keys with no hits in the window and no active block."""
        if now - self._last_cleanup < self.cleanup_interval:
            return

        cutoff = now - self.duration
        idle = [
            key
            for key, state in self._states.items()
            if state.blocked_until <= now and (not state.hits or state.hits[-1] <= cutoff)
        ]
        for key in idle:
            del self._states[key]

        if idle:
            logfire.debug(f"Cleaned up {len(idle)} idle '{self.key_prefix}' rate limit keys")
        self._last_cleanup = now

    async def consume(self, key: str) -> RateLimitResult:
        now = self._clock()

        with self._lock:
            self._cleanup_idle_keys(now)

            state = self._states.setdefault(self._key(key), _WindowState())

            if state.blocked_until > now:
                return self._denied(state.blocked_until - now)

            cutoff = now - self.duration
            while state.hits and state.hits[0] <= cutoff:
                state.hits.popleft()

            if len(state.hits) >= self.points:
                if self.block_duration:
                    state.blocked_until = now + self.block_duration
                    return self._denied(self.block_duration)
                return self._denied(state.hits[0] + self.duration - now)

            state.hits.append(now)
            return RateLimitResult(
                allowed=True, retry_after_seconds=0, remaining=self.points - len(state.hits)
            )

    async def reset(self, key: str) -> None:
        with self._lock:
            self._states.pop(self._key(key), None)


class RedisRateLimiter(RateLimiter):
    """Sliding-window limiter shared across processes through Redis.

    The whole check runs as one Lua script over a sorted set of hit timestamps
    and a separate block key, so concurrent bursts cannot undercount.
    """

    _SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local block_key = KEYS[2]
local now_ms = tonumber(ARGV[1])
local duration_ms = tonumber(ARGV[2])
local points = tonumber(ARGV[3])
local block_ms = tonumber(ARGV[4])
local member = ARGV[5]

local blocked_ttl = redis.call('PTTL', block_key)
if blocked_ttl > 0 then
  return {0, blocked_ttl, 0}
end

redis.call('ZREMRANGEBYSCORE', key, '-inf', now_ms - duration_ms)
local consumed = redis.call('ZCARD', key)

if consumed >= points then
  if block_ms > 0 then
    redis.call('SET', block_key, '1', 'PX', block_ms)
    return {0, block_ms, 0}
  end
  local retry_ms = duration_ms
  local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
  if oldest[2] then
    retry_ms = tonumber(oldest[2]) + duration_ms - now_ms
  end
  return {0, retry_ms, 0}
end

redis.call('ZADD', key, now_ms, member)
redis.call('PEXPIRE', key, duration_ms)
return {1, 0, points - consumed - 1}
"""

    def __init__(
        self,
        client: Redis,
        points: int,
        duration: int,
        block_duration: int = 0,
        key_prefix: str = "rate_limit",
        fail_open: bool = True,
    ):
        super().__init__(points, duration, block_duration, key_prefix, fail_open)
        self.client = client
        self._sliding_window = client.register_script(self._SLIDING_WINDOW_SCRIPT)

        logfire.info(
            f"Redis rate limiter '{key_prefix}' initialized: {points} points per {duration}s"
        )

    def _keys(self, key: str) -> Tuple[str, str]:
        # Hash tag keeps both keys in one Redis Cluster slot for the script
        full_key = f"{{{self._key(key)}}}"
        return full_key, f"{full_key}:blocked"

    async def consume(self, key: str) -> RateLimitResult:
        now_ms = int(time.time() * 1000)
        window_key, block_key = self._keys(key)

        try:
            allowed, retry_ms, remaining = await self._sliding_window(
                keys=[window_key, block_key],
                args=[
                    now_ms,
                    self.duration * 1000,
                    self.points,
                    self.block_duration * 1000,
                    f"{now_ms}-{secrets.token_hex(4)}",  # Unique member per hit
                ],
            )
        except RedisError as exc:
            return self._on_backend_error(key, exc)

        if int(allowed):
            return RateLimitResult(
                allowed=True, retry_after_seconds=0, remaining=max(0, int(remaining))
            )
        return self._denied(int(retry_ms) / 1000)

    async def reset(self, key: str) -> None:
        try:
            await self.client.delete(*self._keys(key))
        except RedisError as exc:
            logfire.warning(f"Failed to reset '{self.key_prefix}' rate limit for {key}: {exc!r}")


def build_rate_limiters(
    settings: Settings, redis_client: Optional[Redis] = None
) -> Tuple[RateLimiter, RateLimiter]:
    """Create the login and global limiters on the configured backend.

    Returns:
        Tuple of (login limiter, global limiter).
    """
    login_policy = dict(
        points=settings.login_rate_limit_points,
        duration=settings.login_rate_limit_duration,
        block_duration=settings.login_rate_limit_block,
        key_prefix=LOGIN_KEY_PREFIX,
        fail_open=settings.rate_limit_fail_open,
    )
    global_policy = dict(
        points=settings.global_rate_limit_points,
        duration=settings.global_rate_limit_duration,
        key_prefix=GLOBAL_KEY_PREFIX,
        fail_open=settings.rate_limit_fail_open,
    )

    if redis_client is not None:
        logfire.info("Rate limiting: using Redis")
        return (
            RedisRateLimiter(redis_client, **login_policy),
            RedisRateLimiter(redis_client, **global_policy),
        )

    logfire.info("Rate limiting: using in-memory counters (Redis not configured)")
    return MemoryRateLimiter(**login_policy), MemoryRateLimiter(**global_policy)
