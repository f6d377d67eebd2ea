import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import Request, Response
from redis import asyncio as aioredis

from cost_profiler.config.logger import get_logger

from .errors import RateLimitExceeded

LOGGER = get_logger("cost_profiler.rate_limiter")


class RedisWindowCounter:
    """Fixed-window hit counter backed by Redis.

    ``INCR`` and ``EXPIRE ... NX`` run in one MULTI block, so the expiry is set
    exactly once, by whichever request created the key.
    """

    def __init__(self, redis: aioredis.Redis):
        self._redis = redis

    async def hit(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """Count one request against ``key``; return (count, ttl seconds)."""

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, window_seconds, nx=True)
            count, _ = await pipe.execute()
        ttl = await self._redis.ttl(key)
        return int(count), int(ttl)


@dataclass(frozen=True)
class RateLimitConfig:
    limit: int
    window_seconds: int
    key_prefix: str


def client_identity(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimiter:
    """FastAPI dependency that admits or rejects a request for its caller's IP.

    Any failure of the counting store lets the request through.
    """

    def __init__(self, config: RateLimitConfig, counter: Optional[RedisWindowCounter] = None):
        self.config = config
        self.counter = counter

    async def __call__(self, request: Request, response: Response) -> None:
        counter = self.counter or getattr(request.app.state, "window_counter", None)
        if counter is None:
            LOGGER.warning("Rate limiter has no counting store; admitting request")
            return

        identity = client_identity(request)
        key = f"{self.config.key_prefix}:{identity}"
        try:
            count, ttl = await counter.hit(key, self.config.window_seconds)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error(
                "Rate limiter store error; failing open",
                extra={"key": key, "error": str(exc)},
            )
            return

        if ttl < 0:
            ttl = self.config.window_seconds
        headers = self._headers(count, ttl)
        request.state.rate_limit_headers = headers
        for name, value in headers.items():
            response.headers[name] = value

        if count > self.config.limit:
            LOGGER.warning(
                "Rate limit exceeded",
                extra={"key": key, "count": count, "limit": self.config.limit},
            )
            raise RateLimitExceeded(
                limit=self.config.limit,
                window_seconds=self.config.window_seconds,
                retry_after=ttl,
                headers=headers,
            )

    def _headers(self, count: int, ttl: int) -> Dict[str, str]:
        reset_ms = int(time.time() * 1000) + ttl * 1000
        return {
            "X-RateLimit-Limit": str(self.config.limit),
            "X-RateLimit-Remaining": str(max(0, self.config.limit - count)),
            "X-RateLimit-Reset": str(reset_ms),
        }
