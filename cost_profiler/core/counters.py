from dataclasses import dataclass
from typing import Any, Dict

from redis import asyncio as aioredis

from cost_profiler.config.logger import get_logger

LOGGER = get_logger("cost_profiler.counters")


@dataclass(frozen=True)
class CounterSnapshot:
    total_cost: float
    total_requests: int
    total_tokens: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCost": self.total_cost,
            "totalRequests": self.total_requests,
            "totalTokens": self.total_tokens,
        }


class RedisCounterStore:
    """Running totals kept in three Redis keys.

    Redis keys:
        {prefix}:total_cost      float, INCRBYFLOAT
        {prefix}:total_requests  int, INCRBY
        {prefix}:total_tokens    int, INCRBY

    The three increments go out in one MULTI block, so concurrent ingestions
    never lose an update and a reader never sees a half-applied batch.
    """

    def __init__(self, redis: aioredis.Redis, key_prefix: str = "realtime"):
        self._redis = redis
        self.cost_key = f"{key_prefix}:total_cost"
        self.requests_key = f"{key_prefix}:total_requests"
        self.tokens_key = f"{key_prefix}:total_tokens"

    async def increment(self, cost: float, requests: int, tokens: int) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incrbyfloat(self.cost_key, cost)
            pipe.incrby(self.requests_key, requests)
            pipe.incrby(self.tokens_key, tokens)
            await pipe.execute()
        LOGGER.debug(
            "Realtime totals incremented",
            extra={"costDelta": cost, "requestsDelta": requests, "tokensDelta": tokens},
        )

    async def snapshot(self) -> CounterSnapshot:
        cost, requests, tokens = await self._redis.mget(self.cost_key, self.requests_key, self.tokens_key)
        return CounterSnapshot(
            total_cost=float(cost or 0.0),
            total_requests=int(requests or 0),
            total_tokens=int(tokens or 0),
        )
