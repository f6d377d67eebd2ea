from redis import asyncio as aioredis

from cost_profiler.config.logger import get_logger

LOGGER = get_logger("cost_profiler.redis")

SSE_CHANNEL = "sse:cost_updates"


def get_redis_client(redis_url: str) -> aioredis.Redis:
    LOGGER.info("Redis client initialization started", extra={"redisUrl": _redact(redis_url)})
    return aioredis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
        health_check_interval=30,
    )


def _redact(url: str) -> str:
    # Keep credentials out of the logs.
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
