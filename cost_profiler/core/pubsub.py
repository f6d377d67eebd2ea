import asyncio
import json
from typing import Any, Callable, Dict, Optional

from redis import asyncio as aioredis

from cost_profiler.config.logger import get_logger

LOGGER = get_logger("cost_profiler.pubsub")

MessageHandler = Callable[[str], None]


class RedisChannel:
    """Publish/subscribe handle over one Redis channel.

    ``subscribe`` opens a dedicated pub/sub connection and starts a reader task
    that hands every raw payload to the handler. ``unsubscribe`` cancels the
    reader and releases the connection. Both are idempotent.
    """

    def __init__(self, redis: aioredis.Redis, channel: str, poll_timeout: float = 1.0):
        self._redis = redis
        self.channel = channel
        self._poll_timeout = poll_timeout
        self._pubsub: Optional[Any] = None
        self._reader: Optional[asyncio.Task] = None

    async def publish(self, message: Dict[str, Any]) -> int:
        return await self._redis.publish(self.channel, json.dumps(message))

    @property
    def subscribed(self) -> bool:
        return self._pubsub is not None

    async def subscribe(self, handler: MessageHandler) -> None:
        if self._pubsub is not None:
            return
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel)
        self._pubsub = pubsub
        self._reader = asyncio.create_task(self._read(pubsub, handler))
        LOGGER.info("Subscribed to Redis channel", extra={"channel": self.channel})

    async def unsubscribe(self) -> None:
        pubsub, reader = self._pubsub, self._reader
        self._pubsub, self._reader = None, None
        try:
            if reader is not None:
                reader.cancel()
                # wait() never raises the reader's own CancelledError; a
                # cancellation of this coroutine still propagates.
                await asyncio.wait({reader})
        finally:
            if pubsub is not None:
                await self._release(pubsub)

    async def _release(self, pubsub: Any) -> None:
        try:
            await pubsub.unsubscribe(self.channel)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning(
                "Redis unsubscribe failed",
                extra={"channel": self.channel, "error": str(exc)},
            )
        finally:
            await pubsub.aclose()
        LOGGER.info("Unsubscribed from Redis channel", extra={"channel": self.channel})

    async def _read(self, pubsub: Any, handler: MessageHandler) -> None:
        while True:
            try:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self._poll_timeout,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                LOGGER.error(
                    "Redis channel read failed",
                    extra={"channel": self.channel, "error": str(exc)},
                )
                await asyncio.sleep(self._poll_timeout)
                continue
            if message is None or message.get("type") != "message":
                continue
            handler(message["data"])
