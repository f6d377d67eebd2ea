"""Fan-out of live cost updates to server-sent-event subscribers.

The manager is ``idle`` while it has no subscribers and ``active`` otherwise.
Only an active manager holds the upstream channel subscription and runs the
heartbeat task; the first subscriber starts both and the last one leaving stops
both.
"""

import asyncio
import datetime as dt
import json
from typing import Any, Dict, List, Optional, Set

from cost_profiler.config.logger import get_logger

from .errors import CapacityError, CounterSyncError

LOGGER = get_logger("cost_profiler.broadcast")

KEEPALIVE_FRAME = ": keepalive\n\n"


class SubscriberClosed(Exception):
    pass


class Subscriber:
    """One live stream. Frames are queued here and drained by the HTTP response."""

    def __init__(self, max_pending: int = 256):
        self._queue: "asyncio.Queue[str]" = asyncio.Queue(maxsize=max_pending)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, frame: str) -> None:
        if self.closed:
            raise SubscriberClosed("subscriber closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as exc:
            # A reader this far behind is treated as dead.
            raise SubscriberClosed("subscriber queue full") from exc

    async def next_frame(self) -> Optional[str]:
        """Wait for the next queued frame; ``None`` once the subscriber is closed."""

        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed:
            return None
        getter = asyncio.ensure_future(self._queue.get())
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        return None

    def close(self) -> None:
        self._closed.set()


def format_event(message: Dict[str, Any]) -> str:
    return f"data: {json.dumps(message)}\n\n"


class BroadcastManager:
    def __init__(
        self,
        counters: Any,
        channel: Any,
        max_subscribers: int = 100,
        heartbeat_interval: float = 30.0,
    ):
        self._counters = counters
        self._channel = channel
        self.max_subscribers = max_subscribers
        self.heartbeat_interval = heartbeat_interval
        self._subscribers: Set[Subscriber] = set()
        self._heartbeat: Optional[asyncio.Task] = None
        self._active = False
        self._transition = asyncio.Lock()
        self._teardowns: Set[asyncio.Task] = set()

    @property
    def state(self) -> str:
        return "active" if self._active else "idle"

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def add_subscriber(self, subscriber: Optional[Subscriber] = None) -> Subscriber:
        """Register a stream and queue its snapshot frame.

        Raises:
            CapacityError: when ``max_subscribers`` streams are already open.
            CounterSyncError: when the current totals cannot be read.
        """

        if len(self._subscribers) >= self.max_subscribers:
            LOGGER.warning(
                "SSE connection limit reached",
                extra={"activeClients": len(self._subscribers), "maxClients": self.max_subscribers},
            )
            raise CapacityError(len(self._subscribers), self.max_subscribers)

        subscriber = subscriber or Subscriber()
        self._subscribers.add(subscriber)
        try:
            snapshot = await self._counters.snapshot()
        except Exception as exc:
            LOGGER.error("Snapshot read failed for new subscriber", extra={"error": str(exc)})
            await self.remove_subscriber(subscriber)
            raise CounterSyncError("Failed to read realtime totals") from exc

        message = {"type": "snapshot", **snapshot.to_dict(), "timestamp": _now()}
        if not self._deliver(subscriber, format_event(message)):
            await self.remove_subscriber(subscriber)
            return subscriber

        try:
            await self._activate()
        except Exception as exc:
            LOGGER.error("Upstream subscription failed", extra={"error": str(exc)})
            await self.remove_subscriber(subscriber)
            raise CounterSyncError("Failed to subscribe to live updates") from exc
        LOGGER.info("SSE client connected", extra={"activeClients": len(self._subscribers)})
        return subscriber

    async def remove_subscriber(self, subscriber: Subscriber) -> None:
        """Drop a subscriber. Safe to call more than once for the same one."""

        subscriber.close()
        if subscriber in self._subscribers:
            self._subscribers.discard(subscriber)
            LOGGER.info("SSE client disconnected", extra={"activeClients": len(self._subscribers)})
        await self._deactivate_if_empty()

    def handle_message(self, raw: Any) -> None:
        """Upstream callback: relay one published payload to every subscriber."""

        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as exc:
            LOGGER.error("Failed to parse SSE message", extra={"payload": raw, "error": str(exc)})
            return
        if not isinstance(message, dict):
            LOGGER.error("Dropping non-object SSE message", extra={"payload": raw})
            return
        self.broadcast(format_event(message))

    def broadcast(self, frame: str) -> int:
        dead = [sub for sub in list(self._subscribers) if not self._deliver(sub, frame)]
        self._prune(dead, reason="broadcast")
        return len(self._subscribers)

    def send_heartbeat(self) -> int:
        dead = [sub for sub in list(self._subscribers) if not self._deliver(sub, KEEPALIVE_FRAME)]
        self._prune(dead, reason="heartbeat")
        return len(self._subscribers)

    async def close(self) -> None:
        for subscriber in list(self._subscribers):
            subscriber.close()
        self._subscribers.clear()
        await self._deactivate_if_empty()

    def _deliver(self, subscriber: Subscriber, frame: str) -> bool:
        try:
            subscriber.send(frame)
            return True
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Failed to send to SSE client", extra={"error": str(exc)})
            return False

    def _prune(self, dead: List[Subscriber], reason: str) -> None:
        if not dead:
            return
        for subscriber in dead:
            subscriber.close()
            self._subscribers.discard(subscriber)
        LOGGER.info(
            "Removed dead SSE clients",
            extra={"removed": len(dead), "activeClients": len(self._subscribers), "reason": reason},
        )
        if not self._subscribers:
            # Pruning runs inside sync callbacks; the teardown itself awaits.
            task = asyncio.get_running_loop().create_task(self._deactivate_if_empty())
            self._teardowns.add(task)
            task.add_done_callback(self._teardowns.discard)

    async def _activate(self) -> None:
        async with self._transition:
            if self._active or not self._subscribers:
                return
            await self._channel.subscribe(self.handle_message)
            self._heartbeat = asyncio.create_task(self._heartbeat_loop())
            self._active = True
            LOGGER.info("Broadcast manager active")

    async def _deactivate_if_empty(self) -> None:
        async with self._transition:
            if not self._active or self._subscribers:
                return
            self._active = False
            heartbeat, self._heartbeat = self._heartbeat, None
            if heartbeat is not None:
                heartbeat.cancel()
            try:
                await self._channel.unsubscribe()
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Upstream unsubscribe failed", extra={"error": str(exc)})
            LOGGER.info("Broadcast manager idle")

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self.send_heartbeat()


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()
