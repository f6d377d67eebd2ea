import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Union

import httpx

from cost_profiler.config.logger import get_logger
from cost_profiler.core.errors import TransportError
from cost_profiler.schemas.events import LlmEvent

from .buffer import BoundedBuffer

LOGGER = get_logger("cost_profiler.sdk.batcher")

EventLike = Union[LlmEvent, Dict[str, Any]]

INGEST_PATH = "/api/v1/events"


class EventBatcher:
    """Buffers events and ships them to the ingestion endpoint in batches.

    A batch goes out when ``batch_size`` events are waiting, or on every
    ``flush_interval_ms`` tick if anything is buffered. A failed batch is put
    back at the front of the buffer for the next attempt. ``add`` never blocks
    and never raises; every failure is logged and absorbed here.
    """

    def __init__(
        self,
        server_url: str,
        batch_size: int = 10,
        flush_interval_ms: int = 5000,
        max_buffer_size: int = 1000,
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
        executor: Any = None,
        start_timer: bool = True,
    ):
        self.server_url = server_url.rstrip("/")
        self.batch_size = batch_size
        self.flush_interval_ms = flush_interval_ms
        self._buffer: BoundedBuffer[EventLike] = BoundedBuffer(max_buffer_size)
        self._lock = threading.Lock()
        self._flushing = False
        self._flush_scheduled = False
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_s)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="event-batcher")
        self._stop = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._destroyed = False
        if start_timer:
            self._start_timer()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    def pending(self) -> List[EventLike]:
        with self._lock:
            return self._buffer.snapshot()

    def add(self, event: EventLike) -> None:
        try:
            with self._lock:
                dropped = self._buffer.append(event)
                # At most one size-triggered flush waits in the executor.
                schedule = (
                    len(self._buffer) >= self.batch_size
                    and not self._flush_scheduled
                    and not self._destroyed
                )
                if schedule:
                    self._flush_scheduled = True
            if dropped:
                LOGGER.warning(
                    "Buffer exceeded %s events, dropping oldest",
                    self._buffer.capacity,
                )
            if schedule:
                self._submit_flush()
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Failed to queue event", extra={"error": str(exc)})

    def flush(self) -> int:
        """Send up to ``batch_size`` events; return how many were delivered.

        Returns 0 without touching the network when the buffer is empty or
        another flush is already in flight.
        """

        with self._lock:
            if self._flushing or len(self._buffer) == 0:
                return 0
            self._flushing = True
            batch = self._buffer.take(self.batch_size)

        try:
            self._send(batch)
            LOGGER.debug("Flushed event batch", extra={"count": len(batch)})
            return len(batch)
        except Exception as exc:  # noqa: BLE001
            with self._lock:
                dropped = self._buffer.prepend(batch)
            LOGGER.warning(
                "Failed to send events, re-buffering: %s",
                exc,
                extra={"count": len(batch), "dropped": dropped},
            )
            return 0
        finally:
            with self._lock:
                self._flushing = False

    def destroy(self) -> None:
        """Stop the timer, let an in-flight flush finish, then flush once more.

        Queued size-triggered flushes are dropped. An executor passed in by the
        caller is left running; the caller owns its shutdown.
        """

        if self._destroyed:
            return
        self._destroyed = True
        self._stop.set()
        if self._timer is not None and self._timer is not threading.current_thread():
            self._timer.join(timeout=self.flush_interval_ms / 1000)
        self._timer = None
        if self._owns_executor:
            self._executor.shutdown(wait=True, cancel_futures=True)
        self.flush()
        if self._owns_client:
            self._client.close()

    def _send(self, batch: List[EventLike]) -> None:
        payload = {"events": [_serialize(event) for event in batch]}
        try:
            response = self._client.post(f"{self.server_url}{INGEST_PATH}", json=payload)
        except httpx.HTTPError as exc:
            raise TransportError(str(exc)) from exc
        if not response.is_success:
            raise TransportError(f"HTTP {response.status_code}: {response.reason_phrase}")

    def _submit_flush(self) -> None:
        try:
            self._executor.submit(self._run_scheduled_flush)
        except Exception:
            with self._lock:
                self._flush_scheduled = False
            raise

    def _run_scheduled_flush(self) -> int:
        with self._lock:
            self._flush_scheduled = False
        return self.flush()

    def _start_timer(self) -> None:
        # Daemon thread: the timer never keeps the host process alive.
        self._timer = threading.Thread(
            target=self._run_timer,
            name="event-batcher-timer",
            daemon=True,
        )
        self._timer.start()

    def _run_timer(self) -> None:
        interval = self.flush_interval_ms / 1000
        while not self._stop.wait(interval):
            self.flush()


def _serialize(event: EventLike) -> Dict[str, Any]:
    if isinstance(event, LlmEvent):
        return event.model_dump(mode="json", exclude_none=True)
    return dict(event)
