import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

from cost_profiler.config.logger import get_logger
from cost_profiler.schemas.events import Provider

from .batcher import EventBatcher
from .events import EventContext, UsageData, build_error_event, build_success_event
from .ids import generate_span_id, generate_trace_id
from .providers import detect_provider, extract_usage

LOGGER = get_logger("cost_profiler.sdk.profiler")


@dataclass(frozen=True)
class SdkConfig:
    server_url: str
    feature: str
    user_id: Optional[str] = None
    batch_size: int = 10
    flush_interval_ms: int = 5000
    max_buffer_size: int = 1000
    timeout_s: float = 10.0
    enabled: bool = True


class TrackedCall:
    """Handle yielded by ``Profiler.track``; the caller reports usage on it."""

    def __init__(self, ctx: EventContext):
        self.ctx = ctx
        self.usage = UsageData()
        self.metadata: Optional[Dict[str, Any]] = None

    def set_usage(self, input_tokens: int = 0, output_tokens: int = 0, cached_tokens: int = 0) -> None:
        self.usage = UsageData(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_tokens=cached_tokens,
        )

    def record_response(self, response: Any) -> None:
        self.usage = extract_usage(self.ctx.provider, response)


class Profiler:
    """Records one event per tracked LLM call and hands it to an ``EventBatcher``."""

    def __init__(self, config: SdkConfig, batcher: Optional[EventBatcher] = None):
        self.config = config
        self.batcher: Optional[EventBatcher] = None
        if config.enabled:
            self.batcher = batcher or EventBatcher(
                config.server_url,
                batch_size=config.batch_size,
                flush_interval_ms=config.flush_interval_ms,
                max_buffer_size=config.max_buffer_size,
                timeout_s=config.timeout_s,
            )

    @contextmanager
    def track(
        self,
        model: str,
        provider: Optional[Provider] = None,
        client: Any = None,
        trace_id: Optional[str] = None,
        parent_span_id: Optional[str] = None,
        streaming: bool = False,
    ) -> Iterator[TrackedCall]:
        """Time the wrapped block and record it as one event.

        ``provider`` may be omitted when ``client`` is given; it is then
        classified with ``detect_provider``. Exceptions from the block are
        recorded as error events and re-raised unchanged.
        """

        ctx = EventContext(
            trace_id=trace_id or generate_trace_id(),
            span_id=generate_span_id(),
            feature=self.config.feature,
            provider=provider or detect_provider(client),
            model=model,
            user_id=self.config.user_id,
            parent_span_id=parent_span_id,
            is_streaming=streaming,
        )
        call = TrackedCall(ctx)
        started = time.perf_counter()
        try:
            yield call
        except Exception as exc:
            self._record(build_error_event(ctx, _elapsed_ms(started), exc))
            raise
        self._record(build_success_event(ctx, call.usage, _elapsed_ms(started), call.metadata))

    def invoke(
        self,
        fn: Callable[..., Any],
        /,
        *args: Any,
        provider: Optional[Provider] = None,
        trace_id: Optional[str] = None,
        parent_span_id: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        """Call an SDK method and record its usage, e.g.
        ``profiler.invoke(client.chat.completions.create, model="gpt-4o", messages=[...])``.

        The model is taken from the ``model`` keyword and the provider from the
        client ``fn`` is bound to, unless ``provider`` is given.
        """

        model = kwargs.get("model")
        if not model:
            raise ValueError("invoke() needs the model passed as the 'model' keyword")
        with self.track(
            model,
            provider=provider or detect_provider(fn),
            trace_id=trace_id,
            parent_span_id=parent_span_id,
            streaming=bool(kwargs.get("stream")),
        ) as call:
            response = fn(*args, **kwargs)
            call.record_response(response)
        return response

    def shutdown(self) -> None:
        if self.batcher is not None:
            self.batcher.destroy()

    def _record(self, event) -> None:
        if self.batcher is None:
            return
        self.batcher.add(event)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
