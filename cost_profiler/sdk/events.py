import datetime as dt
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cost_profiler.core.pricing import calculate_cost
from cost_profiler.schemas.events import LlmEvent, Provider

from .error_classifier import classify_api_error


@dataclass(frozen=True)
class EventContext:
    trace_id: str
    span_id: str
    feature: str
    provider: Provider
    model: str
    user_id: Optional[str] = None
    parent_span_id: Optional[str] = None
    is_streaming: bool = False


@dataclass(frozen=True)
class UsageData:
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0


def build_success_event(
    ctx: EventContext,
    usage: UsageData,
    latency_ms: float,
    metadata: Optional[Dict[str, Any]] = None,
) -> LlmEvent:
    return LlmEvent(
        traceId=ctx.trace_id,
        spanId=ctx.span_id,
        parentSpanId=ctx.parent_span_id,
        feature=ctx.feature,
        userId=ctx.user_id,
        provider=ctx.provider,
        model=ctx.model,
        inputTokens=usage.input_tokens,
        outputTokens=usage.output_tokens,
        cachedTokens=usage.cached_tokens,
        latencyMs=latency_ms,
        estimatedCostUsd=calculate_cost(
            ctx.model, usage.input_tokens, usage.output_tokens, usage.cached_tokens
        ),
        timestamp=dt.datetime.now(dt.timezone.utc),
        metadata=metadata,
        isStreaming=ctx.is_streaming,
        retryCount=0,
        isError=False,
    )


def build_error_event(ctx: EventContext, latency_ms: float, error: BaseException) -> LlmEvent:
    """Failed calls are still recorded, with zero usage and the classified error."""

    return LlmEvent(
        traceId=ctx.trace_id,
        spanId=ctx.span_id,
        parentSpanId=ctx.parent_span_id,
        feature=ctx.feature,
        userId=ctx.user_id,
        provider=ctx.provider,
        model=ctx.model,
        inputTokens=0,
        outputTokens=0,
        cachedTokens=0,
        latencyMs=latency_ms,
        estimatedCostUsd=0.0,
        timestamp=dt.datetime.now(dt.timezone.utc),
        metadata={"error": str(error)},
        isStreaming=ctx.is_streaming,
        retryCount=0,
        isError=True,
        errorCode=classify_api_error(error),
    )
