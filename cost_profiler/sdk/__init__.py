"""Client side of the profiler: capture LLM calls and ship them in batches."""

from .batcher import EventBatcher
from .buffer import BoundedBuffer
from .error_classifier import classify_api_error
from .events import EventContext, UsageData, build_error_event, build_success_event
from .ids import generate_span_id, generate_trace_id
from .profiler import Profiler, SdkConfig, TrackedCall
from .providers import detect_provider, extract_usage

__all__ = [
    "EventBatcher",
    "BoundedBuffer",
    "classify_api_error",
    "EventContext",
    "UsageData",
    "build_error_event",
    "build_success_event",
    "generate_span_id",
    "generate_trace_id",
    "Profiler",
    "SdkConfig",
    "TrackedCall",
    "detect_provider",
    "extract_usage",
]
