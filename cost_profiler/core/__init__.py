"""Server-side pipeline: enrichment, live counters, fan-out, admission control."""

from .broadcast import BroadcastManager, Subscriber
from .errors import (
    CapacityError,
    CounterSyncError,
    CursorFormatError,
    PersistenceError,
    ProfilerError,
    RateLimitExceeded,
    TransportError,
    UnsupportedProviderError,
    ValidationError,
)
from .event_processor import enrich_event, process_event_batch
from .pagination import decode_cursor, encode_cursor, format_page, parse_limit
from .pricing import DEFAULT_PRICING, MODEL_PRICING, ModelPricing, calculate_cost, lookup_pricing
from .rate_limiter import RateLimitConfig, RateLimiter

__all__ = [
    "BroadcastManager",
    "Subscriber",
    "CapacityError",
    "CounterSyncError",
    "CursorFormatError",
    "PersistenceError",
    "ProfilerError",
    "RateLimitExceeded",
    "TransportError",
    "UnsupportedProviderError",
    "ValidationError",
    "enrich_event",
    "process_event_batch",
    "decode_cursor",
    "encode_cursor",
    "format_page",
    "parse_limit",
    "DEFAULT_PRICING",
    "MODEL_PRICING",
    "ModelPricing",
    "calculate_cost",
    "lookup_pricing",
    "RateLimitConfig",
    "RateLimiter",
]
