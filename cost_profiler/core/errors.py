from typing import Any, Dict, List, Optional


class ProfilerError(Exception):
    """Base class for every error raised by the profiling pipeline."""


class ValidationError(ProfilerError):
    """Malformed or out-of-range batch or query. Surfaced to the caller, never retried."""

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.details = details or []


class TransportError(ProfilerError):
    """Client batcher could not deliver a batch to the ingestion endpoint."""


class PersistenceError(ProfilerError):
    """Durable-store write failed; the request had no side effects."""


class CounterSyncError(ProfilerError):
    """Counter increment or publish failed after rows were persisted."""


class CursorFormatError(ProfilerError):
    """Pagination token could not be decoded."""


class CapacityError(ProfilerError):
    """Live subscriber limit reached."""

    def __init__(self, active: int, limit: int):
        super().__init__(f"Subscriber limit reached ({active}/{limit})")
        self.active = active
        self.limit = limit


class RateLimitExceeded(ProfilerError):
    def __init__(self, limit: int, window_seconds: int, retry_after: int, headers: Dict[str, str]):
        super().__init__(f"Too many requests. Limit: {limit} per {window_seconds}s")
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = retry_after
        self.headers = headers


class UnsupportedProviderError(ProfilerError):
    """Client object does not belong to a supported LLM provider."""
