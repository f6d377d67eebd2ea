import os
from dataclasses import dataclass
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Server configuration, read from the environment once at startup."""

    redis_url: str = "redis://localhost:6379/0"
    firebase_service_account_base64: Optional[str] = None
    firestore_project_id: Optional[str] = None
    events_collection: str = "events"
    counters_key_prefix: str = "realtime"
    project_id: str = "default"
    events_rate_limit: int = 5000
    analytics_rate_limit: int = 1000
    rate_limit_window_seconds: int = 60
    sse_max_clients: int = 100
    sse_heartbeat_seconds: int = 30


def load_settings() -> Settings:
    return Settings(
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        firebase_service_account_base64=os.getenv("FIREBASE_SERVICE_ACCOUNT_BASE64") or None,
        firestore_project_id=os.getenv("FIRESTORE_PROJECT_ID") or None,
        events_collection=os.getenv("FIRESTORE_EVENTS_COLLECTION", "events"),
        counters_key_prefix=os.getenv("REDIS_COUNTERS_PREFIX", "realtime"),
        project_id=os.getenv("PROJECT_ID", "default"),
        events_rate_limit=_int_env("EVENTS_RATE_LIMIT", 5000),
        analytics_rate_limit=_int_env("ANALYTICS_RATE_LIMIT", 1000),
        rate_limit_window_seconds=_int_env("RATE_LIMIT_WINDOW_SECONDS", 60),
        sse_max_clients=_int_env("SSE_MAX_CLIENTS", 100),
        sse_heartbeat_seconds=_int_env("SSE_HEARTBEAT_SECONDS", 30),
    )
