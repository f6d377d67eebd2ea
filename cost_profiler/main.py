import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cost_profiler.api.routes_analytics import router as analytics_router
from cost_profiler.api.routes_events import router as events_router
from cost_profiler.api.routes_health import router as health_router
from cost_profiler.api.routes_stream import router as stream_router
from cost_profiler.config.logger import get_logger, setup_logging
from cost_profiler.config.settings import Settings, load_settings
from cost_profiler.core.broadcast import BroadcastManager
from cost_profiler.core.errors import (
    CapacityError,
    CounterSyncError,
    CursorFormatError,
    PersistenceError,
    RateLimitExceeded,
    ValidationError,
)
from cost_profiler.core.rate_limiter import RateLimitConfig, RateLimiter

LOGGER = get_logger("cost_profiler.request")

QUIET_PATHS = ("/health",)
STREAM_PREFIX = "/api/v1/stream"


def _json_pretty(obj: Any) -> str:
    try:
        return json.dumps(obj, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(obj)


def create_app(
    settings: Optional[Settings] = None,
    *,
    event_repository: Any = None,
    counter_store: Any = None,
    channel: Any = None,
    window_counter: Any = None,
) -> FastAPI:
    """Compose the service.

    Stores that are not passed in are built from ``settings`` when the app
    starts: Firestore for event rows and totals, Redis for the publish channel
    and the rate-limit windows.
    """

    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        firestore_client = redis_client = None
        if event_repository is None:
            from cost_profiler.core.event_repository import FirestoreEventRepository
            from cost_profiler.db.firestore import get_firestore_client

            firestore_client = get_firestore_client(
                settings.firebase_service_account_base64, settings.firestore_project_id
            )
        if channel is None or window_counter is None or counter_store is None:
            from cost_profiler.core.counters import RedisCounterStore
            from cost_profiler.core.pubsub import RedisChannel
            from cost_profiler.core.rate_limiter import RedisWindowCounter
            from cost_profiler.db.redis import SSE_CHANNEL, get_redis_client

            redis_client = get_redis_client(settings.redis_url)

        app.state.event_repository = event_repository or FirestoreEventRepository(
            firestore_client, settings.events_collection
        )
        app.state.counter_store = counter_store or RedisCounterStore(
            redis_client, settings.counters_key_prefix
        )
        app.state.channel = channel or RedisChannel(redis_client, SSE_CHANNEL)
        app.state.window_counter = window_counter or RedisWindowCounter(redis_client)
        app.state.broadcast_manager = BroadcastManager(
            app.state.counter_store,
            app.state.channel,
            max_subscribers=settings.sse_max_clients,
            heartbeat_interval=settings.sse_heartbeat_seconds,
        )
        LOGGER.info("Cost profiler service started")
        try:
            yield
        finally:
            LOGGER.info("Shutting down gracefully")
            await app.state.broadcast_manager.close()
            if redis_client is not None:
                await redis_client.aclose()
            LOGGER.info("Cost profiler service shut down")

    app = FastAPI(title="Cost Profiler", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.window_counter = window_counter
    app.state.rate_limiters = {
        "events": RateLimiter(
            RateLimitConfig(settings.events_rate_limit, settings.rate_limit_window_seconds, "rate:events")
        ),
        "analytics": RateLimiter(
            RateLimitConfig(
                settings.analytics_rate_limit, settings.rate_limit_window_seconds, "rate:analytics"
            )
        ),
    }

    app.middleware("http")(log_requests)
    _register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(events_router)
    app.include_router(stream_router)
    app.include_router(analytics_router)
    return app


async def log_requests(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id

    # Quiet health checks: skip verbose logging to reduce noise.
    if request.url.path in QUIET_PATHS:
        response = await call_next(request)
        LOGGER.debug(
            "Health check request skipped verbose logging",
            extra={"requestId": request_id, "status": response.status_code},
        )
        response.headers["X-Request-Id"] = request_id
        return response

    LOGGER.info(
        "Incoming request: %s %s (Request ID: %s)",
        request.method,
        request.url.path,
        request_id,
    )
    response = await call_next(request)

    # Rate-limit hints also ride on error responses built by the handlers.
    for name, value in (getattr(request.state, "rate_limit_headers", None) or {}).items():
        response.headers.setdefault(name, value)
    response.headers["X-Request-Id"] = request_id

    if request.url.path.startswith(STREAM_PREFIX):
        # Never buffer the event stream.
        LOGGER.info(
            "Stream opened: status %s (Request ID: %s)",
            response.status_code,
            request_id,
        )
        return response

    if not LOGGER.isEnabledFor(logging.DEBUG):
        LOGGER.info("Response status: %s (Request ID: %s)", response.status_code, request_id)
        return response

    resp_body = b""
    async for chunk in response.body_iterator:
        resp_body += chunk

    response_json: Any = None
    if resp_body:
        try:
            response_json = json.loads(resp_body.decode("utf-8"))
        except ValueError:
            response_json = resp_body.decode("utf-8", errors="ignore")

    LOGGER.info("Response status: %s (Request ID: %s)", response.status_code, request_id)
    if response_json is not None:
        LOGGER.debug(
            "Response body (Request ID: %s):\n%s",
            request_id,
            _json_pretty(response_json),
        )

    return Response(
        content=resp_body,
        status_code=response.status_code,
        headers=dict(response.headers),
        media_type=response.media_type,
        background=response.background,
    )


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "path": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        LOGGER.info("Request validation failed", extra={"path": request.url.path, "errors": len(details)})
        return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Validation failed", "message": str(exc), "details": exc.details},
        )

    @app.exception_handler(CursorFormatError)
    async def cursor_handler(request: Request, exc: CursorFormatError):
        return JSONResponse(status_code=400, content={"error": "Invalid cursor format"})

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded", "message": str(exc), "retryAfter": exc.retry_after},
            headers={**exc.headers, "Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(CapacityError)
    async def capacity_handler(request: Request, exc: CapacityError):
        return JSONResponse(status_code=503, content={"error": "Too many SSE connections"})

    @app.exception_handler(CounterSyncError)
    async def counter_sync_handler(request: Request, exc: CounterSyncError):
        LOGGER.error(
            "Realtime totals unavailable",
            extra={"requestId": _request_id(request), "error": str(exc.__cause__ or exc)},
        )
        return JSONResponse(
            status_code=503,
            content={"error": "Realtime updates unavailable", "requestId": _request_id(request)},
        )

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        return _internal_error(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"error": "Not found", "path": request.url.path})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception):
        return _internal_error(request, exc)


def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    LOGGER.error(
        "Request error",
        extra={"requestId": request_id, "method": request.method, "path": request.url.path},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "requestId": request_id},
    )


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


setup_logging()
app = create_app()
