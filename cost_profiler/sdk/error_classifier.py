from typing import Any, Optional


def classify_api_error(error: Any) -> str:
    """Map a provider SDK exception onto a telemetry error code."""

    status = _status_of(error)
    code = getattr(error, "code", None)
    message = str(error) if error is not None else ""

    if status == 429 or "RESOURCE_EXHAUSTED" in message:
        return "rate_limit"
    if code == "ETIMEDOUT" or isinstance(error, TimeoutError) or "timeout" in message.lower():
        return "timeout"
    if status == 503 or "UNAVAILABLE" in message or (status is not None and status >= 500):
        return "server_error"
    if status in (400, 401, 403) or "INVALID_ARGUMENT" in message:
        return "invalid_request"
    return "unknown_error"


def _status_of(error: Any) -> Optional[int]:
    for attr in ("status_code", "status", "http_status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None
