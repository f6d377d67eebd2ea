import datetime as dt

from fastapi import APIRouter

from cost_profiler.config.logger import get_logger

router = APIRouter()
LOGGER = get_logger("cost_profiler.routes.health")


@router.get("/health")
async def health_check() -> dict:
    LOGGER.debug("Health check requested")
    return {"status": "ok", "timestamp": dt.datetime.now(dt.timezone.utc).isoformat()}
