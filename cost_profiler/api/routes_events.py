from typing import Any

from fastapi import APIRouter, Depends, status

from cost_profiler.api.deps import (
    get_channel,
    get_counter_store,
    get_event_repository,
    get_settings,
    limit_events,
)
from cost_profiler.config.logger import get_logger
from cost_profiler.config.settings import Settings
from cost_profiler.core.event_processor import process_event_batch
from cost_profiler.schemas.events import BatchEventRequest
from cost_profiler.schemas.responses import IngestResponse

router = APIRouter(prefix="/api/v1/events", dependencies=[Depends(limit_events)])
LOGGER = get_logger("cost_profiler.routes.events")


@router.post("", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_events(
    payload: BatchEventRequest,
    repository: Any = Depends(get_event_repository),
    counters: Any = Depends(get_counter_store),
    channel: Any = Depends(get_channel),
    settings: Settings = Depends(get_settings),
) -> IngestResponse:
    await process_event_batch(
        payload.events,
        repository=repository,
        counters=counters,
        channel=channel,
        project_id=settings.project_id,
    )
    LOGGER.info("Events ingested", extra={"count": len(payload.events)})
    return IngestResponse(success=True, count=len(payload.events))
