import datetime as dt
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from cost_profiler.api.deps import get_counter_store, get_event_repository, limit_analytics
from cost_profiler.config.logger import get_logger
from cost_profiler.core.errors import ValidationError
from cost_profiler.core.event_repository import EventQuery
from cost_profiler.core.pagination import decode_cursor, format_page, parse_limit
from cost_profiler.schemas.responses import EventListResponse, RealtimeTotals

router = APIRouter(prefix="/api/v1/analytics", dependencies=[Depends(limit_analytics)])
LOGGER = get_logger("cost_profiler.routes.analytics")


@router.get("/events", response_model=EventListResponse)
async def list_events(
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: Optional[str] = None,
    feature: Optional[str] = None,
    model: Optional[str] = None,
    provider: Optional[str] = None,
    userId: Optional[str] = None,
    repository: Any = Depends(get_event_repository),
) -> dict:
    start, end = parse_date_range(from_, to)
    page_size = parse_limit(limit)
    query = EventQuery(
        start=start,
        end=end,
        limit=page_size + 1,
        cursor=decode_cursor(cursor) if cursor else None,
        filters={
            name: value
            for name, value in (
                ("feature", feature),
                ("model", model),
                ("provider", provider),
                ("userId", userId),
            )
            if value
        },
    )
    rows = await repository.list_events(query)
    LOGGER.info(
        "Events listed",
        extra={"count": min(len(rows), page_size), "limit": page_size, "filters": query.filters},
    )
    return format_page(rows, page_size)


@router.get("/realtime-totals", response_model=RealtimeTotals)
async def realtime_totals(counters: Any = Depends(get_counter_store)) -> dict:
    snapshot = await counters.snapshot()
    return snapshot.to_dict()


def parse_date_range(start: Optional[str], end: Optional[str]):
    if not start or not end:
        raise ValidationError(
            "from and to parameters are required",
            details=[
                {"path": name, "message": "Required"}
                for name, value in (("from", start), ("to", end))
                if not value
            ],
        )
    parsed = {}
    for name, value in (("from", start), ("to", end)):
        try:
            parsed[name] = _as_utc(dt.datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            raise ValidationError(
                f'Invalid "{name}" date format',
                details=[{"path": name, "message": "Expected an ISO-8601 timestamp"}],
            ) from None
    if parsed["from"] >= parsed["to"]:
        raise ValidationError(
            '"from" must be before "to"',
            details=[{"path": "from", "message": '"from" must be before "to"'}],
        )
    return parsed["from"], parsed["to"]


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)
