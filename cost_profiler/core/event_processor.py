import datetime as dt
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from cost_profiler.config.logger import get_logger
from cost_profiler.schemas.events import LlmEvent

from .errors import CounterSyncError, PersistenceError
from .pricing import calculate_cost

LOGGER = get_logger("cost_profiler.event_processor")


@dataclass(frozen=True)
class BatchDelta:
    cost: float
    requests: int
    tokens: int

    def to_message(self, timestamp: dt.datetime) -> Dict[str, Any]:
        return {
            "type": "cost_update",
            "data": {
                "costDelta": self.cost,
                "requestsDelta": self.requests,
                "tokensDelta": self.tokens,
                "timestamp": timestamp.isoformat(),
            },
        }


def enrich_event(event: LlmEvent, project_id: str = "default") -> Dict[str, Any]:
    """Build the persisted row for one event, with the server-side verified cost."""

    verified_cost = calculate_cost(
        event.model,
        event.inputTokens,
        event.outputTokens,
        event.cachedTokens,
    )
    row = event.model_dump()
    row.pop("timestamp", None)
    row.update(
        {
            "id": str(uuid.uuid4()),
            "projectId": project_id,
            "latencyMs": int(round(event.latencyMs)),
            "verifiedCostUsd": verified_cost,
            "isCacheHit": event.cachedTokens > 0,
            "createdAt": _as_utc(event.timestamp),
        }
    )
    return row


def summarize(rows: Sequence[Dict[str, Any]]) -> BatchDelta:
    total_cost = sum(row["verifiedCostUsd"] for row in rows)
    total_tokens = sum(row["inputTokens"] + row["outputTokens"] for row in rows)
    return BatchDelta(cost=round(total_cost, 6), requests=len(rows), tokens=total_tokens)


async def process_event_batch(
    events: Sequence[LlmEvent],
    *,
    repository: Any,
    counters: Any,
    channel: Any,
    project_id: str = "default",
) -> BatchDelta:
    """Persist a validated batch, then bump the live totals and publish the delta.

    The row write is the source of truth: if it fails nothing else happens and
    ``PersistenceError`` is raised. Counter and publish failures afterwards are
    logged and swallowed. The delta is published only once the counters have
    moved, so a snapshot read after any delta is at least as fresh.
    """

    rows: List[Dict[str, Any]] = [enrich_event(event, project_id) for event in events]

    try:
        await repository.insert_events(rows)
    except Exception as exc:
        LOGGER.error(
            "Event batch persistence failed",
            extra={"batchSize": len(rows), "error": str(exc)},
        )
        raise PersistenceError("Failed to persist event batch") from exc

    delta = summarize(rows)
    try:
        await _sync_counters(delta, counters, channel)
    except CounterSyncError as exc:
        LOGGER.warning(
            "Realtime counters out of sync after persisted batch",
            extra={"batchSize": len(rows), "error": str(exc.__cause__ or exc)},
        )

    LOGGER.info(
        "Processed event batch",
        extra={"batchSize": len(rows), "totalCost": delta.cost, "totalTokens": delta.tokens},
    )
    return delta


async def _sync_counters(delta: BatchDelta, counters: Any, channel: Any) -> None:
    try:
        await counters.increment(delta.cost, delta.requests, delta.tokens)
    except Exception as exc:
        raise CounterSyncError("Counter increment failed") from exc
    try:
        await channel.publish(delta.to_message(dt.datetime.now(dt.timezone.utc)))
    except Exception as exc:
        raise CounterSyncError("Delta publish failed") from exc


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)
