import anyio
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from cost_profiler.api.deps import get_broadcast_manager
from cost_profiler.config.logger import get_logger
from cost_profiler.core.broadcast import BroadcastManager, Subscriber

router = APIRouter(prefix="/api/v1/stream")
LOGGER = get_logger("cost_profiler.routes.stream")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/costs")
async def stream_costs(manager: BroadcastManager = Depends(get_broadcast_manager)) -> StreamingResponse:
    # Capacity and snapshot failures raise here, before any byte is streamed.
    subscriber = await manager.add_subscriber()
    return StreamingResponse(
        _frames(manager, subscriber),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _frames(manager: BroadcastManager, subscriber: Subscriber):
    try:
        while True:
            frame = await subscriber.next_frame()
            if frame is None:
                break
            yield frame
    finally:
        # A client disconnect cancels this generator; the teardown must still
        # release the upstream subscription when this was the last stream.
        with anyio.CancelScope(shield=True):
            await manager.remove_subscriber(subscriber)
