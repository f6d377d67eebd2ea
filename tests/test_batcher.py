import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from cost_profiler.sdk.batcher import EventBatcher
from cost_profiler.sdk.events import EventContext, UsageData, build_success_event


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.submitted = 0
        self.shut_down = False

    def submit(self, fn, *args):
        self.submitted += 1
        return fn(*args)

    def shutdown(self, wait=True):
        self.shut_down = True


class Server:
    def __init__(self, status=202):
        self.status = status
        self.batches = []
        self.raise_error = False
        self.on_request = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.on_request is not None:
            self.on_request()
        if self.raise_error:
            raise httpx.ConnectError("connection refused", request=request)
        self.batches.append(json.loads(request.content)["events"])
        return httpx.Response(self.status, json={"success": self.status < 300})


@pytest.fixture
def server():
    return Server()


def make_batcher(server, **kwargs):
    options = {
        "batch_size": 3,
        "max_buffer_size": 100,
        "client": httpx.Client(transport=httpx.MockTransport(server)),
        "executor": InlineExecutor(),
        "start_timer": False,
    }
    options.update(kwargs)
    return EventBatcher("http://collector.local/", **options)


def test_flushes_each_full_batch(server):
    batcher = make_batcher(server)

    for i in range(7):
        batcher.add({"n": i})

    assert [[e["n"] for e in batch] for batch in server.batches] == [[0, 1, 2], [3, 4, 5]]
    assert [e["n"] for e in batcher.pending()] == [6]


def test_posts_to_ingest_endpoint():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(202)

    batcher = make_batcher(None, client=httpx.Client(transport=httpx.MockTransport(handler)), batch_size=1)
    batcher.add({"n": 1})

    assert seen == ["http://collector.local/api/v1/events"]


def test_overflow_drops_oldest(server):
    batcher = make_batcher(server, batch_size=50, max_buffer_size=5)

    for i in range(8):
        batcher.add({"n": i})

    assert [e["n"] for e in batcher.pending()] == [3, 4, 5, 6, 7]
    assert server.batches == []


def test_failed_batch_is_rebuffered_in_order(server):
    server.status = 500
    batcher = make_batcher(server)

    for i in range(3):
        batcher.add({"n": i})

    assert len(server.batches) == 1
    assert [e["n"] for e in batcher.pending()] == [0, 1, 2]

    server.status = 202
    assert batcher.flush() == 3
    assert len(batcher) == 0


def test_transport_error_is_absorbed(server):
    server.raise_error = True
    batcher = make_batcher(server)

    for i in range(3):
        batcher.add({"n": i})

    assert [e["n"] for e in batcher.pending()] == [0, 1, 2]


def test_flush_does_not_overlap(server):
    batcher = make_batcher(server, batch_size=2)
    nested = []
    server.on_request = lambda: nested.append(batcher.flush())

    batcher.add({"n": 0})
    batcher.add({"n": 1})

    assert nested == [0]
    assert len(server.batches) == 1


def test_flush_on_empty_buffer_sends_nothing(server):
    batcher = make_batcher(server)
    assert batcher.flush() == 0
    assert server.batches == []


def test_destroy_sends_remaining_events_once(server):
    batcher = make_batcher(server, batch_size=10)
    for i in range(4):
        batcher.add({"n": i})

    batcher.destroy()
    batcher.destroy()

    assert len(server.batches) == 1
    assert len(server.batches[0]) == 4


def test_destroy_leaves_injected_executor_running(server):
    executor = InlineExecutor()
    make_batcher(server, executor=executor).destroy()
    assert not executor.shut_down


def test_destroy_with_empty_buffer_sends_nothing(server):
    make_batcher(server).destroy()
    assert server.batches == []


def test_add_after_destroy_does_not_schedule(server):
    batcher = make_batcher(server, batch_size=1)
    batcher.destroy()
    batcher.add({"n": 1})

    assert batcher._executor.submitted == 0
    assert len(batcher) == 1


def test_events_are_serialized_as_json(server):
    batcher = make_batcher(server, batch_size=1)
    ctx = EventContext(trace_id="tr_1", span_id="sp_1", feature="chat", provider="openai", model="gpt-4o")

    batcher.add(build_success_event(ctx, UsageData(input_tokens=10, output_tokens=5), 12.5))

    sent = server.batches[0][0]
    assert sent["traceId"] == "tr_1"
    assert sent["inputTokens"] == 10
    assert isinstance(sent["timestamp"], str)
    assert "parentSpanId" not in sent


def test_timer_flushes_partial_batch(server):
    batcher = make_batcher(server, batch_size=100, flush_interval_ms=20, start_timer=True)
    try:
        batcher.add({"n": 1})
        deadline = time.monotonic() + 2
        while not server.batches and time.monotonic() < deadline:
            time.sleep(0.01)
        assert server.batches == [[{"n": 1}]]
    finally:
        batcher.destroy()


class CountingExecutor:
    def __init__(self):
        self.pool = ThreadPoolExecutor(max_workers=1)
        self.submitted = 0

    def submit(self, fn, *args):
        self.submitted += 1
        return self.pool.submit(fn, *args)

    def shutdown(self, wait=True, cancel_futures=False):
        self.pool.shutdown(wait=wait, cancel_futures=cancel_futures)


class StalledServer:
    """Holds every request until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.requests = 0

    def __call__(self, request):
        self.requests += 1
        self.started.set()
        self.release.wait(5)
        return httpx.Response(202)


def test_stalled_transport_keeps_one_flush_pending():
    server = StalledServer()
    executor = CountingExecutor()
    batcher = make_batcher(
        None,
        client=httpx.Client(transport=httpx.MockTransport(server)),
        executor=executor,
        batch_size=10,
        max_buffer_size=1000,
    )
    try:
        for i in range(10):
            batcher.add({"n": i})
        assert server.started.wait(2)

        for i in range(20000):
            batcher.add({"n": i})

        assert executor.submitted == 2
        assert len(batcher) == 1000
    finally:
        server.release.set()
        batcher.destroy()
        executor.shutdown()


def test_destroy_does_not_replay_queued_flushes():
    server = StalledServer()
    batcher = EventBatcher(
        "http://collector.local",
        batch_size=10,
        max_buffer_size=1000,
        client=httpx.Client(transport=httpx.MockTransport(server)),
        start_timer=False,
    )
    for i in range(10):
        batcher.add({"n": i})
    assert server.started.wait(2)
    for i in range(5000):
        batcher.add({"n": i})

    server.release.set()
    batcher.destroy()

    # the stalled send, at most one queued flush, and the final flush
    assert server.requests <= 3
