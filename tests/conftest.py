import datetime as dt
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from cost_profiler.config.settings import Settings
from cost_profiler.core.counters import CounterSnapshot
from cost_profiler.main import create_app


def make_event(**overrides: Any) -> Dict[str, Any]:
    event = {
        "traceId": "tr_abc",
        "spanId": "sp_001",
        "feature": "chat",
        "provider": "openai",
        "model": "gpt-4o",
        "inputTokens": 1000,
        "outputTokens": 500,
        "cachedTokens": 0,
        "latencyMs": 120.4,
        "estimatedCostUsd": 0.0075,
        "timestamp": "2026-01-15T10:00:00Z",
    }
    event.update(overrides)
    return event


class FakeEventRepository:
    def __init__(self) -> None:
        self.rows: List[Dict[str, Any]] = []
        self.insert_calls = 0
        self.fail_with: Optional[Exception] = None
        self.last_query = None

    async def insert_events(self, rows):
        self.insert_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.rows.extend(rows)

    async def list_events(self, query):
        self.last_query = query
        matched = [
            row
            for row in self.rows
            if query.start <= row["createdAt"] < query.end
            and all(row.get(name) == value for name, value in query.filters.items())
        ]
        matched.sort(key=lambda row: (row["createdAt"], row["id"]), reverse=True)
        if query.cursor is not None:
            ts, row_id = query.cursor.timestamp, query.cursor.id
            matched = [
                row
                for row in matched
                if row["createdAt"] < ts or (row["createdAt"] == ts and row["id"] < row_id)
            ]
        return matched[: query.limit]


class FakeCounterStore:
    def __init__(self) -> None:
        self.cost = 0.0
        self.requests = 0
        self.tokens = 0
        self.increment_calls: List[Tuple[float, int, int]] = []
        self.fail_increment: Optional[Exception] = None
        self.fail_snapshot: Optional[Exception] = None

    async def increment(self, cost, requests, tokens):
        if self.fail_increment is not None:
            raise self.fail_increment
        self.increment_calls.append((cost, requests, tokens))
        self.cost += cost
        self.requests += requests
        self.tokens += tokens

    async def snapshot(self):
        if self.fail_snapshot is not None:
            raise self.fail_snapshot
        return CounterSnapshot(self.cost, self.requests, self.tokens)


class FakeChannel:
    def __init__(self) -> None:
        self.published: List[Dict[str, Any]] = []
        self.subscribe_calls = 0
        self.unsubscribe_calls = 0
        self.handler = None
        self.fail_publish: Optional[Exception] = None

    async def publish(self, message):
        if self.fail_publish is not None:
            raise self.fail_publish
        self.published.append(message)
        return 1

    async def subscribe(self, handler):
        self.subscribe_calls += 1
        self.handler = handler

    async def unsubscribe(self):
        self.unsubscribe_calls += 1
        self.handler = None


class FakeWindowCounter:
    def __init__(self, ttl: int = 42) -> None:
        self.counts: Dict[str, int] = {}
        self.ttl = ttl
        self.fail_with: Optional[Exception] = None

    async def hit(self, key, window_seconds):
        if self.fail_with is not None:
            raise self.fail_with
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key], self.ttl


def utc(*args: int) -> dt.datetime:
    return dt.datetime(*args, tzinfo=dt.timezone.utc)


@pytest.fixture
def repository():
    return FakeEventRepository()


@pytest.fixture
def counters():
    return FakeCounterStore()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def window_counter():
    return FakeWindowCounter()


@pytest.fixture
def settings():
    return Settings(
        events_rate_limit=1000,
        analytics_rate_limit=1000,
        sse_max_clients=2,
        sse_heartbeat_seconds=30,
    )


@pytest.fixture
def app(settings, repository, counters, channel, window_counter):
    return create_app(
        settings,
        event_repository=repository,
        counter_store=counters,
        channel=channel,
        window_counter=window_counter,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
