import asyncio
import uuid

import pytest

from cost_profiler.core.errors import PersistenceError
from cost_profiler.core.event_processor import enrich_event, process_event_batch, summarize
from cost_profiler.core.pricing import calculate_cost
from cost_profiler.schemas.events import LlmEvent

from conftest import FakeChannel, FakeCounterStore, FakeEventRepository, make_event, utc


def _events(*overrides):
    return [LlmEvent(**make_event(**o)) for o in overrides]


class TestEnrichEvent:
    def test_verified_cost_replaces_client_estimate(self):
        event = LlmEvent(**make_event(estimatedCostUsd=999.0, cachedTokens=200))
        row = enrich_event(event, project_id="proj")

        assert row["verifiedCostUsd"] == calculate_cost("gpt-4o", 1000, 500, 200)
        assert row["estimatedCostUsd"] == 999.0
        assert row["projectId"] == "proj"
        assert row["isCacheHit"] is True
        assert row["latencyMs"] == 120
        assert row["createdAt"] == utc(2026, 1, 15, 10, 0, 0)
        assert "timestamp" not in row
        uuid.UUID(row["id"])

    def test_ids_are_unique(self):
        event = LlmEvent(**make_event())
        assert enrich_event(event)["id"] != enrich_event(event)["id"]


def test_summarize_counts_input_and_output_tokens():
    rows = [
        {"verifiedCostUsd": 0.1, "inputTokens": 10, "outputTokens": 5},
        {"verifiedCostUsd": 0.2, "inputTokens": 1, "outputTokens": 2},
    ]
    delta = summarize(rows)
    assert delta.cost == pytest.approx(0.3)
    assert delta.requests == 2
    assert delta.tokens == 18


@pytest.mark.asyncio
async def test_batch_persisted_then_counted_then_published():
    repository, counters, channel = FakeEventRepository(), FakeCounterStore(), FakeChannel()
    events = _events({"spanId": "sp_1"}, {"spanId": "sp_2", "model": "unknown-model"})

    delta = await process_event_batch(events, repository=repository, counters=counters, channel=channel)

    assert [row["spanId"] for row in repository.rows] == ["sp_1", "sp_2"]
    assert repository.insert_calls == 1
    expected_cost = round(
        calculate_cost("gpt-4o", 1000, 500) + calculate_cost("unknown-model", 1000, 500), 6
    )
    assert counters.increment_calls == [(expected_cost, 2, 3000)]
    assert delta.cost == expected_cost

    assert len(channel.published) == 1
    message = channel.published[0]
    assert message["type"] == "cost_update"
    assert message["data"]["costDelta"] == expected_cost
    assert message["data"]["requestsDelta"] == 2
    assert message["data"]["tokensDelta"] == 3000


@pytest.mark.asyncio
async def test_persistence_failure_has_no_side_effects():
    repository, counters, channel = FakeEventRepository(), FakeCounterStore(), FakeChannel()
    repository.fail_with = RuntimeError("deadline exceeded on projects/secret-project")

    with pytest.raises(PersistenceError) as excinfo:
        await process_event_batch(_events({}), repository=repository, counters=counters, channel=channel)

    assert "secret-project" not in str(excinfo.value)
    assert counters.increment_calls == []
    assert channel.published == []


@pytest.mark.asyncio
async def test_counter_failure_is_logged_not_raised_and_skips_publish():
    repository, counters, channel = FakeEventRepository(), FakeCounterStore(), FakeChannel()
    counters.fail_increment = ConnectionError("firestore unavailable")

    delta = await process_event_batch(_events({}), repository=repository, counters=counters, channel=channel)

    assert delta.requests == 1
    assert len(repository.rows) == 1
    assert channel.published == []


@pytest.mark.asyncio
async def test_publish_failure_keeps_rows_and_counters():
    repository, counters, channel = FakeEventRepository(), FakeCounterStore(), FakeChannel()
    channel.fail_publish = ConnectionError("redis down")

    await process_event_batch(_events({}), repository=repository, counters=counters, channel=channel)

    assert len(repository.rows) == 1
    assert counters.requests == 1


@pytest.mark.asyncio
async def test_concurrent_batches_never_lose_updates():
    repository, counters, channel = FakeEventRepository(), FakeCounterStore(), FakeChannel()
    per_batch = calculate_cost("gpt-4o", 1000, 500)

    await asyncio.gather(
        *[
            process_event_batch(_events({}), repository=repository, counters=counters, channel=channel)
            for _ in range(50)
        ]
    )

    assert counters.requests == 50
    assert counters.tokens == 50 * 1500
    assert counters.cost == pytest.approx(50 * per_batch)
    assert len(channel.published) == 50
