"""Tests for the run governor and the batch scan loop."""

import pytest

from event_agents.core.governor import RunGovernor, scan_batches
from conftest import make_event


def _batches(*sizes, start=0):
    out, n = [], start
    for size in sizes:
        out.append([make_event(f"e{n + i}", n + i) for i in range(size)])
        n += size
    return out


def _fetcher(batches, clock=None, cost_ms=0):
    calls = []

    async def fetch(index):
        calls.append(index)
        if clock is not None:
            clock.advance_ms(cost_ms)
        return batches[index] if index < len(batches) else []

    fetch.calls = calls
    return fetch


def _largest(events, index):
    return events


def _bigger(candidate, current):
    return len(candidate) > len(current)


def test_remaining_and_exceeded(clock):
    gov = RunGovernor(7000, clock=clock)
    assert gov.remaining_ms() == 7000
    clock.advance_ms(6500)
    assert gov.elapsed_ms() == 6500
    assert gov.remaining_ms() == 500
    assert not gov.time_exceeded()
    clock.advance_ms(500)
    assert gov.time_exceeded()
    assert gov.remaining_ms() == 0


def test_first_batch_ignores_safety_floor(clock):
    gov = RunGovernor(7000, clock=clock, safety_floor_ms=1000)
    clock.advance_ms(6500)
    assert gov.should_fetch()
    gov.checkpoint([make_event("a")])
    assert not gov.should_fetch()
    assert gov.stop_reason == "safety_floor"


def test_exceeded_budget_stops_before_fetch(clock):
    gov = RunGovernor(7000, clock=clock)
    clock.advance_ms(7000)
    assert not gov.should_fetch()
    assert gov.stop_reason == "time_exceeded"


def test_single_batch_allows_exactly_one(clock):
    gov = RunGovernor(7000, clock=clock, single_batch=True)
    clock.advance_ms(10_000)
    assert gov.should_fetch()
    gov.checkpoint([])
    assert not gov.should_fetch()
    assert gov.stop_reason == "single_batch"


def test_checkpoint_tracks_watermark(clock):
    gov = RunGovernor(7000, clock=clock)
    gov.checkpoint([make_event("a", 5), make_event("b", 1)])
    gov.checkpoint([make_event("c", 3)])
    assert gov.batches_completed == 2
    assert gov.nodes_processed == 3
    assert gov.latest_timestamp == make_event("a", 5).timestamp


@pytest.mark.asyncio
async def test_empty_first_batch_ends_cleanly(clock):
    gov = RunGovernor(7000, clock=clock)
    fetch = _fetcher([])
    outcome = await scan_batches(gov, fetch, _largest, _bigger)
    assert outcome.best is None
    assert outcome.batches_completed == 0
    assert outcome.nodes_processed == 0
    assert outcome.latest_timestamp == 0
    assert outcome.stop_reason == "exhausted"
    assert fetch.calls == [0]


@pytest.mark.asyncio
async def test_keeps_best_across_batches(clock):
    gov = RunGovernor(7000, clock=clock)
    outcome = await scan_batches(gov, _fetcher(_batches(2, 5, 3)), _largest, _bigger)
    assert len(outcome.best) == 5
    assert outcome.batches_completed == 3
    assert outcome.nodes_processed == 10
    assert outcome.stop_reason == "exhausted"


@pytest.mark.asyncio
async def test_ties_keep_earlier_candidate(clock):
    gov = RunGovernor(7000, clock=clock)
    batches = _batches(3, 3)
    outcome = await scan_batches(gov, _fetcher(batches), _largest, _bigger)
    assert outcome.best is batches[0]


@pytest.mark.asyncio
async def test_budget_stops_loop_and_keeps_best(clock):
    gov = RunGovernor(7000, clock=clock, safety_floor_ms=1000)
    fetch = _fetcher(_batches(4, 4, 4, 4, 4), clock=clock, cost_ms=2500)
    outcome = await scan_batches(gov, fetch, _largest, _bigger)
    # 2500, 5000 elapsed after two batches; 2000 ms left is above the floor,
    # 7500 after the third exceeds the budget
    assert fetch.calls == [0, 1, 2]
    assert outcome.batches_completed == 3
    assert outcome.stop_reason == "time_exceeded"
    assert outcome.best is not None


@pytest.mark.asyncio
async def test_safety_floor_stops_loop(clock):
    gov = RunGovernor(7000, clock=clock, safety_floor_ms=1000)
    fetch = _fetcher(_batches(2, 2, 2), clock=clock, cost_ms=3200)
    outcome = await scan_batches(gov, fetch, _largest, _bigger)
    # 6400 ms elapsed after two batches leaves 600 ms, under the floor
    assert fetch.calls == [0, 1]
    assert outcome.stop_reason == "safety_floor"


@pytest.mark.asyncio
async def test_fetch_errors_propagate(clock):
    gov = RunGovernor(7000, clock=clock)

    async def fetch(index):
        raise RuntimeError("store down")

    with pytest.raises(RuntimeError):
        await scan_batches(gov, fetch, _largest, _bigger)


@pytest.mark.asyncio
async def test_single_batch_scan(clock):
    gov = RunGovernor(7000, clock=clock, single_batch=True)
    fetch = _fetcher(_batches(3, 3))
    outcome = await scan_batches(gov, fetch, _largest, _bigger)
    assert fetch.calls == [0]
    assert outcome.batches_completed == 1
    assert outcome.stop_reason == "single_batch"


@pytest.mark.asyncio
async def test_none_candidates_ignored(clock):
    gov = RunGovernor(7000, clock=clock)
    outcome = await scan_batches(
        gov, _fetcher(_batches(2, 2)), lambda events, index: None, _bigger,
    )
    assert outcome.best is None
    assert outcome.batches_completed == 2
