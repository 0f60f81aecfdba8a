"""Shared builders and in-memory doubles for the agent tests."""

from __future__ import annotations

import pytest

from event_agents.models import Event, FetchCriteria

BASE_TS = 1_700_000_000_000  # 2023-11-14 22:13:20 UTC


def make_event(id: str, minutes: float = 0, **kwargs) -> Event:
    defaults = dict(
        id=id,
        event_id=f"evt-{id}",
        timestamp=BASE_TS + int(minutes * 60_000),
        channel_id="cam-1",
        channel_name="Camera 1",
        region="North",
        annotated_at="2023-11-14T23:00:00+00:00",
    )
    defaults.update(kwargs)
    return Event(**defaults)


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000


class FakeEventGraph:
    """In-memory stand-in for GraphStore with the same ordering rules.

    Put a method name in ``fail_on`` to make that call raise RuntimeError.
    """

    def __init__(self, events: list[Event] | None = None) -> None:
        self.events: dict[str, Event] = {e.id: e for e in events or []}
        self.tags: dict[str, list[tuple[str, str]]] = {}
        self.fail_on: set[str] = set()
        self.fetches: list[FetchCriteria] = []
        self.apply_calls = 0

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise RuntimeError(f"{name} unavailable")

    def add(self, *events: Event) -> None:
        for e in events:
            self.events[e.id] = e

    def tag(self, event_id: str, agent_type: str, group_id: str) -> None:
        self.tags.setdefault(event_id, []).append((agent_type, group_id))

    def _tagged_by(self, event_id: str, agent_type: str) -> list[str]:
        return [g for t, g in self.tags.get(event_id, []) if t == agent_type]

    @staticmethod
    def _looks_anomalous(event: Event, criteria: FetchCriteria) -> bool:
        tags = {t.strip().lower() for t in event.tags}
        return (
            bool(tags.intersection(criteria.anomaly_keywords))
            or bool(event.weapons)
            or event.people_count >= criteria.min_people
        )

    def get_event(self, event_id: str) -> Event | None:
        self._maybe_fail("get_event")
        return self.events.get(event_id)

    def fetch_candidates(self, criteria: FetchCriteria) -> list[Event]:
        self._maybe_fail("fetch_candidates")
        self.fetches.append(criteria)
        pool = [
            e for e in self.events.values()
            if e.timestamp > criteria.since
            and e.annotated_at is not None
            and e.id != criteria.exclude_id
            and not self._tagged_by(e.id, criteria.agent_type)
            and (not criteria.anomalies_only or self._looks_anomalous(e, criteria))
        ]
        if criteria.near_timestamp is not None:
            pool.sort(key=lambda e: (abs(e.timestamp - criteria.near_timestamp), e.id))
        else:
            pool.sort(key=lambda e: e.id)
            pool.sort(key=lambda e: e.timestamp, reverse=True)
        return pool[criteria.offset:criteria.offset + criteria.limit]

    def count_existing_tags(self, agent_type: str, event_ids: list[str]) -> tuple[int, list[str]]:
        self._maybe_fail("count_existing_tags")
        count = 0
        groups: set[str] = set()
        for eid in event_ids:
            existing = self._tagged_by(eid, agent_type)
            if existing:
                count += 1
                groups.update(existing)
        return count, sorted(groups)

    def apply_tags(
        self, agent_type: str, group_id: str, event_ids: list[str], created_at: str = "",
    ) -> int:
        self._maybe_fail("apply_tags")
        self.apply_calls += 1
        tagged = 0
        for eid in event_ids:
            if eid in self.events:
                self.tag(eid, agent_type, group_id)
                tagged += 1
        return tagged


@pytest.fixture
def clock():
    return FakeClock()
