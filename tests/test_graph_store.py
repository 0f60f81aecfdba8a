"""Tests for the Kuzu event graph."""

import pytest

from event_agents.config import GRAPH_DIR, default_agent_config
from event_agents.core.agents import get_agent
from event_agents.models import AgentConfig, FetchCriteria
from event_agents.storage.graph_store import GraphStore
from conftest import make_event


@pytest.fixture
def graph(tmp_path):
    g = GraphStore(tmp_path / "graph")
    g.initialize()
    yield g
    g.close()


def _ids(events):
    return [e.id for e in events]


def test_upsert_and_get_event(graph):
    event = make_event(
        "e1", 3,
        latitude=51.5, longitude=-0.12, caption="Van at gate",
        tags=("car", "night"), license_plates=("ABC-123",), vehicles=("white van",),
        people_count=2,
    )
    graph.upsert_event(event)

    loaded = graph.get_event("e1")
    assert loaded is not None
    assert loaded.timestamp == event.timestamp
    assert loaded.region == "North"
    assert loaded.latitude == pytest.approx(51.5)
    assert loaded.caption == "Van at gate"
    assert sorted(loaded.tags) == ["car", "night"]
    assert loaded.license_plates == ("ABC-123",)
    assert loaded.vehicles == ("white van",)
    assert loaded.objects == ()
    assert loaded.people_count == 2


def test_get_missing_event(graph):
    assert graph.get_event("nope") is None


def test_upsert_replaces_attributes(graph):
    graph.upsert_event(make_event("e1", tags=("car",)))
    graph.upsert_event(make_event("e1", tags=("bus",), objects=("bench",)))
    loaded = graph.get_event("e1")
    assert loaded.tags == ("bus",)
    assert loaded.objects == ("bench",)


def test_fetch_newest_first_with_pagination(graph):
    for i in range(5):
        graph.upsert_event(make_event(f"e{i}", i))

    first = graph.fetch_candidates(FetchCriteria("anomaly", limit=2))
    second = graph.fetch_candidates(FetchCriteria("anomaly", offset=2, limit=2))
    third = graph.fetch_candidates(FetchCriteria("anomaly", offset=4, limit=2))
    assert _ids(first) == ["e4", "e3"]
    assert _ids(second) == ["e2", "e1"]
    assert _ids(third) == ["e0"]


def test_fetch_filters(graph):
    graph.upsert_event(make_event("old", 0))
    graph.upsert_event(make_event("new", 10))
    graph.upsert_event(make_event("raw", 11, annotated_at=None))
    graph.upsert_event(make_event("anchor", 12))

    since = make_event("x", 5).timestamp
    fetched = graph.fetch_candidates(FetchCriteria("timeline", since=since, exclude_id="anchor"))
    assert _ids(fetched) == ["new"]


def test_fetch_excludes_events_tagged_by_same_agent(graph):
    for i in range(3):
        graph.upsert_event(make_event(f"e{i}", i))
    graph.apply_tags("anomaly", "anomaly_group_1", ["e1"])

    assert _ids(graph.fetch_candidates(FetchCriteria("anomaly"))) == ["e2", "e0"]
    assert _ids(graph.fetch_candidates(FetchCriteria("timeline"))) == ["e2", "e1", "e0"]


def test_fetch_near_timestamp(graph):
    for i, minutes in enumerate([0, 50, 58, 70, 200]):
        graph.upsert_event(make_event(f"e{i}", minutes))
    near = make_event("x", 60).timestamp
    fetched = graph.fetch_candidates(FetchCriteria("timeline", near_timestamp=near, limit=3))
    assert _ids(fetched) == ["e2", "e1", "e3"]


def test_apply_tags_and_count(graph):
    for i in range(4):
        graph.upsert_event(make_event(f"e{i}", i))

    tagged = graph.apply_tags("anomaly", "anomaly_group_a", ["e0", "e1", "missing"])
    assert tagged == 2
    graph.apply_tags("anomaly", "anomaly_group_b", ["e1", "e2"])

    count, groups = graph.count_existing_tags("anomaly", ["e0", "e1", "e2", "e3"])
    assert count == 3
    assert groups == ["anomaly_group_a", "anomaly_group_b"]
    assert graph.count_existing_tags("correlation", ["e0", "e1"]) == (0, [])

    assert graph.get_group_events("anomaly_group_a") == ["e0", "e1"]
    assert graph.get_event_groups("e1") == ["anomaly_group_a", "anomaly_group_b"]
    assert graph.get_event_groups("e1", agent_type="timeline") == []


def test_apply_tags_with_no_ids(graph):
    assert graph.apply_tags("anomaly", "anomaly_group_x", []) == 0
    assert graph.count_existing_tags("anomaly", []) == (0, [])


def test_tags_are_additive(graph):
    graph.upsert_event(make_event("e1"))
    graph.apply_tags("timeline", "timeline_group_1", ["e1"])
    graph.apply_tags("correlation", "correlation_group_1", ["e1"])
    graph.upsert_event(make_event("e1", tags=("refreshed",)))
    assert graph.get_event_groups("e1") == ["correlation_group_1", "timeline_group_1"]


def _config(agent_type):
    return AgentConfig(agent_type=agent_type, **default_agent_config(agent_type))


def _anomaly_criteria(config=None):
    config = config or _config("anomaly")
    return FetchCriteria("anomaly", **get_agent("anomaly").fetch_filter(config))


def test_anomaly_fetch_only_returns_anomaly_like_events(graph):
    graph.upsert_event(make_event("plain", 0, tags=("car",)))
    graph.upsert_event(make_event("smoke", 1, tags=(" Smoke ",)))
    graph.upsert_event(make_event("armed", 2, weapons=("knife",)))
    graph.upsert_event(make_event("crowd", 3, people_count=10))
    graph.upsert_event(make_event("small", 4, people_count=9, tags=("street",)))

    assert _ids(graph.fetch_candidates(_anomaly_criteria())) == ["crowd", "armed", "smoke"]
    assert _ids(graph.fetch_candidates(FetchCriteria("correlation"))) == [
        "small", "crowd", "armed", "smoke", "plain",
    ]


def test_anomaly_fetch_uses_configured_crowd_size(graph):
    graph.upsert_event(make_event("crowd", 0, people_count=12))
    config = _config("anomaly")
    config.options["min_people_for_gathering"] = 20
    assert graph.fetch_candidates(_anomaly_criteria(config)) == []


def test_graph_dir_read_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("EVENT_GRAPH_DIR", str(tmp_path / "env-graph"))
    assert GraphStore().graph_dir == tmp_path / "env-graph"
    assert GraphStore(tmp_path / "explicit").graph_dir == tmp_path / "explicit"

    monkeypatch.delenv("EVENT_GRAPH_DIR")
    assert GraphStore().graph_dir == GRAPH_DIR
