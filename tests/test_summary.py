"""Tests for executive summary rendering."""

from event_agents.core.segmentation import segment_windows
from event_agents.core.summary import (
    format_timestamp,
    summarize_anomaly,
    summarize_cluster,
    summarize_timeline,
)
from event_agents.models import CorrelationCluster, Timeline
from conftest import BASE_TS, make_event

HOUR_MS = 60 * 60 * 1000


def test_format_timestamp_is_utc():
    assert format_timestamp(BASE_TS) == "2023-11-14 22:13 UTC"


def test_timeline_summary():
    events = [
        make_event("a", 0, channel_id="cam-1", region="North"),
        make_event("b", 30, channel_id="cam-2", region="East"),
    ]
    timeline = Timeline(
        events=events, anchor=events[0], avg_similarity=1.0,
        shared_properties=["plate:ABC-123"],
    )
    assert summarize_timeline(timeline) == (
        "Timeline of 2 related events spanning from 2023-11-14 22:13 UTC to "
        "2023-11-14 22:43 UTC. Common identifiers: plate:ABC-123. "
        "Locations involved: North, East. Appears across 2 different cameras."
    )


def test_timeline_summary_single_camera_no_identifiers():
    events = [make_event("a", 0, region=None, channel_name="Gate"), make_event("b", 1, region=None)]
    text = summarize_timeline(Timeline(events=events, anchor=events[0]))
    assert "Common identifiers" not in text
    assert "Locations involved: Gate, Camera 1." in text
    assert "cameras" not in text


def test_cluster_summary():
    events = [make_event("a"), make_event("b", channel_id="cam-2")]
    cluster = CorrelationCluster(
        events=events, centroid=events[0], avg_similarity=0.9533,
        shared_properties=["plate:ABC-123", "vehicle:white van"],
        unique_regions=1, unique_channels=2,
    )
    assert summarize_cluster(cluster) == (
        "Correlation cluster of 2 related events across 2 cameras in 1 location. "
        "Shared identifiers: plate:ABC-123, vehicle:white van. "
        "Average similarity: 95.3%."
    )


def test_cluster_summary_quotes_at_most_five_identifiers():
    events = [make_event("a"), make_event("b")]
    props = [f"plate:P{i}" for i in range(8)]
    cluster = CorrelationCluster(
        events=events, centroid=events[0], shared_properties=props, unique_channels=1,
    )
    text = summarize_cluster(cluster)
    assert "plate:P4" in text
    assert "plate:P5" not in text
    assert "across 1 camera." in text


def test_critical_fire_summary():
    events = [make_event(f"f{i}", i, tags=("fire",), channel_id=f"cam-{i % 3}") for i in range(12)]
    window = segment_windows(events, HOUR_MS)[0]
    assert summarize_anomaly(window) == (
        "CRITICAL ANOMALY: 12 fire events detected in North. "
        "Time span: 2023-11-14 22:13 UTC to 2023-11-14 22:24 UTC (11 minutes). "
        "Observed across 3 cameras. Fire/smoke indicators present."
    )


def test_weapon_and_gathering_callouts():
    events = [
        make_event("a", 0, weapons=("knife",)),
        make_event("b", 2, people_count=25),
        make_event("c", 4, people_count=14, weapons=("bat",)),
    ]
    text = summarize_anomaly(segment_windows(events, HOUR_MS)[0])
    assert text.startswith("CRITICAL ANOMALY: 3 weapon, gathering events detected in North.")
    assert "Weapons detected in 2 event(s)." in text
    assert "Large gathering with up to 25 people observed." in text


def test_summary_is_deterministic():
    events = [make_event(f"e{i}", i, tags=("crash",)) for i in range(4)]
    window = segment_windows(events, HOUR_MS)[0]
    assert summarize_anomaly(window) == summarize_anomaly(window)
    assert summarize_anomaly(window).startswith("HIGH ANOMALY: 4 accident events")
