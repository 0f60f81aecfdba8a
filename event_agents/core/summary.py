"""Deterministic executive summaries for discovered groups.

Template-based only: the same group always renders the same text. Times are
rendered in UTC so output does not depend on the host's locale or timezone.
"""

from __future__ import annotations

from datetime import datetime, timezone

from event_agents.config import PIPELINE_CONFIG
from event_agents.models import AnomalyWindow, CorrelationCluster, Timeline


def format_timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def _first(items: list[str], limit: int | None = None) -> str:
    limit = limit or PIPELINE_CONFIG["summary_max_identifiers"]
    return ", ".join(items[:limit])


def summarize_timeline(timeline: Timeline) -> str:
    events = timeline.events
    start = format_timestamp(events[0].timestamp)
    end = format_timestamp(events[-1].timestamp)

    locations: list[str] = []
    for e in events:
        loc = e.region or e.channel_name
        if loc and loc not in locations:
            locations.append(loc)
    channels = {e.channel_id for e in events if e.channel_id}

    summary = f"Timeline of {len(events)} related events spanning from {start} to {end}. "
    if timeline.shared_properties:
        summary += f"Common identifiers: {_first(timeline.shared_properties)}. "
    if locations:
        summary += f"Locations involved: {_first(locations)}. "
    if len(channels) > 1:
        summary += f"Appears across {len(channels)} different cameras."
    return summary.strip()


def summarize_cluster(cluster: CorrelationCluster) -> str:
    summary = (
        f"Correlation cluster of {cluster.size} related events "
        f"across {_plural(cluster.unique_channels, 'camera')}"
    )
    if cluster.unique_regions > 0:
        summary += f" in {_plural(cluster.unique_regions, 'location')}. "
    else:
        summary += ". "
    if cluster.shared_properties:
        summary += f"Shared identifiers: {_first(cluster.shared_properties)}. "
    summary += f"Average similarity: {cluster.avg_similarity * 100:.1f}%."
    return summary


def summarize_anomaly(window: AnomalyWindow) -> str:
    events = window.events
    duration_min = (window.end_time - window.start_time) / 60000
    channels = len({e.channel_id for e in events if e.channel_id})

    summary = (
        f"{window.severity.value.upper()} ANOMALY: {len(events)} "
        f"{', '.join(window.categories)} events detected in {window.region}. "
        f"Time span: {format_timestamp(window.start_time)} to "
        f"{format_timestamp(window.end_time)} ({duration_min:.0f} minutes). "
        f"Observed across {_plural(channels, 'camera')}. "
    )

    if "fire" in window.categories:
        summary += "Fire/smoke indicators present. "
    if "weapon" in window.categories:
        armed = sum(1 for e in events if e.weapons)
        if armed:
            summary += f"Weapons detected in {armed} event(s). "
    if "gathering" in window.categories:
        peak = max(e.people_count for e in events)
        summary += f"Large gathering with up to {peak} people observed. "

    return summary.strip()
