"""Anomaly classification and time-window segmentation.

Events are bucketed by region, sorted by time, and swept once: a window keeps
growing while the next event is within ``window_ms`` of the window's first
event. Each closed window takes the union of its events' categories and a
severity tier from a fixed escalation policy.
"""

from __future__ import annotations

import logging

from event_agents.models import AnomalyWindow, Event, Severity

logger = logging.getLogger(__name__)

UNKNOWN_REGION = "Unknown"
UNKNOWN_CATEGORY = "unknown"

ANOMALY_KEYWORDS = {
    "fire": ("fire", "smoke", "flames", "burning", "explosion", "blast"),
    "violence": ("fight", "fighting", "violence", "altercation", "assault", "attack"),
    "accident": ("crash", "accident", "collision", "wreck", "overturn"),
    "weapon": ("weapon", "gun", "knife", "firearm", "armed"),
    "gathering": ("crowd", "gathering", "protest", "riot", "mob"),
    "emergency": ("emergency", "ambulance", "police", "rescue"),
    "suspicious": ("suspicious", "unusual", "abnormal", "alert"),
}

ALL_ANOMALY_KEYWORDS = tuple(
    keyword for keywords in ANOMALY_KEYWORDS.values() for keyword in keywords
)

CRITICAL_CATEGORIES = frozenset({"fire", "weapon", "violence"})
HIGH_CATEGORIES = frozenset({"accident", "emergency", "gathering"})


def classify_event(event: Event, min_people_for_gathering: int = 10) -> list[str]:
    """Return the anomaly categories an event falls into, or ``["unknown"]``."""
    tags = {t.strip().lower() for t in event.tags}
    categories: list[str] = []

    for category, keywords in ANOMALY_KEYWORDS.items():
        matched = bool(tags.intersection(keywords))
        if category == "weapon" and event.weapons:
            matched = True
        if category == "gathering" and event.people_count >= min_people_for_gathering:
            matched = True
        if matched:
            categories.append(category)

    return categories or [UNKNOWN_CATEGORY]


def severity_for(categories: list[str]) -> Severity:
    if CRITICAL_CATEGORIES.intersection(categories):
        return Severity.CRITICAL
    if HIGH_CATEGORIES.intersection(categories):
        return Severity.HIGH
    return Severity.MEDIUM


def _close_window(
    events: list[Event], region: str, min_people_for_gathering: int,
) -> AnomalyWindow:
    categories: list[str] = []
    event_categories: dict[str, list[str]] = {}
    for event in events:
        event_categories[event.id] = classify_event(event, min_people_for_gathering)
        for category in event_categories[event.id]:
            if category not in categories:
                categories.append(category)
    return AnomalyWindow(
        events=events,
        region=region,
        start_time=events[0].timestamp,
        end_time=events[-1].timestamp,
        categories=categories,
        severity=severity_for(categories),
        event_categories=event_categories,
    )


def segment_windows(
    events: list[Event], window_ms: int, min_people_for_gathering: int = 10,
) -> list[AnomalyWindow]:
    """Split events into non-overlapping per-region time windows."""
    by_region: dict[str, list[Event]] = {}
    for event in events:
        by_region.setdefault(event.region or UNKNOWN_REGION, []).append(event)

    windows: list[AnomalyWindow] = []
    for region, region_events in by_region.items():
        region_events.sort(key=lambda e: (e.timestamp, e.id))

        current: list[Event] = []
        window_start = 0
        for event in region_events:
            if current and event.timestamp - window_start <= window_ms:
                current.append(event)
                continue
            if current:
                windows.append(_close_window(current, region, min_people_for_gathering))
            current = [event]
            window_start = event.timestamp

        if current:
            windows.append(_close_window(current, region, min_people_for_gathering))

    return windows


def window_rank_key(window: AnomalyWindow) -> tuple[int, int]:
    """Sort key: most severe first, then largest first."""
    return (window.severity.rank, -window.size)


def select_window(windows: list[AnomalyWindow], min_group_size: int) -> AnomalyWindow | None:
    """Pick the top-ranked window among those meeting the minimum size."""
    valid = [w for w in windows if w.size >= min_group_size]
    if not valid:
        logger.debug("No windows meet minimum size of %d", min_group_size)
        return None
    return min(valid, key=window_rank_key)


def is_more_severe(candidate: AnomalyWindow, current: AnomalyWindow) -> bool:
    """True if ``candidate`` should replace ``current`` as best window of a run."""
    return window_rank_key(candidate) < window_rank_key(current)
