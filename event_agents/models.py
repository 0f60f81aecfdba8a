"""Data models for the event agent pipeline."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import total_ordering
from typing import Any, Union


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _short_id() -> str:
    return uuid.uuid4().hex[:12]


class AgentType(str, Enum):
    TIMELINE = "timeline"
    CORRELATION = "correlation"
    ANOMALY = "anomaly"


class RunMode(str, Enum):
    CRON = "cron"
    MANUAL = "manual"
    CONTEXT = "context"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    DISCARDED = "discarded"
    FAILED = "failed"


@total_ordering
class Severity(Enum):
    """Anomaly severity tiers, ordered most severe first."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


def generate_run_id(agent_type: str) -> str:
    return f"{AgentType(agent_type).value}_run_{_short_id()}"


def generate_group_id(agent_type: str) -> str:
    return f"{AgentType(agent_type).value}_group_{_short_id()}"


@dataclass(frozen=True)
class Event:
    """Read-only snapshot of an annotated surveillance observation."""
    id: str
    timestamp: int
    event_id: str = ""
    channel_id: str = ""
    channel_name: str | None = None
    region: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    image_url: str | None = None
    caption: str | None = None
    annotated_at: str | None = None

    # Annotation fields
    tags: tuple[str, ...] = ()
    objects: tuple[str, ...] = ()
    weapons: tuple[str, ...] = ()
    vehicles: tuple[str, ...] = ()
    license_plates: tuple[str, ...] = ()
    clothing_colors: tuple[str, ...] = ()
    people_count: int = 0


@dataclass
class SimilarityEdge:
    source_id: str
    target_id: str
    similarity: float
    shared_properties: list[str] = field(default_factory=list)


# ── Groups ──

@dataclass
class Timeline:
    events: list[Event]
    anchor: Event
    avg_similarity: float = 0.0
    shared_properties: list[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.events)

    @property
    def event_ids(self) -> list[str]:
        return [e.id for e in self.events]


@dataclass
class CorrelationCluster:
    events: list[Event]
    centroid: Event
    avg_similarity: float = 0.0
    shared_properties: list[str] = field(default_factory=list)
    unique_regions: int = 0
    unique_channels: int = 0

    @property
    def size(self) -> int:
        return len(self.events)

    @property
    def event_ids(self) -> list[str]:
        return [e.id for e in self.events]


@dataclass
class AnomalyWindow:
    events: list[Event]
    region: str
    start_time: int
    end_time: int
    categories: list[str] = field(default_factory=list)
    severity: Severity = Severity.MEDIUM
    # event id -> categories that event matched
    event_categories: dict[str, list[str]] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.events)

    @property
    def event_ids(self) -> list[str]:
        return [e.id for e in self.events]


Group = Union[Timeline, CorrelationCluster, AnomalyWindow]


# ── Configuration and fetch criteria ──

@dataclass
class AgentConfig:
    agent_type: str
    enabled: bool = False
    batch_size: int = 100
    confidence_threshold: float = 0.90
    min_group_size_cron: int = 10
    min_group_size_context: int = 5
    max_execution_ms: int = 7000
    overlap_threshold: int = 10
    scan_new_events_only: bool = True
    last_processed_timestamp: int | None = None
    options: dict[str, Any] = field(default_factory=dict)

    def min_group_size(self, mode: str) -> int:
        if RunMode(mode) == RunMode.CONTEXT:
            return self.min_group_size_context
        return self.min_group_size_cron

    def incremental_since(self, mode: str) -> int:
        """Timestamp lower bound for candidate fetches (0 = scan everything)."""
        if RunMode(mode) == RunMode.CONTEXT or not self.scan_new_events_only:
            return 0
        return self.last_processed_timestamp or 0


@dataclass
class FetchCriteria:
    agent_type: str
    since: int = 0
    exclude_id: str | None = None
    offset: int = 0
    limit: int = 100
    # Context-mode timelines order candidates by distance from the anchor
    near_timestamp: int | None = None

    # Anomaly pre-filter: when keywords are set, only events with a matching
    # tag, any weapon, or at least ``min_people`` people are returned
    anomaly_keywords: tuple[str, ...] = ()
    min_people: int = 10

    @property
    def anomalies_only(self) -> bool:
        return bool(self.anomaly_keywords)


@dataclass
class DuplicateCheck:
    is_duplicate: bool = False
    existing_count: int = 0
    existing_group_ids: list[str] = field(default_factory=list)


# ── Findings (one variant per outcome) ──

@dataclass
class EventRef:
    id: str
    timestamp: int
    channel_id: str = ""
    region: str | None = None
    category: str | None = None


@dataclass
class TimelineFindings:
    timeline: list[EventRef] = field(default_factory=list)
    anchor_id: str = ""
    shared_properties: list[str] = field(default_factory=list)
    avg_similarity: float = 0.0
    kind: str = "timeline"


@dataclass
class CorrelationFindings:
    cluster: list[EventRef] = field(default_factory=list)
    centroid_id: str = ""
    shared_properties: list[str] = field(default_factory=list)
    avg_similarity: float = 0.0
    unique_regions: int = 0
    unique_channels: int = 0
    kind: str = "correlation"


@dataclass
class AnomalyFindings:
    anomaly: list[EventRef] = field(default_factory=list)
    region: str = ""
    severity: str = Severity.MEDIUM.value
    categories: list[str] = field(default_factory=list)
    start_time: int = 0
    end_time: int = 0
    kind: str = "anomaly"


@dataclass
class EmptyFindings:
    message: str = ""
    kind: str = "empty"


@dataclass
class DuplicateFindings:
    existing_count: int = 0
    existing_group_ids: list[str] = field(default_factory=list)
    reason: str = "duplicate_overlap"
    kind: str = "duplicate"


Findings = Union[
    TimelineFindings, CorrelationFindings, AnomalyFindings, EmptyFindings, DuplicateFindings,
]


# ── Run records ──

@dataclass
class AgentRun:
    agent_type: str
    run_mode: str
    id: str = ""
    status: str = RunStatus.RUNNING.value
    anchor_event_id: str | None = None
    started_at: str = field(default_factory=_now)
    completed_at: str | None = None

    # Settings snapshot
    batch_size: int = 0
    confidence_threshold: float = 0.0
    min_group_size: int = 0
    max_execution_ms: int = 0

    # Counters
    nodes_processed: int = 0
    nodes_matched: int = 0
    nodes_tagged: int = 0
    batches_completed: int = 0

    # Outcome
    group_id: str | None = None
    group_size: int = 0
    executive_summary: str | None = None
    findings: Findings | None = None
    error_message: str | None = None
    processing_time_ms: int | None = None

    def __post_init__(self) -> None:
        if not self.id:
            self.id = generate_run_id(self.agent_type)


@dataclass
class RunResult:
    """Structured outcome handed back to whoever triggered a run."""
    agent_type: str
    status: str  # skipped | completed | discarded | failed
    run_id: str | None = None
    run_mode: str | None = None
    reason: str | None = None
    error: str | None = None
    nodes_processed: int = 0
    batches_completed: int = 0
    group_id: str | None = None
    group_size: int = 0
    nodes_tagged: int = 0
    executive_summary: str | None = None
    duration_ms: int = 0


@dataclass
class JobExecution:
    job_id: str
    timestamp: str
    status: str  # success | error | skipped
    duration_ms: int = 0
    message: str | None = None
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = f"{self.job_id}_{_short_id()}"
