"""The three discovery agents.

Each agent turns one batch into at most one candidate group, decides which of
two candidates is better across batches, and renders the winner as findings
and an executive summary. Fetching, budgeting and tagging are the runner's job.
"""

from __future__ import annotations

import logging
from typing import Callable

from event_agents.core.clustering import cluster_batch, find_best_timeline
from event_agents.core.segmentation import (
    ALL_ANOMALY_KEYWORDS,
    is_more_severe,
    segment_windows,
    select_window,
)
from event_agents.core.summary import summarize_anomaly, summarize_cluster, summarize_timeline
from event_agents.models import (
    AgentConfig,
    AgentType,
    AnomalyFindings,
    AnomalyWindow,
    CorrelationCluster,
    CorrelationFindings,
    Event,
    EventRef,
    Findings,
    Group,
    Timeline,
    TimelineFindings,
)

logger = logging.getLogger(__name__)


def _ref(event: Event, category: str | None = None) -> EventRef:
    return EventRef(
        id=event.id,
        timestamp=event.timestamp,
        channel_id=event.channel_id,
        region=event.region,
        category=category,
    )


class Agent:
    """Base class; subclasses set ``agent_type`` and ``group_label``."""

    agent_type: AgentType
    group_label: str = "group"
    # Context-mode fetches ordered by distance from the anchor's timestamp
    orders_by_anchor_distance: bool = False

    def process_batch(
        self,
        events: list[Event],
        config: AgentConfig,
        min_group_size: int,
        should_stop: Callable[[], bool] | None = None,
    ) -> Group | None:
        raise NotImplementedError

    def fetch_filter(self, config: AgentConfig) -> dict:
        """Extra FetchCriteria fields narrowing this agent's candidates."""
        return {}

    def is_better(self, candidate: Group, current: Group) -> bool:
        return candidate.size > current.size

    def findings(self, group: Group) -> Findings:
        raise NotImplementedError

    def summarize(self, group: Group) -> str:
        raise NotImplementedError

    def describe(self, group: Group) -> str:
        return f"{group.size} events"


class TimelineAgent(Agent):
    agent_type = AgentType.TIMELINE
    group_label = "timeline"
    orders_by_anchor_distance = True

    def process_batch(self, events, config, min_group_size, should_stop=None):
        return find_best_timeline(
            events, config.confidence_threshold, min_group_size, should_stop=should_stop,
        )

    def findings(self, group: Timeline) -> TimelineFindings:
        return TimelineFindings(
            timeline=[_ref(e) for e in group.events],
            anchor_id=group.anchor.id,
            shared_properties=list(group.shared_properties),
            avg_similarity=group.avg_similarity,
        )

    def summarize(self, group: Timeline) -> str:
        return summarize_timeline(group)


class CorrelationAgent(Agent):
    agent_type = AgentType.CORRELATION
    group_label = "cluster"

    def process_batch(self, events, config, min_group_size, should_stop=None):
        cluster = cluster_batch(events, config.confidence_threshold, min_group_size)
        if cluster is not None:
            logger.info(
                "Found cluster: %d events, avg similarity %.1f%%",
                cluster.size, cluster.avg_similarity * 100,
            )
        return cluster

    def findings(self, group: CorrelationCluster) -> CorrelationFindings:
        return CorrelationFindings(
            cluster=[_ref(e) for e in group.events],
            centroid_id=group.centroid.id,
            shared_properties=list(group.shared_properties),
            avg_similarity=group.avg_similarity,
            unique_regions=group.unique_regions,
            unique_channels=group.unique_channels,
        )

    def summarize(self, group: CorrelationCluster) -> str:
        return summarize_cluster(group)


class AnomalyAgent(Agent):
    agent_type = AgentType.ANOMALY
    group_label = "anomaly group"

    @staticmethod
    def _options(config: AgentConfig) -> tuple[int, int]:
        hours = config.options.get("time_window_hours", 1)
        min_people = config.options.get("min_people_for_gathering", 10)
        return int(hours * 60 * 60 * 1000), min_people

    def fetch_filter(self, config: AgentConfig) -> dict:
        _, min_people = self._options(config)
        return {"anomaly_keywords": ALL_ANOMALY_KEYWORDS, "min_people": min_people}

    def process_batch(self, events, config, min_group_size, should_stop=None):
        window_ms, min_people = self._options(config)
        windows = segment_windows(events, window_ms, min_people_for_gathering=min_people)
        logger.debug("Found %d potential anomaly windows", len(windows))
        best = select_window(windows, min_group_size)
        if best is not None:
            logger.info(
                "Selected %s anomaly window: %d events in %s",
                best.severity.value, best.size, best.region,
            )
        return best

    def is_better(self, candidate: AnomalyWindow, current: AnomalyWindow) -> bool:
        return is_more_severe(candidate, current)

    def findings(self, group: AnomalyWindow) -> AnomalyFindings:
        return AnomalyFindings(
            anomaly=[
                _ref(e, ", ".join(group.event_categories.get(e.id, [])) or None)
                for e in group.events
            ],
            region=group.region,
            severity=group.severity.value,
            categories=list(group.categories),
            start_time=group.start_time,
            end_time=group.end_time,
        )

    def summarize(self, group: AnomalyWindow) -> str:
        return summarize_anomaly(group)

    def describe(self, group: AnomalyWindow) -> str:
        return f"{group.severity.value} {'/'.join(group.categories)} with {group.size} events"


_AGENTS: dict[AgentType, type[Agent]] = {
    AgentType.TIMELINE: TimelineAgent,
    AgentType.CORRELATION: CorrelationAgent,
    AgentType.ANOMALY: AnomalyAgent,
}


def get_agent(agent_type: str) -> Agent:
    return _AGENTS[AgentType(agent_type)]()
