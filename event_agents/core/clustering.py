"""Attribute-based grouping of events: correlation clusters and timelines.

Correlation builds a similarity graph over every pair in a batch (O(n²), kept
tractable by the batch-size cap), unions the connected events and keeps the
largest disjoint set. Timelines chain every event similar to a chosen source
event and order the chain chronologically.
"""

from __future__ import annotations

import logging
from typing import Callable

from event_agents.core.similarity import event_similarity
from event_agents.core.union_find import UnionFind
from event_agents.models import CorrelationCluster, Event, SimilarityEdge, Timeline

logger = logging.getLogger(__name__)


def build_similarity_graph(
    events: list[Event], confidence_threshold: float,
) -> list[SimilarityEdge]:
    """Compare every unordered pair and keep edges at or above the threshold."""
    edges: list[SimilarityEdge] = []
    for i, a in enumerate(events):
        for b in events[i + 1:]:
            similarity, shared = event_similarity(a, b)
            if similarity >= confidence_threshold:
                edges.append(SimilarityEdge(
                    source_id=a.id,
                    target_id=b.id,
                    similarity=similarity,
                    shared_properties=shared,
                ))
    return edges


def find_largest_cluster(
    events: list[Event], edges: list[SimilarityEdge],
) -> CorrelationCluster | None:
    """Return the largest connected component of the similarity graph.

    A component of a single event is no relationship at all, so None is
    returned when no edge survived.
    """
    if not events or not edges:
        return None

    index = {e.id: i for i, e in enumerate(events)}
    uf = UnionFind(len(events))
    degree = [0] * len(events)

    for edge in edges:
        src, dst = index[edge.source_id], index[edge.target_id]
        uf.union(src, dst)
        degree[src] += 1
        degree[dst] += 1

    largest: list[int] = []
    for members in uf.groups():
        if len(members) > len(largest):
            largest = members

    if len(largest) < 2:
        return None

    cluster_events = [events[i] for i in largest]

    # Centroid is display-only: the most connected member
    centroid_idx = largest[0]
    for i in largest:
        if degree[i] > degree[centroid_idx]:
            centroid_idx = i

    member_ids = {e.id for e in cluster_events}
    cluster_edges = [
        e for e in edges if e.source_id in member_ids and e.target_id in member_ids
    ]
    avg_similarity = (
        sum(e.similarity for e in cluster_edges) / len(cluster_edges)
        if cluster_edges else 0.0
    )

    shared: list[str] = []
    for edge in cluster_edges:
        for prop in edge.shared_properties:
            if prop not in shared:
                shared.append(prop)

    return CorrelationCluster(
        events=cluster_events,
        centroid=events[centroid_idx],
        avg_similarity=avg_similarity,
        shared_properties=shared,
        unique_regions=len({e.region for e in cluster_events if e.region}),
        unique_channels=len({e.channel_id for e in cluster_events if e.channel_id}),
    )


def cluster_batch(
    events: list[Event], confidence_threshold: float, min_group_size: int,
) -> CorrelationCluster | None:
    """Graph-cluster one batch and apply the minimum-size filter."""
    edges = build_similarity_graph(events, confidence_threshold)
    logger.debug("Found %d similarity edges above %.2f", len(edges), confidence_threshold)
    if not edges:
        return None

    cluster = find_largest_cluster(events, edges)
    if cluster is None or cluster.size < min_group_size:
        logger.debug(
            "Largest cluster has %d events, below minimum %d",
            cluster.size if cluster else 0, min_group_size,
        )
        return None
    return cluster


# ── Timelines ──

def build_timeline(
    source: Event, events: list[Event], confidence_threshold: float,
) -> Timeline:
    """Chain every event similar to ``source`` and sort the chain by time."""
    matches: list[tuple[Event, float, list[str]]] = []
    for event in events:
        if event.id == source.id:
            continue
        similarity, shared = event_similarity(source, event)
        if similarity >= confidence_threshold:
            matches.append((event, similarity, shared))

    chain = sorted([source] + [m[0] for m in matches], key=lambda e: (e.timestamp, e.id))
    avg_similarity = sum(m[1] for m in matches) / len(matches) if matches else 0.0

    shared_props: list[str] = []
    for _, _, shared in matches:
        for prop in shared:
            if prop not in shared_props:
                shared_props.append(prop)

    return Timeline(
        events=chain,
        anchor=source,
        avg_similarity=avg_similarity,
        shared_properties=shared_props,
    )


def find_best_timeline(
    events: list[Event],
    confidence_threshold: float,
    min_group_size: int,
    should_stop: Callable[[], bool] | None = None,
) -> Timeline | None:
    """Try every event as a timeline source and keep the longest valid chain.

    ``should_stop`` is polled before each source so a long batch can give up
    when the run's time budget runs out; whatever was found so far is kept.
    """
    best: Timeline | None = None
    for source in events:
        if should_stop is not None and should_stop():
            logger.warning("Time limit reached, stopping timeline search early")
            break
        timeline = build_timeline(source, events, confidence_threshold)
        if timeline.size < min_group_size:
            continue
        if best is None or timeline.size > best.size:
            best = timeline
            logger.debug(
                "Timeline candidate: %d events, avg similarity %.1f%%",
                timeline.size, timeline.avg_similarity * 100,
            )
    return best
