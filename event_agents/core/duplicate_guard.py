"""Duplicate-overlap guard.

Repeated runs over a slowly growing event window keep rediscovering the same
group. Before tagging, count how many of the candidate's events already carry
a tag from the same agent type and discard the group at or above the overlap
threshold.
"""

from __future__ import annotations

import logging
from typing import Protocol

from event_agents.models import DuplicateCheck

logger = logging.getLogger(__name__)


class TagIndex(Protocol):
    def count_existing_tags(
        self, agent_type: str, event_ids: list[str],
    ) -> tuple[int, list[str]]: ...


def is_duplicate(existing_count: int, overlap_threshold: int) -> bool:
    return existing_count >= overlap_threshold


def check_duplicate_tagging(
    graph: TagIndex,
    agent_type: str,
    event_ids: list[str],
    overlap_threshold: int,
) -> DuplicateCheck:
    """Look up existing same-type tags on ``event_ids``.

    Read-only, so calling it twice without an intervening tag write returns
    the same answer. Store errors propagate to the caller.
    """
    if not event_ids:
        return DuplicateCheck()

    existing_count, group_ids = graph.count_existing_tags(agent_type, event_ids)
    check = DuplicateCheck(
        is_duplicate=is_duplicate(existing_count, overlap_threshold),
        existing_count=existing_count,
        existing_group_ids=sorted(set(group_ids)),
    )
    if check.is_duplicate:
        logger.info(
            "%d of %d %s candidates already tagged (threshold %d)",
            existing_count, len(event_ids), agent_type, overlap_threshold,
        )
    return check
