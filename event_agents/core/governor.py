"""Run governor and the batch scan loop.

The governor owns one execution's wall-clock budget, batch counter and
timestamp watermark. ``scan_batches`` is the fetch → process → keep-best loop;
it only talks to the governor and its callbacks, so it can be driven entirely
in memory.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from event_agents.config import PIPELINE_CONFIG
from event_agents.models import Event

logger = logging.getLogger(__name__)

G = TypeVar("G")


class RunGovernor:
    """Deadline and checkpoint bookkeeping for a single run.

    ``clock`` returns seconds (``time.monotonic`` by default). In single-batch
    mode the time budget is ignored and exactly one batch is allowed.
    """

    def __init__(
        self,
        max_execution_ms: int,
        clock: Callable[[], float] | None = None,
        safety_floor_ms: int | None = None,
        single_batch: bool = False,
    ) -> None:
        self.max_execution_ms = max_execution_ms
        self.clock = clock or time.monotonic
        self.safety_floor_ms = (
            safety_floor_ms if safety_floor_ms is not None
            else PIPELINE_CONFIG["safety_floor_ms"]
        )
        self.single_batch = single_batch
        self.started = self.clock()

        self.batches_completed = 0
        self.nodes_processed = 0
        self.latest_timestamp = 0
        self.stop_reason: str | None = None

    def elapsed_ms(self) -> int:
        return int((self.clock() - self.started) * 1000)

    def remaining_ms(self) -> int:
        return max(0, self.max_execution_ms - self.elapsed_ms())

    def time_exceeded(self) -> bool:
        return self.elapsed_ms() >= self.max_execution_ms

    def should_fetch(self) -> bool:
        """Decide whether another batch may be pulled."""
        if self.single_batch:
            if self.batches_completed >= 1:
                self.stop_reason = "single_batch"
                return False
            return True
        if self.time_exceeded():
            self.stop_reason = "time_exceeded"
            return False
        if self.batches_completed > 0 and self.remaining_ms() < self.safety_floor_ms:
            self.stop_reason = "safety_floor"
            return False
        return True

    def checkpoint(self, events: list[Event]) -> None:
        """Record a processed batch and advance the observed watermark."""
        self.batches_completed += 1
        self.nodes_processed += len(events)
        if events:
            self.latest_timestamp = max(
                self.latest_timestamp, max(e.timestamp for e in events),
            )


@dataclass
class ScanOutcome(Generic[G]):
    best: G | None
    batches_completed: int
    nodes_processed: int
    latest_timestamp: int
    stop_reason: str


async def scan_batches(
    governor: RunGovernor,
    fetch_batch: Callable[[int], Awaitable[list[Event]]],
    process_batch: Callable[[list[Event], int], G | None],
    is_better: Callable[[G, G], bool],
) -> ScanOutcome[G]:
    """Pull batches until the budget runs out or the store has nothing left.

    ``fetch_batch(index)`` errors propagate; a run that times out still
    returns the best group found so far.
    """
    best: G | None = None
    batch_index = 0
    stop_reason = "exhausted"

    while governor.should_fetch():
        events = await fetch_batch(batch_index)
        if not events:
            logger.info("No more candidates after %d batch(es)", batch_index)
            break

        # Watermark comes from the fetched events only, not anything the caller adds
        governor.checkpoint(events)
        candidate = process_batch(events, batch_index)
        if candidate is not None and (best is None or is_better(candidate, best)):
            best = candidate

        batch_index += 1
    else:
        stop_reason = governor.stop_reason or "exhausted"
        if stop_reason in ("time_exceeded", "safety_floor"):
            logger.warning(
                "Stopping after %d batch(es): %s (%d ms elapsed)",
                batch_index, stop_reason, governor.elapsed_ms(),
            )

    return ScanOutcome(
        best=best,
        batches_completed=governor.batches_completed,
        nodes_processed=governor.nodes_processed,
        latest_timestamp=governor.latest_timestamp,
        stop_reason=stop_reason,
    )
