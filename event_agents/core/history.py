"""Bounded job execution history and scheduled-job status reporting.

``JobHistory`` keeps the most recent executions per job in a ring buffer.
It is created by whoever owns the process and handed to the runner, so
retention can be tested with an injected clock and a small capacity.
"""

from __future__ import annotations

import os
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Mapping

from event_agents.config import ANNOTATION_ENV_VARS, GRAPH_ENV_VARS, PIPELINE_CONFIG
from event_agents.models import JobExecution

AGENT_JOBS = [
    {
        "id": "agent-timeline",
        "name": "Timeline Agent",
        "description": "Discovers temporal sequences of related events to build entity timelines across cameras",
        "schedule": "0 * * * *",
        "dependencies": ANNOTATION_ENV_VARS + GRAPH_ENV_VARS,
    },
    {
        "id": "agent-correlation",
        "name": "Correlation Agent",
        "description": "Finds groups of related events based on property similarity (order-independent)",
        "schedule": "0 * * * *",
        "dependencies": ANNOTATION_ENV_VARS + GRAPH_ENV_VARS,
    },
    {
        "id": "agent-anomaly",
        "name": "Anomaly Agent",
        "description": "Detects fires, fights, crashes and unusual gatherings within time/region windows",
        "schedule": "0 * * * *",
        "dependencies": ANNOTATION_ENV_VARS + GRAPH_ENV_VARS,
    },
]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobHistory:
    """Per-job ring buffer of recent executions, newest first."""

    def __init__(
        self,
        capacity: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.capacity = capacity or PIPELINE_CONFIG["history_capacity"]
        self.clock = clock or _utc_now
        self._executions: dict[str, deque[JobExecution]] = {}

    def record(
        self, job_id: str, status: str, duration_ms: int, message: str | None = None,
    ) -> JobExecution:
        execution = JobExecution(
            job_id=job_id,
            timestamp=self.clock().isoformat(),
            status=status,
            duration_ms=duration_ms,
            message=message,
        )
        buf = self._executions.setdefault(job_id, deque(maxlen=self.capacity))
        buf.appendleft(execution)
        return execution

    def history(self, job_id: str, limit: int | None = None) -> list[JobExecution]:
        entries = list(self._executions.get(job_id, ()))
        return entries[:limit] if limit is not None else entries

    def last_status(self, job_id: str) -> JobExecution | None:
        buf = self._executions.get(job_id)
        return buf[0] if buf else None


def describe_jobs(
    history: JobHistory, environ: Mapping[str, str] | None = None,
) -> list[dict]:
    """Status rows for every agent job: dependency check plus last execution."""
    environ = os.environ if environ is None else environ
    rows = []
    for job in AGENT_JOBS:
        missing = [dep for dep in job["dependencies"] if not environ.get(dep)]
        last = history.last_status(job["id"])
        rows.append({
            "id": job["id"],
            "name": job["name"],
            "description": job["description"],
            "schedule": job["schedule"],
            "dependencies_ok": not missing,
            "missing_dependencies": missing,
            "last_run": last.timestamp if last else None,
            "last_status": last.status if last else None,
            "last_error": last.message if last and last.status == "error" else None,
            "last_duration_ms": last.duration_ms if last else None,
        })
    return rows
