"""Agent runner: one execution of a timeline, correlation or anomaly job.

The runner scans candidate batches under the governor's budget and tags the
best group unless the duplicate guard rejects it. Store errors end a run as
``failed``. Bookkeeping writes are best-effort and never fail a run.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from event_agents.config import default_agent_config, is_annotation_configured
from event_agents.core.agents import get_agent
from event_agents.core.duplicate_guard import check_duplicate_tagging
from event_agents.core.governor import RunGovernor, scan_batches
from event_agents.core.history import JobHistory
from event_agents.models import (
    AgentConfig,
    AgentRun,
    AgentType,
    DuplicateFindings,
    EmptyFindings,
    Event,
    FetchCriteria,
    RunMode,
    RunResult,
    RunStatus,
    generate_group_id,
)
from event_agents.storage.graph_store import GraphStore
from event_agents.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

_HISTORY_STATUS = {
    RunStatus.COMPLETED.value: "success",
    RunStatus.DISCARDED.value: "skipped",
    RunStatus.FAILED.value: "error",
}


class AnchorNotFound(LookupError):
    """Context-mode anchor event does not exist in the graph."""


class AgentRunner:
    """Runs agent jobs against an event graph and a bookkeeping store."""

    def __init__(
        self,
        graph: GraphStore | None,
        sqlite: SQLiteStore,
        history: JobHistory | None = None,
        clock: Callable[[], float] | None = None,
        annotation_check: Callable[[], bool] = is_annotation_configured,
    ) -> None:
        self.graph = graph
        self.sqlite = sqlite
        self.history = history or JobHistory()
        self.clock = clock or time.monotonic
        self.annotation_check = annotation_check

    async def run(
        self,
        agent_type: str,
        manual: bool = False,
        anchor_event_id: str | None = None,
    ) -> RunResult:
        """Execute one run and return its structured outcome. Never raises for store errors."""
        agent_type = AgentType(agent_type).value
        agent = get_agent(agent_type)
        if anchor_event_id:
            mode = RunMode.CONTEXT.value
        elif manual:
            mode = RunMode.MANUAL.value
        else:
            mode = RunMode.CRON.value

        if self.graph is None:
            return self._skipped(agent_type, mode, "Event graph not configured")
        if not self.annotation_check():
            return self._skipped(agent_type, mode, "Annotation service not configured")

        config = await self._load_config(agent_type)
        if mode == RunMode.CRON.value and not config.enabled:
            return self._skipped(agent_type, mode, "Agent disabled")

        started = self.clock()
        min_group_size = config.min_group_size(mode)
        run = AgentRun(
            agent_type=agent_type,
            run_mode=mode,
            anchor_event_id=anchor_event_id,
            batch_size=config.batch_size,
            confidence_threshold=config.confidence_threshold,
            min_group_size=min_group_size,
            max_execution_ms=config.max_execution_ms,
        )
        await self._bookkeep("create_run", run)
        await self._log(run, "info", f"Starting {agent_type} agent ({mode} mode)")

        governor = RunGovernor(
            config.max_execution_ms,
            clock=self.clock,
            single_batch=mode == RunMode.CONTEXT.value,
        )
        latest_timestamp = 0
        try:
            anchor = None
            if anchor_event_id:
                anchor = self._get_anchor(anchor_event_id)
                await self._log(run, "info", f"Anchor event: {anchor.id}")

            since = config.incremental_since(mode)
            if since:
                await self._log(run, "info", f"Incremental scan since {since}")

            async def fetch_batch(index: int) -> list[Event]:
                criteria = FetchCriteria(
                    agent_type=agent_type,
                    since=since,
                    exclude_id=anchor_event_id,
                    offset=index * config.batch_size,
                    limit=config.batch_size,
                    near_timestamp=(
                        anchor.timestamp
                        if anchor is not None and agent.orders_by_anchor_distance
                        else None
                    ),
                    **agent.fetch_filter(config),
                )
                return self.graph.fetch_candidates(criteria)

            def process_batch(events: list[Event], index: int):
                batch = [anchor, *events] if anchor is not None else events
                logger.debug("[%s] batch %d: %d events", run.id, index + 1, len(batch))
                return agent.process_batch(
                    batch, config, min_group_size, should_stop=governor.time_exceeded,
                )

            outcome = await scan_batches(governor, fetch_batch, process_batch, agent.is_better)
            latest_timestamp = outcome.latest_timestamp
            run.nodes_processed = outcome.nodes_processed
            run.batches_completed = outcome.batches_completed
            await self._log(
                run, "info",
                f"Scanned {outcome.nodes_processed} events in {outcome.batches_completed} batch(es)",
                {"stop_reason": outcome.stop_reason},
            )

            best = outcome.best
            run.nodes_matched = best.size if best is not None else 0
            await self._bookkeep(
                "update_run", run.id,
                nodes_processed=run.nodes_processed,
                batches_completed=run.batches_completed,
                nodes_matched=run.nodes_matched,
            )

            if best is None:
                run.status = RunStatus.COMPLETED.value
                run.findings = EmptyFindings(
                    message=f"No {agent.group_label} found meeting minimum size of {min_group_size}",
                )
                await self._log(run, "info", run.findings.message)
            else:
                await self._finish_group(run, agent, config, best)

        except Exception as e:
            logger.exception("[%s] %s agent failed", run.id, agent_type)
            run.status = RunStatus.FAILED.value
            run.error_message = str(e) or type(e).__name__
            await self._log(run, "error", f"Run failed: {run.error_message}")

        run.processing_time_ms = int((self.clock() - started) * 1000)
        await self._bookkeep(
            "finish_run", run.id, run.status,
            nodes_processed=run.nodes_processed,
            nodes_matched=run.nodes_matched,
            nodes_tagged=run.nodes_tagged,
            batches_completed=run.batches_completed,
            group_id=run.group_id,
            group_size=run.group_size,
            executive_summary=run.executive_summary,
            findings=run.findings,
            error_message=run.error_message,
            processing_time_ms=run.processing_time_ms,
        )

        if (
            run.status == RunStatus.COMPLETED.value
            and mode != RunMode.CONTEXT.value
            and config.scan_new_events_only
            and latest_timestamp > 0
        ):
            await self._bookkeep("advance_watermark", agent_type, latest_timestamp)

        self._record_history(run)
        return RunResult(
            agent_type=agent_type,
            status=run.status,
            run_id=run.id,
            run_mode=mode,
            reason=_reason(run),
            error=run.error_message,
            nodes_processed=run.nodes_processed,
            batches_completed=run.batches_completed,
            group_id=run.group_id,
            group_size=run.group_size,
            nodes_tagged=run.nodes_tagged,
            executive_summary=run.executive_summary,
            duration_ms=run.processing_time_ms,
        )

    async def _finish_group(self, run: AgentRun, agent, config: AgentConfig, best) -> None:
        """Duplicate-check the winning group, then tag and summarize it."""
        await self._log(run, "info", f"Best {agent.group_label}: {agent.describe(best)}")

        check = check_duplicate_tagging(
            self.graph, run.agent_type, best.event_ids, config.overlap_threshold,
        )
        if check.is_duplicate:
            run.status = RunStatus.DISCARDED.value
            run.findings = DuplicateFindings(
                existing_count=check.existing_count,
                existing_group_ids=check.existing_group_ids,
            )
            await self._log(
                run, "warn",
                f"Discarded: {check.existing_count} events already tagged "
                f"(threshold {config.overlap_threshold})",
                {"existing_group_ids": check.existing_group_ids},
            )
            return

        group_id = generate_group_id(run.agent_type)
        tagged = self.graph.apply_tags(
            run.agent_type, group_id, best.event_ids,
            datetime.now(timezone.utc).isoformat(),
        )
        run.status = RunStatus.COMPLETED.value
        run.group_id = group_id
        run.group_size = best.size
        run.nodes_tagged = tagged
        run.findings = agent.findings(best)
        run.executive_summary = agent.summarize(best)
        await self._log(run, "info", f"Tagged {tagged} events with {group_id}")

    def _get_anchor(self, anchor_event_id: str) -> Event:
        anchor = self.graph.get_event(anchor_event_id)
        if anchor is None:
            raise AnchorNotFound(f"Anchor event not found: {anchor_event_id}")
        return anchor

    async def _load_config(self, agent_type: str) -> AgentConfig:
        try:
            return await self.sqlite.get_agent_config(agent_type)
        except Exception:
            logger.exception("Failed to load %s config, using defaults", agent_type)
            return AgentConfig(agent_type=agent_type, **default_agent_config(agent_type))

    async def _bookkeep(self, method: str, *args, **kwargs) -> None:
        try:
            await getattr(self.sqlite, method)(*args, **kwargs)
        except Exception:
            logger.exception("Bookkeeping call %s failed", method)

    async def _log(
        self, run: AgentRun, level: str, message: str, metadata: dict | None = None,
    ) -> None:
        log_level = {"warn": logging.WARNING, "error": logging.ERROR}.get(level, logging.INFO)
        logger.log(log_level, "[%s] %s", run.id, message)
        await self._bookkeep("append_log", run.id, level, message, metadata)

    def _skipped(self, agent_type: str, mode: str, reason: str) -> RunResult:
        logger.info("Skipping %s agent: %s", agent_type, reason)
        return RunResult(agent_type=agent_type, status="skipped", run_mode=mode, reason=reason)

    def _record_history(self, run: AgentRun) -> None:
        status = _HISTORY_STATUS[run.status]
        if run.status == RunStatus.COMPLETED.value and run.group_id is None:
            status = "skipped"
        message = run.error_message or run.executive_summary or _reason(run)
        try:
            self.history.record(
                f"agent-{run.agent_type}", status, run.processing_time_ms or 0, message,
            )
        except Exception:
            logger.exception("Failed to record job history for %s", run.id)


def _reason(run: AgentRun) -> str | None:
    if isinstance(run.findings, EmptyFindings):
        return run.findings.message
    if isinstance(run.findings, DuplicateFindings):
        return run.findings.reason
    return None
