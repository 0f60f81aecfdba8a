"""SQLite storage for agent configuration, run records and run logs."""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from event_agents.config import DB_PATH, default_agent_config
from event_agents.models import AgentConfig, AgentRun, RunStatus

_SCHEMA = """
CREATE TABLE IF NOT EXISTS agent_config (
    agent_type                TEXT PRIMARY KEY,
    enabled                   INTEGER NOT NULL,
    batch_size                INTEGER NOT NULL,
    confidence_threshold      REAL NOT NULL,
    min_group_size_cron       INTEGER NOT NULL,
    min_group_size_context    INTEGER NOT NULL,
    max_execution_ms          INTEGER NOT NULL,
    overlap_threshold         INTEGER NOT NULL,
    scan_new_events_only      INTEGER NOT NULL,
    last_processed_timestamp  INTEGER,
    options                   TEXT,
    updated_at                TEXT
);

CREATE TABLE IF NOT EXISTS agent_runs (
    id                    TEXT PRIMARY KEY,
    agent_type            TEXT NOT NULL,
    run_mode              TEXT NOT NULL,
    status                TEXT NOT NULL,
    anchor_event_id       TEXT,
    batch_size            INTEGER,
    confidence_threshold  REAL,
    min_group_size        INTEGER,
    max_execution_ms      INTEGER,
    nodes_processed       INTEGER DEFAULT 0,
    nodes_matched         INTEGER DEFAULT 0,
    nodes_tagged          INTEGER DEFAULT 0,
    batches_completed     INTEGER DEFAULT 0,
    group_id              TEXT,
    group_size            INTEGER DEFAULT 0,
    executive_summary     TEXT,
    findings              TEXT,
    error_message         TEXT,
    processing_time_ms    INTEGER,
    started_at            TEXT NOT NULL,
    completed_at          TEXT
);

CREATE INDEX IF NOT EXISTS idx_runs_agent ON agent_runs(agent_type, started_at);

CREATE TABLE IF NOT EXISTS agent_run_logs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id      TEXT NOT NULL,
    timestamp   TEXT NOT NULL,
    level       TEXT NOT NULL,
    message     TEXT NOT NULL,
    metadata    TEXT,
    FOREIGN KEY (run_id) REFERENCES agent_runs(id)
);
"""

_CONFIG_FIELDS = (
    "enabled", "batch_size", "confidence_threshold", "min_group_size_cron",
    "min_group_size_context", "max_execution_ms", "overlap_threshold",
    "scan_new_events_only", "last_processed_timestamp", "options",
)

_RUN_UPDATE_FIELDS = {
    "status", "nodes_processed", "nodes_matched", "nodes_tagged", "batches_completed",
    "group_id", "group_size", "executive_summary", "findings", "error_message",
    "processing_time_ms", "completed_at",
}

_TERMINAL_STATUSES = {
    RunStatus.COMPLETED.value, RunStatus.DISCARDED.value, RunStatus.FAILED.value,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode(value):
    if is_dataclass(value):
        return json.dumps(asdict(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


class SQLiteStore:
    """Async SQLite store for run bookkeeping."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DB_PATH
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "SQLiteStore not initialized — call initialize() first"
        return self._db

    # ── Agent configuration ──

    async def get_agent_config(self, agent_type: str) -> AgentConfig:
        """Stored configuration for an agent type, or the defaults if none."""
        defaults = default_agent_config(agent_type)
        async with self.db.execute(
            "SELECT * FROM agent_config WHERE agent_type = ?", (agent_type,)
        ) as cur:
            row = await cur.fetchone()
        if not row:
            return AgentConfig(agent_type=agent_type, **defaults)
        return _row_to_config(dict(row), defaults)

    async def update_agent_config(self, agent_type: str, **updates) -> AgentConfig:
        unknown = set(updates) - set(_CONFIG_FIELDS)
        if unknown:
            raise ValueError(f"Unknown agent config fields: {sorted(unknown)}")

        current = await self.get_agent_config(agent_type)
        merged = {name: getattr(current, name) for name in _CONFIG_FIELDS}
        merged.update(updates)

        await self.db.execute(
            """INSERT OR REPLACE INTO agent_config
            (agent_type, enabled, batch_size, confidence_threshold, min_group_size_cron,
             min_group_size_context, max_execution_ms, overlap_threshold,
             scan_new_events_only, last_processed_timestamp, options, updated_at)
            VALUES (?,?,?,?,?,?,?,?,?,?,?,?)""",
            (
                agent_type, int(merged["enabled"]), merged["batch_size"],
                merged["confidence_threshold"], merged["min_group_size_cron"],
                merged["min_group_size_context"], merged["max_execution_ms"],
                merged["overlap_threshold"], int(merged["scan_new_events_only"]),
                merged["last_processed_timestamp"], json.dumps(merged["options"] or {}),
                _now(),
            ),
        )
        await self.db.commit()
        return AgentConfig(agent_type=agent_type, **merged)

    async def advance_watermark(self, agent_type: str, timestamp: int) -> bool:
        """Move the incremental-scan watermark forward; never backwards.

        Returns True if the stored watermark changed.
        """
        async with self.db.execute(
            "SELECT 1 FROM agent_config WHERE agent_type = ?", (agent_type,)
        ) as cur:
            exists = await cur.fetchone() is not None
        if not exists:
            await self.update_agent_config(agent_type)

        cur = await self.db.execute(
            "UPDATE agent_config SET last_processed_timestamp = ?, updated_at = ? "
            "WHERE agent_type = ? "
            "AND (last_processed_timestamp IS NULL OR last_processed_timestamp < ?)",
            (timestamp, _now(), agent_type, timestamp),
        )
        await self.db.commit()
        return cur.rowcount > 0

    # ── Runs ──

    async def create_run(self, run: AgentRun) -> None:
        await self.db.execute(
            """INSERT INTO agent_runs
            (id, agent_type, run_mode, status, anchor_event_id, batch_size,
             confidence_threshold, min_group_size, max_execution_ms, started_at)
            VALUES (?,?,?,?,?,?,?,?,?,?)""",
            (
                run.id, run.agent_type, run.run_mode, run.status, run.anchor_event_id,
                run.batch_size, run.confidence_threshold, run.min_group_size,
                run.max_execution_ms, run.started_at,
            ),
        )
        await self.db.commit()

    async def update_run(self, run_id: str, **fields) -> None:
        """Update counters or outcome fields on a run that is still running."""
        unknown = set(fields) - _RUN_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")
        if not fields:
            return
        columns = ", ".join(f"{name} = ?" for name in fields)
        await self.db.execute(
            f"UPDATE agent_runs SET {columns} WHERE id = ? AND status = ?",
            (*(_encode(v) for v in fields.values()), run_id, RunStatus.RUNNING.value),
        )
        await self.db.commit()

    async def finish_run(self, run_id: str, status: str, **fields) -> bool:
        """Move a running run into a terminal status. Happens at most once.

        Returns False if the run was already finished (or does not exist).
        """
        if status not in _TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal run status: {status}")
        fields.setdefault("completed_at", _now())
        unknown = set(fields) - _RUN_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")

        columns = ", ".join(f"{name} = ?" for name in ["status", *fields])
        cur = await self.db.execute(
            f"UPDATE agent_runs SET {columns} WHERE id = ? AND status = ?",
            (status, *(_encode(v) for v in fields.values()), run_id, RunStatus.RUNNING.value),
        )
        await self.db.commit()
        return cur.rowcount > 0

    async def get_run(self, run_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM agent_runs WHERE id = ?", (run_id,)
        ) as cur:
            row = await cur.fetchone()
        return _decode_run(dict(row)) if row else None

    async def get_recent_runs(self, agent_type: str, limit: int = 10) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM agent_runs WHERE agent_type = ? "
            "ORDER BY started_at DESC LIMIT ?",
            (agent_type, limit),
        ) as cur:
            return [_decode_run(dict(r)) async for r in cur]

    # ── Run logs ──

    async def append_log(
        self, run_id: str, level: str, message: str, metadata: dict | None = None,
    ) -> None:
        await self.db.execute(
            "INSERT INTO agent_run_logs (run_id, timestamp, level, message, metadata) "
            "VALUES (?, ?, ?, ?, ?)",
            (run_id, _now(), level, message, json.dumps(metadata) if metadata else None),
        )
        await self.db.commit()

    async def get_run_logs(self, run_id: str, limit: int = 100) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM agent_run_logs WHERE run_id = ? ORDER BY id LIMIT ?",
            (run_id, limit),
        ) as cur:
            rows = [dict(r) async for r in cur]
        for row in rows:
            row["metadata"] = json.loads(row["metadata"]) if row["metadata"] else None
        return rows


def _row_to_config(row: dict, defaults: dict) -> AgentConfig:
    """Convert an agent_config row to AgentConfig, filling gaps from defaults."""
    def pick(name):
        value = row.get(name)
        return defaults[name] if value is None and name != "last_processed_timestamp" else value

    return AgentConfig(
        agent_type=row["agent_type"],
        enabled=bool(pick("enabled")),
        batch_size=pick("batch_size"),
        confidence_threshold=pick("confidence_threshold"),
        min_group_size_cron=pick("min_group_size_cron"),
        min_group_size_context=pick("min_group_size_context"),
        max_execution_ms=pick("max_execution_ms"),
        overlap_threshold=pick("overlap_threshold"),
        scan_new_events_only=bool(pick("scan_new_events_only")),
        last_processed_timestamp=row.get("last_processed_timestamp"),
        options=json.loads(row["options"]) if row.get("options") else defaults["options"],
    )


def _decode_run(row: dict) -> dict:
    if row.get("findings"):
        row["findings"] = json.loads(row["findings"])
    return row
