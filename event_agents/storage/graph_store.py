"""Kuzu graph database holding annotated events and the agents' group tags.

Annotation values (tags, objects, plates, ...) are Attribute nodes reached
through HAS_ATTRIBUTE edges. A discovered group is an AgentGroup node; tagging
an event creates a TAGGED edge to it. Tags are only ever added here.
"""

from __future__ import annotations

import logging
from pathlib import Path

import kuzu

from event_agents.config import resolve_graph_dir
from event_agents.models import Event, FetchCriteria

logger = logging.getLogger(__name__)

# Event field -> Attribute.kind
ATTRIBUTE_KINDS = {
    "tags": "tag",
    "objects": "object",
    "weapons": "weapon",
    "vehicles": "vehicle",
    "license_plates": "plate",
    "clothing_colors": "color",
}
_FIELD_BY_KIND = {kind: name for name, kind in ATTRIBUTE_KINDS.items()}

_SCALAR_FIELDS = (
    "event_id", "timestamp", "channel_id", "channel_name", "region",
    "latitude", "longitude", "image_url", "caption", "annotated_at", "people_count",
)

_EVENT_COLUMNS = (
    "e.id, e.event_id, e.captured_at, e.channel_id, e.channel_name, e.region, "
    "e.latitude, e.longitude, e.image_url, e.caption, e.annotated_at, e.people_count"
)


class GraphStore:
    """Kuzu-backed event graph."""

    def __init__(self, graph_dir: Path | None = None) -> None:
        self.graph_dir = Path(graph_dir) if graph_dir else resolve_graph_dir()
        self._db: kuzu.Database | None = None
        self._conn: kuzu.Connection | None = None

    def initialize(self) -> None:
        # Kuzu creates the database directory itself; only ensure the parent exists
        self.graph_dir.parent.mkdir(parents=True, exist_ok=True)
        self._db = kuzu.Database(str(self.graph_dir))
        self._conn = kuzu.Connection(self._db)
        self._create_schema()

    def close(self) -> None:
        self._conn = None
        self._db = None

    @property
    def conn(self) -> kuzu.Connection:
        assert self._conn is not None, "GraphStore not initialized — call initialize() first"
        return self._conn

    def _create_schema(self) -> None:
        stmts = [
            """CREATE NODE TABLE IF NOT EXISTS Event (
                id STRING,
                event_id STRING,
                captured_at INT64,
                channel_id STRING,
                channel_name STRING,
                region STRING,
                latitude DOUBLE,
                longitude DOUBLE,
                image_url STRING,
                caption STRING,
                annotated_at STRING,
                people_count INT64,
                PRIMARY KEY (id)
            )""",
            """CREATE NODE TABLE IF NOT EXISTS Attribute (
                id STRING,
                kind STRING,
                value STRING,
                PRIMARY KEY (id)
            )""",
            """CREATE NODE TABLE IF NOT EXISTS AgentGroup (
                id STRING,
                agent_type STRING,
                created_at STRING,
                PRIMARY KEY (id)
            )""",
            """CREATE REL TABLE IF NOT EXISTS HAS_ATTRIBUTE (
                FROM Event TO Attribute
            )""",
            """CREATE REL TABLE IF NOT EXISTS TAGGED (
                FROM Event TO AgentGroup,
                created_at STRING
            )""",
        ]
        for stmt in stmts:
            try:
                self.conn.execute(stmt)
            except RuntimeError as e:
                logger.debug("Schema statement skipped: %s", e)

    # ── Event writes (upstream annotation sync) ──

    def upsert_event(self, event: Event) -> None:
        """Create or refresh an event node and replace its attribute edges."""
        params = {"id": event.id}
        assignments = []
        for name in _SCALAR_FIELDS:
            value = getattr(event, name)
            if value is None:
                continue
            column = "captured_at" if name == "timestamp" else name
            assignments.append(f"e.{column} = ${column}")
            params[column] = value

        self.conn.execute(
            "MERGE (e:Event {id: $id}) SET " + ", ".join(assignments),
            params,
        )
        self.conn.execute(
            "MATCH (e:Event {id: $id})-[r:HAS_ATTRIBUTE]->(:Attribute) DELETE r",
            {"id": event.id},
        )

        for name, kind in ATTRIBUTE_KINDS.items():
            seen: set[str] = set()
            for value in getattr(event, name):
                if not value or value in seen:
                    continue
                seen.add(value)
                attr_id = f"{kind}:{value}"
                self.conn.execute(
                    "MERGE (a:Attribute {id: $id}) SET a.kind = $kind, a.value = $value",
                    {"id": attr_id, "kind": kind, "value": value},
                )
                self.conn.execute(
                    "MATCH (e:Event {id: $eid}), (a:Attribute {id: $aid}) "
                    "CREATE (e)-[:HAS_ATTRIBUTE]->(a)",
                    {"eid": event.id, "aid": attr_id},
                )

    # ── Candidate fetch ──

    def get_event(self, event_id: str) -> Event | None:
        result = self.conn.execute(
            f"MATCH (e:Event {{id: $id}}) RETURN {_EVENT_COLUMNS}",
            {"id": event_id},
        )
        if not result.has_next():
            return None
        rows = [result.get_next()]
        return self._hydrate(rows)[0]

    def fetch_candidates(self, criteria: FetchCriteria) -> list[Event]:
        """Annotated events not yet tagged by ``criteria.agent_type``.

        Ordered newest first (or nearest to ``near_timestamp``) with the event
        id as tie-breaker so offset pagination makes progress.
        """
        params = {
            "since": criteria.since,
            "agent_type": criteria.agent_type,
            "exclude_id": criteria.exclude_id or "",
        }
        if criteria.near_timestamp is not None:
            returns = f"{_EVENT_COLUMNS}, abs(e.captured_at - $near) AS distance"
            order = "distance, e.id"
            params["near"] = criteria.near_timestamp
        else:
            returns = _EVENT_COLUMNS
            order = "e.captured_at DESC, e.id"

        anomaly_filter = ""
        if criteria.anomalies_only:
            anomaly_filter = (
                "AND (coalesce(e.people_count, 0) >= $min_people "
                "OR EXISTS { MATCH (e)-[:HAS_ATTRIBUTE]->(a:Attribute) "
                "WHERE a.kind = 'weapon' "
                "OR (a.kind = 'tag' AND list_contains($keywords, lower(trim(a.value)))) }) "
            )
            params["min_people"] = criteria.min_people
            params["keywords"] = list(criteria.anomaly_keywords)

        query = (
            "MATCH (e:Event) "
            "WHERE e.captured_at > $since "
            "AND e.annotated_at IS NOT NULL "
            "AND e.id <> $exclude_id "
            "AND NOT EXISTS { MATCH (e)-[:TAGGED]->(g:AgentGroup) WHERE g.agent_type = $agent_type } "
            f"{anomaly_filter}"
            f"RETURN {returns} ORDER BY {order} "
            f"SKIP {int(criteria.offset)} LIMIT {int(criteria.limit)}"
        )
        result = self.conn.execute(query, params)
        rows = []
        while result.has_next():
            rows.append(result.get_next())
        return self._hydrate(rows)

    def _hydrate(self, rows: list[list]) -> list[Event]:
        """Build Event snapshots from scalar rows plus one attribute lookup."""
        if not rows:
            return []
        ids = [row[0] for row in rows]
        attrs: dict[str, dict[str, list[str]]] = {i: {} for i in ids}
        result = self.conn.execute(
            "MATCH (e:Event)-[:HAS_ATTRIBUTE]->(a:Attribute) "
            "WHERE list_contains($ids, e.id) "
            "RETURN e.id, a.kind, a.value ORDER BY e.id, a.kind, a.value",
            {"ids": ids},
        )
        while result.has_next():
            eid, kind, value = result.get_next()
            attrs[eid].setdefault(kind, []).append(value)

        events = []
        for row in rows:
            values = attrs[row[0]]
            events.append(Event(
                id=row[0],
                event_id=row[1] or "",
                timestamp=row[2] or 0,
                channel_id=row[3] or "",
                channel_name=row[4],
                region=row[5],
                latitude=row[6],
                longitude=row[7],
                image_url=row[8],
                caption=row[9],
                annotated_at=row[10],
                people_count=row[11] or 0,
                **{
                    _FIELD_BY_KIND[kind]: tuple(vals)
                    for kind, vals in values.items() if kind in _FIELD_BY_KIND
                },
            ))
        return events

    # ── Tags ──

    def count_existing_tags(
        self, agent_type: str, event_ids: list[str],
    ) -> tuple[int, list[str]]:
        """Count events already tagged by ``agent_type`` and list their group ids."""
        if not event_ids:
            return 0, []
        result = self.conn.execute(
            "MATCH (e:Event)-[:TAGGED]->(g:AgentGroup) "
            "WHERE g.agent_type = $agent_type AND list_contains($ids, e.id) "
            "RETURN e.id, g.id",
            {"agent_type": agent_type, "ids": list(event_ids)},
        )
        tagged: set[str] = set()
        group_ids: set[str] = set()
        while result.has_next():
            eid, gid = result.get_next()
            tagged.add(eid)
            group_ids.add(gid)
        return len(tagged), sorted(group_ids)

    def apply_tags(
        self, agent_type: str, group_id: str, event_ids: list[str], created_at: str = "",
    ) -> int:
        """Tag every existing event in ``event_ids`` with ``group_id``.

        Returns how many events were tagged; unknown ids are skipped.
        """
        if not event_ids:
            return 0
        self.conn.execute(
            "MERGE (g:AgentGroup {id: $id}) SET g.agent_type = $agent_type, g.created_at = $cat",
            {"id": group_id, "agent_type": agent_type, "cat": created_at},
        )
        result = self.conn.execute(
            "MATCH (e:Event), (g:AgentGroup {id: $gid}) "
            "WHERE list_contains($ids, e.id) "
            "CREATE (e)-[:TAGGED {created_at: $cat}]->(g) "
            "RETURN e.id",
            {"gid": group_id, "ids": list(event_ids), "cat": created_at},
        )
        tagged = 0
        while result.has_next():
            result.get_next()
            tagged += 1
        logger.info("Tagged %d events with %s", tagged, group_id)
        return tagged

    def get_group_events(self, group_id: str) -> list[str]:
        """Ids of all events tagged with a group id, oldest first."""
        result = self.conn.execute(
            "MATCH (e:Event)-[:TAGGED]->(g:AgentGroup {id: $id}) "
            "RETURN e.id, e.captured_at ORDER BY e.captured_at, e.id",
            {"id": group_id},
        )
        ids = []
        while result.has_next():
            ids.append(result.get_next()[0])
        return ids

    def get_event_groups(self, event_id: str, agent_type: str | None = None) -> list[str]:
        """Group ids attached to one event, optionally for a single agent type."""
        result = self.conn.execute(
            "MATCH (e:Event {id: $id})-[:TAGGED]->(g:AgentGroup) "
            "RETURN g.id, g.agent_type ORDER BY g.id",
            {"id": event_id},
        )
        groups = []
        while result.has_next():
            gid, gtype = result.get_next()
            if agent_type is None or gtype == agent_type:
                groups.append(gid)
        return groups
