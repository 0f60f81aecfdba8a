"""Configuration for the event agent pipeline."""

import os
from pathlib import Path

# Base data directory; all runtime data stored here
DATA_DIR = Path("data")
DB_PATH = DATA_DIR / "agents.db"
GRAPH_DIR = DATA_DIR / "graph"

# Overrides GRAPH_DIR; also required before scheduled runs are reported healthy
GRAPH_DIR_ENV = "EVENT_GRAPH_DIR"

# Environment variables that must be present for a scheduled run to make sense
GRAPH_ENV_VARS = [GRAPH_DIR_ENV]
ANNOTATION_ENV_VARS = ["GEMINI_API_KEY"]

AGENT_TYPES = ("timeline", "correlation", "anomaly")

AGENT_DEFAULTS = {
    "timeline": {
        "enabled": False,
        "batch_size": 100,
        "confidence_threshold": 0.90,
        "min_group_size_cron": 10,
        "min_group_size_context": 5,
        "max_execution_ms": 7000,
        "overlap_threshold": 10,
        "scan_new_events_only": True,
        "last_processed_timestamp": None,
        "options": {},
    },
    "correlation": {
        "enabled": False,
        "batch_size": 100,
        "confidence_threshold": 0.90,
        "min_group_size_cron": 5,
        "min_group_size_context": 5,
        "max_execution_ms": 7000,
        "overlap_threshold": 10,
        "scan_new_events_only": True,
        "last_processed_timestamp": None,
        "options": {},
    },
    "anomaly": {
        "enabled": False,
        "batch_size": 100,
        "confidence_threshold": 0.90,
        "min_group_size_cron": 10,
        "min_group_size_context": 10,
        "max_execution_ms": 7000,
        "overlap_threshold": 10,
        "scan_new_events_only": True,
        "last_processed_timestamp": None,
        "options": {
            "time_window_hours": 1,
            "min_people_for_gathering": 10,
        },
    },
}

PIPELINE_CONFIG = {
    # Run governor
    "safety_floor_ms": 1000,

    # Job history ring buffer
    "history_capacity": 100,

    # Executive summaries
    "summary_max_identifiers": 5,
}


def default_agent_config(agent_type: str) -> dict:
    """Return a fresh copy of the default tunables for an agent type."""
    if agent_type not in AGENT_DEFAULTS:
        raise ValueError(f"Unknown agent type: {agent_type}")
    defaults = dict(AGENT_DEFAULTS[agent_type])
    defaults["options"] = dict(defaults["options"])
    return defaults


def is_annotation_configured() -> bool:
    """True when the upstream vision annotator has its credentials set."""
    return all(os.environ.get(name) for name in ANNOTATION_ENV_VARS)


def resolve_graph_dir(environ=None) -> Path:
    """Graph directory from ``EVENT_GRAPH_DIR``, falling back to ``GRAPH_DIR``."""
    environ = os.environ if environ is None else environ
    value = environ.get(GRAPH_DIR_ENV)
    return Path(value) if value else GRAPH_DIR
