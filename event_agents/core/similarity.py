"""Weighted attribute similarity between two annotated events.

Each attribute class is compared with a case-insensitive Jaccard index and the
per-class scores are combined with fixed weights. License plates carry the most
weight because an exact plate match is close to an identity link; generic tags
are weak evidence.
"""

from __future__ import annotations

from typing import Iterable

from event_agents.models import Event

ATTRIBUTE_WEIGHTS = {
    "license_plates": 0.40,
    "vehicles": 0.25,
    "tags": 0.15,
    "objects": 0.10,
    "clothing_colors": 0.10,
}

# Only high-signal classes are quoted in explanations
_SHARED_PREFIXES = {
    "license_plates": "plate",
    "vehicles": "vehicle",
}


def _normalize(values: Iterable[str]) -> set[str]:
    return {v.strip().lower() for v in values if v and v.strip()}


def jaccard_similarity(set_a: Iterable[str], set_b: Iterable[str]) -> float:
    """Jaccard index of two string collections, ignoring case.

    Two empty collections score 0.0.
    """
    a = _normalize(set_a)
    b = _normalize(set_b)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def _shared_values(values_a: Iterable[str], values_b: Iterable[str]) -> list[str]:
    """Values of ``values_a`` also present in ``values_b``, first-seen order."""
    other = _normalize(values_b)
    shared: list[str] = []
    seen: set[str] = set()
    for value in values_a:
        key = value.strip().lower()
        if key in other and key not in seen:
            seen.add(key)
            shared.append(value)
    return shared


def event_similarity(event_a: Event, event_b: Event) -> tuple[float, list[str]]:
    """Return (similarity in [0, 1], shared plate/vehicle tokens) for two events."""
    total = 0.0
    shared: list[str] = []

    for attr, weight in ATTRIBUTE_WEIGHTS.items():
        values_a = getattr(event_a, attr)
        values_b = getattr(event_b, attr)
        score = jaccard_similarity(values_a, values_b)
        total += score * weight

        prefix = _SHARED_PREFIXES.get(attr)
        if prefix and score > 0:
            shared.extend(f"{prefix}:{v}" for v in _shared_values(values_a, values_b))

    return min(max(total, 0.0), 1.0), shared
