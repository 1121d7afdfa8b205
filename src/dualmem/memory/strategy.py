"""Routing policy: which memory layer(s) should answer a query.

Every function here is pure. The selector only needs to know whether the
query's cache key is present, which the engine passes in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from dualmem.memory.models import MemoryQuery

Route = Literal["system1", "system2", "both"]
Policy = Literal["system1_priority", "system2_priority", "balanced"]

POLICIES: tuple[str, ...] = ("system1_priority", "system2_priority", "balanced")

_URGENCY = {"critical": 1.0, "high": 0.8, "medium": 0.5, "low": 0.2}

_TYPE_COMPLEXITY = {
    "reasoning": 0.4,
    "quality": 0.3,
    "pattern": 0.2,
    "knowledge": 0.1,
    "preference": 0.0,
}

_AFFINITY = {
    "knowledge": (0.8, 0.3),
    "pattern": (0.9, 0.2),
    "preference": (0.9, 0.1),
    "reasoning": (0.2, 0.9),
    "quality": (0.3, 0.8),
}


@dataclass(frozen=True)
class RoutingFactors:
    urgency: float
    complexity: float
    system1_affinity: float
    system2_affinity: float
    cache_bonus: float


def urgency_score(urgency: str | None) -> float:
    return _URGENCY.get(urgency or "", 0.5)


def query_complexity(query: MemoryQuery) -> float:
    """Estimate how much deliberate reasoning a query needs, in [0.3, 1.0]."""
    complexity = 0.3
    if len(query.query) > 100:
        complexity += 0.2
    if len(query.query) > 200:
        complexity += 0.2
    if query.context and len(query.context) > 3:
        complexity += 0.2
    complexity += _TYPE_COMPLEXITY.get(query.type, 0.0)
    return min(1.0, complexity)


def type_affinity(query_type: str) -> tuple[float, float]:
    return _AFFINITY.get(query_type, (0.5, 0.5))


def routing_factors(query: MemoryQuery, cached: bool) -> RoutingFactors:
    s1_affinity, s2_affinity = type_affinity(query.type)
    return RoutingFactors(
        urgency=urgency_score(query.urgency),
        complexity=query_complexity(query),
        system1_affinity=s1_affinity,
        system2_affinity=s2_affinity,
        cache_bonus=0.8 if cached else 0.2,
    )


def system1_score(f: RoutingFactors) -> float:
    return (
        f.urgency * 0.4
        + (1 - f.complexity) * 0.3
        + f.system1_affinity * 0.2
        + f.cache_bonus * 0.1
    )


def system2_score(f: RoutingFactors) -> float:
    return f.complexity * 0.4 + (1 - f.urgency) * 0.2 + f.system2_affinity * 0.3 + 0.1


class StrategySelector:
    """Pick a route for a query under a fixed policy."""

    def __init__(self, policy: Policy = "balanced") -> None:
        self.policy = policy

    def scores(self, query: MemoryQuery, cached: bool = False) -> tuple[float, float]:
        factors = routing_factors(query, cached)
        return system1_score(factors), system2_score(factors)

    def select(self, query: MemoryQuery, cached: bool = False) -> Route:
        s1, s2 = self.scores(query, cached)

        if self.policy == "system1_priority":
            return "system1" if s1 > 0.6 else "both"
        if self.policy == "system2_priority":
            return "system2" if s2 > 0.6 else "both"

        if abs(s1 - s2) < 0.2:
            return "both"
        return "system1" if s1 > s2 else "system2"
