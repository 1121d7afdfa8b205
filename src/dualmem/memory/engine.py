"""Dual memory engine: the facade in front of both stores.

Queries go through the result cache, then the strategy selector, then one
or both stores. Events are queued and drained into the stores by a periodic
task; critical events skip the queue.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from dualmem.config import STRATEGIES, DualMemoryConfig
from dualmem.errors import ConfigurationError, OperationError
from dualmem.memory.cache import ResultCache, cache_key
from dualmem.memory.events import EventMetadata, LearningUpdateData, MemoryEvent
from dualmem.memory.ids import IdGenerator, uuid_ids
from dualmem.memory.knowledge import KnowledgeStore
from dualmem.memory.models import (
    Enhancement,
    ImpactAssessment,
    ImplementationPlan,
    MemoryQuery,
    MemoryResponse,
)
from dualmem.memory.reasoning import ReasoningStore
from dualmem.memory.strategy import Route, StrategySelector, query_complexity
from dualmem.memory.timers import PeriodicTask

logger = logging.getLogger(__name__)

# event type -> (system1, system2)
EVENT_ROUTES: dict[str, tuple[bool, bool]] = {
    "code_generation": (True, False),
    "pattern_recognition": (True, False),
    "bug_fix": (False, True),
    "quality_improvement": (False, True),
    "learning_update": (True, True),
    "mode_change": (True, True),
    "team_interaction": (True, False),
}


@dataclass
class _Counters:
    total_operations: int = 0
    system1_operations: int = 0
    system2_operations: int = 0
    cache_hits: int = 0
    errors: int = 0
    average_latency: float = 0.0
    last_reset: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class EngineMetrics:
    total_operations: int
    system1_operations: int
    system2_operations: int
    average_latency_ms: float
    error_rate: float
    cache_hit_rate: float
    queue_depth: int
    cache_size: int
    last_reset: datetime


def _has_data(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) > 0
    return True


class DualMemoryEngine:
    def __init__(
        self,
        config: DualMemoryConfig | None,
        *,
        knowledge: KnowledgeStore | None = None,
        reasoning: ReasoningStore | None = None,
        cache: ResultCache | None = None,
        ids: IdGenerator = uuid_ids,
    ) -> None:
        if config is None:
            raise ConfigurationError("DualMemoryEngine requires a configuration")
        if config.knowledge is None or config.reasoning is None:
            raise ConfigurationError(
                "DualMemoryEngine requires knowledge and reasoning configuration"
            )
        self.config = config
        self._ids = ids
        self.knowledge = knowledge or KnowledgeStore(config.knowledge, ids=ids)
        self.reasoning = reasoning or ReasoningStore(config.reasoning, ids=ids)
        self.cache = cache or ResultCache()
        self.selector = StrategySelector(config.coordinator.strategy)

        self._queue: deque[MemoryEvent] = deque()
        self._draining = False
        self.failed_events = 0
        self._counters = _Counters()

        perf = config.performance
        self._tasks = [
            PeriodicTask("event-queue", config.coordinator.sync_interval / 1000, self._drain_job),
            PeriodicTask("cache-cleanup", perf.cache_cleanup_interval, self._cleanup_job),
            PeriodicTask(
                "memory-optimization", perf.memory_optimization_interval, self.optimize_memory
            ),
        ]

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Load the pattern library and start the background tasks."""
        if self.config.library_dir and self.config.library_dir.is_dir():
            self.knowledge.load_library(self.config.library_dir)
        for task in self._tasks:
            task.start()
        logger.info(
            "Dual memory engine started (strategy=%s, batch=%d)",
            self.selector.policy,
            self.config.performance.batch_size,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            await task.stop()
        logger.info("Dual memory engine stopped.")

    @property
    def running(self) -> bool:
        return any(t.running for t in self._tasks)

    # ── Queries ───────────────────────────────────────────────

    async def query(self, memory_query: MemoryQuery) -> MemoryResponse:
        started = time.perf_counter()
        key = cache_key(memory_query)

        entry = self.cache.get(key)
        if entry is not None:
            self._counters.total_operations += 1
            self._counters.cache_hits += 1
            return MemoryResponse(
                data=entry.result,
                source="both",
                confidence=0.9,
                latency_ms=(time.perf_counter() - started) * 1000,
                cached=True,
            )

        route = self.selector.select(memory_query, cached=key in self.cache)
        try:
            response = await self._execute(memory_query, route)
        except Exception as e:
            self._record(route, (time.perf_counter() - started) * 1000, success=False)
            raise OperationError(f"Memory query failed: {e}") from e

        if response.confidence > 0.7:
            self.cache.put(key, response.data)
        self._record(route, (time.perf_counter() - started) * 1000, success=True)
        return response

    async def _execute(self, q: MemoryQuery, route: Route) -> MemoryResponse:
        if route == "system1":
            return await self._query_system1(q)
        if route == "system2":
            return await self._query_system2(q)
        return await self._query_both(q)

    async def _query_system1(self, q: MemoryQuery) -> MemoryResponse:
        started = time.perf_counter()
        limit = q.limit or 10
        ctx = q.context or {}
        if q.type == "knowledge":
            data: Any = self.knowledge.search(q.query, q.embedding, limit)
        elif q.type == "pattern":
            data = self.knowledge.find_code_patterns(
                ctx.get("language"), ctx.get("framework"), ctx.get("use_case"), limit
            )
        elif q.type == "preference":
            data = self.knowledge.get_preferences()
        else:
            raise OperationError(f"System 1 cannot handle query type: {q.type}")
        return MemoryResponse(
            data=data,
            source="system1",
            confidence=0.8,
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def _query_system2(self, q: MemoryQuery) -> MemoryResponse:
        started = time.perf_counter()
        ctx = q.context or {}
        if q.type == "reasoning":
            data: Any = self.reasoning.search_traces(
                domain=ctx.get("domain"),
                complexity=ctx.get("complexity"),
                min_quality=ctx.get("min_quality"),
                limit=q.limit or 10,
            )
        elif q.type == "quality":
            data = self.reasoning.quality
        else:
            raise OperationError(f"System 2 cannot handle query type: {q.type}")
        return MemoryResponse(
            data=data,
            source="system2",
            confidence=0.9,
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def _query_both(self, q: MemoryQuery) -> MemoryResponse:
        started = time.perf_counter()
        r1, r2 = await asyncio.gather(
            self._query_system1(q), self._query_system2(q), return_exceptions=True
        )
        ok1 = not isinstance(r1, BaseException)
        ok2 = not isinstance(r2, BaseException)

        suggestions = None
        if ok1 and ok2:
            prefer_s2 = query_complexity(q) > 0.6
            chosen, other = (r2, r1) if prefer_s2 else (r1, r2)
            if not _has_data(chosen.data) and _has_data(other.data):
                chosen = other
            data, confidence = chosen.data, 0.95
            suggestions = [self._combined_suggestion()]
        elif ok1:
            data, confidence = r1.data, 0.8
            logger.debug("System 2 unavailable for %s query: %s", q.type, r2)
        elif ok2:
            data, confidence = r2.data, 0.85
            logger.debug("System 1 unavailable for %s query: %s", q.type, r1)
        else:
            raise OperationError(f"No memory systems could provide results ({r1}; {r2})")

        return MemoryResponse(
            data=data,
            source="both",
            confidence=confidence,
            latency_ms=(time.perf_counter() - started) * 1000,
            suggestions=suggestions,
        )

    def _combined_suggestion(self) -> Enhancement:
        return Enhancement(
            id=self._ids("suggestion"),
            type="performance",
            description="Consider using cached results for similar queries",
            impact=ImpactAssessment(
                benefit_score=6,
                effort_score=3,
                risk_score=1,
                affected_components=["memory-system"],
            ),
            implementation=ImplementationPlan(timeline_days=2),
            priority=5,
        )

    # ── Specialized queries ───────────────────────────────────

    async def find_knowledge(
        self, query: str, embedding: list[float] | None = None, limit: int = 10
    ) -> MemoryResponse:
        return await self.query(
            MemoryQuery(
                type="knowledge", query=query, embedding=embedding, limit=limit, urgency="medium"
            )
        )

    async def find_patterns(
        self,
        language: str | None = None,
        framework: str | None = None,
        use_case: str | None = None,
        limit: int = 10,
    ) -> MemoryResponse:
        text = " ".join(p for p in (language, framework, use_case) if p)
        return await self.query(
            MemoryQuery(
                type="pattern",
                query=text,
                context={"language": language, "framework": framework, "use_case": use_case},
                limit=limit,
                urgency="low",
            )
        )

    async def get_reasoning(
        self,
        domain: str | None = None,
        complexity: str | None = None,
        min_quality: float | None = None,
    ) -> MemoryResponse:
        text = " ".join(p for p in (domain, complexity) if p)
        return await self.query(
            MemoryQuery(
                type="reasoning",
                query=text,
                context={"domain": domain, "complexity": complexity, "min_quality": min_quality},
                urgency="low",
            )
        )

    async def get_quality_insights(self) -> MemoryResponse:
        return await self.query(
            MemoryQuery(type="quality", query="current quality metrics", urgency="low")
        )

    async def get_user_preferences(self) -> MemoryResponse:
        return await self.query(
            MemoryQuery(type="preference", query="user preferences", urgency="high")
        )

    async def recall(self, query: str, type: str, limit: int = 10) -> list[Any]:
        """Query and always return a list; failures are logged and yield []."""
        try:
            response = await self.query(MemoryQuery(type=type, query=query, limit=limit))
        except Exception as e:
            logger.warning("Memory recall failed: %s", e)
            return []
        if isinstance(response.data, list):
            return response.data
        return [response.data]

    # ── Events ────────────────────────────────────────────────

    async def store(self, event: MemoryEvent) -> None:
        if event.priority == "critical":
            await self._process_event(event)
            return
        self._queue.append(event)

    async def learn(
        self, input: str, output: str, context: dict[str, Any], success: bool
    ) -> MemoryEvent:
        event = MemoryEvent(
            id=self._ids("learn"),
            type="learning_update",
            user_id=str(context.get("user_id", "anonymous")),
            session_id=str(context.get("session_id", "default")),
            data=LearningUpdateData(input=input, output=output, context=context, success=success),
            metadata=EventMetadata(
                confidence=0.9 if success else 0.3,
                source="user_input",
                priority="medium",
                tags=["learning", "adaptation"],
            ),
        )
        await self.store(event)
        return event

    async def _process_event(self, event: MemoryEvent) -> None:
        to_system1, to_system2 = EVENT_ROUTES[event.type]
        jobs = []
        if to_system1:
            jobs.append(self.knowledge.process_event(event))
        if to_system2:
            jobs.append(self.reasoning.process_event(event))
        await asyncio.gather(*jobs)
        self._adapt_from_event(event)

    def _adapt_from_event(self, event: MemoryEvent) -> None:
        data = event.data
        if isinstance(data, LearningUpdateData) and not data.success:
            self.reasoning.propose_enhancement(
                type="usability",
                description=f"Improve handling of: {data.input}",
                impact=ImpactAssessment(
                    benefit_score=5,
                    effort_score=3,
                    risk_score=2,
                    affected_components=["ai-interaction"],
                ),
                implementation=ImplementationPlan(timeline_days=3),
                priority=4,
            )

    async def process_queue(self) -> int:
        """Drain up to ``batch_size`` events, oldest first. Returns how many were taken."""
        if self._draining or not self._queue:
            return 0
        self._draining = True
        try:
            count = min(self.config.performance.batch_size, len(self._queue))
            batch = [self._queue.popleft() for _ in range(count)]
            for event in batch:
                try:
                    await self._process_event(event)
                except Exception as e:
                    self.failed_events += 1
                    logger.error("Error processing memory event %s: %s", event.id, e)
            return count
        finally:
            self._draining = False

    async def _drain_job(self) -> None:
        await self.process_queue()

    # ── Maintenance ───────────────────────────────────────────

    async def _cleanup_job(self) -> None:
        self.cache.cleanup()

    async def optimize_memory(self) -> None:
        await self.knowledge.compress_memory()
        self.cache.trim(ceiling=1000, keep=500)

    def clear_memory(self) -> None:
        self.cache.clear()
        self._queue.clear()
        self.reset_metrics()
        logger.info("Memory cleared")

    # ── Metrics ───────────────────────────────────────────────

    def _record(self, route: Route, latency_ms: float, success: bool) -> None:
        c = self._counters
        c.total_operations += 1
        c.average_latency = (c.average_latency + latency_ms) / 2
        if route in ("system1", "both"):
            c.system1_operations += 1
        if route in ("system2", "both"):
            c.system2_operations += 1
        if not success:
            c.errors += 1

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    @property
    def cache_size(self) -> int:
        return len(self.cache)

    def get_metrics(self) -> EngineMetrics:
        c = self._counters
        total = c.total_operations
        return EngineMetrics(
            total_operations=total,
            system1_operations=c.system1_operations,
            system2_operations=c.system2_operations,
            average_latency_ms=c.average_latency,
            error_rate=c.errors / total if total else 0.0,
            cache_hit_rate=c.cache_hits / total if total else 0.0,
            queue_depth=self.queue_depth,
            cache_size=self.cache_size,
            last_reset=c.last_reset,
        )

    def reset_metrics(self) -> None:
        self._counters = _Counters()

    def set_strategy(self, strategy: str) -> None:
        if strategy not in STRATEGIES:
            raise ConfigurationError(f"Unknown strategy {strategy!r}")
        self.config.coordinator.strategy = strategy
        self.selector.policy = strategy

    def get_statistics(self) -> dict[str, Any]:
        metrics = self.get_metrics()
        return {
            "system1": {**self.knowledge.statistics(), "cache_hit_rate": metrics.cache_hit_rate},
            "system2": self.reasoning.statistics(),
            "engine": {
                "total_operations": metrics.total_operations,
                "queue_depth": metrics.queue_depth,
                "cache_size": metrics.cache_size,
                "failed_events": self.failed_events,
            },
        }
