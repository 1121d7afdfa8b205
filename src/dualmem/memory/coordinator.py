"""Cross-layer coordination between the knowledge and reasoning stores.

On its own timers the coordinator synchronizes the two stores, detects and
resolves conflicts between them, and recommends (and, when safe, applies)
performance optimizations to the engine.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal

from dualmem.config import CoordinatorConfig
from dualmem.errors import ConfigurationError
from dualmem.memory.engine import DualMemoryEngine
from dualmem.memory.events import MemoryEvent
from dualmem.memory.ids import IdGenerator, uuid_ids
from dualmem.memory.models import ImpactAssessment, NodeMetadata, ReasoningContext
from dualmem.memory.timers import PeriodicTask

logger = logging.getLogger(__name__)

CoordinatorState = Literal["idle", "syncing", "resolving", "optimizing"]
ConflictType = Literal[
    "data_inconsistency", "preference_mismatch", "quality_threshold", "performance_tradeoff"
]
SyncType = Literal["knowledge_transfer", "pattern_learning", "quality_feedback", "user_adaptation"]
Level = Literal["low", "medium", "high"]

MAX_SYNC_POINTS = 100
KEEP_SYNC_POINTS = 50
TRANSFER_LIMIT = 20


@dataclass
class SystemConflict:
    id: str
    type: ConflictType
    description: str
    severity: int


@dataclass
class ConflictResolution:
    id: str
    timestamp: datetime
    conflict_type: ConflictType
    description: str
    resolution: str
    confidence: float
    impact: Level


@dataclass
class SyncPoint:
    id: str
    timestamp: datetime
    type: SyncType
    source: str
    target: str
    data: Any
    success: bool
    latency_ms: float


@dataclass
class OptimizationRecommendation:
    id: str
    type: Literal["performance", "memory", "learning", "synchronization"]
    priority: int
    description: str
    effort: Level
    risk: Level
    timeline_hours: float
    automated: bool
    expected_improvement: dict[str, float] = field(default_factory=dict)


@dataclass
class BehaviorPattern:
    pattern: str
    frequency: int
    context: dict[str, Any]
    adaptation: str
    strength: float = 0.0


@dataclass
class CoordinationMetrics:
    sync_operations: int = 0
    optimization_runs: int = 0
    adaptation_events: int = 0
    cross_layer_transfers: int = 0
    performance_improvements: int = 0
    last_optimization: datetime = field(default_factory=datetime.now)
    average_sync_time: float = 0.0  # ms
    system_health: Literal["excellent", "good", "fair", "poor"] = "good"


@dataclass
class SynchronizationReport:
    system1_state: dict[str, Any]
    system2_state: dict[str, Any]
    sync_points: list[SyncPoint]
    conflict_resolutions: list[ConflictResolution]
    recommendations: list[OptimizationRecommendation]


def impact_for(severity: int) -> Level:
    if severity >= 7:
        return "high"
    if severity >= 4:
        return "medium"
    return "low"


def health_for(average_sync_ms: float) -> str:
    if average_sync_ms < 50:
        return "excellent"
    if average_sync_ms < 100:
        return "good"
    if average_sync_ms < 200:
        return "fair"
    return "poor"


_ADAPTATIONS = {
    "code_generation": "Increase code pattern relevance weighting",
    "bug_fix": "Enhance debugging reasoning patterns",
    "quality_improvement": "Adjust quality thresholds based on user tolerance",
}


class MemoryCoordinator:
    def __init__(
        self,
        engine: DualMemoryEngine | None,
        config: CoordinatorConfig | None = None,
        *,
        ids: IdGenerator = uuid_ids,
    ) -> None:
        if engine is None:
            raise ConfigurationError("MemoryCoordinator requires a DualMemoryEngine")
        if config is None or config.sync_interval <= 0:
            logger.warning("MemoryCoordinator: missing or invalid config, using defaults")
            config = CoordinatorConfig()
        self.engine = engine
        self.knowledge = engine.knowledge
        self.reasoning = engine.reasoning
        self.config = config
        self._ids = ids

        self.state: CoordinatorState = "idle"
        self.metrics = CoordinationMetrics()
        self.sync_points: list[SyncPoint] = []
        self.resolutions: list[ConflictResolution] = []
        self.recommendations: list[OptimizationRecommendation] = []
        self.behavior_patterns: dict[str, BehaviorPattern] = {}

        self._sync_task = PeriodicTask(
            "coordinator-sync", config.sync_interval / 1000, self._sync_cycle
        )
        self._optimize_task = PeriodicTask(
            "coordinator-optimize", config.optimization_interval, self._optimize_cycle
        )

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        self._sync_task.start()
        self._optimize_task.start()
        logger.info(
            "Memory coordinator started (sync=%dms, optimize=%ds)",
            self.config.sync_interval,
            self.config.optimization_interval,
        )

    async def destroy(self) -> None:
        """Stop the coordinator's timers and the engine's."""
        await self._sync_task.stop()
        await self._optimize_task.stop()
        await self.engine.stop()
        self.state = "idle"
        logger.info("Memory coordinator stopped.")

    async def _sync_cycle(self) -> None:
        await self.synchronize_systems()
        await self.resolve_conflicts()

    async def _optimize_cycle(self) -> None:
        await self.optimize_performance()

    # ── Synchronization ───────────────────────────────────────

    async def synchronize_systems(self) -> SynchronizationReport:
        started = time.perf_counter()
        self.state = "syncing"
        try:
            report = SynchronizationReport(
                system1_state=self._system1_state(),
                system2_state=self._system2_state(),
                sync_points=[],
                conflict_resolutions=self.resolutions[-5:],
                recommendations=self._generate_recommendations(),
            )
            await self._guarded("knowledge_transfer", "system1", "system2", self._sync_knowledge)
            await self._guarded("quality_feedback", "system2", "system1", self._sync_quality)
            await self._guarded("user_adaptation", "system1", "system2", self._sync_preferences)
            await self._guarded("pattern_learning", "system1", "system2", self._sync_learning)
            report.sync_points = self.sync_points[-10:]
        finally:
            self.state = "idle"

        elapsed = (time.perf_counter() - started) * 1000
        self.metrics.sync_operations += 1
        self.metrics.average_sync_time = (self.metrics.average_sync_time + elapsed) / 2
        return report

    async def _guarded(
        self,
        type: SyncType,
        source: str,
        target: str,
        step: Callable[[], Awaitable[Any]],
    ) -> None:
        started = time.perf_counter()
        try:
            data = await step()
            success = True
        except Exception as e:
            logger.error("Sync step %s failed: %s", type, e)
            data, success = str(e), False
        self._record_sync_point(
            type, source, target, data, success, (time.perf_counter() - started) * 1000
        )

    def _record_sync_point(
        self,
        type: SyncType,
        source: str,
        target: str,
        data: Any,
        success: bool,
        latency_ms: float,
    ) -> None:
        self.sync_points.append(
            SyncPoint(
                id=self._ids("sync"),
                timestamp=datetime.now(),
                type=type,
                source=source,
                target=target,
                data=data,
                success=success,
                latency_ms=latency_ms,
            )
        )
        if len(self.sync_points) > MAX_SYNC_POINTS:
            self.sync_points = self.sync_points[-KEEP_SYNC_POINTS:]

    async def _sync_knowledge(self) -> int:
        """Turn well-established knowledge nodes into completed reasoning traces."""
        candidates = [
            n
            for n in self.knowledge.programming_concepts
            if n.confidence > 0.8 and n.access_count > 5
        ][:TRANSFER_LIMIT]
        seeded = {
            t.metadata.source_node_id
            for t in self.reasoning.traces.values()
            if t.metadata.source_node_id
        }
        transferred = 0
        for node in candidates:
            if node.id in seeded:
                continue
            trace = await self.reasoning.start_trace(
                ReasoningContext(
                    problem=f"Apply knowledge: {node.name}",
                    goals=["Integrate knowledge into reasoning"],
                    assumptions=[f"Knowledge confidence: {node.confidence:.2f}"],
                    resources=[node.content],
                )
            )
            trace.metadata.source_node_id = node.id
            await self.reasoning.complete_trace(
                trace.id, f"Knowledge integrated: {node.name}", node.confidence
            )
            transferred += 1
        self.metrics.cross_layer_transfers += transferred
        return transferred

    async def _sync_quality(self) -> dict[str, float]:
        code = self.reasoning.quality.code_quality
        if code.maintainability < 70 and not self.knowledge.find_best_practice(
            "Prioritize maintainability"
        ):
            self.knowledge.add_best_practice(
                "Prioritize maintainability",
                "Measured maintainability is below 70; prefer small functions and clear names",
                "maintainability",
                benefits=["Easier changes", "Fewer regressions"],
            )
        if code.security < 80 and not self.knowledge.find_best_practice("Prioritize security"):
            self.knowledge.add_best_practice(
                "Prioritize security",
                "Measured security is below 80; validate inputs and avoid dynamic evaluation",
                "security",
                benefits=["Smaller attack surface"],
            )
        return {"maintainability": code.maintainability, "security": code.security}

    async def _sync_preferences(self) -> str:
        style = self.knowledge.get_preference("development_style")
        self.reasoning.reasoning_style = f"{style.approach}:{style.problem_solving_style}"
        return self.reasoning.reasoning_style

    async def _sync_learning(self) -> dict[str, int]:
        """Promote confident reasoning conclusions into System 1 knowledge."""
        commands = self.knowledge.recent_commands(10)
        traces = self.reasoning.recent_traces(10)
        promoted = 0
        for trace in traces:
            if (
                not trace.completed
                or trace.metadata.promoted
                or trace.metadata.quality_score < self.config.adaptation_threshold
            ):
                continue
            await self.knowledge.add_node(
                "concept",
                f"Insight: {trace.context.problem[:60]}",
                trace.conclusion,
                metadata=NodeMetadata(
                    quality=trace.metadata.quality_score,
                    domain=trace.metadata.domain,
                    source_trace_id=trace.id,
                ),
                confidence=trace.confidence,
            )
            trace.metadata.promoted = True
            promoted += 1
        return {"commands": len(commands), "reasonings": len(traces), "promoted": promoted}

    def _system1_state(self) -> dict[str, Any]:
        return {
            "knowledge_nodes": len(self.knowledge.programming_concepts),
            "patterns": len(self.knowledge.library.code_patterns),
            "interactions": len(self.knowledge.history.sessions),
            "cache_hit_rate": self.engine.get_metrics().cache_hit_rate,
        }

    def _system2_state(self) -> dict[str, Any]:
        return {
            "reasoning_traces": len(self.reasoning.traces),
            "quality_metrics": self.reasoning.quality,
            "enhancements": len(self.reasoning.improvement_suggestions),
            "reflections": len(self.reasoning.reflections),
        }

    # ── Conflicts ─────────────────────────────────────────────

    def detect_conflicts(self) -> list[SystemConflict]:
        conflicts = []
        style = self.knowledge.get_preference("development_style")
        standards = self.knowledge.get_preference("quality_standards")
        quality = self.reasoning.quality

        if style.approach == "prototype-first" and quality.code_quality.maintainability < 50:
            conflicts.append(
                SystemConflict(
                    id=self._ids("conflict"),
                    type="preference_mismatch",
                    description="User prefers prototyping but code quality is low",
                    severity=5,
                )
            )
        if (
            self.engine.get_metrics().average_latency_ms > 200
            and quality.reasoning_quality.accuracy > 0.9
        ):
            conflicts.append(
                SystemConflict(
                    id=self._ids("conflict"),
                    type="performance_tradeoff",
                    description="High accuracy but poor performance",
                    severity=8,
                )
            )
        gap = standards.maintainability_threshold - quality.code_quality.maintainability
        if gap > 20:
            conflicts.append(
                SystemConflict(
                    id=self._ids("conflict"),
                    type="quality_threshold",
                    description=f"Maintainability is {gap:.0f} points below the declared standard",
                    severity=4,
                )
            )
        dangling = self.knowledge.dangling_edges()
        if dangling:
            conflicts.append(
                SystemConflict(
                    id=self._ids("conflict"),
                    type="data_inconsistency",
                    description=f"{len(dangling)} concept edges point at evicted nodes",
                    severity=2,
                )
            )
        return conflicts

    async def resolve_conflicts(self) -> list[ConflictResolution]:
        self.state = "resolving"
        resolutions = []
        try:
            for conflict in self.detect_conflicts():
                try:
                    resolution = self._resolve(conflict)
                except Exception as e:
                    logger.error("Failed to resolve conflict %s: %s", conflict.type, e)
                    continue
                resolutions.append(resolution)
                self.resolutions.append(resolution)
        finally:
            self.state = "idle"
        return resolutions

    def _resolve(self, conflict: SystemConflict) -> ConflictResolution:
        if conflict.type == "preference_mismatch":
            self.reasoning.quality_threshold = max(0.5, self.reasoning.quality_threshold - 0.1)
            action = "Adjust quality thresholds to match user prototyping style"
        elif conflict.type == "performance_tradeoff":
            self.reasoning.clear_analysis_cache()
            self.reasoning.set_max_traces(int(self.reasoning.max_traces * 0.8))
            action = "Optimize System 2 reasoning for faster processing"
        elif conflict.type == "quality_threshold":
            self.reasoning.propose_enhancement(
                type="quality",
                description="Raise measured maintainability toward the declared standard",
                impact=ImpactAssessment(
                    benefit_score=6,
                    effort_score=4,
                    risk_score=2,
                    affected_components=["code-quality"],
                ),
                priority=6,
            )
            action = "Proposed a maintainability enhancement"
        else:
            removed = self.knowledge.repair_graph()
            action = f"Rebuilt concept clusters, removed {removed} dangling edges"

        logger.info("Resolved %s conflict: %s", conflict.type, action)
        return ConflictResolution(
            id=self._ids("resolution"),
            timestamp=datetime.now(),
            conflict_type=conflict.type,
            description=conflict.description,
            resolution=action,
            confidence=0.8,
            impact=impact_for(conflict.severity),
        )

    # ── Optimization ──────────────────────────────────────────

    def identify_bottlenecks(self) -> list[str]:
        bottlenecks = []
        if self.engine.queue_depth > 50:
            bottlenecks.append("Event queue processing")
        if self.engine.cache_size > 1000:
            bottlenecks.append("Cache memory usage")
        return bottlenecks

    def identify_opportunities(self) -> list[str]:
        metrics = self.engine.get_metrics()
        opportunities = []
        if metrics.cache_hit_rate < 0.5:
            opportunities.append("Improve cache hit rate")
        if metrics.average_latency_ms > 100:
            opportunities.append("Optimize memory access patterns")
        if self.metrics.adaptation_events < 10:
            opportunities.append("Enhance learning speed")
        if self.metrics.average_sync_time > 100:
            opportunities.append("Reduce synchronization overhead")
        return opportunities

    def _generate_recommendations(self) -> list[OptimizationRecommendation]:
        metrics = self.engine.get_metrics()
        recs = []
        if metrics.average_latency_ms > 100:
            recs.append(
                OptimizationRecommendation(
                    id=self._ids("rec"),
                    type="performance",
                    priority=8,
                    description="Optimize memory access patterns to reduce latency",
                    effort="medium",
                    risk="low",
                    timeline_hours=4,
                    automated=True,
                    expected_improvement={"performance": 25, "memory": -10, "latency": -50},
                )
            )
        if self.engine.queue_depth > 50:
            recs.append(
                OptimizationRecommendation(
                    id=self._ids("rec"),
                    type="synchronization",
                    priority=7,
                    description="Drain the event queue backlog",
                    effort="low",
                    risk="low",
                    timeline_hours=1,
                    automated=True,
                    expected_improvement={"latency": -20},
                )
            )
        if self.engine.cache_size > 1000:
            recs.append(
                OptimizationRecommendation(
                    id=self._ids("rec"),
                    type="memory",
                    priority=6,
                    description="Optimize cache management to reduce memory footprint",
                    effort="low",
                    risk="low",
                    timeline_hours=2,
                    automated=True,
                    expected_improvement={"performance": 5, "memory": -50, "latency": 10},
                )
            )
        if self.metrics.adaptation_events < 10:
            recs.append(
                OptimizationRecommendation(
                    id=self._ids("rec"),
                    type="learning",
                    priority=7,
                    description="Increase adaptive learning frequency for better personalization",
                    effort="medium",
                    risk="medium",
                    timeline_hours=6,
                    automated=False,
                    expected_improvement={"performance": 15, "memory": 5, "latency": -10},
                )
            )
        return sorted(recs, key=lambda r: r.priority, reverse=True)

    async def optimize_performance(self) -> list[OptimizationRecommendation]:
        self.state = "optimizing"
        try:
            bottlenecks = self.identify_bottlenecks()
            if bottlenecks:
                logger.info("Bottlenecks: %s", ", ".join(bottlenecks))
            recommendations = self._generate_recommendations()
            applied = 0
            for rec in recommendations:
                if not (rec.automated and rec.risk == "low"):
                    continue
                try:
                    await self._apply(rec)
                    applied += 1
                except Exception as e:
                    logger.error("Failed to apply optimization %s: %s", rec.id, e)
            self.recommendations = recommendations
            self.metrics.optimization_runs += 1
            self.metrics.performance_improvements += applied
            self.metrics.last_optimization = datetime.now()
            return recommendations
        except Exception as e:
            logger.error("Performance optimization failed: %s", e)
            return []
        finally:
            self.state = "idle"

    async def _apply(self, rec: OptimizationRecommendation) -> None:
        if rec.type == "performance":
            self.engine.cache.cleanup()
        elif rec.type == "memory":
            self.engine.cache.trim(ceiling=1000, keep=500)
        elif rec.type == "synchronization":
            await self.engine.process_queue()
        elif rec.type == "learning":
            self.config.learning_rate = min(1.0, self.config.learning_rate * 1.1)
        logger.info("Applied optimization: %s", rec.description)

    # ── Adaptation ────────────────────────────────────────────

    async def adapt_to_user_behavior(self, event: MemoryEvent) -> BehaviorPattern | None:
        try:
            key = f"{event.type}_{event.metadata.priority}"
            pattern = self.behavior_patterns.get(key)
            if pattern is None:
                pattern = BehaviorPattern(
                    pattern=key,
                    frequency=0,
                    context={"user_id": event.user_id, "tags": list(event.metadata.tags)},
                    adaptation=_ADAPTATIONS.get(
                        event.type, "General learning pattern adaptation"
                    ),
                )
                self.behavior_patterns[key] = pattern
            pattern.frequency += 1
            pattern.strength += self.config.learning_rate * (1 - pattern.strength)
            if "code_generation" in key or "quality" in key:
                self.metrics.cross_layer_transfers += 1
            self.metrics.adaptation_events += 1
            logger.debug("Behavior %s seen %d times: %s", key, pattern.frequency, pattern.adaptation)
            return pattern
        except Exception as e:
            logger.error("User behavior adaptation failed: %s", e)
            return None

    # ── Public API ────────────────────────────────────────────

    def get_metrics(self) -> CoordinationMetrics:
        self.metrics.system_health = health_for(self.metrics.average_sync_time)
        return replace(self.metrics)

    def get_recommendations(self) -> list[OptimizationRecommendation]:
        return list(self.recommendations)

    async def force_optimization(self) -> list[OptimizationRecommendation]:
        return await self.optimize_performance()

    async def force_synchronization(self) -> SynchronizationReport:
        return await self.synchronize_systems()

    def update_config(self, **changes: Any) -> CoordinatorConfig:
        valid = {f.name for f in fields(CoordinatorConfig)}
        unknown = set(changes) - valid
        if unknown:
            raise ValueError(f"Unknown coordinator settings: {', '.join(sorted(unknown))}")
        if "strategy" in changes:
            self.engine.set_strategy(changes["strategy"])
        for key, value in changes.items():
            setattr(self.config, key, value)
        self._sync_task.interval = self.config.sync_interval / 1000
        self._optimize_task.interval = self.config.optimization_interval
        return self.config
