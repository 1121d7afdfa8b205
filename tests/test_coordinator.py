"""Tests for cross-layer coordination."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from dualmem.config import CoordinatorConfig, DualMemoryConfig
from dualmem.errors import ConfigurationError
from dualmem.memory.coordinator import MemoryCoordinator, health_for, impact_for
from dualmem.memory.engine import DualMemoryEngine
from dualmem.memory.events import BugFixData, CodeGenerationData, EventMetadata, MemoryEvent
from dualmem.memory.ids import SequentialIds
from dualmem.memory.models import CodeQualityMetrics, ReasoningContext
from dualmem.memory.snapshot import load_snapshot, save_snapshot


@pytest.fixture
def engine() -> DualMemoryEngine:
    return DualMemoryEngine(DualMemoryConfig(), ids=SequentialIds())


@pytest.fixture
def coordinator(engine: DualMemoryEngine) -> MemoryCoordinator:
    return MemoryCoordinator(engine, CoordinatorConfig(), ids=SequentialIds())


def _set_maintainability(engine: DualMemoryEngine, value: float) -> None:
    engine.reasoning.update_quality_metrics(code_quality=CodeQualityMetrics(maintainability=value))


class TestConstruction:
    def test_requires_engine(self):
        with pytest.raises(ConfigurationError):
            MemoryCoordinator(None)

    def test_missing_config_defaults_with_warning(self, engine: DualMemoryEngine, caplog):
        with caplog.at_level(logging.WARNING):
            coordinator = MemoryCoordinator(engine)
        assert coordinator.config == CoordinatorConfig()
        assert "using defaults" in caplog.text

    def test_levels(self):
        assert impact_for(8) == "high"
        assert impact_for(5) == "medium"
        assert impact_for(2) == "low"
        assert health_for(10) == "excellent"
        assert health_for(250) == "poor"


class TestSynchronization:
    @pytest.mark.asyncio
    async def test_report_and_sync_points(self, coordinator: MemoryCoordinator):
        report = await coordinator.synchronize_systems()
        assert [p.type for p in report.sync_points] == [
            "knowledge_transfer",
            "quality_feedback",
            "user_adaptation",
            "pattern_learning",
        ]
        assert all(p.success for p in report.sync_points)
        assert report.system1_state["knowledge_nodes"] == 0
        assert report.system2_state["reasoning_traces"] == 0
        assert coordinator.state == "idle"
        assert coordinator.get_metrics().sync_operations == 1

    @pytest.mark.asyncio
    async def test_knowledge_transfer(self, coordinator: MemoryCoordinator, engine: DualMemoryEngine):
        node = await engine.knowledge.add_node("concept", "memoization", "cache results", confidence=0.9)
        node.access_count = 6
        await engine.knowledge.add_node("concept", "rarely used", "x", confidence=0.9)

        await coordinator.synchronize_systems()
        problems = [t.context.problem for t in engine.reasoning.traces.values()]
        assert problems == ["Apply knowledge: memoization"]
        trace = next(iter(engine.reasoning.traces.values()))
        assert trace.completed
        assert trace.conclusion == "Knowledge integrated: memoization"

        await coordinator.synchronize_systems()
        assert len(engine.reasoning.traces) == 1

    @pytest.mark.asyncio
    async def test_quality_feedback_adds_best_practice_once(
        self, coordinator: MemoryCoordinator, engine: DualMemoryEngine
    ):
        engine.reasoning.update_quality_metrics(
            code_quality=CodeQualityMetrics(maintainability=60, security=70)
        )
        await coordinator.synchronize_systems()
        await coordinator.synchronize_systems()
        names = [p.name for p in engine.knowledge.library.best_practices]
        assert names == ["Prioritize maintainability", "Prioritize security"]

    @pytest.mark.asyncio
    async def test_preferences_set_reasoning_style(
        self, coordinator: MemoryCoordinator, engine: DualMemoryEngine
    ):
        engine.knowledge.adapt_preference("development_style.approach", "test-driven")
        await coordinator.synchronize_systems()
        assert engine.reasoning.reasoning_style == "test-driven:systematic"

    @pytest.mark.asyncio
    async def test_failing_step_does_not_abort_others(
        self, coordinator: MemoryCoordinator, engine: DualMemoryEngine
    ):
        with patch.object(engine.knowledge, "get_preference", side_effect=RuntimeError("boom")):
            await coordinator.synchronize_systems()
        by_type = {p.type: p.success for p in coordinator.sync_points}
        assert by_type["user_adaptation"] is False
        assert by_type["pattern_learning"] is True

    @pytest.mark.asyncio
    async def test_sync_history_bounded(self, coordinator: MemoryCoordinator):
        for _ in range(26):
            await coordinator.synchronize_systems()
        assert len(coordinator.sync_points) <= 100
        assert len(coordinator.sync_points) == 53

    @pytest.mark.asyncio
    async def test_promotion_marks_trace(
        self, coordinator: MemoryCoordinator, engine: DualMemoryEngine
    ):
        trace = await engine.reasoning.start_trace(ReasoningContext(problem="Pick a cache"))
        await engine.reasoning.complete_trace(trace.id, "Use an LRU cache", 0.9)
        trace.metadata.quality_score = 0.9

        await coordinator.synchronize_systems()
        await coordinator.synchronize_systems()
        insights = [n for n in engine.knowledge.nodes.values() if n.name.startswith("Insight")]
        assert len(insights) == 1
        assert insights[0].metadata.source_trace_id == trace.id
        assert trace.metadata.promoted is True

    @pytest.mark.asyncio
    async def test_restart_does_not_repeat_transfers(self, tmp_path: Path):
        engine = DualMemoryEngine(DualMemoryConfig(), ids=SequentialIds())
        node = await engine.knowledge.add_node("concept", "memoization", "cache results", confidence=0.9)
        node.access_count = 6
        trace = await engine.reasoning.start_trace(ReasoningContext(problem="Pick a cache"))
        await engine.reasoning.complete_trace(trace.id, "Use an LRU cache", 0.9)
        trace.metadata.quality_score = 0.9
        await MemoryCoordinator(engine, CoordinatorConfig()).synchronize_systems()
        nodes_before = len(engine.knowledge.nodes)
        traces_before = len(engine.reasoning.traces)
        path = save_snapshot(tmp_path / "memory.json", engine)

        restored = DualMemoryEngine(DualMemoryConfig())
        assert load_snapshot(path, restored) is True
        await MemoryCoordinator(restored, CoordinatorConfig()).synchronize_systems()
        assert len(restored.knowledge.nodes) == nodes_before
        assert len(restored.reasoning.traces) == traces_before


class TestConflicts:
    @pytest.mark.asyncio
    async def test_preference_mismatch_resolution(
        self, coordinator: MemoryCoordinator, engine: DualMemoryEngine
    ):
        engine.knowledge.adapt_preference("development_style.approach", "prototype-first")
        _set_maintainability(engine, 40)

        conflicts = coordinator.detect_conflicts()
        assert {c.type for c in conflicts} == {"preference_mismatch", "quality_threshold"}

        resolutions = await coordinator.resolve_conflicts()
        mismatch = next(r for r in resolutions if r.conflict_type == "preference_mismatch")
        assert mismatch.impact == "medium"
        assert mismatch.confidence == 0.8
        assert engine.reasoning.quality_threshold == pytest.approx(0.6)
        assert coordinator.state == "idle"

    @pytest.mark.asyncio
    async def test_quality_threshold_proposes_enhancement(
        self, coordinator: MemoryCoordinator, engine: DualMemoryEngine
    ):
        _set_maintainability(engine, 55)
        (resolution,) = await coordinator.resolve_conflicts()
        assert resolution.conflict_type == "quality_threshold"
        assert len(engine.reasoning.enhancements_by_type("quality")) == 1

    @pytest.mark.asyncio
    async def test_performance_tradeoff(self, coordinator: MemoryCoordinator, engine: DualMemoryEngine):
        engine.reasoning.quality.reasoning_quality.accuracy = 0.95
        engine._counters.average_latency = 250
        engine.reasoning.assess_code_quality("x = 1", "python")

        (resolution,) = await coordinator.resolve_conflicts()
        assert resolution.conflict_type == "performance_tradeoff"
        assert resolution.impact == "high"
        assert engine.reasoning._analysis_cache == {}
        assert engine.reasoning.max_traces == 800

    @pytest.mark.asyncio
    async def test_data_inconsistency(self, coordinator: MemoryCoordinator, engine: DualMemoryEngine):
        a = await engine.knowledge.add_node("module", "a", "")
        b = await engine.knowledge.add_node("module", "b", "")
        engine.knowledge.add_edge(a.id, b.id, "uses")
        del engine.knowledge.nodes[b.id]

        (resolution,) = await coordinator.resolve_conflicts()
        assert resolution.conflict_type == "data_inconsistency"
        assert resolution.impact == "low"
        assert engine.knowledge.dangling_edges() == []

    @pytest.mark.asyncio
    async def test_no_conflicts_by_default(self, coordinator: MemoryCoordinator):
        assert coordinator.detect_conflicts() == []
        assert await coordinator.resolve_conflicts() == []


class TestOptimization:
    @pytest.mark.asyncio
    async def test_recommendations_prioritized(self, coordinator: MemoryCoordinator, engine: DualMemoryEngine):
        engine._counters.average_latency = 150
        recs = await coordinator.optimize_performance()
        assert [r.type for r in recs] == ["performance", "learning"]
        assert coordinator.get_recommendations() == recs
        metrics = coordinator.get_metrics()
        assert metrics.optimization_runs == 1
        assert metrics.performance_improvements == 1

    @pytest.mark.asyncio
    async def test_only_safe_automated_applied(self, coordinator: MemoryCoordinator, engine: DualMemoryEngine):
        for i in range(1001):
            engine.cache.put(f"k{i}", i)
        engine.cache.get("k1")
        await coordinator.force_optimization()
        assert engine.cache_size == 500
        assert coordinator.config.learning_rate == 0.15

    @pytest.mark.asyncio
    async def test_queue_backlog_drained(self, coordinator: MemoryCoordinator, engine: DualMemoryEngine):
        engine._queue.extend([object()] * 51)
        assert "Event queue processing" in coordinator.identify_bottlenecks()
        with patch.object(engine, "process_queue", AsyncMock(return_value=10)) as drain:
            await coordinator.optimize_performance()
        drain.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_apply_is_logged(self, coordinator: MemoryCoordinator, engine: DualMemoryEngine, caplog):
        engine._counters.average_latency = 150
        with patch.object(engine.cache, "cleanup", side_effect=RuntimeError("boom")):
            recs = await coordinator.optimize_performance()
        assert len(recs) == 2
        assert "Failed to apply optimization" in caplog.text


class TestAdaptation:
    @pytest.mark.asyncio
    async def test_behavior_patterns(self, coordinator: MemoryCoordinator):
        event = MemoryEvent(
            id="evt:1",
            type="code_generation",
            user_id="u",
            session_id="s",
            data=CodeGenerationData(code="x"),
            metadata=EventMetadata(priority="high"),
        )
        await coordinator.adapt_to_user_behavior(event)
        pattern = await coordinator.adapt_to_user_behavior(event)

        assert pattern.pattern == "code_generation_high"
        assert pattern.frequency == 2
        assert pattern.adaptation == "Increase code pattern relevance weighting"
        assert pattern.strength == pytest.approx(0.15 + 0.15 * 0.85)
        metrics = coordinator.get_metrics()
        assert metrics.adaptation_events == 2
        assert metrics.cross_layer_transfers == 2

    @pytest.mark.asyncio
    async def test_learning_rate_scales_strength(self, engine: DualMemoryEngine):
        coordinator = MemoryCoordinator(engine, CoordinatorConfig(learning_rate=0.5))
        event = MemoryEvent(
            id="evt:1",
            type="bug_fix",
            user_id="u",
            session_id="s",
            data=BugFixData(problem="crash", solution="guard"),
        )
        pattern = await coordinator.adapt_to_user_behavior(event)
        assert pattern.strength == pytest.approx(0.5)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_destroy(self, coordinator: MemoryCoordinator, engine: DualMemoryEngine):
        await engine.start()
        await coordinator.start()
        assert coordinator._sync_task.running
        await coordinator.destroy()
        assert not coordinator._sync_task.running
        assert not engine.running

    def test_update_config(self, coordinator: MemoryCoordinator, engine: DualMemoryEngine):
        config = coordinator.update_config(strategy="system1_priority", sync_interval=1000)
        assert config.sync_interval == 1000
        assert coordinator._sync_task.interval == 1.0
        assert engine.selector.policy == "system1_priority"
        with pytest.raises(ValueError):
            coordinator.update_config(speed=3)

    def test_metrics_are_a_copy(self, coordinator: MemoryCoordinator):
        snapshot = coordinator.get_metrics()
        coordinator.metrics.sync_operations = 5
        assert snapshot.sync_operations == 0
