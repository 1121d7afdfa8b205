"""Tests for the dual memory engine facade."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from dualmem.config import DualMemoryConfig
from dualmem.errors import ConfigurationError, OperationError
from dualmem.memory.engine import DualMemoryEngine
from dualmem.memory.events import (
    BugFixData,
    EventMetadata,
    MemoryEvent,
    QualityImprovementData,
)
from dualmem.memory.ids import SequentialIds
from dualmem.memory.models import MemoryQuery, MemoryResponse, UserPreferenceSet


@pytest.fixture
def engine() -> DualMemoryEngine:
    config = DualMemoryConfig()
    config.performance.batch_size = 2
    return DualMemoryEngine(config, ids=SequentialIds())


def _bug_fix(event_id: str, priority: str = "medium") -> MemoryEvent:
    return MemoryEvent(
        id=event_id,
        type="bug_fix",
        user_id="u",
        session_id="s",
        data=BugFixData(problem=f"crash {event_id}", solution="fix"),
        metadata=EventMetadata(priority=priority),
    )


class TestConstruction:
    def test_requires_config(self):
        with pytest.raises(ConfigurationError):
            DualMemoryEngine(None)

    def test_requires_store_sections(self):
        with pytest.raises(ConfigurationError):
            DualMemoryEngine(DualMemoryConfig(knowledge=None))

    def test_set_strategy(self, engine: DualMemoryEngine):
        engine.set_strategy("system2_priority")
        assert engine.selector.policy == "system2_priority"
        with pytest.raises(ConfigurationError):
            engine.set_strategy("fastest")


class TestQueries:
    @pytest.mark.asyncio
    async def test_reasoning_goes_to_system2(self, engine: DualMemoryEngine):
        response = await engine.query(
            MemoryQuery(type="reasoning", query="optimize sort", urgency="low")
        )
        assert response.source == "system2"
        assert response.confidence == 0.9
        assert response.data == []

    @pytest.mark.asyncio
    async def test_preferences_from_system1(self, engine: DualMemoryEngine):
        response = await engine.get_user_preferences()
        assert response.source == "system1"
        assert isinstance(response.data, UserPreferenceSet)

    @pytest.mark.asyncio
    async def test_both_route_falls_back_to_working_layer(self, engine: DualMemoryEngine):
        await engine.knowledge.add_node("concept", "retry", "retry with backoff")
        response = await engine.query(MemoryQuery(type="knowledge", query="retry"))
        assert response.source == "both"
        assert response.confidence == 0.8
        assert [n.name for n in response.data] == ["retry"]

    @pytest.mark.asyncio
    async def test_cache_hit(self, engine: DualMemoryEngine):
        q = MemoryQuery(type="knowledge", query="retry")
        first = await engine.query(q)
        second = await engine.query(q)
        assert not first.cached
        assert second.cached
        assert second.confidence == 0.9
        assert engine.get_metrics().cache_hit_rate == 0.5

    @pytest.mark.asyncio
    async def test_both_prefers_non_empty_result(self, engine: DualMemoryEngine):
        s1 = MemoryResponse(data=["from s1"], source="system1", confidence=0.8, latency_ms=0)
        s2 = MemoryResponse(data=[], source="system2", confidence=0.9, latency_ms=0)
        q = MemoryQuery(type="reasoning", query="x" * 250)
        with patch.object(engine, "_query_system1", AsyncMock(return_value=s1)), patch.object(
            engine, "_query_system2", AsyncMock(return_value=s2)
        ):
            response = await engine._query_both(q)
        assert response.data == ["from s1"]
        assert response.confidence == 0.95
        assert response.suggestions and response.suggestions[0].type == "performance"

    @pytest.mark.asyncio
    async def test_failed_query(self, engine: DualMemoryEngine):
        with pytest.raises(OperationError, match="Memory query failed"):
            await engine.query(MemoryQuery(type="weather", query="rain"))
        metrics = engine.get_metrics()
        assert metrics.total_operations == 1
        assert metrics.error_rate == 1.0

    @pytest.mark.asyncio
    async def test_recall_swallows_failures(self, engine: DualMemoryEngine):
        assert await engine.recall("rain", "weather") == []

    @pytest.mark.asyncio
    async def test_find_patterns(self, engine: DualMemoryEngine):
        engine.knowledge.add_code_pattern("retry", "x", "python", "network retry")
        engine.knowledge.add_code_pattern("other", "x", "go", "network retry")
        response = await engine.find_patterns(language="python")
        assert [p.name for p in response.data] == ["retry"]


class TestEvents:
    @pytest.mark.asyncio
    async def test_critical_event_is_processed_immediately(self, engine: DualMemoryEngine):
        await engine.store(_bug_fix("evt:1", priority="critical"))
        assert engine.queue_depth == 0
        assert len(engine.reasoning.traces) == 1

    @pytest.mark.asyncio
    async def test_queue_drains_in_batches(self, engine: DualMemoryEngine):
        for i in range(3):
            await engine.store(_bug_fix(f"evt:{i}"))
        assert engine.queue_depth == 3
        assert engine.reasoning.traces == {}

        assert await engine.process_queue() == 2
        problems = [t.context.problem for t in engine.reasoning.traces.values()]
        assert problems == ["crash evt:0", "crash evt:1"]
        assert await engine.process_queue() == 1
        assert await engine.process_queue() == 0

    @pytest.mark.asyncio
    async def test_failing_event_is_counted(self, engine: DualMemoryEngine):
        await engine.store(_bug_fix("evt:1"))
        with patch.object(engine.reasoning, "process_event", AsyncMock(side_effect=RuntimeError("boom"))):
            await engine.process_queue()
        assert engine.failed_events == 1
        assert engine.queue_depth == 0

    @pytest.mark.asyncio
    async def test_failed_learning_proposes_enhancement(self, engine: DualMemoryEngine):
        event = await engine.learn("explain regex", "confusing answer", {"user_id": "u1"}, success=False)
        assert event.user_id == "u1"
        assert event.metadata.confidence == 0.3
        await engine.process_queue()
        descriptions = [e.description for e in engine.reasoning.enhancements.values()]
        assert "Improve handling of: explain regex" in descriptions

    @pytest.mark.asyncio
    async def test_quality_event_routes_to_system2_only(self, engine: DualMemoryEngine):
        event = MemoryEvent(
            id="evt:q",
            type="quality_improvement",
            user_id="u",
            session_id="s",
            data=QualityImprovementData(code="x = 1", language="python"),
            metadata=EventMetadata(priority="critical"),
        )
        with patch.object(engine.knowledge, "process_event", AsyncMock()) as s1:
            await engine.store(event)
        s1.assert_not_called()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop(self, engine: DualMemoryEngine):
        await engine.start()
        assert engine.running
        await engine.stop()
        assert not engine.running

    @pytest.mark.asyncio
    async def test_timer_drains_queue(self):
        config = DualMemoryConfig()
        config.coordinator.sync_interval = 10  # ms
        engine = DualMemoryEngine(config, ids=SequentialIds())
        await engine.store(_bug_fix("evt:1"))
        await engine.start()
        try:
            for _ in range(100):
                if engine.queue_depth == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await engine.stop()
        assert engine.queue_depth == 0
        assert len(engine.reasoning.traces) == 1

    @pytest.mark.asyncio
    async def test_clear_memory(self, engine: DualMemoryEngine):
        await engine.store(_bug_fix("evt:1"))
        await engine.query(MemoryQuery(type="knowledge", query="retry"))
        engine.clear_memory()
        assert engine.queue_depth == 0
        assert engine.cache_size == 0
        assert engine.get_metrics().total_operations == 0

    @pytest.mark.asyncio
    async def test_statistics(self, engine: DualMemoryEngine):
        await engine.store(_bug_fix("evt:1", priority="critical"))
        stats = engine.get_statistics()
        assert stats["system2"]["traces"] == 1
        assert stats["system1"]["nodes"] == 0
        assert stats["engine"]["queue_depth"] == 0
