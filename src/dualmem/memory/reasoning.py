"""System 2: the reasoning store.

Keeps traceable multi-step reasoning, decision trees, enhancement proposals
and reflections, plus the aggregate quality metrics the coordinator reads.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import time
from dataclasses import fields
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from dualmem.errors import NotFoundError, OperationError
from dualmem.memory.events import (
    BugFixData,
    CodeGenerationData,
    LearningUpdateData,
    MemoryEvent,
    QualityImprovementData,
)
from dualmem.memory.ids import IdGenerator, uuid_ids
from dualmem.memory.models import (
    ActionItem,
    AlternativeReasoning,
    CodeQualityMetrics,
    DecisionNode,
    DecisionNodeType,
    DecisionTree,
    DecisionTreeMetadata,
    Enhancement,
    EnhancementStatus,
    EnhancementType,
    Evidence,
    ImpactAssessment,
    ImplementationPhase,
    ImplementationPlan,
    QualityMetrics,
    ReasoningContext,
    ReasoningMetadata,
    ReasoningQualityMetrics,
    ReasoningStep,
    ReasoningTrace,
    ReflectionEntry,
    Risk,
    StepType,
    TraceComplexity,
)
from dualmem.memory.quality import CodeQualityScorer, HeuristicQualityScorer
from dualmem.memory.snapshot import from_jsonable, to_jsonable

if TYPE_CHECKING:
    from dualmem.config import ReasoningConfig

logger = logging.getLogger(__name__)

STEP_CONFIDENCE = {"analysis": 0.7, "inference": 0.6, "evaluation": 0.8, "synthesis": 0.5}
COMPLEXITY_LEVEL = {"simple": 1, "moderate": 2, "complex": 3, "very_complex": 4}
REQUIRED_STEP_TYPES = ("analysis", "evaluation")

TRANSITIONS: dict[str, set[str]] = {
    "proposed": {"approved", "rejected"},
    "approved": {"in_progress", "completed", "rejected"},
    "in_progress": {"completed", "rejected"},
    "completed": set(),
    "rejected": set(),
}

_DOMAIN_KEYWORDS = [
    ("performance", ("performance", "optimization")),
    ("security", ("security", "vulnerability")),
    ("architecture", ("architecture", "design")),
    ("debugging", ("bug", "error")),
]


# ── Pure scoring helpers ──────────────────────────────────────


def assess_complexity(context: ReasoningContext) -> TraceComplexity:
    score = sum(
        [
            len(context.goals) > 3,
            len(context.constraints) > 2,
            len(context.assumptions) > 3,
            len(context.problem) > 500,
        ]
    )
    if score == 0:
        return "simple"
    if score == 1:
        return "moderate"
    if score == 2:
        return "complex"
    return "very_complex"


def identify_domain(context: ReasoningContext) -> str:
    problem = context.problem.lower()
    for domain, keywords in _DOMAIN_KEYWORDS:
        if any(k in problem for k in keywords):
            return domain
    return "general"


def step_confidence(step_type: str, input: str, output: str, complexity: str) -> float:
    confidence = STEP_CONFIDENCE.get(step_type, 0.8)
    if len(input) > 100:
        confidence += 0.1
    if len(output) > 100:
        confidence += 0.1
    if complexity == "simple":
        confidence += 0.1
    elif complexity == "very_complex":
        confidence -= 0.1
    return max(0.1, min(1.0, confidence))


def coherence(trace: ReasoningTrace) -> float:
    """How often a step picks up where the previous one left off."""
    pairs = list(zip(trace.steps, trace.steps[1:]))
    if not pairs:
        return 0.8
    return sum(
        1.0 if prev.output and prev.output[:30] in cur.input else 0.5 for prev, cur in pairs
    ) / len(pairs)


def completeness(trace: ReasoningTrace) -> float:
    present = {s.type for s in trace.steps}
    return sum(t in present for t in REQUIRED_STEP_TYPES) / len(REQUIRED_STEP_TYPES)


def accuracy(trace: ReasoningTrace) -> float:
    if not trace.steps:
        return 0.0
    avg = sum(s.confidence for s in trace.steps) / len(trace.steps)
    bonus = 0.1 if trace.alternatives else 0.0
    return min(1.0, avg + bonus)


def efficiency(trace: ReasoningTrace) -> float:
    expected = COMPLEXITY_LEVEL.get(trace.metadata.complexity, 1)
    return min(1.0, max(0.2, 1 - (len(trace.steps) - expected) * 0.1))


def creativity(trace: ReasoningTrace) -> float:
    techniques = len(set(trace.metadata.techniques))
    return min(1.0, techniques * 0.3 + len(trace.alternatives) * 0.2 + 0.5)


def quality_factors(trace: ReasoningTrace) -> ReasoningQualityMetrics:
    return ReasoningQualityMetrics(
        coherence=coherence(trace),
        completeness=completeness(trace),
        accuracy=accuracy(trace),
        efficiency=efficiency(trace),
        creativity=creativity(trace),
    )


def reasoning_quality(trace: ReasoningTrace) -> float:
    factors = quality_factors(trace)
    values = [getattr(factors, f.name) for f in fields(factors)]
    return max(0.0, min(1.0, sum(values) / len(values)))


def tree_complexity(root: DecisionNode) -> float:
    """Deepest level (root is 1) plus the log of the node count."""
    max_depth = 0
    count = 0
    stack = [(root, 1)]
    while stack:
        node, depth = stack.pop()
        count += 1
        max_depth = max(max_depth, depth)
        stack.extend((child, depth + 1) for child in node.children)
    return max_depth + math.log(count)


def find_decision_node(root: DecisionNode, node_id: str) -> DecisionNode | None:
    if root.id == node_id:
        return root
    for child in root.children:
        found = find_decision_node(child, node_id)
        if found is not None:
            return found
    return None


def should_auto_approve(enhancement: Enhancement) -> bool:
    return (
        enhancement.impact.risk_score <= 3
        and enhancement.impact.benefit_score >= 7
        and enhancement.priority >= 7
    )


class ReasoningStore:
    def __init__(
        self,
        config: ReasoningConfig | None = None,
        *,
        scorer: CodeQualityScorer | None = None,
        ids: IdGenerator = uuid_ids,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if config is None:
            from dualmem.config import ReasoningConfig

            config = ReasoningConfig()
        self.config = config
        self.max_traces = config.max_traces
        self.quality_threshold = config.quality_threshold
        self.scorer: CodeQualityScorer = scorer or HeuristicQualityScorer()
        self._ids = ids
        self._clock = clock
        self._lock = asyncio.Lock()

        self.traces: dict[str, ReasoningTrace] = {}
        self.trees: dict[str, DecisionTree] = {}
        self.enhancements: dict[str, Enhancement] = {}
        self.reflections: dict[str, ReflectionEntry] = {}
        self.quality = QualityMetrics()
        self.reasoning_style: str | None = None
        self._analysis_cache: dict[str, CodeQualityMetrics] = {}

    # ── 1. Reasoning traces ───────────────────────────────────

    async def start_trace(
        self, context: ReasoningContext, initial_step: str | None = None
    ) -> ReasoningTrace:
        trace = ReasoningTrace(
            id=self._ids("trace"),
            timestamp=self._clock(),
            context=context,
            metadata=ReasoningMetadata(
                complexity=assess_complexity(context),
                domain=identify_domain(context),
                style=self.reasoning_style,
            ),
        )
        async with self._lock:
            self.traces[trace.id] = trace
            self._enforce_trace_limit(keep=trace.id)
            if initial_step:
                self._append_step(
                    trace, "analysis", "Initial problem analysis", context.problem, initial_step
                )
        return trace

    async def add_step(
        self, trace_id: str, type: StepType, description: str, input: str, output: str
    ) -> ReasoningStep:
        async with self._lock:
            trace = self._trace(trace_id)
            if trace.completed:
                raise OperationError(f"Reasoning trace {trace_id} is already completed")
            return self._append_step(trace, type, description, input, output)

    def _append_step(
        self, trace: ReasoningTrace, type: str, description: str, input: str, output: str
    ) -> ReasoningStep:
        started = time.perf_counter()
        dependencies = [s.id for s in trace.steps if s.output and s.output[:50] in input]
        step = ReasoningStep(
            id=self._ids("step"),
            type=type,
            description=description,
            input=input,
            output=output,
            confidence=step_confidence(type, input, output, trace.metadata.complexity),
            dependencies=dependencies,
        )
        trace.steps.append(step)
        trace.metadata.techniques.append(type)
        step.duration_ms = (time.perf_counter() - started) * 1000

        # provisional score until the trace is completed
        avg = sum(s.confidence for s in trace.steps) / len(trace.steps)
        types = {s.type for s in trace.steps}
        provisional = avg * 0.6 + 0.2 * ("analysis" in types) + 0.2 * ("evaluation" in types)
        trace.metadata.quality_score = max(0.0, min(1.0, provisional))
        return step

    async def complete_trace(
        self, trace_id: str, conclusion: str, confidence: float
    ) -> ReasoningTrace:
        async with self._lock:
            trace = self._trace(trace_id)
            if trace.completed:
                raise OperationError(f"Reasoning trace {trace_id} is already completed")
            trace.conclusion = conclusion
            trace.confidence = confidence
            trace.metadata.quality_score = reasoning_quality(trace)
            trace.metadata.review_required = trace.metadata.quality_score < self.quality_threshold
            trace.completed = True

            if trace.metadata.quality_score < 0.7:
                self._propose_reasoning_improvement(trace)
            self._fold_reasoning_quality(quality_factors(trace))

        logger.debug(
            "Trace %s completed (quality=%.2f, review=%s)",
            trace.id,
            trace.metadata.quality_score,
            trace.metadata.review_required,
        )
        return trace

    def add_alternative(
        self,
        trace_id: str,
        description: str,
        steps: list[ReasoningStep] | None = None,
        pros: list[str] | None = None,
        cons: list[str] | None = None,
        confidence: float = 0.5,
        rejected: bool = False,
        rejection_reason: str | None = None,
    ) -> AlternativeReasoning:
        trace = self._trace(trace_id)
        alternative = AlternativeReasoning(
            id=self._ids("alt"),
            description=description,
            steps=list(steps or []),
            pros=list(pros or []),
            cons=list(cons or []),
            confidence=confidence,
            rejected=rejected,
            rejection_reason=rejection_reason,
        )
        trace.alternatives.append(alternative)
        return alternative

    def get_trace(self, trace_id: str) -> ReasoningTrace | None:
        return self.traces.get(trace_id)

    def search_traces(
        self,
        domain: str | None = None,
        complexity: str | None = None,
        min_quality: float | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 10,
    ) -> list[ReasoningTrace]:
        traces = list(self.traces.values())
        if domain:
            traces = [t for t in traces if t.metadata.domain == domain]
        if complexity:
            traces = [t for t in traces if t.metadata.complexity == complexity]
        if min_quality is not None:
            traces = [t for t in traces if t.metadata.quality_score >= min_quality]
        if start is not None:
            traces = [t for t in traces if t.timestamp >= start]
        if end is not None:
            traces = [t for t in traces if t.timestamp <= end]
        traces.sort(key=lambda t: t.metadata.quality_score, reverse=True)
        return traces[:limit]

    def recent_traces(self, limit: int = 10) -> list[ReasoningTrace]:
        return sorted(self.traces.values(), key=lambda t: t.timestamp, reverse=True)[:limit]

    def _trace(self, trace_id: str) -> ReasoningTrace:
        trace = self.traces.get(trace_id)
        if trace is None:
            raise NotFoundError("Reasoning trace", trace_id)
        return trace

    def _enforce_trace_limit(self, keep: str | None = None) -> None:
        if len(self.traces) <= self.max_traces:
            return
        count = math.floor(self.max_traces * 0.2)
        candidates = sorted(
            (t for t in self.traces.values() if t.id != keep),
            key=lambda t: t.metadata.quality_score,
        )
        for trace in candidates[:count]:
            del self.traces[trace.id]
        logger.info("Removed %d lowest-quality reasoning traces", min(count, len(candidates)))

    def set_max_traces(self, max_traces: int) -> None:
        self.max_traces = max(1, max_traces)
        self._enforce_trace_limit()

    def _fold_reasoning_quality(self, factors: ReasoningQualityMetrics) -> None:
        current = self.quality.reasoning_quality
        self.quality.reasoning_quality = ReasoningQualityMetrics(
            **{
                f.name: (getattr(current, f.name) + getattr(factors, f.name)) / 2
                for f in fields(ReasoningQualityMetrics)
            }
        )

    def _propose_reasoning_improvement(self, trace: ReasoningTrace) -> Enhancement:
        return self.propose_enhancement(
            type="quality",
            description=f"Improve reasoning quality for {trace.metadata.domain} problems",
            impact=ImpactAssessment(
                benefit_score=7,
                effort_score=5,
                risk_score=2,
                affected_components=["reasoning", "decision-making"],
            ),
            implementation=ImplementationPlan(
                phases=[
                    ImplementationPhase(
                        id="analysis",
                        name="Quality Analysis",
                        description="Analyze low-quality reasoning patterns",
                        duration_days=3,
                        deliverables=["Pattern analysis", "Improvement plan"],
                    )
                ],
                timeline_days=7,
                resources=["developer"],
                risks=[
                    Risk(
                        id="complexity",
                        description="Reasoning improvement may add complexity",
                        probability=0.3,
                        impact=4,
                        mitigation="Gradual implementation with testing",
                        contingency="Rollback to previous version",
                    )
                ],
            ),
            priority=6,
        )

    # ── 2. Decision trees ─────────────────────────────────────

    def create_decision_tree(self, domain: str, initial_condition: str) -> DecisionTree:
        tree = DecisionTree(
            id=self._ids("tree"),
            root=DecisionNode(id="root", type="condition", description=initial_condition),
            metadata=DecisionTreeMetadata(domain=domain, last_updated=self._clock()),
        )
        self.trees[tree.id] = tree
        return tree

    def add_decision_node(
        self,
        tree_id: str,
        parent_id: str,
        type: DecisionNodeType,
        description: str,
        confidence: float = 0.8,
        evidence: list[Evidence] | None = None,
    ) -> DecisionNode:
        tree = self._tree(tree_id)
        parent = find_decision_node(tree.root, parent_id)
        if parent is None:
            raise NotFoundError("Decision node", parent_id)
        node = DecisionNode(
            id=self._ids("decision"),
            type=type,
            description=description,
            confidence=confidence,
            evidence=list(evidence or []),
        )
        parent.children.append(node)
        tree.metadata.complexity = tree_complexity(tree.root)
        tree.metadata.last_updated = self._clock()
        return node

    def add_evidence(self, tree_id: str, node_id: str, evidence: Evidence) -> DecisionNode:
        tree = self._tree(tree_id)
        node = find_decision_node(tree.root, node_id)
        if node is None:
            raise NotFoundError("Decision node", node_id)
        node.evidence.append(evidence)
        node.confidence = min(1.0, sum(e.strength for e in node.evidence) / len(node.evidence))
        tree.metadata.last_updated = self._clock()
        return node

    def query_decision_tree(
        self, tree_id: str, context: dict[str, Any] | None = None
    ) -> list[DecisionNode]:
        """Walk from the root through the first confident condition at each level."""
        tree = self._tree(tree_id)
        tree.metadata.usage_count += 1
        path = [tree.root]
        node = tree.root
        while True:
            nxt = next(
                (c for c in node.children if c.type == "condition" and c.confidence > 0.5), None
            )
            if nxt is None:
                return path
            path.append(nxt)
            node = nxt

    @property
    def decision_context(self) -> DecisionTree | None:
        if not self.trees:
            return None
        return max(self.trees.values(), key=lambda t: t.metadata.last_updated)

    def _tree(self, tree_id: str) -> DecisionTree:
        tree = self.trees.get(tree_id)
        if tree is None:
            raise NotFoundError("Decision tree", tree_id)
        return tree

    # ── 3. Enhancements ───────────────────────────────────────

    def propose_enhancement(
        self,
        type: EnhancementType,
        description: str,
        impact: ImpactAssessment,
        implementation: ImplementationPlan | None = None,
        priority: int = 5,
    ) -> Enhancement:
        enhancement = Enhancement(
            id=self._ids("enhancement"),
            type=type,
            description=description,
            impact=impact,
            implementation=implementation or ImplementationPlan(),
            priority=priority,
        )
        if should_auto_approve(enhancement):
            enhancement.status = "approved"
        self.enhancements[enhancement.id] = enhancement
        logger.info(
            "Enhancement proposed: %s [%s, priority %d]",
            description,
            enhancement.status,
            priority,
        )
        return enhancement

    def update_enhancement_status(
        self, enhancement_id: str, status: EnhancementStatus, feedback: str | None = None
    ) -> Enhancement:
        enhancement = self.enhancements.get(enhancement_id)
        if enhancement is None:
            raise NotFoundError("Enhancement", enhancement_id)
        if status != enhancement.status:
            if status not in TRANSITIONS.get(enhancement.status, set()):
                raise OperationError(
                    f"Enhancement {enhancement_id} cannot move from {enhancement.status} to {status}"
                )
            enhancement.status = status
        if feedback:
            logger.info("Enhancement %s -> %s: %s", enhancement_id, status, feedback)
        return enhancement

    def enhancements_by_type(self, type: EnhancementType) -> list[Enhancement]:
        matching = [e for e in self.enhancements.values() if e.type == type]
        return sorted(matching, key=lambda e: e.priority, reverse=True)

    @property
    def improvement_suggestions(self) -> list[Enhancement]:
        open_ = [e for e in self.enhancements.values() if e.status in ("proposed", "approved")]
        return sorted(open_, key=lambda e: e.priority, reverse=True)

    # ── 4. Reflections ────────────────────────────────────────

    def add_reflection(
        self,
        trigger: str,
        observation: str,
        analysis: str,
        insight: str,
        confidence: float = 0.8,
    ) -> ReflectionEntry:
        reflection = ReflectionEntry(
            id=self._ids("reflection"),
            timestamp=self._clock(),
            trigger=trigger,
            observation=observation,
            analysis=analysis,
            insight=insight,
            confidence=confidence,
        )
        self.reflections[reflection.id] = reflection

        text = insight.lower()
        if "improve" in text or "optimize" in text:
            self.add_action_item(
                reflection.id,
                f"Implement improvement based on: {insight}",
                priority=7,
                due_date=self._clock() + timedelta(days=7),
            )
        if "learn" in text or "study" in text:
            self.add_action_item(
                reflection.id,
                f"Research and learn: {insight}",
                priority=5,
                due_date=self._clock() + timedelta(days=14),
            )
        return reflection

    def add_action_item(
        self,
        reflection_id: str,
        description: str,
        priority: int,
        due_date: datetime | None = None,
        assignee: str | None = None,
    ) -> ActionItem:
        reflection = self.reflections.get(reflection_id)
        if reflection is None:
            raise NotFoundError("Reflection", reflection_id)
        item = ActionItem(
            id=self._ids("action"),
            description=description,
            priority=priority,
            due_date=due_date,
            assignee=assignee,
        )
        reflection.action_items.append(item)
        return item

    def reflection_insights(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        min_confidence: float = 0.7,
    ) -> list[ReflectionEntry]:
        entries = [r for r in self.reflections.values() if r.confidence >= min_confidence]
        if start is not None:
            entries = [r for r in entries if r.timestamp >= start]
        if end is not None:
            entries = [r for r in entries if r.timestamp <= end]
        return sorted(entries, key=lambda r: r.confidence, reverse=True)

    # ── 5. Quality ────────────────────────────────────────────

    def assess_code_quality(self, code: str, language: str) -> CodeQualityMetrics:
        key = f"quality:{hashlib.sha256(code.encode()).hexdigest()[:16]}:{language}"
        cached = self._analysis_cache.get(key)
        if cached is not None:
            return cached
        metrics = self.scorer.score(code, language)
        self._analysis_cache[key] = metrics
        return metrics

    def clear_analysis_cache(self) -> None:
        self._analysis_cache.clear()

    def update_quality_metrics(self, **sections: Any) -> QualityMetrics:
        valid = {f.name for f in fields(QualityMetrics)}
        for name, value in sections.items():
            if name not in valid:
                raise ValueError(f"Unknown quality section: {name}")
            setattr(self.quality, name, value)
        return self.quality

    def _fold_code_quality(self, metrics: CodeQualityMetrics) -> None:
        current = self.quality.code_quality
        self.quality.code_quality = CodeQualityMetrics(
            **{
                f.name: (getattr(current, f.name) + getattr(metrics, f.name)) / 2
                for f in fields(CodeQualityMetrics)
            }
        )

    # ── 6. Event processing ───────────────────────────────────

    async def process_event(self, event: MemoryEvent) -> None:
        data = event.data
        if isinstance(data, CodeGenerationData):
            metrics = self.assess_code_quality(data.code, data.language)
            self._reflect_on_maintainability(metrics)
        elif isinstance(data, BugFixData):
            await self._record_bug_fix(data, event.metadata.confidence)
        elif isinstance(data, QualityImprovementData):
            metrics = self.assess_code_quality(data.code, data.language)
            self._fold_code_quality(metrics)
            self._reflect_on_maintainability(metrics)
            if data.description:
                self.propose_enhancement(
                    type="quality",
                    description=f"Quality improvement: {data.description}",
                    impact=ImpactAssessment(
                        benefit_score=5,
                        effort_score=3,
                        risk_score=2,
                        affected_components=["code-quality"],
                    ),
                    implementation=ImplementationPlan(timeline_days=5),
                    priority=6,
                )
        elif isinstance(data, LearningUpdateData):
            satisfaction = self.quality.user_satisfaction
            satisfaction.task_completion = (
                satisfaction.task_completion + (1.0 if data.success else 0.0)
            ) / 2
        else:
            logger.debug("Reasoning store has no handler for %s events", event.type)

    def _reflect_on_maintainability(self, metrics: CodeQualityMetrics) -> None:
        if metrics.maintainability >= 70:
            return
        self.add_reflection(
            "Low code maintainability",
            f"Generated code has maintainability score of {metrics.maintainability:.0f}",
            "Need to improve code generation patterns for better maintainability",
            "Focus on cleaner abstractions and better naming conventions",
            0.8,
        )

    async def _record_bug_fix(self, data: BugFixData, confidence: float) -> None:
        trace = await self.start_trace(ReasoningContext(problem=data.problem))
        if data.root_cause:
            await self.add_step(trace.id, "analysis", "Root cause", data.problem, data.root_cause)
        for step in data.steps:
            await self.add_step(trace.id, "synthesis", "Fix step", data.problem, step)
        if data.solution:
            await self.add_step(trace.id, "evaluation", "Solution", data.problem, data.solution)
        await self.complete_trace(trace.id, data.solution, confidence)
        self.add_reflection(
            f"Bug fix: {data.problem[:80]}",
            f"Fixed with {len(data.steps)} step(s)",
            "Analyze if this bug type is recurring and could be prevented",
            "Consider adding automated detection for this bug pattern",
            0.7,
        )

    # ── 7. Statistics & snapshots ─────────────────────────────

    def statistics(self) -> dict[str, int]:
        return {
            "traces": len(self.traces),
            "completed_traces": sum(t.completed for t in self.traces.values()),
            "decision_trees": len(self.trees),
            "enhancements": len(self.enhancements),
            "open_enhancements": len(self.improvement_suggestions),
            "reflections": len(self.reflections),
        }

    def export_state(self) -> dict[str, Any]:
        return {
            "traces": to_jsonable(list(self.traces.values())),
            "trees": to_jsonable(list(self.trees.values())),
            "enhancements": to_jsonable(list(self.enhancements.values())),
            "reflections": to_jsonable(list(self.reflections.values())),
            "quality": to_jsonable(self.quality),
            "reasoning_style": self.reasoning_style,
        }

    def import_state(self, state: dict[str, Any]) -> None:
        self.traces = {
            t.id: t for t in from_jsonable(list[ReasoningTrace], state.get("traces", []))
        }
        self.trees = {t.id: t for t in from_jsonable(list[DecisionTree], state.get("trees", []))}
        self.enhancements = {
            e.id: e for e in from_jsonable(list[Enhancement], state.get("enhancements", []))
        }
        self.reflections = {
            r.id: r for r in from_jsonable(list[ReflectionEntry], state.get("reflections", []))
        }
        self.quality = from_jsonable(QualityMetrics, state.get("quality", {}))
        self.reasoning_style = state.get("reasoning_style")
        self._analysis_cache.clear()
