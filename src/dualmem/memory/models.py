"""Entities owned by the two memory layers.

System 1 (KnowledgeStore) owns knowledge nodes, the concept graph, the pattern
library, interaction history and user preferences. System 2 (ReasoningStore)
owns reasoning traces, decision trees, enhancements, reflections and the
aggregate quality metrics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

NodeType = Literal["function", "class", "module", "concept", "pattern"]
Complexity = Literal["low", "medium", "high"]
EdgeType = Literal["depends_on", "implements", "uses", "similar_to", "extends"]
Severity = Literal["low", "medium", "high", "critical"]
PatternComplexity = Literal["beginner", "intermediate", "advanced"]
RuleType = Literal["syntax", "semantic", "performance", "security"]
UsagePatternType = Literal["temporal", "sequential", "contextual"]
OutcomeType = Literal["success", "partial_success", "failure", "cancelled"]

StepType = Literal["analysis", "synthesis", "evaluation", "inference"]
TraceComplexity = Literal["simple", "moderate", "complex", "very_complex"]
DecisionNodeType = Literal["condition", "action", "outcome"]
EvidenceType = Literal["empirical", "theoretical", "heuristic", "user_feedback"]
EnhancementType = Literal["performance", "quality", "usability", "feature"]
EnhancementStatus = Literal["proposed", "approved", "in_progress", "completed", "rejected"]
ActionStatus = Literal["open", "in_progress", "completed", "cancelled"]


# ── System 1: knowledge ───────────────────────────────────────


@dataclass
class NodeMetadata:
    complexity: Complexity = "medium"
    quality: float = 0.8
    relevance: float = 0.8
    language: str | None = None
    framework: str | None = None
    domain: str | None = None
    source_trace_id: str | None = None


@dataclass
class KnowledgeNode:
    id: str
    type: NodeType
    name: str
    content: str
    embedding: list[float] = field(default_factory=list)
    confidence: float = 0.8
    last_accessed: datetime = field(default_factory=datetime.now)
    access_count: int = 1
    metadata: NodeMetadata = field(default_factory=NodeMetadata)


@dataclass
class ConceptEdge:
    id: str
    source_id: str
    target_id: str
    type: EdgeType
    weight: float = 1.0
    confidence: float = 0.8


@dataclass
class ConceptCluster:
    id: str
    name: str
    node_ids: list[str] = field(default_factory=list)
    centroid: list[float] = field(default_factory=list)
    coherence: float = 0.0


@dataclass
class ConceptGraph:
    """Business-logic graph. ``nodes`` is the knowledge store's own node table."""

    nodes: dict[str, KnowledgeNode] = field(default_factory=dict)
    edges: dict[str, ConceptEdge] = field(default_factory=dict)
    clusters: list[ConceptCluster] = field(default_factory=list)


@dataclass
class SessionOutcome:
    type: OutcomeType
    description: str = ""


@dataclass
class SessionRecord:
    id: str
    start_time: datetime
    user_id: str
    commands: list[str] = field(default_factory=list)
    end_time: datetime | None = None
    outcomes: list[SessionOutcome] = field(default_factory=list)
    satisfaction: float | None = None


@dataclass
class CommandHistory:
    command: str
    frequency: int = 0
    last_used: datetime = field(default_factory=datetime.now)
    success_rate: float = 1.0
    average_execution_time: float = 0.0
    user_satisfaction: float = 0.8


@dataclass
class UsagePattern:
    id: str
    type: UsagePatternType
    pattern: str
    frequency: int
    confidence: float
    conditions: list[str] = field(default_factory=list)


@dataclass
class InteractionHistory:
    sessions: list[SessionRecord] = field(default_factory=list)
    commands: list[CommandHistory] = field(default_factory=list)
    patterns: list[UsagePattern] = field(default_factory=list)


@dataclass
class PerformanceMetrics:
    time_complexity: str = "O(1)"
    space_complexity: str = "O(1)"


@dataclass
class CodeExample:
    id: str
    title: str
    code: str
    language: str
    explanation: str = ""
    difficulty: PatternComplexity = "intermediate"


@dataclass
class CodePattern:
    id: str
    name: str
    description: str
    code: str
    language: str
    use_case: str
    complexity: PatternComplexity = "intermediate"
    framework: str | None = None
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    examples: list[CodeExample] = field(default_factory=list)
    effectiveness: float = 0.5


@dataclass
class DetectionRule:
    type: RuleType
    pattern: str
    confidence: float = 0.8


@dataclass
class AntiPattern:
    id: str
    name: str
    description: str
    problem: str
    solution: str
    severity: Severity
    detection_rules: list[DetectionRule] = field(default_factory=list)


@dataclass
class BestPractice:
    id: str
    name: str
    description: str
    category: str
    benefits: list[str] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)


@dataclass
class CodeTemplate:
    id: str
    name: str
    description: str
    template: str
    language: str
    category: str
    variables: list[str] = field(default_factory=list)
    framework: str | None = None


@dataclass
class PatternLibrary:
    code_patterns: list[CodePattern] = field(default_factory=list)
    anti_patterns: list[AntiPattern] = field(default_factory=list)
    best_practices: list[BestPractice] = field(default_factory=list)
    templates: list[CodeTemplate] = field(default_factory=list)


# ── System 1: user preferences ────────────────────────────────


@dataclass
class DevelopmentStyle:
    approach: Literal["test-driven", "prototype-first", "documentation-heavy", "iterative"] = (
        "iterative"
    )
    preferred_languages: list[str] = field(default_factory=lambda: ["typescript", "javascript"])
    architectural_patterns: list[str] = field(default_factory=lambda: ["MVC"])
    problem_solving_style: Literal["systematic", "intuitive", "collaborative", "experimental"] = (
        "systematic"
    )
    work_pace: Literal["fast", "moderate", "thorough"] = "moderate"


@dataclass
class CommunicationPreferences:
    verbosity: str = "moderate"
    explanation_depth: str = "intermediate"
    code_comment_style: str = "inline"
    feedback_style: str = "constructive"


@dataclass
class ToolPreferences:
    ide: list[str] = field(default_factory=lambda: ["vscode", "webstorm"])
    frameworks: list[str] = field(default_factory=lambda: ["react", "express"])
    libraries: list[str] = field(default_factory=lambda: ["lodash"])
    build_tools: list[str] = field(default_factory=lambda: ["webpack", "vite"])
    testing_tools: list[str] = field(default_factory=lambda: ["jest", "vitest"])


@dataclass
class LearningStyle:
    preferred_methods: list[str] = field(default_factory=lambda: ["hands_on", "visual"])
    pace: str = "moderate"
    complexity: str = "simple_to_complex"
    feedback: str = "immediate"


@dataclass
class QualityStandards:
    maintainability_threshold: float = 80
    readability_threshold: float = 75
    test_coverage: float = 80
    documentation_required: bool = True
    security_scanning: bool = True


@dataclass
class UserPreferenceSet:
    development_style: DevelopmentStyle = field(default_factory=DevelopmentStyle)
    communication: CommunicationPreferences = field(default_factory=CommunicationPreferences)
    tools: ToolPreferences = field(default_factory=ToolPreferences)
    learning_style: LearningStyle = field(default_factory=LearningStyle)
    quality_standards: QualityStandards = field(default_factory=QualityStandards)


# ── System 2: reasoning ───────────────────────────────────────


@dataclass
class ReasoningContext:
    problem: str
    goals: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    assumptions: list[str] = field(default_factory=list)
    resources: list[str] = field(default_factory=list)


@dataclass
class ReasoningStep:
    id: str
    type: StepType
    description: str
    input: str
    output: str
    confidence: float
    duration_ms: float = 0.0
    dependencies: list[str] = field(default_factory=list)


@dataclass
class AlternativeReasoning:
    id: str
    description: str
    steps: list[ReasoningStep] = field(default_factory=list)
    pros: list[str] = field(default_factory=list)
    cons: list[str] = field(default_factory=list)
    confidence: float = 0.5
    rejected: bool = False
    rejection_reason: str | None = None


@dataclass
class ReasoningMetadata:
    complexity: TraceComplexity = "simple"
    domain: str = "general"
    techniques: list[str] = field(default_factory=list)
    quality_score: float = 0.0
    review_required: bool = False
    style: str | None = None
    source_node_id: str | None = None
    promoted: bool = False


@dataclass
class ReasoningTrace:
    id: str
    timestamp: datetime
    context: ReasoningContext
    steps: list[ReasoningStep] = field(default_factory=list)
    conclusion: str = ""
    confidence: float = 0.0
    alternatives: list[AlternativeReasoning] = field(default_factory=list)
    metadata: ReasoningMetadata = field(default_factory=ReasoningMetadata)
    completed: bool = False


@dataclass
class CodeQualityMetrics:
    maintainability: float = 80  # 0-100
    readability: float = 75
    testability: float = 70
    performance: float = 85
    security: float = 90
    bug_density: float = 2.5  # per 1000 lines
    complexity: float = 5  # cyclomatic


@dataclass
class ReasoningQualityMetrics:
    coherence: float = 0.8
    completeness: float = 0.75
    accuracy: float = 0.85
    efficiency: float = 0.7
    creativity: float = 0.6


@dataclass
class SatisfactionMetrics:
    user_rating: float = 4.2
    task_completion: float = 0.85
    time_to_solution: float = 15  # minutes
    iteration_count: int = 3
    user_feedback: list[str] = field(default_factory=list)


@dataclass
class QualityMetrics:
    code_quality: CodeQualityMetrics = field(default_factory=CodeQualityMetrics)
    reasoning_quality: ReasoningQualityMetrics = field(default_factory=ReasoningQualityMetrics)
    user_satisfaction: SatisfactionMetrics = field(default_factory=SatisfactionMetrics)
    system_performance: PerformanceMetrics = field(
        default_factory=lambda: PerformanceMetrics(time_complexity="O(n)")
    )


@dataclass
class Evidence:
    type: EvidenceType
    description: str
    strength: float
    source: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class DecisionNode:
    id: str
    type: DecisionNodeType
    description: str
    children: list[DecisionNode] = field(default_factory=list)
    confidence: float = 0.8
    evidence: list[Evidence] = field(default_factory=list)
    alternatives: list[DecisionNode] = field(default_factory=list)


@dataclass
class DecisionTreeMetadata:
    domain: str
    complexity: float = 1.0
    accuracy: float = 0.8
    last_updated: datetime = field(default_factory=datetime.now)
    usage_count: int = 0


@dataclass
class DecisionTree:
    id: str
    root: DecisionNode
    metadata: DecisionTreeMetadata


@dataclass
class ImpactAssessment:
    benefit_score: float  # 0-10
    effort_score: float
    risk_score: float
    affected_users: int = 1
    affected_components: list[str] = field(default_factory=list)


@dataclass
class ImplementationPhase:
    id: str
    name: str
    description: str
    duration_days: float
    deliverables: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)


@dataclass
class Risk:
    id: str
    description: str
    probability: float
    impact: float
    mitigation: str = ""
    contingency: str = ""


@dataclass
class ImplementationPlan:
    phases: list[ImplementationPhase] = field(default_factory=list)
    timeline_days: float = 0
    resources: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    risks: list[Risk] = field(default_factory=list)


@dataclass
class Enhancement:
    id: str
    type: EnhancementType
    description: str
    impact: ImpactAssessment
    implementation: ImplementationPlan = field(default_factory=ImplementationPlan)
    priority: int = 5  # 1-10
    status: EnhancementStatus = "proposed"


@dataclass
class ActionItem:
    id: str
    description: str
    priority: int
    due_date: datetime | None = None
    assignee: str | None = None
    status: ActionStatus = "open"


@dataclass
class ReflectionEntry:
    id: str
    timestamp: datetime
    trigger: str
    observation: str
    analysis: str
    insight: str
    action_items: list[ActionItem] = field(default_factory=list)
    confidence: float = 0.8


# ── Queries ───────────────────────────────────────────────────

QueryType = Literal["knowledge", "pattern", "reasoning", "quality", "preference"]
Urgency = Literal["low", "medium", "high", "critical"]
Source = Literal["system1", "system2", "both"]


@dataclass
class MemoryQuery:
    type: QueryType
    query: str
    context: dict[str, Any] | None = None
    urgency: Urgency | None = None
    embedding: list[float] | None = None
    limit: int | None = None


@dataclass
class MemoryResponse:
    data: Any
    source: Source
    confidence: float
    latency_ms: float
    cached: bool = False
    suggestions: list[Enhancement] | None = None
