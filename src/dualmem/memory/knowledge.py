"""System 1: the knowledge store.

Fast lookups over knowledge nodes, the concept graph, the pattern library,
interaction history and user preferences. Everything lives in process memory;
``export_state``/``import_state`` turn it into JSON-shaped data for snapshots.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from collections import Counter, deque
from dataclasses import fields
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from dualmem.errors import NotFoundError
from dualmem.memory.events import (
    CodeGenerationData,
    LearningUpdateData,
    MemoryEvent,
    PatternRecognitionData,
)
from dualmem.memory.ids import IdGenerator, uuid_ids
from dualmem.memory.models import (
    AntiPattern,
    BestPractice,
    CodeExample,
    CodePattern,
    CodeTemplate,
    CommandHistory,
    ConceptCluster,
    ConceptEdge,
    ConceptGraph,
    DetectionRule,
    EdgeType,
    InteractionHistory,
    KnowledgeNode,
    NodeMetadata,
    NodeType,
    PatternComplexity,
    PatternLibrary,
    PerformanceMetrics,
    SessionRecord,
    Severity,
    UsagePattern,
    UserPreferenceSet,
)
from dualmem.memory.snapshot import from_jsonable, to_jsonable

if TYPE_CHECKING:
    from dualmem.config import KnowledgeConfig

logger = logging.getLogger(__name__)

SEVERITY_WEIGHT = {"critical": 4, "high": 3, "medium": 2, "low": 1}
COMPLEXITY_ORDER = {"beginner": 0, "intermediate": 1, "advanced": 2}

MAX_SESSIONS = 1000
KEEP_SESSIONS = 500
PATTERN_WINDOW = 20
PATTERN_MIN_FREQUENCY = 3
SESSION_RETENTION_DAYS = 30

_JS_FUNCTION = re.compile(r"function\s+(\w+)\s*\([^)]*\)\s*{[^}]+}")
_PY_FUNCTION = re.compile(r"^def\s+(\w+)\s*\([^)]*\)[^:\n]*:\n(?:[ \t]+.*(?:\n|$))+", re.MULTILINE)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of two vectors; 0.0 for mismatched lengths or zero vectors."""
    if not a or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


def pattern_similarity(a: CodePattern, b: CodePattern) -> float:
    name_a, name_b = a.name.lower(), b.name.lower()
    score = 0.0
    if name_a in name_b or name_b in name_a:
        score += 0.5
    if a.use_case.lower() == b.use_case.lower():
        score += 0.5
    return score


class KnowledgeStore:
    """In-memory System 1 store. Mutating calls are serialized by one lock."""

    def __init__(
        self,
        config: KnowledgeConfig | None = None,
        *,
        ids: IdGenerator = uuid_ids,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if config is None:
            from dualmem.config import KnowledgeConfig

            config = KnowledgeConfig()
        self.config = config
        self._ids = ids
        self._clock = clock
        self._lock = asyncio.Lock()

        self._nodes: dict[str, KnowledgeNode] = {}
        self.graph = ConceptGraph(nodes=self._nodes)
        self.history = InteractionHistory()
        self.library = PatternLibrary()
        self.preferences = UserPreferenceSet()

    # ── 1. Knowledge nodes ────────────────────────────────────

    @property
    def nodes(self) -> dict[str, KnowledgeNode]:
        return self._nodes

    @property
    def programming_concepts(self) -> list[KnowledgeNode]:
        concepts = [
            n for n in self._nodes.values() if n.type in ("function", "class", "module", "concept")
        ]
        return sorted(concepts, key=lambda n: n.confidence, reverse=True)

    async def add_node(
        self,
        type: NodeType,
        name: str,
        content: str,
        embedding: list[float] | None = None,
        metadata: NodeMetadata | None = None,
        confidence: float = 0.8,
    ) -> KnowledgeNode:
        if embedding and len(embedding) != self.config.embedding_dimension:
            logger.warning(
                "Embedding for %r has %d dimensions, expected %d",
                name,
                len(embedding),
                self.config.embedding_dimension,
            )
        node = KnowledgeNode(
            id=self._ids("node"),
            type=type,
            name=name,
            content=content,
            embedding=list(embedding or []),
            confidence=confidence,
            last_accessed=self._clock(),
            metadata=metadata or NodeMetadata(),
        )
        async with self._lock:
            self._nodes[node.id] = node
            if len(self._nodes) > self.config.max_nodes:
                self._evict_least_used()
        return node

    async def get_node(self, node_id: str) -> KnowledgeNode | None:
        """Fetch a node, decaying its confidence by the time since its last access."""
        async with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return None
            now = self._clock()
            days = (now - node.last_accessed).total_seconds() / 86400
            node.confidence = max(0.1, node.confidence * math.exp(-self.config.decay_rate * days))
            node.access_count += 1
            node.last_accessed = now
            return node

    async def update_node(self, node_id: str, **changes: Any) -> bool:
        allowed = {f.name for f in fields(KnowledgeNode)} - {"id"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown node fields: {', '.join(sorted(unknown))}")
        async with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return False
            for key, value in changes.items():
                setattr(node, key, value)
            node.last_accessed = self._clock()
            return True

    def search(
        self, query: str, embedding: list[float] | None = None, limit: int = 10
    ) -> list[KnowledgeNode]:
        """Nodes with cosine similarity > 0.5, best first.

        Without an embedding the query text is matched against node names
        and contents instead, ranked by confidence.
        """
        if embedding:
            scored = [(cosine_similarity(embedding, n.embedding), n) for n in self._nodes.values()]
            hits = [(s, n) for s, n in scored if s > 0.5]
            hits.sort(key=lambda item: item[0], reverse=True)
            return [n for _, n in hits[:limit]]

        terms = [t for t in query.lower().split() if t]
        if not terms:
            return []
        matches = [
            n
            for n in self._nodes.values()
            if any(t in n.name.lower() or t in n.content.lower() for t in terms)
        ]
        matches.sort(key=lambda n: n.confidence, reverse=True)
        return matches[:limit]

    def usage_score(self, node: KnowledgeNode) -> float:
        recency = (self._clock() - node.last_accessed).total_seconds() / 86400
        frequency = math.log(node.access_count + 1)
        return (frequency + node.confidence + node.metadata.quality) / (1 + recency * 0.1)

    def _evict_least_used(self) -> None:
        count = math.floor(self.config.max_nodes * 0.1)
        if count <= 0:
            return
        ranked = sorted(self._nodes.values(), key=self.usage_score)
        for node in ranked[:count]:
            del self._nodes[node.id]
        logger.info("Evicted %d least-used knowledge nodes", count)

    # ── 2. Concept graph ──────────────────────────────────────

    def add_edge(
        self,
        source_id: str,
        target_id: str,
        type: EdgeType,
        weight: float = 1.0,
        confidence: float = 0.8,
    ) -> ConceptEdge:
        for node_id in (source_id, target_id):
            if node_id not in self._nodes:
                raise NotFoundError("knowledge node", node_id)
        edge = ConceptEdge(
            id=f"{source_id}-{type}-{target_id}",
            source_id=source_id,
            target_id=target_id,
            type=type,
            weight=weight,
            confidence=confidence,
        )
        self.graph.edges[edge.id] = edge
        return edge

    def related_concepts(self, node_id: str, max_depth: int = 2) -> list[KnowledgeNode]:
        """Breadth-first neighbours of a node up to ``max_depth`` hops, in either direction."""
        related: dict[str, None] = {}
        visited: set[str] = set()
        queue: deque[tuple[str, int]] = deque([(node_id, 0)])

        while queue:
            current, depth = queue.popleft()
            if current in visited or depth >= max_depth:
                continue
            visited.add(current)
            for edge in self.graph.edges.values():
                if edge.source_id == current and edge.target_id not in visited:
                    related.setdefault(edge.target_id)
                    queue.append((edge.target_id, depth + 1))
                if edge.target_id == current and edge.source_id not in visited:
                    related.setdefault(edge.source_id)
                    queue.append((edge.source_id, depth + 1))

        related.pop(node_id, None)
        return [self._nodes[i] for i in related if i in self._nodes]

    def dangling_edges(self) -> list[ConceptEdge]:
        return [
            e
            for e in self.graph.edges.values()
            if e.source_id not in self._nodes or e.target_id not in self._nodes
        ]

    def repair_graph(self) -> int:
        """Drop edges to evicted nodes and rebuild clusters from live nodes."""
        dangling = self.dangling_edges()
        for edge in dangling:
            del self.graph.edges[edge.id]

        groups: dict[str, list[KnowledgeNode]] = {}
        for node in self._nodes.values():
            groups.setdefault(node.metadata.domain or node.type, []).append(node)

        clusters = []
        for name, members in sorted(groups.items()):
            centroid = _centroid([m.embedding for m in members])
            coherence = (
                sum(cosine_similarity(centroid, m.embedding) for m in members) / len(members)
                if centroid
                else 0.0
            )
            clusters.append(
                ConceptCluster(
                    id=self._ids("cluster"),
                    name=name,
                    node_ids=[m.id for m in members],
                    centroid=centroid,
                    coherence=coherence,
                )
            )
        self.graph.clusters = clusters
        logger.info(
            "Concept graph repaired: %d dangling edges removed, %d clusters",
            len(dangling),
            len(clusters),
        )
        return len(dangling)

    # ── 3. Pattern library ────────────────────────────────────

    def add_code_pattern(
        self,
        name: str,
        code: str,
        language: str,
        use_case: str,
        description: str = "",
        complexity: PatternComplexity = "intermediate",
        framework: str | None = None,
        performance: PerformanceMetrics | None = None,
        examples: list[CodeExample] | None = None,
    ) -> CodePattern:
        pattern = CodePattern(
            id=self._ids("pattern"),
            name=name,
            description=description,
            code=code,
            language=language,
            use_case=use_case,
            complexity=complexity,
            framework=framework,
            performance=performance or PerformanceMetrics(),
            examples=list(examples or []),
        )
        self.library.code_patterns.append(pattern)
        return pattern

    def find_code_patterns(
        self,
        language: str | None = None,
        framework: str | None = None,
        use_case: str | None = None,
        limit: int = 10,
    ) -> list[CodePattern]:
        """Filter the library, simplest patterns first."""
        patterns = self.library.code_patterns
        if language:
            patterns = [p for p in patterns if p.language == language]
        if framework:
            patterns = [p for p in patterns if p.framework == framework]
        if use_case:
            needle = use_case.lower()
            patterns = [p for p in patterns if needle in p.use_case.lower()]
        patterns = sorted(patterns, key=lambda p: COMPLEXITY_ORDER.get(p.complexity, 1))
        return patterns[:limit]

    def record_pattern_outcome(self, pattern_ref: str, success: bool) -> CodePattern | None:
        """Nudge a pattern's effectiveness after it was (or was not) applied successfully."""
        for pattern in self.library.code_patterns:
            if pattern_ref in (pattern.id, pattern.name):
                delta = 0.1 if success else -0.05
                pattern.effectiveness = max(0.0, min(1.0, pattern.effectiveness + delta))
                return pattern
        logger.debug("Pattern outcome for unknown pattern %s ignored", pattern_ref)
        return None

    def add_anti_pattern(
        self,
        name: str,
        description: str,
        problem: str,
        solution: str,
        severity: Severity,
        detection_rules: list[DetectionRule] | None = None,
    ) -> AntiPattern:
        anti = AntiPattern(
            id=self._ids("anti"),
            name=name,
            description=description,
            problem=problem,
            solution=solution,
            severity=severity,
            detection_rules=list(detection_rules or []),
        )
        self.library.anti_patterns.append(anti)
        return anti

    def detect_anti_patterns(self, code: str) -> list[AntiPattern]:
        """Anti-patterns whose rules match ``code``, most severe first.

        Rules are case-insensitive regexes. A rule that fails to compile is
        logged and skipped.
        """
        detected = []
        for anti in self.library.anti_patterns:
            for rule in anti.detection_rules:
                try:
                    matched = re.search(rule.pattern, code, re.IGNORECASE) is not None
                except re.error as e:
                    logger.warning("Invalid regex pattern %r in %s: %s", rule.pattern, anti.name, e)
                    continue
                if matched:
                    detected.append(anti)
                    break
        return sorted(detected, key=lambda a: SEVERITY_WEIGHT.get(a.severity, 0), reverse=True)

    def add_best_practice(
        self,
        name: str,
        description: str,
        category: str,
        benefits: list[str] | None = None,
        steps: list[str] | None = None,
    ) -> BestPractice:
        practice = BestPractice(
            id=self._ids("practice"),
            name=name,
            description=description,
            category=category,
            benefits=list(benefits or []),
            steps=list(steps or []),
        )
        self.library.best_practices.append(practice)
        return practice

    def find_best_practice(self, name: str) -> BestPractice | None:
        return next((p for p in self.library.best_practices if p.name == name), None)

    def add_template(
        self,
        name: str,
        template: str,
        language: str,
        category: str,
        description: str = "",
        variables: list[str] | None = None,
        framework: str | None = None,
    ) -> CodeTemplate:
        tpl = CodeTemplate(
            id=self._ids("template"),
            name=name,
            description=description,
            template=template,
            language=language,
            category=category,
            variables=list(variables or []),
            framework=framework,
        )
        self.library.templates.append(tpl)
        return tpl

    def load_library(self, directory: Path) -> int:
        """Register every entry found in a directory of pattern markdown files.

        Entries keep their ``library:<stem>`` ids, so loading the same
        directory again replaces them instead of adding copies.
        """
        from dualmem.memory.library import load_library

        loaded = load_library(directory)
        _upsert(self.library.code_patterns, loaded.code_patterns)
        _upsert(self.library.anti_patterns, loaded.anti_patterns)
        _upsert(self.library.best_practices, loaded.best_practices)
        total = len(loaded.code_patterns) + len(loaded.anti_patterns) + len(loaded.best_practices)
        logger.info("Loaded %d pattern library entries from %s", total, directory)
        return total

    # ── 4. Interaction history ────────────────────────────────

    async def record_session(self, session: SessionRecord) -> None:
        async with self._lock:
            self.history.sessions.append(session)
            for command in session.commands:
                self._touch_command(command)
            self._detect_usage_patterns()
            if len(self.history.sessions) > MAX_SESSIONS:
                self.history.sessions = self.history.sessions[-KEEP_SESSIONS:]

    def update_command_history(self, command: str) -> CommandHistory:
        return self._touch_command(command)

    def _touch_command(self, command: str) -> CommandHistory:
        entry = next((c for c in self.history.commands if c.command == command), None)
        if entry is None:
            entry = CommandHistory(command=command, last_used=self._clock())
            self.history.commands.append(entry)
        entry.frequency += 1
        entry.last_used = self._clock()
        return entry

    def frequent_commands(self, limit: int = 10) -> list[CommandHistory]:
        return sorted(self.history.commands, key=lambda c: c.frequency, reverse=True)[:limit]

    def recent_commands(self, limit: int = 10) -> list[CommandHistory]:
        return sorted(self.history.commands, key=lambda c: c.last_used, reverse=True)[:limit]

    def _detect_usage_patterns(self) -> None:
        """Count command bigrams over the last sessions and keep the frequent ones."""
        sequences: Counter[str] = Counter()
        for session in self.history.sessions[-PATTERN_WINDOW:]:
            for first, second in zip(session.commands, session.commands[1:]):
                sequences[f"{first} -> {second}"] += 1

        known = {p.pattern: p for p in self.history.patterns if p.type == "sequential"}
        for sequence, frequency in sequences.items():
            if frequency < PATTERN_MIN_FREQUENCY:
                continue
            confidence = min(frequency / 10, 1.0)
            if sequence in known:
                known[sequence].frequency = frequency
                known[sequence].confidence = confidence
            else:
                self.history.patterns.append(
                    UsagePattern(
                        id=self._ids("usage"),
                        type="sequential",
                        pattern=sequence,
                        frequency=frequency,
                        confidence=confidence,
                    )
                )

    # ── 5. User preferences ───────────────────────────────────

    def get_preferences(self) -> UserPreferenceSet:
        return self.preferences

    def get_preference(self, section: str) -> Any:
        if section not in {f.name for f in fields(UserPreferenceSet)}:
            raise ValueError(f"Unknown preference section: {section}")
        return getattr(self.preferences, section)

    def update_preferences(self, **sections: Any) -> UserPreferenceSet:
        for name, value in sections.items():
            self.get_preference(name)
            setattr(self.preferences, name, value)
        return self.preferences

    def adapt_preference(self, path: str, value: Any, confidence: float = 0.8) -> bool:
        """Set one preference field given as ``section.field`` when confidence allows."""
        section_name, _, field_name = path.partition(".")
        if confidence < 0.5 or not field_name:
            return False
        section = self.get_preference(section_name)
        if not hasattr(section, field_name):
            logger.warning("Unknown preference %s", path)
            return False
        setattr(section, field_name, value)
        logger.info("Preference %s adapted to %r (confidence %.2f)", path, value, confidence)
        return True

    # ── 6. Event processing ───────────────────────────────────

    async def process_event(self, event: MemoryEvent) -> None:
        data = event.data
        if isinstance(data, CodeGenerationData):
            for pattern in self._extract_code_patterns(data.code, data.language):
                self.library.code_patterns.append(pattern)
        elif isinstance(data, PatternRecognitionData):
            self.record_pattern_outcome(data.pattern_name, data.success)
        elif isinstance(data, LearningUpdateData):
            self._apply_learning(data, event.metadata.confidence)
        else:
            logger.debug("Knowledge store has no handler for %s events", event.type)

    def _extract_code_patterns(self, code: str, language: str) -> list[CodePattern]:
        patterns = []
        for regex in (_JS_FUNCTION, _PY_FUNCTION):
            for match in regex.finditer(code):
                patterns.append(
                    CodePattern(
                        id=self._ids("pattern"),
                        name=f"Function: {match.group(1)}",
                        description="Function pattern extracted from code",
                        code=match.group(0),
                        language=language,
                        use_case="Function definition",
                    )
                )
        return patterns

    def _apply_learning(self, data: LearningUpdateData, confidence: float) -> None:
        command = data.context.get("command")
        if command:
            entry = self._touch_command(str(command))
            outcome = 1.0 if data.success else 0.0
            entry.success_rate = (entry.success_rate * (entry.frequency - 1) + outcome) / entry.frequency

        preference = data.context.get("preference")
        if preference and "value" in data.context:
            self.adapt_preference(str(preference), data.context["value"], confidence)

    # ── 7. Maintenance ────────────────────────────────────────

    async def compress_memory(self) -> None:
        """Drop sessions older than 30 days and merge near-duplicate code patterns."""
        async with self._lock:
            cutoff = self._clock() - timedelta(days=SESSION_RETENTION_DAYS)
            before = len(self.history.sessions)
            self.history.sessions = [s for s in self.history.sessions if s.start_time > cutoff]
            merged = self._merge_similar_patterns()
        logger.info(
            "Knowledge store compressed: %d old sessions dropped, %d patterns merged",
            before - len(self.history.sessions),
            merged,
        )

    def _merge_similar_patterns(self) -> int:
        patterns = self.library.code_patterns
        processed: set[str] = set()
        kept: list[CodePattern] = []

        for i, primary in enumerate(patterns):
            if primary.id in processed:
                continue
            processed.add(primary.id)
            similar = [
                p
                for p in patterns[i + 1 :]
                if p.id not in processed
                and p.language == primary.language
                and pattern_similarity(primary, p) > 0.8
            ]
            if similar:
                primary.description = (
                    f"{primary.description} (merged from {len(similar) + 1} patterns)"
                )
                for p in similar:
                    primary.examples.extend(p.examples)
                    processed.add(p.id)
            kept.append(primary)

        removed = len(patterns) - len(kept)
        self.library.code_patterns = kept
        return removed

    def statistics(self) -> dict[str, int]:
        return {
            "nodes": len(self._nodes),
            "edges": len(self.graph.edges),
            "clusters": len(self.graph.clusters),
            "code_patterns": len(self.library.code_patterns),
            "anti_patterns": len(self.library.anti_patterns),
            "best_practices": len(self.library.best_practices),
            "templates": len(self.library.templates),
            "sessions": len(self.history.sessions),
            "commands": len(self.history.commands),
            "usage_patterns": len(self.history.patterns),
        }

    # ── 8. Snapshots ──────────────────────────────────────────

    def export_state(self) -> dict[str, Any]:
        return {
            "nodes": to_jsonable(list(self._nodes.values())),
            "edges": to_jsonable(list(self.graph.edges.values())),
            "clusters": to_jsonable(self.graph.clusters),
            "history": to_jsonable(self.history),
            "library": to_jsonable(self.library),
            "preferences": to_jsonable(self.preferences),
        }

    def import_state(self, state: dict[str, Any]) -> None:
        self._nodes.clear()
        for node in from_jsonable(list[KnowledgeNode], state.get("nodes", [])):
            self._nodes[node.id] = node
        self.graph.edges = {
            e.id: e for e in from_jsonable(list[ConceptEdge], state.get("edges", []))
        }
        self.graph.clusters = from_jsonable(list[ConceptCluster], state.get("clusters", []))
        self.history = from_jsonable(InteractionHistory, state.get("history", {}))
        self.library = from_jsonable(PatternLibrary, state.get("library", {}))
        self.preferences = from_jsonable(UserPreferenceSet, state.get("preferences", {}))


def _centroid(vectors: list[list[float]]) -> list[float]:
    dims = {len(v) for v in vectors if v}
    if len(dims) != 1:
        return []
    usable = [v for v in vectors if v]
    size = dims.pop()
    return [sum(v[i] for v in usable) / len(usable) for i in range(size)]


def _upsert(entries: list, incoming: list) -> None:
    """Replace entries that share an id with ``incoming``, append the rest."""
    positions = {entry.id: i for i, entry in enumerate(entries)}
    for item in incoming:
        if item.id in positions:
            entries[positions[item.id]] = item
        else:
            positions[item.id] = len(entries)
            entries.append(item)
