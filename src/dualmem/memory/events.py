"""Memory events, the tagged union fed into the engine's ingestion queue.

Each event type carries its own payload dataclass. ``MemoryEvent`` checks on
construction that the payload matches the declared type, so the engine's
router can dispatch on ``event.type`` without re-validating.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

from dualmem.errors import InvalidEventError

EventType = Literal[
    "code_generation",
    "pattern_recognition",
    "bug_fix",
    "quality_improvement",
    "learning_update",
    "mode_change",
    "team_interaction",
]
Priority = Literal["low", "medium", "high", "critical"]


@dataclass
class EventMetadata:
    confidence: float = 0.8
    source: str = "user"
    priority: Priority = "medium"
    tags: list[str] = field(default_factory=list)


@dataclass
class CodeGenerationData:
    """Generated code observed in a session; becomes a System 1 knowledge node."""

    code: str
    language: str = "unknown"
    description: str = ""
    framework: str | None = None


@dataclass
class PatternRecognitionData:
    pattern_name: str
    success: bool = True
    description: str = ""


@dataclass
class BugFixData:
    problem: str
    solution: str = ""
    root_cause: str = ""
    steps: list[str] = field(default_factory=list)


@dataclass
class QualityImprovementData:
    code: str
    language: str = "unknown"
    description: str = ""


@dataclass
class LearningUpdateData:
    input: str
    output: str
    context: dict[str, Any] = field(default_factory=dict)
    success: bool = True


@dataclass
class ModeChangeData:
    mode: str
    previous_mode: str | None = None


@dataclass
class TeamInteractionData:
    members: list[str] = field(default_factory=list)
    topic: str = ""


EventData = Union[
    CodeGenerationData,
    PatternRecognitionData,
    BugFixData,
    QualityImprovementData,
    LearningUpdateData,
    ModeChangeData,
    TeamInteractionData,
]

EVENT_DATA_TYPES: dict[str, type] = {
    "code_generation": CodeGenerationData,
    "pattern_recognition": PatternRecognitionData,
    "bug_fix": BugFixData,
    "quality_improvement": QualityImprovementData,
    "learning_update": LearningUpdateData,
    "mode_change": ModeChangeData,
    "team_interaction": TeamInteractionData,
}


@dataclass
class MemoryEvent:
    id: str
    type: EventType
    user_id: str
    session_id: str
    data: EventData
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: EventMetadata = field(default_factory=EventMetadata)

    def __post_init__(self) -> None:
        expected = EVENT_DATA_TYPES.get(self.type)
        if expected is None:
            raise InvalidEventError(f"Unknown event type: {self.type}")
        if not isinstance(self.data, expected):
            raise InvalidEventError(
                f"Event {self.id} of type {self.type} needs {expected.__name__}, "
                f"got {type(self.data).__name__}"
            )

    @property
    def priority(self) -> Priority:
        return self.metadata.priority
