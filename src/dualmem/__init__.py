"""dualmem: a dual-layer memory engine for coding assistants.

System 1 (``KnowledgeStore``) holds fast, pattern-based knowledge; System 2
(``ReasoningStore``) holds deliberate reasoning traces and quality state.
``DualMemoryEngine`` routes queries and events between them and
``MemoryCoordinator`` keeps the two in sync.
"""

from dualmem.config import DualMemoryConfig, load_config
from dualmem.memory.coordinator import MemoryCoordinator
from dualmem.memory.engine import DualMemoryEngine
from dualmem.memory.session import SessionContext

__all__ = [
    "DualMemoryConfig",
    "DualMemoryEngine",
    "MemoryCoordinator",
    "SessionContext",
    "load_config",
]
