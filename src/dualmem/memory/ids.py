"""Id generation for stored entities.

Stores never build ids themselves; they call an injected generator with a
prefix ("trace", "node", "pattern", ...) so tests can swap in a deterministic one.
"""

from __future__ import annotations

import itertools
import uuid
from typing import Protocol, runtime_checkable


@runtime_checkable
class IdGenerator(Protocol):
    def __call__(self, prefix: str) -> str: ...


def uuid_ids(prefix: str) -> str:
    """Default generator: ``<prefix>:<12 hex chars>``."""
    return f"{prefix}:{uuid.uuid4().hex[:12]}"


class SequentialIds:
    """Monotonic ids (``trace:1``, ``trace:2``, ...), counted per prefix."""

    def __init__(self) -> None:
        self._counters: dict[str, itertools.count] = {}

    def __call__(self, prefix: str) -> str:
        counter = self._counters.setdefault(prefix, itertools.count(1))
        return f"{prefix}:{next(counter)}"
