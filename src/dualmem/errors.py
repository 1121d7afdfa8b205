"""Exception hierarchy shared by the stores, the engine and the coordinator."""

from __future__ import annotations


class DualMemoryError(Exception):
    """Base class for all dualmem errors."""


class ConfigurationError(DualMemoryError):
    """Required configuration is missing or invalid."""


class NotFoundError(DualMemoryError, LookupError):
    """A referenced trace, tree, reflection or node id does not exist."""

    def __init__(self, kind: str, item_id: str) -> None:
        super().__init__(f"{kind} {item_id} not found")
        self.kind = kind
        self.item_id = item_id


class OperationError(DualMemoryError):
    """A query or event could not be served by a store."""


class BackgroundTaskError(DualMemoryError):
    """A periodic task failed. Logged by the task runner, never raised to callers."""

    def __init__(self, task_name: str, cause: BaseException) -> None:
        super().__init__(f"{task_name} failed: {cause}")
        self.task_name = task_name
        self.cause = cause


class InvalidEventError(DualMemoryError, ValueError):
    """Event payload does not match its declared type."""
