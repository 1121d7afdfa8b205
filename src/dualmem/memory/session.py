"""Conversation context window with compression and on-disk sessions."""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Literal

from dualmem.memory.snapshot import from_jsonable, to_jsonable

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant", "system"]

SUMMARY_PREFIX = "[Compressed context summary]: "
KEY_POINT_CHARS = 100


@dataclass
class Message:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    tokens: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


def count_tokens(text: str) -> int:
    """Approximate token count, four characters per token."""
    return math.ceil(len(text) / 4)


def new_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class SessionContext:
    """Bounded context window plus the full message history of one session.

    When the window reaches ``compression_threshold * max_tokens`` the
    messages between the first and the last collapse into one system
    summary message. If the window still exceeds ``max_tokens`` the oldest
    messages are dropped (the newest one always stays).
    """

    def __init__(
        self,
        snapshot_dir: Path | None = None,
        max_tokens: int = 128000,
        compression_threshold: float = 0.8,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.snapshot_dir = snapshot_dir
        self.max_tokens = max_tokens
        self.compression_threshold = compression_threshold
        self._clock = clock
        self.session_id = new_session_id()
        self.window: list[Message] = []
        self.history: list[Message] = []
        self.current_tokens = 0
        self.compression_count = 0

    def add_message(
        self, role: Role, content: str, metadata: dict[str, Any] | None = None
    ) -> Message:
        message = Message(
            role=role,
            content=content,
            timestamp=self._clock(),
            tokens=count_tokens(content),
            metadata=dict(metadata or {}),
        )
        self.history.append(message)
        self.window.append(message)
        self.current_tokens += message.tokens
        self._fit_window()
        return message

    def _fit_window(self) -> None:
        if self.current_tokens >= self.compression_threshold * self.max_tokens:
            self._compress()
        while self.current_tokens > self.max_tokens and len(self.window) > 1:
            removed = self.window.pop(0)
            self.current_tokens -= removed.tokens

    def _compress(self) -> None:
        if len(self.window) <= 2:
            return
        first, middle, last = self.window[0], self.window[1:-1], self.window[-1]
        summary = summarize(middle)
        summary_message = Message(
            role="system",
            content=SUMMARY_PREFIX + summary,
            timestamp=self._clock(),
            tokens=count_tokens(summary),
            metadata={"compressed": True, "original_count": len(middle)},
        )
        self.window = [first, summary_message, last]
        self._recount()
        self.compression_count += 1
        logger.debug(
            "Session %s: compressed %d messages into a summary", self.session_id, len(middle)
        )

    def _recount(self) -> None:
        self.current_tokens = sum(m.tokens for m in self.window)

    # ── Export / import ───────────────────────────────────────

    def export_context(self, format: Literal["json", "markdown"] = "json") -> str:
        if format == "markdown":
            return "\n---\n\n".join(
                f"### {m.role.upper()} ({m.timestamp.isoformat()})\n{m.content}\n"
                for m in self.window
            )
        return json.dumps(
            {
                "session_id": self.session_id,
                "export_date": self._clock().isoformat(),
                "stats": self.get_stats(),
                "context": to_jsonable(self.window),
                "full_history": to_jsonable(self.history),
                "compression_count": self.compression_count,
            },
            ensure_ascii=False,
            indent=2,
        )

    def import_context(self, data: str) -> None:
        """Replace the session with an exported JSON context.

        Raises ValueError when ``data`` is not JSON or carries no context list.
        """
        imported = json.loads(data)
        context = imported.get("context") if isinstance(imported, dict) else None
        if not isinstance(context, list):
            raise ValueError("Imported data has no context list")
        self.window = from_jsonable(list[Message], context)
        self.history = from_jsonable(list[Message], imported.get("full_history") or context)
        self._recount()
        self.compression_count = imported.get("compression_count", 0)
        self.session_id = imported.get("session_id") or new_session_id()

    # ── Persistence ───────────────────────────────────────────

    def _session_path(self, session_id: str) -> Path | None:
        if self.snapshot_dir is None:
            return None
        return self.snapshot_dir / "sessions" / f"{session_id}.json"

    def save(self) -> Path | None:
        path = self._session_path(self.session_id)
        if path is None:
            return None
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "session_id": self.session_id,
            "timestamp": self._clock().isoformat(),
            "stats": self.get_stats(),
            "context": to_jsonable(self.window),
            "full_history": to_jsonable(self.history),
            "compression_count": self.compression_count,
        }
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("Session saved to %s", path)
        return path

    def load(self, session_id: str) -> bool:
        path = self._session_path(session_id)
        if path is None or not path.exists():
            return False
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            window = from_jsonable(list[Message], payload["context"])
            history = from_jsonable(list[Message], payload["full_history"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Failed to load session %s: %s", session_id, e)
            return False
        self.session_id = payload.get("session_id", session_id)
        self.window = window
        self.history = history
        self.compression_count = payload.get("compression_count", 0)
        self._recount()
        return True

    # ── Stats ─────────────────────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_messages": len(self.history),
            "total_tokens": self.current_tokens,
            "max_tokens": self.max_tokens,
            "usage_percentage": self.current_tokens / self.max_tokens * 100,
            "messages_in_window": len(self.window),
            "compressed_count": self.compression_count,
        }

    def reset(self) -> None:
        self.window = []
        self.history = []
        self.current_tokens = 0
        self.compression_count = 0
        self.session_id = new_session_id()


def summarize(messages: list[Message]) -> str:
    """Key points of the user messages, plus any earlier summaries."""
    points = []
    for m in messages:
        if m.metadata.get("compressed"):
            points.append(m.content.removeprefix(SUMMARY_PREFIX))
        elif m.role == "user":
            points.append(m.content[:KEY_POINT_CHARS])
    return "Previous discussion covered: " + "; ".join(points)
