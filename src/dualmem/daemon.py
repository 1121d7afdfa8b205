"""Daemon process for the always-on memory engine.

Usage: python -m dualmem serve

Manages:
- Engine and coordinator timers
- Snapshot restore on start, save on shutdown (when snapshot_dir is set)
- Conversation session, saved on shutdown under snapshot_dir/sessions/
- PID file (prevent duplicate instances)
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from dualmem.config import DualMemoryConfig, load_config
from dualmem.memory.coordinator import MemoryCoordinator
from dualmem.memory.engine import DualMemoryEngine
from dualmem.memory.session import SessionContext
from dualmem.memory.snapshot import load_snapshot, save_snapshot

logger = logging.getLogger(__name__)

SNAPSHOT_FILE = "memory.json"


class MemoryDaemon:
    """Always-on daemon process."""

    def __init__(self, config: DualMemoryConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()
        self.engine = DualMemoryEngine(self.config)
        self.coordinator = MemoryCoordinator(self.engine, self.config.coordinator)
        self.session = SessionContext(self.config.snapshot_dir)

    @property
    def snapshot_path(self) -> Path | None:
        if self.config.snapshot_dir is None:
            return None
        return self.config.snapshot_dir / SNAPSHOT_FILE

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        if self.config.pid_file.exists():
            self.config.pid_file.unlink()

    def _check_existing(self) -> None:
        if not self.config.pid_file.exists():
            return
        try:
            pid = int(self.config.pid_file.read_text().strip())
            os.kill(pid, 0)  # Check if process exists
            print(f"dualmem daemon already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            # Stale PID file
            self._remove_pid()

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    # ── Snapshots ────────────────────────────────────────────

    def restore(self) -> bool:
        path = self.snapshot_path
        if path is None:
            return False
        try:
            return load_snapshot(path, self.engine)
        except Exception as e:
            logger.error("Failed to restore snapshot %s: %s", path, e)
            return False

    def persist(self) -> Path | None:
        path = self.snapshot_path
        if path is None:
            return None
        try:
            return save_snapshot(path, self.engine)
        except Exception as e:
            logger.error("Failed to save snapshot %s: %s", path, e)
            return None

    def save_session(self) -> Path | None:
        if not self.session.history:
            return None
        try:
            return self.session.save()
        except OSError as e:
            logger.error("Failed to save session %s: %s", self.session.session_id, e)
            return None

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        self.restore()
        logger.info("dualmem daemon starting (strategy=%s)", self.config.coordinator.strategy)

        try:
            await self.engine.start()
            await self.coordinator.start()
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.coordinator.destroy()
            self.persist()
            self.save_session()
            self._remove_pid()
            logger.info("dualmem daemon stopped.")
