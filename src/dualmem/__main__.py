"""Entry point: python -m dualmem [serve|stats]

- "serve": Daemon mode (engine + coordinator timers, snapshots)
- "stats": Print store statistics from the latest snapshot as JSON
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from dualmem.config import load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_serve() -> None:
    """Daemon mode."""
    config = load_config()
    _setup_logging(config.log_level)

    from dualmem.daemon import MemoryDaemon

    daemon = MemoryDaemon(config)
    asyncio.run(daemon.run())


def _run_stats() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from dualmem.daemon import MemoryDaemon

    daemon = MemoryDaemon(config)
    daemon.restore()
    print(json.dumps(daemon.engine.get_statistics(), indent=2, default=str))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""

    if cmd == "serve":
        _run_serve()
    elif cmd == "stats":
        _run_stats()
    else:
        print("Usage: python -m dualmem [serve|stats]")
        print("  serve  Daemon mode with background synchronization")
        print("  stats  Print memory statistics as JSON")
        sys.exit(1)


if __name__ == "__main__":
    main()
