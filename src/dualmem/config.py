"""Configuration loading from environment variables and dualmem.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from dualmem.errors import ConfigurationError

_CONFIG_FILENAME = "dualmem.toml"
_HOME_DIR = Path.home() / ".dualmem"

STRATEGIES = ("system1_priority", "system2_priority", "balanced")


@dataclass
class KnowledgeConfig:
    """System 1 (knowledge store) limits."""

    max_nodes: int = 10000
    decay_rate: float = 0.1
    embedding_dimension: int = 1536


@dataclass
class ReasoningConfig:
    """System 2 (reasoning store) limits."""

    max_traces: int = 1000
    quality_threshold: float = 0.7


@dataclass
class CoordinatorConfig:
    """Routing policy and cross-store synchronization."""

    sync_interval: int = 5000  # ms
    strategy: str = "balanced"
    learning_rate: float = 0.15
    adaptation_threshold: float = 0.7
    optimization_interval: int = 300  # s


@dataclass
class PerformanceConfig:
    """Background processing."""

    batch_size: int = 10
    cache_cleanup_interval: int = 300  # s
    memory_optimization_interval: int = 900  # s


@dataclass
class DualMemoryConfig:
    """Top-level configuration."""

    knowledge: KnowledgeConfig | None = field(default_factory=KnowledgeConfig)
    reasoning: ReasoningConfig | None = field(default_factory=ReasoningConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    snapshot_dir: Path | None = None
    library_dir: Path | None = None
    pid_file: Path = _HOME_DIR / "dualmem.pid"
    log_level: str = "INFO"


def _optional_path(value: str | None) -> Path | None:
    return Path(value).expanduser() if value else None


def load_config(config_path: Path | None = None) -> DualMemoryConfig:
    """Load configuration from environment variables and optional dualmem.toml.

    Priority: environment variables > dualmem.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _HOME_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    knowledge_data = file_data.get("knowledge", {})
    reasoning_data = file_data.get("reasoning", {})
    coordinator_data = file_data.get("coordinator", {})
    performance_data = file_data.get("performance", {})

    strategy = os.getenv("DUALMEM_STRATEGY", coordinator_data.get("strategy", "balanced"))
    if strategy not in STRATEGIES:
        raise ConfigurationError(
            f"Unknown strategy {strategy!r}, expected one of: {', '.join(STRATEGIES)}"
        )

    config = DualMemoryConfig(
        knowledge=KnowledgeConfig(
            max_nodes=int(os.getenv("DUALMEM_MAX_NODES", knowledge_data.get("max_nodes", 10000))),
            decay_rate=float(
                os.getenv("DUALMEM_DECAY_RATE", knowledge_data.get("decay_rate", 0.1))
            ),
            embedding_dimension=int(knowledge_data.get("embedding_dimension", 1536)),
        ),
        reasoning=ReasoningConfig(
            max_traces=int(os.getenv("DUALMEM_MAX_TRACES", reasoning_data.get("max_traces", 1000))),
            quality_threshold=float(
                os.getenv(
                    "DUALMEM_QUALITY_THRESHOLD", reasoning_data.get("quality_threshold", 0.7)
                )
            ),
        ),
        coordinator=CoordinatorConfig(
            sync_interval=int(
                os.getenv("DUALMEM_SYNC_INTERVAL", coordinator_data.get("sync_interval", 5000))
            ),
            strategy=strategy,
            learning_rate=float(coordinator_data.get("learning_rate", 0.15)),
            adaptation_threshold=float(coordinator_data.get("adaptation_threshold", 0.7)),
            optimization_interval=int(coordinator_data.get("optimization_interval", 300)),
        ),
        performance=PerformanceConfig(
            batch_size=int(os.getenv("DUALMEM_BATCH_SIZE", performance_data.get("batch_size", 10))),
            cache_cleanup_interval=int(performance_data.get("cache_cleanup_interval", 300)),
            memory_optimization_interval=int(
                performance_data.get("memory_optimization_interval", 900)
            ),
        ),
        snapshot_dir=_optional_path(
            os.getenv("DUALMEM_SNAPSHOT_DIR", file_data.get("snapshot_dir"))
        ),
        library_dir=_optional_path(os.getenv("DUALMEM_LIBRARY_DIR", file_data.get("library_dir"))),
        pid_file=Path(file_data.get("pid_file", str(_HOME_DIR / "dualmem.pid"))).expanduser(),
        log_level=os.getenv("DUALMEM_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
