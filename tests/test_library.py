"""Tests for pattern library markdown files."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from dualmem.config import DualMemoryConfig
from dualmem.memory.engine import DualMemoryEngine
from dualmem.memory.ids import SequentialIds
from dualmem.memory.knowledge import KnowledgeStore
from dualmem.memory.library import load_library
from dualmem.memory.snapshot import load_snapshot, save_snapshot


@pytest.fixture
def library_dir(tmp_path: Path) -> Path:
    root = tmp_path / "library"
    root.mkdir()
    (root / "retry.md").write_text(
        """---
kind: code_pattern
name: Retry with backoff
language: python
use_case: network retry
complexity: beginner
---
def retry(fn, attempts=3):
    ...
""",
        encoding="utf-8",
    )
    (root / "eval.md").write_text(
        """---
kind: anti_pattern
name: Eval usage
severity: critical
problem: Arbitrary code execution
solution: Parse the input instead
detection:
  - pattern: "eval\\\\("
    type: security
  - "exec\\\\("
---
Calling eval on user input.
""",
        encoding="utf-8",
    )
    nested = root / "practices"
    nested.mkdir()
    (nested / "small.md").write_text(
        """---
kind: best_practice
name: Small functions
category: maintainability
benefits: [Easier review]
---
Keep functions short.
""",
        encoding="utf-8",
    )
    (root / "unknown.md").write_text("---\nkind: recipe\n---\nsoup\n", encoding="utf-8")
    (root / "no-language.md").write_text("---\nkind: code_pattern\n---\nx\n", encoding="utf-8")
    return root


class TestLoadLibrary:
    def test_entries(self, library_dir: Path):
        library = load_library(library_dir)

        (pattern,) = library.code_patterns
        assert pattern.name == "Retry with backoff"
        assert pattern.complexity == "beginner"
        assert pattern.code.startswith("def retry(fn, attempts=3):")

        (anti,) = library.anti_patterns
        assert anti.severity == "critical"
        assert anti.description == "Calling eval on user input."
        assert [r.pattern for r in anti.detection_rules] == [r"eval\(", r"exec\("]
        assert [r.type for r in anti.detection_rules] == ["security", "syntax"]

        (practice,) = library.best_practices
        assert practice.benefits == ["Easier review"]
        assert practice.description == "Keep functions short."

    def test_malformed_files_skipped(self, library_dir: Path, caplog):
        with caplog.at_level(logging.WARNING):
            load_library(library_dir)
        assert "unknown.md" in caplog.text
        assert "no-language.md" in caplog.text

    def test_missing_directory(self, tmp_path: Path):
        library = load_library(tmp_path / "nope")
        assert library.code_patterns == []


class TestStoreIntegration:
    def test_store_keeps_library_ids(self, library_dir: Path):
        store = KnowledgeStore(ids=SequentialIds())
        assert store.load_library(library_dir) == 3
        assert store.library.code_patterns[0].id == "library:retry"
        assert [a.name for a in store.detect_anti_patterns("exec(cmd)")] == ["Eval usage"]

    def test_reload_replaces_entries(self, library_dir: Path):
        store = KnowledgeStore(ids=SequentialIds())
        store.add_best_practice("Write tests", "Cover new code", "testing")
        store.load_library(library_dir)
        (library_dir / "practices" / "small.md").write_text(
            "---\nkind: best_practice\nname: Small functions\n---\nUnder twenty lines.\n",
            encoding="utf-8",
        )
        store.load_library(library_dir)
        assert len(store.library.code_patterns) == 1
        assert len(store.library.anti_patterns) == 1
        assert len(store.library.best_practices) == 2
        practice = store.find_best_practice("Small functions")
        assert practice.description == "Under twenty lines."

    @pytest.mark.asyncio
    async def test_engine_loads_library_on_start(self, library_dir: Path):
        config = DualMemoryConfig(library_dir=library_dir)
        engine = DualMemoryEngine(config, ids=SequentialIds())
        await engine.start()
        await engine.stop()
        assert engine.knowledge.find_best_practice("Small functions") is not None

    @pytest.mark.asyncio
    async def test_restart_from_snapshot_does_not_duplicate(
        self, library_dir: Path, tmp_path: Path
    ):
        config = DualMemoryConfig(library_dir=library_dir)
        first = DualMemoryEngine(config, ids=SequentialIds())
        await first.start()
        await first.stop()
        path = save_snapshot(tmp_path / "memory.json", first)

        second = DualMemoryEngine(config, ids=SequentialIds())
        assert load_snapshot(path, second) is True
        await second.start()
        await second.stop()
        library = second.knowledge.library
        assert len(library.code_patterns) == 1
        assert len(library.anti_patterns) == 1
        assert len(library.best_practices) == 1
        assert len(second.knowledge.detect_anti_patterns("eval(x)")) == 1
