"""Pattern library files: markdown with YAML frontmatter.

Layout:
    <library_dir>/
    ├── repository-pattern.md     # kind: code_pattern, body is the code
    ├── god-object.md             # kind: anti_pattern, body is the description
    └── small-functions.md        # kind: best_practice, body is the description

Frontmatter example::

    ---
    kind: anti_pattern
    name: Eval usage
    severity: critical
    problem: Arbitrary code execution
    solution: Parse the input instead
    detection:
      - pattern: "eval\\("
        type: security
    ---
"""

from __future__ import annotations

import logging
from pathlib import Path

import frontmatter

from dualmem.memory.models import (
    AntiPattern,
    BestPractice,
    CodePattern,
    DetectionRule,
    PatternLibrary,
)

logger = logging.getLogger(__name__)

KINDS = ("code_pattern", "anti_pattern", "best_practice")


def _detection_rules(raw: list) -> list[DetectionRule]:
    rules = []
    for item in raw or []:
        if isinstance(item, str):
            rules.append(DetectionRule(type="syntax", pattern=item))
        else:
            rules.append(
                DetectionRule(
                    type=item.get("type", "syntax"),
                    pattern=item["pattern"],
                    confidence=float(item.get("confidence", 0.8)),
                )
            )
    return rules


def _entry_id(path: Path) -> str:
    return f"library:{path.stem}"


def load_entry(path: Path, library: PatternLibrary) -> str:
    """Parse one file into ``library``. Returns the entry kind."""
    post = frontmatter.load(str(path))
    meta = dict(post.metadata)
    body = post.content.strip()
    kind = meta.get("kind")
    name = meta.get("name", path.stem)

    if kind == "code_pattern":
        library.code_patterns.append(
            CodePattern(
                id=_entry_id(path),
                name=name,
                description=meta.get("description", ""),
                code=body,
                language=meta["language"],
                use_case=meta.get("use_case", "general"),
                complexity=meta.get("complexity", "intermediate"),
                framework=meta.get("framework"),
            )
        )
    elif kind == "anti_pattern":
        library.anti_patterns.append(
            AntiPattern(
                id=_entry_id(path),
                name=name,
                description=meta.get("description", body),
                problem=meta.get("problem", ""),
                solution=meta.get("solution", ""),
                severity=meta.get("severity", "medium"),
                detection_rules=_detection_rules(meta.get("detection", [])),
            )
        )
    elif kind == "best_practice":
        library.best_practices.append(
            BestPractice(
                id=_entry_id(path),
                name=name,
                description=meta.get("description", body),
                category=meta.get("category", "general"),
                benefits=list(meta.get("benefits", [])),
                steps=list(meta.get("steps", [])),
            )
        )
    else:
        raise ValueError(f"unknown kind {kind!r}, expected one of: {', '.join(KINDS)}")
    return kind


def load_library(directory: Path) -> PatternLibrary:
    """Read every ``*.md`` file under ``directory`` into a PatternLibrary.

    Malformed files are logged and skipped.
    """
    library = PatternLibrary()
    if not directory.is_dir():
        logger.warning("Pattern library directory not found: %s", directory)
        return library
    for path in sorted(directory.rglob("*.md")):
        try:
            load_entry(path, library)
        except Exception as e:
            logger.warning("Skipping pattern library file %s: %s", path, e)
    return library
