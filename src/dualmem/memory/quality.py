"""Code quality scoring used by the reasoning store.

Scores are rough regex heuristics over the raw source text. Anything that
implements ``CodeQualityScorer`` can be passed to ``ReasoningStore`` instead.
"""

from __future__ import annotations

import re
from typing import Protocol, runtime_checkable

from dualmem.memory.models import CodeQualityMetrics

_COMMENT = re.compile(r"//|/\*|#")
_FUNCTIONS = re.compile(r"function|def|public|private")
_CLASSES = re.compile(r"class|interface")
_GLOBALS = re.compile(r"global|window|document")
_LOOPS = re.compile(r"for|while")
_RECURSION = re.compile(r"return.*\w+\(")
_RETURN = re.compile(r"return")

_VULNERABILITIES = [
    re.compile(r"eval\("),
    re.compile(r"innerHTML\s*="),
    re.compile(r"document\.write"),
    re.compile(r"\$\{.*\}"),
    re.compile(r"sql|query.*\+", re.IGNORECASE),
]

_BUG_PATTERNS = [
    re.compile(r"==\s*null"),
    re.compile(r"undefined"),
    re.compile(r"NaN"),
    re.compile(r"catch\s*\(\s*\)"),
    re.compile(r"if\s*\([^)]*=[^=]"),
]

_BRANCHES = [
    re.compile(r"if\s*\("),
    re.compile(r"else\s*if"),
    re.compile(r"while\s*\("),
    re.compile(r"for\s*\("),
    re.compile(r"switch\s*\("),
    re.compile(r"case\s+"),
    re.compile(r"catch\s*\("),
    re.compile(r"\?\s*.*:"),
    re.compile(r"&&|\|\|"),
]


@runtime_checkable
class CodeQualityScorer(Protocol):
    def score(self, code: str, language: str) -> CodeQualityMetrics: ...


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def cyclomatic_complexity(code: str) -> int:
    return 1 + sum(len(p.findall(code)) for p in _BRANCHES)


def maintainability(code: str) -> float:
    lines = code.split("\n")
    length = max(0.0, 100 - len(code) / 100)
    comments = len(_COMMENT.findall(code)) / len(lines) * 100
    simplicity = 100 - cyclomatic_complexity(code) * 10
    return _clamp((length + comments + simplicity) / 3)


def readability(code: str) -> float:
    """Best around 50 characters per line."""
    lines = code.split("\n")
    avg_line = sum(len(line) for line in lines) / len(lines)
    return _clamp(100 - (avg_line - 50) * 2)


def testability(code: str) -> float:
    score = 50
    if _FUNCTIONS.search(code):
        score += 20
    if _CLASSES.search(code):
        score += 15
    if not _GLOBALS.search(code):
        score += 15
    return _clamp(score)


def performance(code: str) -> float:
    nested_loops = len(_LOOPS.findall(code)) > 2
    recursion = _RECURSION.search(code) is not None
    early_returns = len(_RETURN.findall(code)) > 1

    score = 80
    if nested_loops:
        score -= 20
    if recursion and not early_returns:
        score -= 15
    if early_returns:
        score += 10
    return _clamp(score)


def security(code: str) -> float:
    score = 90
    for pattern in _VULNERABILITIES:
        if pattern.search(code):
            score -= 15
    return _clamp(score)


def bug_density(code: str) -> float:
    """Suspicious constructs per 1000 lines."""
    lines = len(code.split("\n"))
    bugs = sum(len(p.findall(code)) for p in _BUG_PATTERNS)
    return bugs / lines * 1000


class HeuristicQualityScorer:
    """Default scorer. Each metric is a pure function of the source text."""

    def score(self, code: str, language: str) -> CodeQualityMetrics:
        return CodeQualityMetrics(
            maintainability=maintainability(code),
            readability=readability(code),
            testability=testability(code),
            performance=performance(code),
            security=security(code),
            bug_density=bug_density(code),
            complexity=cyclomatic_complexity(code),
        )
