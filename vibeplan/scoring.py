"""Complexity scoring, AI-summary eligibility and priority classes.

:func:`enrich_file` is the single enrichment stage: it takes a base record
from the analyzer plus the raw content and returns a *new* record with the
derived fields filled in.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional

from .issues import detect_issues, generate_semantic_tags
from .models import FileRecord, Issue
from .parser import PARSE_FAILURE_DESCRIPTION, READ_FAILURE_DESCRIPTION
from .summarizer import generate_rule_based_summary

# Records the analyzer could not read or parse keep their description
DEGRADED_DESCRIPTIONS = frozenset({PARSE_FAILURE_DESCRIPTION, READ_FAILURE_DESCRIPTION})

# (LOC threshold, bonus); bonuses accumulate across every threshold crossed
LOC_BANDS = [(100, 2), (300, 3), (500, 5)]

EXCLUDED_SUBSTRINGS = (
    "test", "spec", "__tests__",
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml",
    "dist/", "build/", ".next/",
)
EXCLUDED_SUFFIXES = (".json", ".yml", ".yaml", ".config.js", ".config.ts", ".md", ".txt")

SECURITY_SENSITIVE = (
    "auth", "api/", "login", "security", "middleware", "guard",
    "service/", "controller", "route", "handler", "validation",
)
BUSINESS_LOGIC = (
    "service", "controller", "model", "repository", "manager",
    "processor", "handler", "engine", "core", "business",
)


def band_bonus(lines_of_code: int) -> int:
    return sum(bonus for threshold, bonus in LOC_BANDS if lines_of_code > threshold)


def calculate_complexity(
    function_count: int,
    class_count: int,
    import_count: int,
    lines_of_code: int,
) -> int:
    """Deterministic, non-negative complexity score."""
    raw = 2 * function_count + 3 * class_count + 0.5 * import_count + band_bonus(lines_of_code)
    # Round half up; Python's round() would send 2.5 to 2
    return int(raw + 0.5)


def complexity_of(record: FileRecord) -> int:
    return calculate_complexity(
        len(record.functions), len(record.classes), len(record.imports), record.lines_of_code,
    )


def is_excluded_from_ai_summary(path: str) -> bool:
    lowered = path.lower()
    if any(part in lowered for part in EXCLUDED_SUBSTRINGS):
        return True
    if lowered.endswith(EXCLUDED_SUFFIXES):
        return True
    # Generated declaration files; hand-written types/ folders still count
    return lowered.endswith(".d.ts") and "types" not in lowered


def is_complex(record: FileRecord, complexity: int) -> bool:
    return (
        record.lines_of_code > 200
        or len(record.functions) > 10
        or len(record.classes) > 3
        or complexity > 10
    )


def is_path_sensitive(path: str) -> bool:
    lowered = path.lower()
    return any(p in lowered for p in SECURITY_SENSITIVE) or any(p in lowered for p in BUSINESS_LOGIC)


def should_generate_ai_summary(
    record: FileRecord,
    complexity: int,
    issues: Iterable[Issue],
) -> bool:
    if is_excluded_from_ai_summary(record.path):
        return False
    return is_complex(record, complexity) or is_path_sensitive(record.path) or any(True for _ in issues)


def determine_priority(issues: List[Issue], complexity: int, needs_ai_summary: bool) -> str:
    # Order matters: critical issue > complexity > AI-summary flag
    if any(issue.severity == "critical" for issue in issues):
        return "critical"
    if complexity > 15:
        return "high"
    if needs_ai_summary:
        return "medium"
    return "low"


def enrich_file(record: FileRecord, content: Optional[str] = None) -> FileRecord:
    """Return a copy of *record* with complexity, issues, tags and priority."""
    text = record.content if content is None else content
    complexity = complexity_of(record)
    issues = detect_issues(text, record.path)
    tags = generate_semantic_tags(record.path, record, text)
    needs_ai = should_generate_ai_summary(record, complexity, issues)
    enriched = replace(
        record,
        complexity_score=complexity,
        detected_issues=issues,
        semantic_tags=tags,
        needs_ai_summary=needs_ai,
        priority=determine_priority(issues, complexity, needs_ai),
        summary_type="pending" if needs_ai else "rule-based",
    )
    if record.description in DEGRADED_DESCRIPTIONS:
        return enriched
    return replace(enriched, description=generate_rule_based_summary(enriched))
