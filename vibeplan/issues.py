"""Pattern-based issue detection and semantic tagging over raw file text.

Every rule runs on every call and rules never suppress each other, so one
line can produce several issues.  Detection is plain regex / substring
matching; nothing here parses or executes code.
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Set

from .models import FileRecord, Issue

# Patterns for hard-coded credentials
_PASSWORD_RE = re.compile(r"""password\s*=\s*['"][^'"]+['"]""", re.IGNORECASE)
_API_KEY_RE = re.compile(r"""api[_-]?key\s*=\s*['"][^'"]+['"]""", re.IGNORECASE)

_DANGEROUS_JS_RE = re.compile(r"\beval\s*\(|\bFunction\s*\(")
_DANGEROUS_PY_RE = re.compile(r"\beval\s*\(|\bexec\s*\(")

_SQL_RE = re.compile(r"\b(?:SELECT|INSERT|UPDATE)\b")
_SQL_JS_CONCAT = ("${", '" + ', "' + ")
_SQL_PY_CONCAT = ('" + ', "' + ", ".format(", '" % ', "' % ")

_JS_LOOP_RE = re.compile(r"\bfor\s*\(")
_PY_LOOP_RE = re.compile(r"^\s*(?:async\s+)?for\s+.+:\s*$", re.MULTILINE)
_AWAIT_RE = re.compile(r"\bawait\s")
_ASYNC_RE = re.compile(r"\basync\s|\bawait\s")
_TRY_RE = re.compile(r"\btry\b")

_CONSOLE_LOG_RE = re.compile(r"\bconsole\.log\s*\(")
_PRINT_RE = re.compile(r"^\s*print\s*\(", re.MULTILINE)

_JS_TODO_RE = re.compile(r"//\s*(?:TODO|FIXME|XXX|HACK)")
_PY_TODO_RE = re.compile(r"#\s*(?:TODO|FIXME|XXX|HACK)")


def _line_of(content: str, index: int) -> int:
    return content.count("\n", 0, index) + 1


def _is_python(path: str) -> bool:
    return path.lower().endswith(".py")


# ===================================================================
# Issue rules
# ===================================================================

def _dangerous_function(content: str, path: str) -> Optional[Issue]:
    pattern = _DANGEROUS_PY_RE if _is_python(path) else _DANGEROUS_JS_RE
    match = pattern.search(content)
    if match is None:
        return None
    return Issue(
        type="security",
        severity="critical",
        description="Use of eval() or dynamic Function construction detected",
        category="dangerous-function",
        line=_line_of(content, match.start()),
    )


def _hardcoded_password(content: str, path: str) -> Optional[Issue]:
    match = _PASSWORD_RE.search(content)
    if match is None:
        return None
    return Issue(
        type="security",
        severity="critical",
        description="Hardcoded password detected",
        category="hardcoded-credentials",
        line=_line_of(content, match.start()),
    )


def _hardcoded_api_key(content: str, path: str) -> Optional[Issue]:
    match = _API_KEY_RE.search(content)
    if match is None:
        return None
    return Issue(
        type="security",
        severity="high",
        description="Hardcoded API key detected",
        category="hardcoded-credentials",
        line=_line_of(content, match.start()),
    )


def _sql_injection(content: str, path: str) -> Optional[Issue]:
    match = _SQL_RE.search(content)
    if match is None:
        return None
    markers = _SQL_PY_CONCAT if _is_python(path) else _SQL_JS_CONCAT
    if not any(marker in content for marker in markers):
        return None
    return Issue(
        type="security",
        severity="high",
        description="Potential SQL injection: query built with string concatenation or interpolation",
        category="sql-injection-risk",
        line=_line_of(content, match.start()),
    )


def _await_in_loop(content: str, path: str) -> Optional[Issue]:
    if _is_python(path):
        loop = _PY_LOOP_RE.search(content)
        gathers = "asyncio.gather" in content
    else:
        loop = _JS_LOOP_RE.search(content)
        gathers = "Promise.all" in content
    if loop is None or gathers or not _AWAIT_RE.search(content):
        return None
    return Issue(
        type="performance",
        severity="medium",
        description="Sequential await inside a loop; consider running the calls concurrently",
        category="async-performance",
        line=_line_of(content, loop.start()),
    )


def _missing_error_handling(content: str, path: str) -> Optional[Issue]:
    match = _ASYNC_RE.search(content)
    if match is None or _TRY_RE.search(content):
        return None
    return Issue(
        type="best-practice",
        severity="medium",
        description="Async code without any try/catch error handling",
        category="missing-error-handling",
        line=_line_of(content, match.start()),
    )


def _debug_code(content: str, path: str) -> Optional[Issue]:
    lowered = path.lower()
    if "dev" in lowered or "debug" in lowered:
        return None
    pattern = _PRINT_RE if _is_python(path) else _CONSOLE_LOG_RE
    match = pattern.search(content)
    if match is None:
        return None
    return Issue(
        type="maintainability",
        severity="low",
        description="Debug output statement left in code",
        category="debug-code",
        line=_line_of(content, match.start()),
    )


def _incomplete_work(content: str, path: str) -> Optional[Issue]:
    pattern = _PY_TODO_RE if _is_python(path) else _JS_TODO_RE
    match = pattern.search(content)
    if match is None:
        return None
    return Issue(
        type="maintainability",
        severity="low",
        description="TODO/FIXME/XXX/HACK marker found",
        category="incomplete-work",
        line=_line_of(content, match.start()),
    )


ISSUE_RULES: List[Callable[[str, str], Optional[Issue]]] = [
    _dangerous_function,
    _hardcoded_password,
    _hardcoded_api_key,
    _sql_injection,
    _await_in_loop,
    _missing_error_handling,
    _debug_code,
    _incomplete_work,
]


def detect_issues(content: str, path: str) -> List[Issue]:
    """Run every rule against *content*; order of the result is rule order."""
    issues: List[Issue] = []
    for rule in ISSUE_RULES:
        issue = rule(content, path)
        if issue is not None:
            issues.append(issue)
    return issues


# ===================================================================
# Semantic tags
# ===================================================================

# (path substring, tag)
PATH_TAGS = [
    ("api/", "api"),
    ("component", "component"),
    ("service", "service"),
    ("model", "model"),
    ("util", "utility"),
    ("middleware", "middleware"),
    ("auth", "authentication"),
    ("database", "database"),
    ("db", "database"),
]

# (import substring, tag)
IMPORT_TAGS = [
    ("react", "react"),
    ("express", "express"),
    ("next", "nextjs"),
    ("prisma", "prisma"),
    ("mongoose", "mongodb"),
    ("redis", "redis"),
    ("jwt", "jwt"),
    ("bcrypt", "encryption"),
]

# (content substrings, tag)
CONTENT_TAGS = [
    (("SELECT", "INSERT"), "sql"),
    (("fetch(", "axios", "requests."), "http-client"),
    (("router", "app.get", "@app.route"), "routing"),
    (("auth", "login"), "authentication"),
    (("validate", "schema"), "validation"),
    (("cache", "redis"), "caching"),
    (("queue", "job"), "background-jobs"),
]


def generate_semantic_tags(path: str, record: FileRecord, content: str) -> Set[str]:
    tags: Set[str] = {record.language}
    lowered_path = path.lower()

    for needle, tag in PATH_TAGS:
        if needle in lowered_path:
            tags.add(tag)

    for imported in record.imports:
        lowered = imported.lower()
        for needle, tag in IMPORT_TAGS:
            if needle in lowered:
                tags.add(tag)

    for needles, tag in CONTENT_TAGS:
        if any(needle in content for needle in needles):
            tags.add(tag)
    return tags
