"""Per-file descriptions: deterministic rule-based text and rate-limited AI summaries.

Dispatch policy for :meth:`SummaryGenerator.generate_summaries`:

=================================== ===========================================
Condition                           Strategy
=================================== ===========================================
no files                            empty result, no provider calls
tokens within budget, <= 7 files    all calls concurrently, input order kept
otherwise                           sequential batches with delays + cooldown
=================================== ===========================================
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import PurePosixPath
from typing import Callable, List, Optional

from .config import SummarySettings
from .errors import RateLimitError
from .llm import LLMClient
from .models import FileRecord, SummaryRequest, SummaryResult
from .prompts import FILE_DESCRIPTION_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")

LANGUAGE_NAMES = {
    ".ts": "TypeScript",
    ".tsx": "TypeScript React",
    ".js": "JavaScript",
    ".jsx": "JavaScript React",
    ".mjs": "JavaScript",
    ".cjs": "JavaScript",
    ".py": "Python",
    ".java": "Java",
    ".go": "Go",
    ".rb": "Ruby",
    ".php": "PHP",
    ".rs": "Rust",
    ".cs": "C#",
    ".cpp": "C++",
    ".c": "C",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".dart": "Dart",
    ".scala": "Scala",
}

ProgressCallback = Callable[[int, int], None]


# ===================================================================
# Rule-based summaries
# ===================================================================

def language_name(path: str) -> str:
    suffix = PurePosixPath(path).suffix.lower()
    return LANGUAGE_NAMES.get(suffix, suffix.lstrip(".").upper() or "Unknown")


def extract_api_methods(record: FileRecord) -> List[str]:
    found: List[str] = []
    for func in record.functions:
        upper = func.name.upper()
        for method in HTTP_METHODS:
            if (method in upper or func.name == method.lower()) and method not in found:
                found.append(method)
    return found


def generate_rule_based_summary(record: FileRecord) -> str:
    """Deterministic one-line description keyed on path patterns."""
    path = record.path.lower()
    n_funcs = len(record.functions)
    n_classes = len(record.classes)
    n_exports = len(record.exports)

    if "config" in path or path.endswith(".json"):
        return f"Configuration file defining {n_exports} settings and options"
    if "types" in path or "interface" in path:
        return f"Type definitions providing {n_exports} interfaces and type declarations"
    if path.endswith(".tsx") and record.exports:
        return (
            f"React component: {record.exports[0]} with {n_funcs} methods "
            f"and {n_classes} classes"
        )
    if "api/" in path and ("route" in path or "handler" in path):
        methods = extract_api_methods(record)
        handled = ", ".join(methods) if methods else "HTTP"
        return f"API endpoint handling {handled} requests with {n_funcs} handlers"
    if "service" in path:
        return f"Service layer providing {n_funcs} business operations and {n_classes} service classes"
    if "util" in path or "helper" in path:
        return f"Utility module with {n_funcs} helper functions and {n_exports} exports"
    if "model" in path or "schema" in path or "database" in path:
        return f"Data layer defining {n_classes} models and {n_funcs} database operations"
    if "middleware" in path:
        return f"Middleware module with {n_funcs} middleware functions for request processing"
    if "test" in path or "spec" in path:
        return f"Test suite with {n_funcs} test cases for validation and quality assurance"

    parts: List[str] = []
    if n_funcs:
        parts.append(f"{n_funcs} functions")
    if n_classes:
        parts.append(f"{n_classes} classes")
    if n_exports:
        parts.append(f"{n_exports} exports")
    if not parts:
        return f"{language_name(record.path)} file containing basic code structure and definitions"
    return f"{language_name(record.path)} module containing {', '.join(parts)}"


# ===================================================================
# Prompt construction
# ===================================================================

def _file_context(record: FileRecord) -> str:
    path = record.path.lower()
    lines: List[str] = []
    if "api/" in path or "route." in path:
        lines.append("- API endpoint handling HTTP requests")
    elif "component" in path or path.endswith(".tsx"):
        lines.append("- React UI component")
    elif "service" in path:
        lines.append("- Business logic service layer")
    elif "middleware" in path:
        lines.append("- Request/response middleware")
    elif "model" in path:
        lines.append("- Data model or database schema")
    elif "util" in path or "helper" in path:
        lines.append("- Utility/helper functions")

    if (record.complexity_score or 0) > 15:
        lines.append(f"- HIGH COMPLEXITY WARNING: complexity score = {record.complexity_score}")
    if record.functions:
        lines.append("- Functions: " + ", ".join(f.name for f in record.functions[:5]))
    if record.detected_issues:
        for issue in record.detected_issues[:5]:
            lines.append(f"- Detected issue ({issue.severity}): {issue.description}")
    return "\n".join(lines) if lines else "- General purpose code file"


def build_summary_prompt(request: SummaryRequest, content_chars: int = 3000) -> str:
    record = request.record
    snippet = request.content
    if len(snippet) > content_chars:
        snippet = snippet[:content_chars] + "\n... (truncated)"
    imports = ", ".join(record.imports[:8]) or "None"
    tags = ", ".join(sorted(record.semantic_tags or [])) or "None"
    return (
        f"Analyze this {request.language} file and generate a structured technical description.\n\n"
        "## FILE INFORMATION\n"
        f"**File Path:** {request.path}\n"
        f"**Language:** {request.language}\n"
        f"**Functions:** {len(record.functions)}\n"
        f"**Classes:** {len(record.classes)}\n"
        f"**Lines of Code:** {record.lines_of_code}\n"
        f"**Imports:** {imports}\n"
        f"**Tags:** {tags}\n\n"
        "## FILE CONTEXT\n"
        f"{_file_context(record)}\n\n"
        "## CODE SNIPPET\n"
        f"```{request.language}\n{snippet}\n```\n\n"
        "Generate the technical description following the required format."
    )


# ===================================================================
# AI summaries
# ===================================================================

class SummaryGenerator:
    """Generate AI summaries while staying under a tokens-per-minute budget.

    Args:
        llm:      Completion client.
        settings: Budget, delays and model parameters.
        sleep:    Injected for tests; defaults to :func:`time.sleep`.
    """

    def __init__(
        self,
        llm: LLMClient,
        settings: Optional[SummarySettings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.llm = llm
        self.settings = settings or SummarySettings()
        self._sleep = sleep

    @property
    def batch_size(self) -> int:
        s = self.settings
        per_minute = s.max_tokens_per_minute // max(1, s.estimated_tokens_per_request)
        return max(1, min(s.concurrency, per_minute))

    def fits_parallel_budget(self, count: int) -> bool:
        s = self.settings
        estimated = count * s.estimated_tokens_per_request
        return estimated <= s.max_tokens_per_minute and count <= s.parallel_max_files

    def generate_summaries(
        self,
        requests: List[SummaryRequest],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[SummaryResult]:
        if not requests:
            return []
        logger.info(
            "Generating AI summaries for %d files (~%d tokens, budget %d TPM)",
            len(requests),
            len(requests) * self.settings.estimated_tokens_per_request,
            self.settings.max_tokens_per_minute,
        )
        if self.fits_parallel_budget(len(requests)):
            return self._generate_parallel(requests, on_progress)
        return self._generate_batched(requests, on_progress)

    def summarize_one(self, request: SummaryRequest) -> SummaryResult:
        """One provider call; raises on failure or empty completion."""
        s = self.settings
        summary = self.llm.complete(
            FILE_DESCRIPTION_SYSTEM_PROMPT,
            build_summary_prompt(request, s.content_chars),
            temperature=s.temperature,
            max_tokens=s.max_tokens,
            model=s.model or None,
        )
        return SummaryResult(path=request.path, summary=summary, generated=True)

    def _safe_summarize(self, request: SummaryRequest) -> SummaryResult:
        try:
            return self.summarize_one(request)
        except Exception as exc:
            logger.warning("Summary failed for %s: %s", request.path, exc)
            return SummaryResult(path=request.path, summary="", generated=False, error=str(exc))

    def _generate_parallel(
        self,
        requests: List[SummaryRequest],
        on_progress: Optional[ProgressCallback],
    ) -> List[SummaryResult]:
        with ThreadPoolExecutor(max_workers=len(requests)) as pool:
            # map() keeps input order
            results = list(pool.map(self._safe_summarize, requests))
        if on_progress:
            on_progress(len(results), len(requests))
        return results

    def _generate_batched(
        self,
        requests: List[SummaryRequest],
        on_progress: Optional[ProgressCallback],
    ) -> List[SummaryResult]:
        s = self.settings
        size = self.batch_size
        batches = [requests[i:i + size] for i in range(0, len(requests), size)]
        results: List[SummaryResult] = []

        for index, batch in enumerate(batches):
            logger.info("Summary batch %d/%d (%d files)", index + 1, len(batches), len(batch))
            for position, request in enumerate(batch):
                try:
                    results.append(self.summarize_one(request))
                except Exception as exc:
                    logger.warning("Summary failed for %s: %s", request.path, exc)
                    results.append(SummaryResult(
                        path=request.path, summary="", generated=False, error=str(exc),
                    ))
                    # The failed file is not retried; the cooldown only protects the rest
                    if isinstance(exc, RateLimitError) or "rate_limit" in str(exc):
                        logger.warning("Rate limit hit, cooling down for %.0fs", s.rate_limit_cooldown)
                        self._sleep(s.rate_limit_cooldown)
                    continue
                if position < len(batch) - 1:
                    self._sleep(s.inter_call_delay)

            if on_progress:
                on_progress(len(results), len(requests))
            if index < len(batches) - 1:
                self._sleep(s.rate_limit_delay)
        return results


def apply_summaries(records: List[FileRecord], results: List[SummaryResult]) -> List[FileRecord]:
    """Overwrite descriptions with successful AI summaries, matched by path."""
    by_path = {r.path: r for r in results}
    updated: List[FileRecord] = []
    for record in records:
        result = by_path.get(record.path)
        if result is None:
            updated.append(record)
        elif result.generated:
            updated.append(replace(record, description=result.summary, summary_type="ai-generated"))
        else:
            updated.append(replace(record, summary_type="rule-based"))
    return updated
