"""Prompt classification and atomic phase generation.

Two interchangeable strategies produce the same :class:`~vibeplan.models.Phase`
shape and honour the same cap:

* ``rules`` - deterministic templates keyed by query type.
* ``llm``   - a schema-constrained completion over the retrieved context.

Relevant files are only ever taken from the retrieved context.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import PlannerSettings
from .errors import GenerationError, PlanningError, ProviderError
from .llm import LLMClient
from .models import PHASE_CATEGORIES, PHASE_LEVELS, Phase, PromptAnalysis, RelevantContext
from .prompts import PHASE_GENERATION_SYSTEM_PROMPT, PHASES_RESPONSE_SCHEMA

logger = logging.getLogger(__name__)

MAX_PHASES = 7
MAX_TARGET_AREAS = 5
MAX_PHASE_FILES = 5

TECH_KEYWORDS = [
    "authentication", "auth", "login", "signup", "registration", "form", "validation",
    "database", "api", "endpoint", "service", "component", "module", "function", "class",
    "method", "variable", "performance", "optimization", "security", "testing", "bug",
    "error", "exception", "refactor", "improve", "enhance", "frontend", "backend", "ui",
    "interface", "user", "admin", "dashboard", "notification", "email", "payment",
    "checkout", "cart", "product", "order",
]

# First matching rule wins
QUERY_TYPE_RULES = [
    ("debug", ("fix", "bug", "error")),
    ("feature", ("add", "implement", "create")),
    ("refactor", ("refactor", "restructure", "reorganize")),
]
SPECIFIC_KEYWORDS = {"login", "signup", "auth", "form"}

LOW_COMPLEXITY_WORDS = ("simple", "quick", "small")
HIGH_COMPLEXITY_WORDS = ("complex", "major", "entire")

AREA_PATTERNS = [
    ("authentication", ("auth", "login", "signup")),
    ("form handling", ("form", "input", "validation")),
    ("backend services", ("api", "endpoint", "service")),
    ("user interface", ("ui", "frontend", "component")),
]

INTENTS = {
    "specific": "Address specific functionality or issue",
    "improvement": "Enhance and optimize existing code",
    "refactor": "Restructure and organize codebase",
    "debug": "Identify and fix bugs or errors",
    "feature": "Implement new functionality",
}

# Generic words that make poor phase titles
_FOCUS_SKIP = {"bug", "error", "exception", "improve", "enhance", "refactor", "function",
               "class", "method", "variable", "module", "user"}


# ===================================================================
# Prompt analysis
# ===================================================================

def extract_keywords(prompt: str) -> List[str]:
    lowered = prompt.lower()
    return [k for k in TECH_KEYWORDS if k in lowered]


def classify_query_type(prompt: str, keywords: Sequence[str]) -> str:
    lowered = prompt.lower()
    for query_type, words in QUERY_TYPE_RULES:
        if any(w in lowered for w in words):
            return query_type
    if "specific" in lowered or any(k in SPECIFIC_KEYWORDS for k in keywords):
        return "specific"
    return "improvement"


def extract_target_areas(prompt: str, keywords: Sequence[str]) -> List[str]:
    lowered = prompt.lower()
    areas: List[str] = list(dict.fromkeys(keywords))
    for area, words in AREA_PATTERNS:
        if any(w in lowered for w in words) and area not in areas:
            areas.append(area)
    return areas[:MAX_TARGET_AREAS]


def analyze_prompt(user_prompt: str) -> PromptAnalysis:
    """Rule-based classification of a free-text development goal."""
    lowered = user_prompt.lower()
    keywords = extract_keywords(lowered)
    query_type = classify_query_type(lowered, keywords)

    complexity = "medium"
    if any(w in lowered for w in LOW_COMPLEXITY_WORDS):
        complexity = "low"
    elif any(w in lowered for w in HIGH_COMPLEXITY_WORDS):
        complexity = "high"

    return PromptAnalysis(
        query_type=query_type,
        intent=f"{INTENTS[query_type]}: {user_prompt}",
        target_areas=extract_target_areas(lowered, keywords),
        complexity=complexity,
        keywords=keywords,
    )


def summarize_context(context: RelevantContext, top: int = 5) -> Dict[str, Any]:
    """Languages, file types and top files of a retrieval result."""
    languages = list(dict.fromkeys(f.language for f in context.files if f.language))
    file_types = list(dict.fromkeys(
        PurePosixPath(f.path).suffix.lstrip(".") or "unknown" for f in context.files
    ))
    return {
        "total_files_found": context.total_files_found,
        "languages_found": languages,
        "file_types": file_types,
        "top_relevant_files": [
            {"path": f.path, "language": f.language, "similarity": round(f.similarity or 0.0, 2)}
            for f in context.files[:top]
        ],
    }


# ===================================================================
# Rule-based strategy
# ===================================================================

def _focus(analysis: PromptAnalysis) -> str:
    for area in analysis.target_areas:
        if area not in _FOCUS_SKIP:
            return area
    return "core"


def _bullets(*steps: str) -> str:
    return "\n".join(f"- {s}" for s in steps)


def pick_files(
    context: RelevantContext,
    terms: Sequence[str] = (),
    limit: int = MAX_PHASE_FILES,
    fallback: bool = True,
) -> List[str]:
    """Context paths matching *terms*; the top context paths when none match."""
    paths = [f.path for f in context.files]
    if terms:
        matched = [p for p in paths if any(t in p.lower() for t in terms)]
        if matched or not fallback:
            return matched[:limit]
    return paths[:limit] if fallback else []


BACKEND_TERMS = ("api", "service", "controller", "route", "model", "server", "lib", "handler", "db")
FRONTEND_TERMS = ("component", "page", "view", ".tsx", ".jsx", "ui", "app/", "hooks")
TEST_TERMS = ("test", "spec")
ERROR_TERMS = ("error", "middleware", "handler", "validation", "exception")


class RuleBasedPhaseStrategy:
    """Deterministic phase templates, one generator per query type."""

    def __init__(self) -> None:
        self._generators: Dict[str, Callable[[str, RelevantContext, PromptAnalysis], List[Phase]]] = {
            "specific": self._specific,
            "feature": self._feature,
            "debug": self._debug,
            "refactor": self._refactor,
            "improvement": self._improvement,
        }

    def generate(
        self, user_prompt: str, context: RelevantContext, analysis: PromptAnalysis,
    ) -> List[Phase]:
        generator = self._generators.get(analysis.query_type, self._default)
        return generator(user_prompt, context, analysis)

    @staticmethod
    def _terms(analysis: PromptAnalysis, extra: Sequence[str] = ()) -> List[str]:
        return [k for k in analysis.keywords if k not in _FOCUS_SKIP] + list(extra)

    def _debug(self, user_prompt: str, context: RelevantContext, analysis: PromptAnalysis) -> List[Phase]:
        focus = _focus(analysis)
        scope = pick_files(context, self._terms(analysis))
        phases = [
            Phase(
                id="phase-01",
                title=f"Fix {focus} bug"[:60],
                description=_bullets(
                    f"Reproduce the reported {focus} failure",
                    "Trace the failing code path through the relevant files",
                    "Correct the faulty logic at its source",
                    "Add clear error messages for the failure case",
                ),
                relevant_files=scope,
                estimated_complexity=analysis.complexity,
                priority="high",
                category="bug_fix",
                reasoning=f"Directly resolves the reported problem: {user_prompt}",
            ),
        ]
        error_files = pick_files(context, ERROR_TERMS, fallback=False)
        if error_files:
            phases.append(Phase(
                id="phase-02",
                title=f"Harden {focus} error handling"[:60],
                description=_bullets(
                    "Wrap failing async calls in explicit error handling",
                    "Validate inputs before they reach the fixed code",
                    "Log failures with enough context to diagnose them",
                    "Return consistent error responses to callers",
                ),
                relevant_files=error_files,
                dependencies=["phase-01"],
                estimated_complexity="medium",
                priority="medium",
                category="bug_fix",
                reasoning="Prevents the same class of failure from resurfacing elsewhere.",
            ))
        test_files = pick_files(context, TEST_TERMS, fallback=False)
        phases.append(Phase(
            id=f"phase-{len(phases) + 1:02d}",
            title=f"Add regression tests for {focus} fix"[:60],
            description=_bullets(
                "Write a test that reproduces the original failure",
                "Cover the edge cases around the fix",
                "Run the full suite to confirm nothing else broke",
                "Document the root cause next to the test",
            ),
            relevant_files=test_files or scope[:2],
            dependencies=["phase-01"],
            estimated_complexity="low",
            priority="medium",
            category="improvement",
            reasoning="Locks in the fix so the bug cannot silently return.",
        ))
        return phases

    def _feature(self, user_prompt: str, context: RelevantContext, analysis: PromptAnalysis) -> List[Phase]:
        focus = _focus(analysis)
        backend = pick_files(context, BACKEND_TERMS, fallback=False)
        frontend = pick_files(context, FRONTEND_TERMS, fallback=False)
        phases: List[Phase] = []

        if backend or not frontend:
            phases.append(Phase(
                id="phase-01",
                title=f"Implement {focus} backend logic"[:60],
                description=_bullets(
                    f"Define the data shapes the {focus} feature needs",
                    "Add service functions implementing the core behaviour",
                    "Expose the behaviour through the existing API layer",
                    "Validate inputs and handle failure cases",
                ),
                relevant_files=backend or pick_files(context),
                estimated_complexity=analysis.complexity,
                priority="high",
                category="feature",
                reasoning=f"Provides the core functionality requested: {user_prompt}",
            ))
        if frontend:
            phases.append(Phase(
                id=f"phase-{len(phases) + 1:02d}",
                title=f"Create {focus} user interface"[:60],
                description=_bullets(
                    f"Add components presenting the {focus} feature",
                    "Wire the components to the backend calls",
                    "Handle loading and error states",
                    "Keep styling consistent with existing screens",
                ),
                relevant_files=frontend,
                dependencies=["phase-01"] if phases else [],
                estimated_complexity="medium",
                priority="medium",
                category="feature",
                reasoning="Makes the new functionality reachable by users.",
            ))
        phases.append(Phase(
            id=f"phase-{len(phases) + 1:02d}",
            title=f"Add tests for {focus} feature"[:60],
            description=_bullets(
                "Unit test the new service functions",
                "Cover invalid input and failure paths",
                "Add an integration test for the main flow",
                "Document how to use the new feature",
            ),
            relevant_files=pick_files(context, TEST_TERMS, fallback=False) or (backend or frontend)[:2],
            dependencies=[p.id for p in phases],
            estimated_complexity="low",
            priority="medium",
            category="improvement",
            reasoning="Verifies the feature and keeps it safe to change.",
        ))
        return phases

    def _refactor(self, user_prompt: str, context: RelevantContext, analysis: PromptAnalysis) -> List[Phase]:
        focus = _focus(analysis)
        by_complexity = sorted(
            context.files,
            key=lambda f: f.metadata.get("complexityScore", 0) or 0,
            reverse=True,
        )
        complex_files = [f.path for f in by_complexity[:MAX_PHASE_FILES]]
        shared = pick_files(context, ("util", "helper", "lib", "shared", "common"), fallback=False)
        phases = [
            Phase(
                id="phase-01",
                title=f"Refactor {focus} module structure"[:60],
                description=_bullets(
                    "Split the most complex files into focused units",
                    "Remove duplicated logic between them",
                    "Reduce coupling through clearer interfaces",
                    "Keep behaviour unchanged",
                ),
                relevant_files=complex_files,
                estimated_complexity="high" if analysis.complexity == "high" else "medium",
                priority="medium",
                category="refactor",
                reasoning=f"Targets the highest-complexity code behind: {user_prompt}",
            ),
        ]
        if shared:
            phases.append(Phase(
                id="phase-02",
                title=f"Extract shared {focus} utilities"[:60],
                description=_bullets(
                    "Move reusable helpers into the shared modules",
                    "Update imports in the refactored files",
                    "Delete the now-unused copies",
                    "Add tests for the extracted helpers",
                ),
                relevant_files=shared,
                dependencies=["phase-01"],
                estimated_complexity="low",
                priority="low",
                category="refactor",
                reasoning="Consolidates logic surfaced by the restructuring.",
            ))
        return phases

    def _specific(self, user_prompt: str, context: RelevantContext, analysis: PromptAnalysis) -> List[Phase]:
        focus = _focus(analysis)
        scope = pick_files(context, self._terms(analysis))
        return [
            Phase(
                id="phase-01",
                title=f"Update {focus} implementation"[:60],
                description=_bullets(
                    f"Review the current {focus} flow end to end",
                    "Apply the requested change in the relevant files",
                    "Keep existing callers working",
                    "Update inline documentation",
                ),
                relevant_files=scope,
                estimated_complexity=analysis.complexity,
                priority="high",
                category="improvement",
                reasoning=f"Addresses the specific request: {user_prompt}",
            ),
            Phase(
                id="phase-02",
                title=f"Validate {focus} inputs and errors"[:60],
                description=_bullets(
                    "Add input validation at the entry points",
                    "Return clear messages for rejected input",
                    "Cover the validation rules with tests",
                    "Check error paths for leaked details",
                ),
                relevant_files=pick_files(context, ERROR_TERMS, fallback=False) or scope[:2],
                dependencies=["phase-01"],
                estimated_complexity="low",
                priority="medium",
                category="improvement",
                reasoning="Makes the updated flow robust against bad input.",
            ),
        ]

    def _improvement(self, user_prompt: str, context: RelevantContext, analysis: PromptAnalysis) -> List[Phase]:
        focus = _focus(analysis)
        scope = pick_files(context, self._terms(analysis))
        flagged = [f.path for f in context.files if f.metadata.get("hasIssues")][:MAX_PHASE_FILES]
        phases = [
            Phase(
                id="phase-01",
                title=f"Optimize {focus} performance"[:60],
                description=_bullets(
                    "Profile the hot paths in the relevant files",
                    "Batch or parallelise independent async calls",
                    "Cache repeated expensive lookups",
                    "Measure the improvement",
                ),
                relevant_files=scope,
                estimated_complexity=analysis.complexity,
                priority="medium",
                category="improvement",
                reasoning=f"Improves the area named in the request: {user_prompt}",
            ),
        ]
        if flagged:
            phases.append(Phase(
                id="phase-02",
                title=f"Resolve detected issues in {focus}"[:60],
                description=_bullets(
                    "Address the issues flagged during analysis",
                    "Remove debug output and hard-coded values",
                    "Add missing error handling",
                    "Re-run analysis to confirm the fixes",
                ),
                relevant_files=flagged,
                estimated_complexity="medium",
                priority="high",
                category="bug_fix",
                reasoning="Static analysis already points at concrete defects here.",
            ))
        return phases

    def _default(self, user_prompt: str, context: RelevantContext, analysis: PromptAnalysis) -> List[Phase]:
        return [Phase(
            id="phase-01",
            title="Implement requested changes",
            description=_bullets(
                "Review the relevant files",
                "Apply the requested change",
                "Test the result",
                "Update documentation",
            ),
            relevant_files=pick_files(context),
            estimated_complexity=analysis.complexity,
            priority="medium",
            category="improvement",
            reasoning=user_prompt,
        )]


# ===================================================================
# LLM strategy
# ===================================================================

def build_phase_prompt(user_prompt: str, context: RelevantContext) -> str:
    summary = summarize_context(context)
    lines = [
        "Context Summary:",
        f"- Total Files: {context.total_files_found}",
    ]
    if summary["languages_found"]:
        lines.append(f"- Languages: {', '.join(summary['languages_found'])}")
    if summary["file_types"]:
        lines.append(f"- File Types: {', '.join(summary['file_types'])}")
    lines.append("")
    lines.append("Relevant files (use ONLY these paths in relevantFiles):")
    for f in context.files:
        lines.append(
            f"- {f.path} ({f.language or 'unknown'}, similarity {f.similarity:.2f}): "
            f"{f.description or ''}"
        )
    lines.append("")
    lines.append(f"User Prompt: {user_prompt}")
    return "\n".join(lines)


def normalize_phases(raw: Any, allowed_paths: Sequence[str], limit: int = MAX_PHASES) -> List[Phase]:
    """Validate provider output into capped, renumbered phases.

    Unknown files are dropped, ids are rewritten to ``phase-NN`` and
    dependencies may only point at earlier phases of the same batch.
    """
    items = raw.get("phases") if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        raise GenerationError("Phase response has no 'phases' list")

    allowed = set(allowed_paths)
    phases: List[Phase] = []
    id_map: Dict[str, str] = {}
    for item in items:
        if len(phases) >= limit:
            break
        if not isinstance(item, dict):
            continue
        try:
            phase = Phase.from_dict(item)
        except KeyError as exc:
            logger.warning("Dropping phase without %s", exc)
            continue
        new_id = f"phase-{len(phases) + 1:02d}"
        id_map[phase.id] = new_id
        phase.id = new_id
        phase.relevant_files = [p for p in dict.fromkeys(phase.relevant_files) if p in allowed]
        phase.dependencies = [
            id_map[d] for d in phase.dependencies if d in id_map and id_map[d] != new_id
        ]
        if phase.estimated_complexity not in PHASE_LEVELS:
            phase.estimated_complexity = "medium"
        if phase.priority not in PHASE_LEVELS:
            phase.priority = "medium"
        if phase.category not in PHASE_CATEGORIES:
            phase.category = "improvement"
        phases.append(phase)

    if not phases:
        raise GenerationError("Provider returned no usable phases")
    return phases


class LLMPhaseStrategy:
    def __init__(self, llm: LLMClient, settings: Optional[PlannerSettings] = None) -> None:
        self.llm = llm
        self.settings = settings or PlannerSettings()

    def generate(
        self, user_prompt: str, context: RelevantContext, analysis: PromptAnalysis,
    ) -> List[Phase]:
        raw = self.llm.complete_json(
            PHASE_GENERATION_SYSTEM_PROMPT,
            build_phase_prompt(user_prompt, context),
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            response_schema=PHASES_RESPONSE_SCHEMA,
        )
        return normalize_phases(
            raw,
            [f.path for f in context.files],
            min(MAX_PHASES, self.settings.max_phases),
        )


# ===================================================================
# Planner
# ===================================================================

class PhasePlanner:
    """Select a phase strategy and enforce the shared output contract."""

    def __init__(
        self,
        settings: Optional[PlannerSettings] = None,
        llm: Optional[LLMClient] = None,
    ) -> None:
        self.settings = settings or PlannerSettings()
        self.rules = RuleBasedPhaseStrategy()
        self.llm_strategy = LLMPhaseStrategy(llm, self.settings) if llm is not None else None

    @property
    def max_phases(self) -> int:
        return max(1, min(MAX_PHASES, self.settings.max_phases))

    def analyze_prompt(self, user_prompt: str) -> PromptAnalysis:
        return analyze_prompt(user_prompt)

    def generate_atomic_phases(
        self,
        user_prompt: str,
        context: RelevantContext,
        analysis: Optional[PromptAnalysis] = None,
        strategy: Optional[str] = None,
    ) -> List[Phase]:
        analysis = analysis or analyze_prompt(user_prompt)
        chosen = (strategy or self.settings.strategy).lower()

        if chosen == "llm":
            phases = self._generate_with_llm(user_prompt, context, analysis)
        else:
            if chosen != "rules":
                logger.warning("Unknown planner strategy '%s', using rules", chosen)
            phases = self.rules.generate(user_prompt, context, analysis)
        return self._cap(phases)

    def _generate_with_llm(
        self, user_prompt: str, context: RelevantContext, analysis: PromptAnalysis,
    ) -> List[Phase]:
        if self.llm_strategy is None:
            if self.settings.fallback_to_rules:
                logger.warning("No LLM configured for phase generation, using rules")
                return self.rules.generate(user_prompt, context, analysis)
            raise PlanningError("No LLM configured for phase generation")
        try:
            return self.llm_strategy.generate(user_prompt, context, analysis)
        except (GenerationError, ProviderError) as exc:
            if not self.settings.fallback_to_rules:
                raise PlanningError(f"Phase generation failed: {exc}") from exc
            logger.warning("LLM phase generation failed (%s), using rules", exc)
            return self.rules.generate(user_prompt, context, analysis)

    def _cap(self, phases: List[Phase]) -> List[Phase]:
        kept = phases[: self.max_phases]
        ids = {p.id for p in kept}
        for phase in kept:
            phase.dependencies = [d for d in phase.dependencies if d in ids]
        return kept
