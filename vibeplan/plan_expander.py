"""Expand one phase into a detailed markdown implementation plan."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from .config import PlannerSettings
from .errors import GenerationError, PlanningError, ProviderError
from .llm import LLMClient
from .models import ContextFile, DetailedPlan, Phase
from .prompts import PLAN_GENERATION_SYSTEM_PROMPT, PLAN_RESPONSE_SCHEMA
from .retrieval import ContextRetriever

logger = logging.getLogger(__name__)

QUERY_DESCRIPTION_CHARS = 200
QUERY_FILES = 3
PLAN_FILES = 3
FILE_CONTENT_CHARS = 500
INSTRUCTION_CHARS = 600

CATEGORY_QUERY_TYPES = {
    "bug_fix": "debug",
    "feature": "feature",
    "refactor": "refactor",
    "improvement": "improvement",
    "documentation": "improvement",
}


def build_plan_query(phase: Phase, top_relevant_files: Sequence[Dict[str, Any]]) -> str:
    """Narrow search text: title, category, clipped description and a few paths."""
    paths = [str(f.get("path", "")) for f in top_relevant_files[:QUERY_FILES] if f.get("path")]
    parts = [phase.title, phase.category, phase.description[:QUERY_DESCRIPTION_CHARS], *paths]
    return " ".join(p for p in parts if p)


def build_plan_prompt(phase: Phase, files: List[ContextFile]) -> str:
    lines = [
        f"Phase: {phase.title}",
        f"Category: {phase.category}",
        f"Complexity: {phase.estimated_complexity}  Priority: {phase.priority}",
        "Description:",
        phase.description,
        "",
        f"Reasoning: {phase.reasoning}",
        "",
        "Phase files: " + (", ".join(phase.relevant_files) or "none listed"),
        "",
        "Relevant files:",
    ]
    for f in files:
        lines.extend([
            f"File: {f.path} ({f.language or 'unknown'})",
            "```",
            f.content[:FILE_CONTENT_CHARS],
            "```",
        ])
    if not files:
        lines.append("(no matching files retrieved)")
    return "\n".join(lines)


class PlanExpander:
    """Retrieve narrow context for a phase and ask the provider for a plan.

    There is no deterministic fallback; any failure is a :class:`PlanningError`.
    """

    def __init__(
        self,
        retriever: ContextRetriever,
        llm: LLMClient,
        settings: Optional[PlannerSettings] = None,
    ) -> None:
        self.retriever = retriever
        self.llm = llm
        self.settings = settings or PlannerSettings()

    def generate_detailed_plan(
        self,
        phase: Phase,
        top_relevant_files: Sequence[Dict[str, Any]],
        namespace: str,
    ) -> DetailedPlan:
        query = build_plan_query(phase, top_relevant_files)
        query_type = CATEGORY_QUERY_TYPES.get(phase.category, "improvement")
        context = self.retriever.find_relevant_context(namespace, query, query_type)
        files = context.files[:PLAN_FILES]
        logger.info("Expanding %s with %d context files", phase.id, len(files))

        try:
            raw = self.llm.complete_json(
                PLAN_GENERATION_SYSTEM_PROMPT,
                build_plan_prompt(phase, files),
                temperature=self.settings.plan_temperature,
                max_tokens=self.settings.plan_max_tokens,
                response_schema=PLAN_RESPONSE_SCHEMA,
            )
        except (GenerationError, ProviderError) as exc:
            logger.error("Plan generation failed for %s: %s", phase.id, exc)
            raise PlanningError() from exc

        if not isinstance(raw, dict):
            raise PlanningError()
        plan = raw.get("plan")
        instruction = raw.get("instruction")
        if not isinstance(plan, str) or not plan.strip() or not isinstance(instruction, str):
            logger.error("Plan response for %s is missing required fields", phase.id)
            raise PlanningError()
        return DetailedPlan(plan=plan.strip(), instruction=instruction.strip()[:INSTRUCTION_CHARS])
