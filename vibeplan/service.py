"""Service facade wiring every pipeline stage from one :class:`Settings`.

This is the error boundary: request validation errors propagate with their
full list of violations; every other failure is logged with its detail and
re-raised as :class:`ServiceError` carrying only a generic message.
"""

from __future__ import annotations

import json
import logging
import time
from collections import Counter
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import Settings
from .dependency_graph import build_dependency_graph
from .embeddings import Embedder, get_embedder
from .errors import PlanningError, RequestValidationError, ServiceError
from .indexer import RepositoryIndexer, generate_namespace
from .llm import LLMClient
from .models import (
    AnalysisResult,
    DependencyGraph,
    FileRecord,
    IndexingResult,
    Phase,
    SummaryRequest,
    SummaryResult,
)
from .parser import SourceAnalyzer
from .plan_expander import PlanExpander
from .planner import PhasePlanner, summarize_context
from .repository import RepositoryFetcher, analyze_repository
from .retrieval import ContextRetriever
from .scoring import enrich_file
from .summarizer import SummaryGenerator, apply_summaries
from .validation import IndexRequest, PhaseRequest, PlanRequest, SearchRequest, validate_request
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200


def enhanced_analysis_stats(
    files: List[FileRecord], summaries: List[SummaryResult],
) -> Dict[str, Any]:
    priorities = Counter(f.priority or "low" for f in files)
    severities: Counter = Counter()
    tags: Counter = Counter()
    for record in files:
        severities.update(i.severity for i in record.detected_issues or [])
        tags.update(record.semantic_tags or [])
    return {
        "priority_breakdown": {p: priorities.get(p, 0) for p in ("critical", "high", "medium", "low")},
        "files_needing_ai_summary": sum(1 for f in files if f.needs_ai_summary),
        "ai_summaries_generated": sum(1 for s in summaries if s.generated),
        "ai_summaries_failed": sum(1 for s in summaries if not s.generated),
        "total_issues": sum(severities.values()),
        "issues_by_severity": {s: severities.get(s, 0) for s in ("critical", "high", "medium", "low")},
        "top_tags": [tag for tag, _ in tags.most_common(10)],
    }


class VibePlanService:
    """Index repositories, search them and plan work against them."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[VectorStore] = None,
        embedder: Optional[Embedder] = None,
        llm: Optional[LLMClient] = None,
        fetcher: Optional[RepositoryFetcher] = None,
        analyzer: Optional[SourceAnalyzer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.store = store or VectorStore(settings.store_path, settings.store.index_name)
        self.embedder = embedder or get_embedder(settings.embeddings)
        self.llm = llm or LLMClient.from_settings(settings.llm)
        self.fetcher = fetcher or RepositoryFetcher(settings.clone_path, settings.workspace)
        self._analyzer = analyzer
        self._sleep = sleep

        self.indexer = RepositoryIndexer(
            self.store, self.embedder, settings.store, settings.embeddings, sleep=sleep,
        )
        self.retriever = ContextRetriever(self.store, self.embedder, settings.retrieval)
        self.planner = PhasePlanner(settings.planner, self.llm)
        self.expander = PlanExpander(self.retriever, self.llm, settings.planner)
        self.summaries = SummaryGenerator(self.llm, settings.summaries, sleep=sleep)

    @property
    def analyzer(self) -> SourceAnalyzer:
        if self._analyzer is None:
            self._analyzer = SourceAnalyzer()
        return self._analyzer

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def index_repository(self, repo_url: str, branch: str = "main") -> IndexingResult:
        request = validate_request(IndexRequest, {"repo_url": repo_url, "branch": branch})
        try:
            return self._index(request.repo_url, request.branch)
        except RequestValidationError:
            raise
        except Exception as exc:
            logger.exception("Indexing %s@%s failed: %s", repo_url, branch, exc)
            raise ServiceError("Failed to index repository") from exc

    def _index(self, repo_url: str, branch: str) -> IndexingResult:
        namespace = generate_namespace(repo_url, branch)
        self.store.ensure_index(
            self.settings.embeddings.dim,
            self.settings.store.ready_attempts,
            self.settings.store.ready_interval,
        )
        cached = self.indexer.namespace_exists(namespace)

        root = self.fetcher.clone(repo_url, branch)
        try:
            analysis = analyze_repository(root, repo_url, branch, self.analyzer)
        finally:
            self.fetcher.cleanup(root)

        if cached:
            logger.info("Namespace %s already indexed, rebuilding graph only", namespace)
            graph = build_dependency_graph(analysis.files)
            return IndexingResult(
                namespace=namespace,
                dependency_graph=graph,
                cached=True,
                stats={"repository": analysis.stats.to_dict(), "graph": graph.stats()},
            )

        files = [enrich_file(f) for f in analysis.files]
        summaries = self._summarize(files)
        files = apply_summaries(files, summaries)
        analysis = replace(analysis, files=files)
        self._write_debug_artifact(namespace, analysis)

        self.indexer.index_repository(analysis)
        graph = build_dependency_graph(analysis.files)
        return IndexingResult(
            namespace=namespace,
            dependency_graph=graph,
            cached=False,
            stats={
                "repository": analysis.stats.to_dict(),
                "graph": graph.stats(),
                "enhanced_analysis": enhanced_analysis_stats(files, summaries),
            },
        )

    def _summarize(self, files: List[FileRecord]) -> List[SummaryResult]:
        if not self.settings.summaries.enabled:
            return []
        requests = [
            SummaryRequest(path=f.path, content=f.content, language=f.language, record=f)
            for f in files if f.needs_ai_summary
        ]
        return self.summaries.generate_summaries(requests)

    def _write_debug_artifact(self, namespace: str, analysis: AnalysisResult) -> Optional[Path]:
        if not self.settings.workspace.write_debug_artifacts:
            return None
        out_dir = self.settings.home / "debug"
        out_dir.mkdir(parents=True, exist_ok=True)
        out_file = out_dir / f"{namespace}-analysis.json"
        out_file.write_text(json.dumps(analysis.to_dict(), indent=2), encoding="utf-8")
        logger.info("Wrote analysis artifact %s", out_file)
        return out_file

    def analyze_local(self, path: Path) -> Tuple[AnalysisResult, DependencyGraph]:
        """Analyse and graph a local directory without cloning or indexing."""
        root = Path(path).resolve()
        try:
            analysis = analyze_repository(root, str(root), "local", self.analyzer)
        except OSError as exc:
            logger.exception("Analysis of %s failed: %s", root, exc)
            raise ServiceError("Failed to analyze directory") from exc
        analysis = replace(analysis, files=[enrich_file(f) for f in analysis.files])
        return analysis, build_dependency_graph(analysis.files)

    # ------------------------------------------------------------------
    # Search and planning
    # ------------------------------------------------------------------

    def search(
        self, repo_url: str, query: str, branch: str = "main", limit: int = 10,
    ) -> List[Dict[str, Any]]:
        request = validate_request(SearchRequest, {
            "repo_url": repo_url, "branch": branch, "query": query, "limit": limit,
        })
        namespace = generate_namespace(request.repo_url, request.branch)
        try:
            hits = self.indexer.search(namespace, request.query, request.limit)
        except Exception as exc:
            logger.exception("Search in %s failed: %s", namespace, exc)
            raise ServiceError("Search failed") from exc
        return [h.to_dict() for h in hits]

    def analyze_prompt(self, user_prompt: str) -> Dict[str, Any]:
        return {"user_prompt": user_prompt, "analysis": self.planner.analyze_prompt(user_prompt).to_dict()}

    def generate_phases(
        self,
        namespace: str,
        user_prompt: str,
        context_type: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> Dict[str, Any]:
        request = validate_request(PhaseRequest, {
            "namespace": namespace, "user_prompt": user_prompt, "context_type": context_type,
        })
        try:
            analysis = self.planner.analyze_prompt(request.user_prompt)
            context = self.retriever.find_relevant_context(
                request.namespace, request.user_prompt, request.context_type or analysis.query_type,
            )
            phases = self.planner.generate_atomic_phases(
                request.user_prompt, context, analysis, strategy=strategy,
            )
        except Exception as exc:
            logger.exception("Phase generation for %s failed: %s", namespace, exc)
            raise ServiceError("Failed to generate phases") from exc

        logger.info("Generated %d phases for %s", len(phases), namespace)
        return {
            "namespace": request.namespace,
            "user_prompt": request.user_prompt,
            "prompt_analysis": analysis.to_dict(),
            "phases": [p.to_dict() for p in phases],
            "total_phases": len(phases),
            "context_files_used": context.total_files_found,
            "context_summary": summarize_context(context),
        }

    def preview_context(
        self, namespace: str, user_prompt: str, context_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        request = validate_request(PhaseRequest, {
            "namespace": namespace, "user_prompt": user_prompt, "context_type": context_type,
        })
        context = self.retriever.find_relevant_context(
            request.namespace, request.user_prompt, request.context_type or "improvement",
        )
        summary = summarize_context(context)
        summary.pop("top_relevant_files")
        summary["relevant_files"] = [
            {
                "path": f.path,
                "language": f.language,
                "description": f.description,
                "similarity": round(f.similarity or 0.0, 2),
                "content_preview": f.content[:PREVIEW_CHARS] + "...",
            }
            for f in context.files
        ]
        return {
            "namespace": request.namespace,
            "user_prompt": request.user_prompt,
            "context_summary": summary,
        }

    def generate_plan(
        self,
        namespace: str,
        phase: Dict[str, Any],
        top_relevant_files: List[Dict[str, Any]],
    ) -> Dict[str, str]:
        request = validate_request(PlanRequest, {
            "namespace": namespace, "phase": phase, "top_relevant_files": top_relevant_files,
        })
        phase_obj = Phase.from_dict(request.phase.model_dump(by_alias=True))
        files = [f.model_dump() for f in request.top_relevant_files]
        try:
            plan = self.expander.generate_detailed_plan(phase_obj, files, request.namespace)
        except PlanningError as exc:
            logger.error("Plan generation for %s failed: %s", phase_obj.id, exc)
            raise ServiceError(PlanningError.public_message) from exc
        except Exception as exc:
            logger.exception("Plan generation for %s failed: %s", phase_obj.id, exc)
            raise ServiceError(PlanningError.public_message) from exc
        return plan.to_dict()
