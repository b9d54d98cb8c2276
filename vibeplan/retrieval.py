"""Context retrieval: query expansion, vector search, filtering and re-ranking.

Pipeline for :meth:`ContextRetriever.find_relevant_context`:

1. expand the prompt with synonym clusters (query type first, then keywords)
2. query ``type = file`` records with ``top_k * 2``
3. fewer than 5 hits: merge in a query on the raw prompt
4. drop low-similarity hits and documentation on technical queries
5. de-duplicate by path (best score wins)
6. re-rank with heuristic bonuses, truncate to ``top_k``

Any failure yields an empty :class:`RelevantContext`.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from .config import RetrievalSettings
from .embeddings import Embedder
from .models import ContextFile, RelevantContext
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

FALLBACK_THRESHOLD = 5

QUERY_TYPE_EXPANSIONS: Dict[str, List[str]] = {
    "improvement": ["performance", "optimization", "error handling", "code quality", "best practices"],
    "feature": ["implementation", "component", "service", "integration", "existing patterns"],
    "debug": ["error", "exception", "bug", "fix", "try catch", "validation"],
    "refactor": ["code organization", "structure", "duplicate code", "complex functions", "coupling"],
}

# (trigger substrings, expansion terms)
KEYWORD_EXPANSIONS: Dict[str, Any] = {
    "scheduling": (("schedul",), ["scheduler", "queue", "job", "cron", "worker", "task", "timer"]),
    "process": (("process",), ["process", "worker", "pipeline", "handler", "executor"]),
    "api": (("api", "endpoint", "route"), ["api", "endpoint", "route", "controller", "request", "response"]),
    "database": (("database", "db ", "sql", "query"), ["database", "model", "schema", "query", "repository", "orm"]),
}

SCHEDULING_TERMS = ("schedul", "queue", "job", "worker", "cron", "task")
TECHNICAL_TERMS = (
    "function", "class", "method", "api", "bug", "error", "fix", "implement",
    "code", "refactor", "performance", "database", "endpoint", "component",
    "service", "module", "test", "async", "query", "schema",
)
TECHNICAL_QUERY_TYPES = {"debug", "feature", "refactor"}

DOC_EXTENSIONS = (".md", ".mdx", ".txt", ".rst")
DOC_PATH_MARKERS = ("readme", "changelog", "license", "docs/", "contributing")
IMPLEMENTATION_EXTENSIONS = (
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".py", ".java", ".go", ".rb", ".rs", ".php", ".cs",
)
CONFIG_EXTENSIONS = (".json", ".yaml", ".yml", ".toml", ".ini", ".env", ".lock")
SCRIPT_LANGUAGES = {"typescript", "javascript"}

SCHEDULING_BONUS = 0.15
IMPLEMENTATION_BONUS = 0.1
CONFIG_PENALTY = 0.1
SCRIPT_LANGUAGE_BONUS = 0.05
CONTENT_LENGTH_BONUS = 0.05
CONTENT_LENGTH_RANGE = (500, 10000)


def expand_query(user_prompt: str, query_type: str) -> str:
    """Original prompt plus synonym terms; type terms come before keyword terms."""
    lowered = user_prompt.lower()
    terms: List[str] = list(QUERY_TYPE_EXPANSIONS.get(query_type, []))
    for triggers, expansions in KEYWORD_EXPANSIONS.values():
        if any(t in lowered for t in triggers):
            terms.extend(expansions)
    if not terms:
        return user_prompt
    return f"{user_prompt} {' '.join(terms)}"


def is_technical_query(user_prompt: str, query_type: str) -> bool:
    if query_type in TECHNICAL_QUERY_TYPES:
        return True
    lowered = user_prompt.lower()
    return any(term in lowered for term in TECHNICAL_TERMS)


def is_documentation_file(path: str) -> bool:
    lowered = path.lower()
    return lowered.endswith(DOC_EXTENSIONS) or any(m in lowered for m in DOC_PATH_MARKERS)


def is_test_path(path: str) -> bool:
    lowered = path.lower()
    return "test" in lowered or "spec" in lowered


def concerns_scheduling(user_prompt: str) -> bool:
    lowered = user_prompt.lower()
    return "schedul" in lowered or "process" in lowered


def _path_of(match: Dict[str, Any]) -> str:
    return str(match.get("metadata", {}).get("filePath") or "")


def rerank_score(match: Dict[str, Any], user_prompt: str, technical: bool) -> float:
    """Vector similarity adjusted by path, language and content-size heuristics."""
    meta = match.get("metadata", {})
    path = _path_of(match).lower()
    searchable = str(meta.get("searchableText") or "")
    score = float(match.get("score", 0.0))

    if concerns_scheduling(user_prompt):
        name = PurePosixPath(path).name
        if any(t in name or t in searchable for t in SCHEDULING_TERMS):
            score += SCHEDULING_BONUS
    if technical:
        if path.endswith(IMPLEMENTATION_EXTENSIONS) and not is_test_path(path):
            score += IMPLEMENTATION_BONUS
        elif path.endswith(CONFIG_EXTENSIONS):
            score -= CONFIG_PENALTY
    if meta.get("language") in SCRIPT_LANGUAGES:
        score += SCRIPT_LANGUAGE_BONUS
    low, high = CONTENT_LENGTH_RANGE
    if low <= len(searchable) <= high:
        score += CONTENT_LENGTH_BONUS
    return score


class ContextRetriever:
    """Select the repository files most relevant to a free-text goal."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        settings: Optional[RetrievalSettings] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.settings = settings or RetrievalSettings()

    def find_relevant_context(
        self,
        namespace: str,
        user_prompt: str,
        query_type: str = "improvement",
        top_k: Optional[int] = None,
    ) -> RelevantContext:
        try:
            return self._find(namespace, user_prompt, query_type, top_k or self.settings.top_k)
        except Exception as exc:
            logger.warning("Context retrieval failed for %s: %s", namespace, exc)
            return RelevantContext()

    def _search(self, namespace: str, text: str, top_k: int) -> List[Dict[str, Any]]:
        vector = self.embedder.embed_text(text)
        return self.store.query(namespace, vector, top_k=top_k, filter={"type": "file"})

    def _find(
        self, namespace: str, user_prompt: str, query_type: str, top_k: int,
    ) -> RelevantContext:
        expanded = expand_query(user_prompt, query_type)
        logger.debug("Expanded query: %s", expanded)
        matches = self._search(namespace, expanded, top_k * 2)

        if len(matches) < FALLBACK_THRESHOLD:
            seen = {_path_of(m) for m in matches}
            for match in self._search(namespace, user_prompt, top_k * 2):
                if _path_of(match) not in seen:
                    seen.add(_path_of(match))
                    matches.append(match)

        technical = is_technical_query(user_prompt, query_type)
        filtered = [m for m in matches if self._keep(m, technical)]

        best: Dict[str, Dict[str, Any]] = {}
        for match in filtered:
            path = _path_of(match)
            if path not in best or match["score"] > best[path]["score"]:
                best[path] = match

        ranked = sorted(
            ((rerank_score(m, user_prompt, technical), m) for m in best.values()),
            key=lambda pair: pair[0],
            reverse=True,
        )[:top_k]

        files = [self._to_context_file(m, adjusted) for adjusted, m in ranked]
        logger.info("Retrieved %d context files for %s", len(files), namespace)
        return RelevantContext(files=files, total_files_found=len(files))

    def _keep(self, match: Dict[str, Any], technical: bool) -> bool:
        if not _path_of(match):
            return False
        if match.get("score", 0.0) < self.settings.min_similarity:
            return False
        if technical and is_documentation_file(_path_of(match)):
            searchable = str(match["metadata"].get("searchableText") or "").lower()
            return any(term in searchable for term in TECHNICAL_TERMS)
        return True

    def _to_context_file(self, match: Dict[str, Any], adjusted: float) -> ContextFile:
        meta = dict(match.get("metadata", {}))
        meta["relevanceScore"] = round(adjusted, 4)
        content = meta.get("content")
        if not isinstance(content, str):
            content = str(meta.get("searchableText") or "No content available")
        return ContextFile(
            path=_path_of(match),
            content=content[: self.settings.content_chars],
            similarity=float(match.get("score", 0.0)),
            metadata=meta,
            language=meta.get("language"),
            description=meta.get("description"),
        )
