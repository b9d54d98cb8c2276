"""Turn an :class:`AnalysisResult` into namespaced, metadata-rich text records.

Record layout per repository (ids are prefixed with the repository name):

==================== ============================ ==============================
Type                 Id                           Emitted for
==================== ============================ ==============================
repository_overview  ``{repo}-overview``          always, first
file                 ``{repo}-file-{i}``          up to 100 significant files
function             ``{repo}-func-{i}-{j}``      named functions of high/critical files
class                ``{repo}-class-{i}-{j}``     classes of high/critical files
issues               ``{repo}-issues-{i}``        files with critical/high issues
language_summary     ``{repo}-lang-{language}``   each distinct language
==================== ============================ ==============================

Re-indexing is skipped when the namespace already holds records.  The
check and the first write are not atomic: two concurrent first-time runs
for one namespace can both write.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import EmbeddingSettings, StoreSettings
from .embeddings import Embedder
from .models import AnalysisResult, FileRecord, SearchHit, TextRecord
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

MAX_FILE_RECORDS = 100
CONTENT_CHARS = 1000
DIGEST_CHARS = 8000
DIGEST_FILES = 10
PREVIEW_CHARS = 200

SIGNIFICANT_LANGUAGES = {"typescript", "javascript", "python", "java"}
STRUCTURAL_PATH_PARTS = (
    "index", "main", "app", "config", "README", "component",
    "service", "controller", "model", "util", "helper",
)


def generate_namespace(repo_url: str, branch: str) -> str:
    """``{owner}-{repo}-{branch}`` from the last two URL path segments."""
    trimmed = repo_url.strip().rstrip("/")
    if trimmed.endswith(".git"):
        trimmed = trimmed[: -len(".git")]
    parts = trimmed.split("/")
    owner = parts[-2] if len(parts) >= 2 else "local"
    return f"{owner}-{parts[-1]}-{branch}"


def language_stats(files: List[FileRecord]) -> Dict[str, int]:
    stats: Dict[str, int] = {}
    for record in files:
        stats[record.language] = stats.get(record.language, 0) + 1
    return stats


def is_significant_file(record: FileRecord) -> bool:
    if record.priority in ("high", "critical"):
        return True
    if record.summary_type == "ai-generated":
        return True
    if record.detected_issues:
        return True
    if (record.complexity_score or 0) > 10:
        return True
    return (
        bool(record.functions)
        or bool(record.classes)
        or record.lines_of_code > 20
        or record.language in SIGNIFICANT_LANGUAGES
        or any(part in record.path for part in STRUCTURAL_PATH_PARTS)
    )


def _named_functions(record: FileRecord) -> List[str]:
    return [f.name for f in record.functions if f.name and f.name != "<anonymous>"]


# ===================================================================
# Record metadata
# ===================================================================

def _overview_metadata(analysis: AnalysisResult, stats: Dict[str, int]) -> Dict[str, Any]:
    languages = ", ".join(f"{lang}({count})" for lang, count in stats.items())
    return {
        "type": "repository_overview",
        "repoName": analysis.repo_name,
        "repoUrl": analysis.repo_url,
        "branch": analysis.branch,
        "totalFiles": analysis.stats.total_files,
        "content": (
            f"Repository: {analysis.repo_name}. {analysis.stats.total_files} total files, "
            f"{analysis.stats.code_files} code files. Languages: {languages}"
        )[:CONTENT_CHARS],
        "searchableText": (
            f"{analysis.repo_name} repository overview statistics {' '.join(stats)}"
        ).lower(),
    }


def _file_metadata(analysis: AnalysisResult, record: FileRecord) -> Dict[str, Any]:
    functions = _named_functions(record)
    classes = [c.name for c in record.classes]
    issues = record.detected_issues or []
    tags = sorted(record.semantic_tags or [])

    searchable = [
        record.path, record.language, record.description,
        *functions, *classes, *record.variables, *record.imports, *record.exports,
        *tags, *(f"{i.type} {i.severity}" for i in issues),
    ]

    summary = (
        f"File: {record.path} ({record.language}). {record.description}. "
        f"{record.lines_of_code} lines."
    )
    if functions:
        summary += f" Functions: {', '.join(functions)}."
    if classes:
        summary += f" Classes: {', '.join(classes)}."
    if (record.complexity_score or 0) > 10:
        summary += f" High complexity ({record.complexity_score})."
    critical = [i for i in issues if i.severity == "critical"]
    if critical:
        summary += f" Critical issues: {', '.join(i.type for i in critical)}."
    if tags:
        summary += f" Tags: {', '.join(tags)}."

    return {
        "type": "file",
        "repoName": analysis.repo_name,
        "filePath": record.path,
        "language": record.language,
        "description": record.description,
        "linesOfCode": record.lines_of_code,
        "functions": len(record.functions),
        "classes": len(record.classes),
        "content": summary[:CONTENT_CHARS],
        "searchableText": " ".join(s for s in searchable if s).lower(),
        "complexityScore": record.complexity_score or 0,
        "hasIssues": bool(issues),
        "priority": record.priority or "low",
        "summaryType": record.summary_type or "rule-based",
        "importsCount": len(record.imports),
        "exportsCount": len(record.exports),
        "fileSize": record.size_bytes,
    }


def _function_records(
    analysis: AnalysisResult, record: FileRecord, file_index: int,
) -> List[Tuple[str, Dict[str, Any]]]:
    out = []
    for j, func in enumerate(record.functions):
        if not func.name or func.name == "<anonymous>":
            continue
        params = func.parameters
        out.append((f"{analysis.repo_name}-func-{file_index}-{j}", {
            "type": "function",
            "repoName": analysis.repo_name,
            "filePath": record.path,
            "language": record.language,
            "content": (
                f"Function: {func.name} in {record.path}. Parameters: {', '.join(params)}. "
                f"Return type: {func.return_type}. {'Async' if func.is_async else 'Sync'} function."
            )[:CONTENT_CHARS],
            "searchableText": (
                f"{func.name} function {' '.join(params)} {func.return_type} {record.path}"
            ).lower(),
            "functionName": func.name,
            "isAsync": func.is_async,
            "isExported": func.is_exported,
            "parameterCount": len(params),
        }))
    return out


def _class_records(
    analysis: AnalysisResult, record: FileRecord, file_index: int,
) -> List[Tuple[str, Dict[str, Any]]]:
    out = []
    for j, cls in enumerate(record.classes):
        if not cls.name:
            continue
        out.append((f"{analysis.repo_name}-class-{file_index}-{j}", {
            "type": "class",
            "repoName": analysis.repo_name,
            "filePath": record.path,
            "language": record.language,
            "content": (
                f"Class: {cls.name} in {record.path}. Methods: {', '.join(cls.methods)}. "
                f"Properties: {', '.join(cls.properties)}."
            )[:CONTENT_CHARS],
            "searchableText": (
                f"{cls.name} class {' '.join(cls.methods)} {' '.join(cls.properties)} {record.path}"
            ).lower(),
            "className": cls.name,
            "methodsCount": len(cls.methods),
            "propertiesCount": len(cls.properties),
            "isExported": cls.is_exported,
        }))
    return out


def _issues_metadata(analysis: AnalysisResult, record: FileRecord) -> Optional[Dict[str, Any]]:
    issues = record.detected_issues or []
    critical = [i for i in issues if i.severity == "critical"]
    high = [i for i in issues if i.severity == "high"]
    important = critical + high
    if not important:
        return None
    return {
        "type": "issues",
        "repoName": analysis.repo_name,
        "filePath": record.path,
        "language": record.language,
        "content": (
            f"Issues found in {record.path}: "
            + "; ".join(f"{i.severity} {i.type} - {i.description}" for i in important)
            + "."
        )[:CONTENT_CHARS],
        "searchableText": (
            "issues problems bugs "
            + " ".join(f"{i.type} {i.severity}" for i in important)
            + f" {record.path}"
        ).lower(),
        "issuesCount": len(important),
        "criticalIssues": len(critical),
        "highIssues": len(high),
        "issueTypes": ",".join(i.type for i in important),
    }


def _language_metadata(
    analysis: AnalysisResult, language: str, count: int,
) -> Dict[str, Any]:
    files = [f for f in analysis.files if f.language == language]
    functions = [name for f in files for name in _named_functions(f)]
    classes = [c.name for f in files for c in f.classes]
    return {
        "type": "language_summary",
        "repoName": analysis.repo_name,
        "language": language,
        "content": (
            f"{language} files in repository: {count} files. "
            f"Functions: {', '.join(functions[:20])}. Classes: {', '.join(classes[:10])}."
        )[:CONTENT_CHARS],
        "searchableText": f"{language} programming {' '.join(functions)} {' '.join(classes)}".lower(),
        "totalFiles": count,
    }


def build_record_metadata(analysis: AnalysisResult) -> List[Tuple[str, Dict[str, Any]]]:
    """Ordered ``(id, metadata)`` pairs for every record of a repository."""
    repo = analysis.repo_name
    stats = language_stats(analysis.files)
    entries: List[Tuple[str, Dict[str, Any]]] = [
        (f"{repo}-overview", _overview_metadata(analysis, stats)),
    ]

    significant = [f for f in analysis.files if is_significant_file(f)][:MAX_FILE_RECORDS]
    for i, record in enumerate(significant):
        entries.append((f"{repo}-file-{i}", _file_metadata(analysis, record)))
        if record.priority in ("high", "critical"):
            entries.extend(_function_records(analysis, record, i))
            entries.extend(_class_records(analysis, record, i))
        issues = _issues_metadata(analysis, record)
        if issues is not None:
            entries.append((f"{repo}-issues-{i}", issues))

    for language, count in stats.items():
        entries.append((f"{repo}-lang-{language}", _language_metadata(analysis, language, count)))

    logger.info(
        "Built %d records (%d files, %d languages) for %s",
        len(entries), len(significant), len(stats), repo,
    )
    return entries


def repository_digest(analysis: AnalysisResult) -> str:
    """Short fixed-size text describing the whole repository."""
    languages = ", ".join(language_stats(analysis.files))
    lines = [f"Repository: {analysis.repo_name}", f"Languages: {languages}"]
    for record in analysis.files[:DIGEST_FILES]:
        lines.append(f"{record.path}: {record.description}")
    return "\n".join(lines)[:DIGEST_CHARS]


# ===================================================================
# Indexer
# ===================================================================

class RepositoryIndexer:
    """Write repository records into a :class:`VectorStore` and search them."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        store_settings: Optional[StoreSettings] = None,
        embedding_settings: Optional[EmbeddingSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.store_settings = store_settings or StoreSettings()
        self.embedding_settings = embedding_settings or EmbeddingSettings()
        self._sleep = sleep

    def namespace_exists(self, namespace: str) -> bool:
        stats = self.store.describe_stats(namespace)
        return stats.get("total_record_count", 0) > 0

    def create_text_records(self, analysis: AnalysisResult) -> List[TextRecord]:
        entries = build_record_metadata(analysis)
        if self.embedding_settings.per_record:
            texts = [f"{meta['content']}\n{meta['searchableText']}" for _, meta in entries]
            vectors = self.embedder.embed_many(texts)
        else:
            shared = self.embedder.embed_text(repository_digest(analysis))
            vectors = [shared] * len(entries)
        return [
            TextRecord(id=record_id, vector=vector, metadata=meta)
            for (record_id, meta), vector in zip(entries, vectors)
        ]

    def index_repository(self, analysis: AnalysisResult) -> str:
        """Upsert all records for *analysis*; returns the namespace written."""
        namespace = generate_namespace(analysis.repo_url, analysis.branch)
        records = self.create_text_records(analysis)

        size = max(1, self.store_settings.batch_size)
        total_batches = (len(records) + size - 1) // size
        for batch_index, start in enumerate(range(0, len(records), size)):
            batch = records[start:start + size]
            logger.info(
                "Storing batch %d/%d (%d records) in %s",
                batch_index + 1, total_batches, len(batch), namespace,
            )
            self.store.upsert(namespace, batch)
            if start + size < len(records):
                self._sleep(self.store_settings.batch_pause)

        logger.info("Stored %d records in namespace %s", len(records), namespace)
        return namespace

    def search(self, namespace: str, query: str, limit: int = 10) -> List[SearchHit]:
        vector = self.embedder.embed_text(query)
        hits: List[SearchHit] = []
        for match in self.store.query(namespace, vector, top_k=limit):
            meta = match["metadata"]
            content = meta.get("content")
            hits.append(SearchHit(
                id=match["id"],
                score=match["score"],
                type=meta.get("type", ""),
                file_path=meta.get("filePath", ""),
                language=meta.get("language", ""),
                description=meta.get("description", ""),
                lines_of_code=meta.get("linesOfCode", 0),
                functions=meta.get("functions", 0),
                classes=meta.get("classes", 0),
                content_preview=(
                    content[:PREVIEW_CHARS] + "..."
                    if isinstance(content, str) else "No content available"
                ),
            ))
        return hits
