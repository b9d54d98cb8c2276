"""Core data models shared by analysis, indexing, retrieval and planning."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

ISSUE_TYPES = ("security", "performance", "maintainability", "best-practice")
SEVERITIES = ("low", "medium", "high", "critical")
SUMMARY_TYPES = ("rule-based", "ai-generated", "pending")
RECORD_TYPES = ("repository_overview", "file", "function", "class", "issues", "language_summary")
QUERY_TYPES = ("specific", "improvement", "refactor", "debug", "feature")
PHASE_LEVELS = ("low", "medium", "high")
PHASE_CATEGORIES = ("bug_fix", "feature", "refactor", "improvement", "documentation")


# ===================================================================
# Analysis
# ===================================================================

@dataclass
class FunctionInfo:
    name: str
    parameters: List[str] = field(default_factory=list)
    return_type: str = "unknown"
    is_async: bool = False
    is_exported: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "parameters": list(self.parameters),
            "returnType": self.return_type,
            "isAsync": self.is_async,
            "isExported": self.is_exported,
        }


@dataclass
class ClassInfo:
    name: str
    methods: List[str] = field(default_factory=list)
    properties: List[str] = field(default_factory=list)
    is_exported: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "methods": list(self.methods),
            "properties": list(self.properties),
            "isExported": self.is_exported,
        }


@dataclass
class Issue:
    type: str
    severity: str
    description: str
    category: str
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "severity": self.severity,
            "description": self.description,
            "category": self.category,
        }
        if self.line is not None:
            data["line"] = self.line
        return data


@dataclass
class FileRecord:
    """One analysed source file.

    The derived fields stay ``None`` for lightweight (cached) runs and are
    filled by :func:`vibeplan.scoring.enrich_file`, which returns a new record.
    """

    path: str
    language: str
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    functions: List[FunctionInfo] = field(default_factory=list)
    classes: List[ClassInfo] = field(default_factory=list)
    variables: List[str] = field(default_factory=list)
    lines_of_code: int = 0
    size_bytes: int = 0
    last_modified: str = ""
    description: str = ""
    content: str = ""
    complexity_score: Optional[float] = None
    detected_issues: Optional[List[Issue]] = None
    semantic_tags: Optional[Set[str]] = None
    priority: Optional[str] = None
    needs_ai_summary: Optional[bool] = None
    summary_type: Optional[str] = None

    @property
    def is_enriched(self) -> bool:
        return self.complexity_score is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "path": self.path,
            "language": self.language,
            "imports": list(self.imports),
            "exports": list(self.exports),
            "functions": [f.to_dict() for f in self.functions],
            "classes": [c.to_dict() for c in self.classes],
            "variables": list(self.variables),
            "linesOfCode": self.lines_of_code,
            "sizeBytes": self.size_bytes,
            "lastModified": self.last_modified,
            "description": self.description,
        }
        if self.is_enriched:
            data.update({
                "complexityScore": self.complexity_score,
                "detectedIssues": [i.to_dict() for i in self.detected_issues or []],
                "semanticTags": sorted(self.semantic_tags or []),
                "priority": self.priority,
                "needsAiSummary": self.needs_ai_summary,
                "summaryType": self.summary_type,
            })
        return data


@dataclass
class AnalysisStats:
    total_files: int = 0
    code_files: int = 0
    analyzed_files: int = 0
    skipped_dirs: List[str] = field(default_factory=list)
    included_extensions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "codeFiles": self.code_files,
            "analyzedFiles": self.analyzed_files,
            "skippedDirs": list(self.skipped_dirs),
            "includedExtensions": list(self.included_extensions),
        }


@dataclass
class AnalysisResult:
    repo_name: str
    repo_url: str
    branch: str
    stats: AnalysisStats
    files: List[FileRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repoName": self.repo_name,
            "repoUrl": self.repo_url,
            "branch": self.branch,
            "stats": self.stats.to_dict(),
            "files": [f.to_dict() for f in self.files],
        }


# ===================================================================
# Dependency graph
# ===================================================================

@dataclass
class GraphNode:
    id: str
    label: str
    x: float = 0.0
    y: float = 0.0
    kind: str = "file"
    language: Optional[str] = None
    function_count: int = 0
    class_count: int = 0
    lines: int = 0
    file_type: str = "file"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "label": self.label,
            "functionCount": self.function_count,
            "classCount": self.class_count,
            "lines": self.lines,
            "fileType": self.file_type,
        }
        if self.language:
            data["language"] = self.language
        return {
            "id": self.id,
            "type": self.kind,
            "position": {"x": self.x, "y": self.y},
            "data": data,
        }


@dataclass
class GraphEdge:
    source: str
    target: str

    @property
    def id(self) -> str:
        return f"{self.source}->{self.target}"

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "source": self.source, "target": self.target}


@dataclass
class DependencyGraph:
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)
    languages: Set[str] = field(default_factory=set)
    entry_points: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)

    def stats(self) -> Dict[str, Any]:
        return {
            "totalFiles": len(self.nodes),
            "totalDependencies": len(self.edges),
            "languages": sorted(self.languages),
            "entryPoints": list(self.entry_points),
            "unresolved": list(self.unresolved),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "stats": self.stats(),
        }


# ===================================================================
# Indexing / retrieval
# ===================================================================

@dataclass
class TextRecord:
    id: str
    vector: List[float]
    metadata: Dict[str, Any]

    @property
    def type(self) -> str:
        return self.metadata.get("type", "")


@dataclass
class SearchHit:
    id: str
    score: float
    type: str
    file_path: str
    language: str
    description: str
    lines_of_code: int
    functions: int
    classes: int
    content_preview: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "score": self.score,
            "type": self.type,
            "filePath": self.file_path,
            "language": self.language,
            "description": self.description,
            "linesOfCode": self.lines_of_code,
            "functions": self.functions,
            "classes": self.classes,
            "contentPreview": self.content_preview,
        }


@dataclass
class ContextFile:
    path: str
    content: str
    similarity: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    language: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "similarity": self.similarity,
            "language": self.language,
            "description": self.description,
            "metadata": dict(self.metadata),
        }


@dataclass
class RelevantContext:
    files: List[ContextFile] = field(default_factory=list)
    total_files_found: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [f.to_dict() for f in self.files],
            "total_files_found": self.total_files_found,
        }


# ===================================================================
# Summaries
# ===================================================================

@dataclass
class SummaryRequest:
    path: str
    content: str
    language: str
    record: FileRecord


@dataclass
class SummaryResult:
    path: str
    summary: str
    generated: bool
    error: Optional[str] = None


# ===================================================================
# Planning
# ===================================================================

@dataclass
class PromptAnalysis:
    query_type: str
    intent: str
    target_areas: List[str] = field(default_factory=list)
    complexity: str = "medium"
    keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queryType": self.query_type,
            "intent": self.intent,
            "targetAreas": list(self.target_areas),
            "complexity": self.complexity,
            "keywords": list(self.keywords),
        }


@dataclass
class Phase:
    id: str
    title: str
    description: str
    relevant_files: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    estimated_complexity: str = "medium"
    priority: str = "medium"
    category: str = "improvement"
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "relevantFiles": list(self.relevant_files),
            "dependencies": list(self.dependencies),
            "estimatedComplexity": self.estimated_complexity,
            "priority": self.priority,
            "category": self.category,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Phase":
        return cls(
            id=str(data["id"]),
            title=str(data["title"]),
            description=str(data["description"]),
            relevant_files=[str(p) for p in data.get("relevantFiles", [])],
            dependencies=[str(d) for d in data.get("dependencies", [])],
            estimated_complexity=data.get("estimatedComplexity", "medium"),
            priority=data.get("priority", "medium"),
            category=data.get("category", "improvement"),
            reasoning=str(data.get("reasoning", "")),
        )


@dataclass
class DetailedPlan:
    plan: str
    instruction: str

    def to_dict(self) -> Dict[str, str]:
        return {"plan": self.plan, "instruction": self.instruction}


@dataclass
class IndexingResult:
    namespace: str
    dependency_graph: DependencyGraph
    cached: bool
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "dependencyGraph": self.dependency_graph.to_dict(),
            "cached": self.cached,
            "stats": self.stats,
        }
