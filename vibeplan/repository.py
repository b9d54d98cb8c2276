"""Fetch repositories with git and walk them into an :class:`AnalysisResult`."""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from .config import WorkspaceSettings
from .errors import CloneError
from .models import AnalysisResult, AnalysisStats, FileRecord
from .parser import (
    PARSE_FAILURE_DESCRIPTION,
    READ_FAILURE_DESCRIPTION,
    SourceAnalyzer,
    language_for_path,
)

logger = logging.getLogger(__name__)


SKIP_DIRS = [
    "node_modules", "dist", "build", ".git", ".next", "coverage", ".nuxt", "vendor",
    "__pycache__", ".pytest_cache", ".vscode", ".idea", "target", "bin", "obj",
    ".gradle", ".cache", ".expo", ".turbo", ".parcel-cache",
]
INCLUDE_EXTENSIONS = [
    ".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs", ".py", ".java", ".go", ".rb", ".php",
    ".cpp", ".c", ".cs", ".swift", ".kt", ".rs", ".dart", ".scala", ".html", ".css",
    ".scss", ".json", ".yaml", ".yml", ".md",
]


class RepositoryFetcher:
    """Shallow single-branch clones into a scratch directory."""

    def __init__(self, workdir: Path, settings: Optional[WorkspaceSettings] = None) -> None:
        self.workdir = Path(workdir)
        self.settings = settings or WorkspaceSettings()

    def clone(self, repo_url: str, branch: str = "main") -> Path:
        self.workdir.mkdir(parents=True, exist_ok=True)
        target = Path(tempfile.mkdtemp(prefix="repo_", dir=str(self.workdir)))
        cmd = [
            "git", "clone", "--depth", "1", "--branch", branch, "--single-branch",
            repo_url, str(target),
        ]
        logger.info("Cloning %s (branch %s)", repo_url, branch)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.settings.clone_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            self._remove(target)
            raise CloneError(f"git clone of {repo_url} failed: {exc}") from exc

        if result.returncode != 0:
            self._remove(target)
            raise CloneError(
                f"git clone of {repo_url} exited with {result.returncode}: {result.stderr.strip()[:300]}"
            )
        return target

    def cleanup(self, path: Path) -> None:
        if self.settings.keep_clones:
            logger.debug("Keeping clone at %s", path)
            return
        self._remove(path)

    @staticmethod
    def _remove(path: Path) -> None:
        shutil.rmtree(path, ignore_errors=True)


def walk_repository(root: Path) -> Iterator[Path]:
    """Included files under *root*, sorted per directory, skipping build dirs.

    Symbolic links are never followed, so the walk stays inside the checkout.
    """
    skip = set(SKIP_DIRS)
    include = set(INCLUDE_EXTENSIONS)
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if entry.is_symlink():
            logger.debug("Skipping symlink %s", entry)
            continue
        if entry.is_dir():
            if entry.name in skip:
                continue
            yield from walk_repository(entry)
        elif entry.is_file() and entry.suffix.lower() in include:
            yield entry


def repo_name_from_url(repo_url: str) -> str:
    name = repo_url.strip().rstrip("/").split("/")[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name or "unknown"


def analyze_repository(
    root: Path,
    repo_url: str,
    branch: str,
    analyzer: Optional[SourceAnalyzer] = None,
) -> AnalysisResult:
    """Analyse every included file under *root* into base :class:`FileRecord` s."""
    analyzer = analyzer or SourceAnalyzer()
    paths = list(walk_repository(root))
    code_paths = [p for p in paths if analyzer.is_code_file(p.name)]

    files: List[FileRecord] = []
    analyzed = 0
    for full_path in paths:
        rel = full_path.relative_to(root).as_posix()
        stat = full_path.stat()
        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
        try:
            text = full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s: %s", rel, exc)
            files.append(FileRecord(
                path=rel,
                language=language_for_path(rel),
                size_bytes=stat.st_size,
                last_modified=modified,
                description=READ_FAILURE_DESCRIPTION,
            ))
            continue

        record = analyzer.analyze(rel, text, size_bytes=stat.st_size, last_modified=modified)
        if analyzer.is_code_file(rel) and record.description != PARSE_FAILURE_DESCRIPTION:
            analyzed += 1
        logger.debug("Analyzed %s (%s, %d lines)", rel, record.language, record.lines_of_code)
        files.append(record)

    stats = AnalysisStats(
        total_files=len(paths),
        code_files=len(code_paths),
        analyzed_files=analyzed,
        skipped_dirs=list(SKIP_DIRS),
        included_extensions=list(INCLUDE_EXTENSIONS),
    )
    logger.info(
        "Analyzed %d files (%d code, %d parsed) under %s",
        stats.total_files, stats.code_files, stats.analyzed_files, root,
    )
    trimmed_url = repo_url[:-4] if repo_url.endswith(".git") else repo_url
    return AnalysisResult(
        repo_name=repo_name_from_url(repo_url),
        repo_url=trimmed_url,
        branch=branch,
        stats=stats,
        files=files,
    )
