"""End-to-end tests for the service facade over the sample repository."""

import json
import shutil
from unittest.mock import MagicMock

import pytest

from vibeplan.embeddings import HashEmbeddingModel
from vibeplan.errors import CloneError, RequestValidationError, ServiceError
from vibeplan.llm import LLMClient
from vibeplan.repository import RepositoryFetcher
from vibeplan.service import VibePlanService, enhanced_analysis_stats
from vibeplan.models import FileRecord, Issue, SummaryResult
from vibeplan.vector_store import VectorStore

from conftest import FakeProvider

REPO_URL = "https://github.com/acme/sample_repo"
NAMESPACE = "acme-sample_repo-main"
FIXTURE_FILES = {
    "README.md", "app/main.py", "package.json", "src/cycle/a.ts", "src/cycle/b.ts",
    "src/index.ts", "src/services/userService.ts", "src/utils/helper.ts",
}


@pytest.fixture
def fetcher(sample_repo_path, temp_dir):
    """Fetcher double that 'clones' the fixture into a scratch copy."""

    def _clone(repo_url, branch="main"):
        target = temp_dir / "clones" / "repo_0"
        if target.exists():
            shutil.rmtree(target)
        shutil.copytree(sample_repo_path, target)
        return target

    mock = MagicMock(spec=RepositoryFetcher)
    mock.clone.side_effect = _clone
    return mock


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def service(settings, temp_dir, fetcher, provider):
    settings.embeddings.dim = 64
    return VibePlanService(
        settings,
        store=VectorStore(temp_dir / "lancedb", index_name="svc"),
        embedder=HashEmbeddingModel(dim=64),
        llm=LLMClient(provider),
        fetcher=fetcher,
        sleep=lambda seconds: None,
    )


def _phase():
    return {
        "id": "phase-01",
        "title": "Fix user loading",
        "description": "Load users in parallel instead of one at a time",
        "relevantFiles": ["src/services/userService.ts"],
        "dependencies": [],
        "estimatedComplexity": "low",
        "priority": "high",
        "category": "bug_fix",
        "reasoning": "Sequential awaits make the page slow",
    }


class TestIndexRepository:
    """Clone, analyse, summarise and store."""

    def test_first_index_writes_records(self, service, fetcher):
        result = service.index_repository(REPO_URL)

        assert result.namespace == NAMESPACE
        assert result.cached is False
        assert service.indexer.namespace_exists(NAMESPACE)
        fetcher.cleanup.assert_called_once()

        stats = result.dependency_graph.stats()
        assert stats["totalFiles"] == 8
        assert stats["totalDependencies"] == 5
        assert set(stats["unresolved"]) == {"src/cycle/a.ts", "src/cycle/b.ts"}
        enhanced = result.stats["enhanced_analysis"]
        assert set(enhanced["priority_breakdown"]) == {"critical", "high", "medium", "low"}
        assert sum(enhanced["priority_breakdown"].values()) == 8
        assert enhanced["total_issues"] > 0

    def test_second_index_is_cached(self, service):
        service.index_repository(REPO_URL)
        before = service.store.describe_stats(NAMESPACE)["total_record_count"]

        result = service.index_repository(REPO_URL)

        assert result.cached is True
        assert "enhanced_analysis" not in result.stats
        assert result.dependency_graph.stats()["totalFiles"] == 8
        assert service.store.describe_stats(NAMESPACE)["total_record_count"] == before

    def test_summaries_can_be_disabled(self, service, provider):
        service.settings.summaries.enabled = False
        result = service.index_repository(REPO_URL)
        assert provider.calls == []
        assert result.stats["enhanced_analysis"]["ai_summaries_generated"] == 0

    def test_clone_failure_is_generic(self, service, fetcher):
        fetcher.clone.side_effect = CloneError("git exited with 128: secret-token in url")
        with pytest.raises(ServiceError) as exc_info:
            service.index_repository(REPO_URL)
        assert exc_info.value.public_message == "Failed to index repository"
        assert "secret" not in str(exc_info.value)

    def test_invalid_request_propagates(self, service, fetcher):
        with pytest.raises(RequestValidationError):
            service.index_repository("not-a-url", branch="")
        fetcher.clone.assert_not_called()

    def test_debug_artifact(self, service, settings):
        settings.workspace.write_debug_artifacts = True
        service.index_repository(REPO_URL)
        artifact = settings.home / "debug" / f"{NAMESPACE}-analysis.json"
        data = json.loads(artifact.read_text())
        assert data["repoName"] == "sample_repo"
        assert len(data["files"]) == 8


class TestSearchAndPlanning:
    def test_search_after_index(self, service):
        service.index_repository(REPO_URL)
        hits = service.search(REPO_URL, "UserService loadUsers", limit=5)
        assert 0 < len(hits) <= 5
        assert {"id", "score", "type", "filePath", "contentPreview"} <= set(hits[0])

    def test_search_validation(self, service):
        with pytest.raises(RequestValidationError):
            service.search(REPO_URL, "", limit=500)

    def test_generate_phases(self, service):
        service.index_repository(REPO_URL)
        result = service.generate_phases(NAMESPACE, "Fix the slow user loading bug")

        assert result["prompt_analysis"]["queryType"] == "debug"
        assert 1 <= result["total_phases"] <= 7
        assert result["total_phases"] == len(result["phases"])
        for phase in result["phases"]:
            assert set(phase["relevantFiles"]) <= FIXTURE_FILES

    def test_generate_phases_unknown_namespace(self, service):
        result = service.generate_phases("nobody-nothing-main", "Add a notification service")
        assert result["context_files_used"] == 0
        assert all(p["relevantFiles"] == [] for p in result["phases"])

    def test_preview_context(self, service):
        service.index_repository(REPO_URL)
        result = service.preview_context(NAMESPACE, "helper that formats names")
        for entry in result["context_summary"]["relevant_files"]:
            assert entry["content_preview"].endswith("...")
            assert len(entry["content_preview"]) <= 203

    def test_analyze_prompt(self, service):
        result = service.analyze_prompt("Refactor the entire checkout module")
        assert result["analysis"]["queryType"] == "refactor"

    def test_generate_plan(self, service, provider):
        provider.responses = [json.dumps({"plan": "# Plan", "instruction": "Do it"})]
        result = service.generate_plan(
            NAMESPACE, _phase(), [{"path": "src/services/userService.ts", "similarity": 0.9}],
        )
        assert result == {"plan": "# Plan", "instruction": "Do it"}

    def test_generate_plan_failure_is_generic(self, service, provider):
        provider.responses = ["definitely not json"]
        with pytest.raises(ServiceError) as exc_info:
            service.generate_plan(
                NAMESPACE, _phase(), [{"path": "src/services/userService.ts", "similarity": 0.9}],
            )
        assert exc_info.value.public_message == "Failed to generate a plan for the requested phase"

    def test_generate_plan_validation(self, service):
        with pytest.raises(RequestValidationError) as exc_info:
            service.generate_plan(NAMESPACE, _phase(), [])
        assert exc_info.value.errors[0].startswith("top_relevant_files")


class TestAnalyzeLocal:
    def test_graph_of_fixture(self, service, sample_repo_path):
        analysis, graph = service.analyze_local(sample_repo_path)
        paths = [f.path for f in analysis.files]
        assert not any(p.startswith("node_modules") for p in paths)
        assert all(f.priority for f in analysis.files)
        edges = {(e.source, e.target) for e in graph.edges}
        assert ("src/index.ts", "src/services/userService.ts") in edges
        assert ("src/services/userService.ts", "src/utils/helper.ts") in edges
        assert "src/index.ts" in graph.entry_points

    def test_unreadable_directory(self, service, temp_dir, monkeypatch):
        def denied(*args, **kwargs):
            raise PermissionError("permission denied")

        monkeypatch.setattr("vibeplan.service.analyze_repository", denied)
        with pytest.raises(ServiceError, match="Failed to analyze directory"):
            service.analyze_local(temp_dir)


class TestEnhancedStats:
    def test_counts(self):
        files = [
            FileRecord(path="a.ts", language="typescript", priority="critical", semantic_tags={"auth"},
                       detected_issues=[Issue(type="hardcoded_secret", severity="critical",
                                              description="x", category="security")],
                       needs_ai_summary=True),
            FileRecord(path="b.ts", language="typescript", priority="low", semantic_tags={"auth", "api"}),
        ]
        summaries = [
            SummaryResult(path="a.ts", summary="s", generated=True),
            SummaryResult(path="c.ts", summary="", generated=False),
        ]
        stats = enhanced_analysis_stats(files, summaries)
        assert stats["priority_breakdown"] == {"critical": 1, "high": 0, "medium": 0, "low": 1}
        assert stats["files_needing_ai_summary"] == 1
        assert stats["ai_summaries_generated"] == 1
        assert stats["ai_summaries_failed"] == 1
        assert stats["issues_by_severity"]["critical"] == 1
        assert stats["top_tags"][0] == "auth"
