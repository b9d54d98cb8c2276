"""Pytest configuration and fixtures for vibeplan tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest

from vibeplan.config import Settings
from vibeplan.embeddings import HashEmbeddingModel
from vibeplan.llm import LLMClient, LLMProvider
from vibeplan.models import ContextFile, RelevantContext
from vibeplan.vector_store import VectorStore


class FakeProvider(LLMProvider):
    """Provider returning canned responses and recording every call."""

    def __init__(self, responses: Optional[List[Any]] = None):
        super().__init__(model="fake-model", endpoint="http://fake")
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def complete(self, messages, temperature, max_tokens, response_schema=None, model=None):
        self.calls.append({
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_schema": response_schema,
            "model": model,
        })
        if not self.responses:
            return "Mock response for testing."
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_repo_path() -> Path:
    """Path to the sample repository fixture."""
    return Path(__file__).parent / "fixtures" / "sample_repo"


@pytest.fixture
def settings(temp_dir: Path) -> Settings:
    """Settings rooted in a temporary home with no delays."""
    s = Settings(home=temp_dir / "home")
    s.summaries.rate_limit_delay = 0
    s.summaries.inter_call_delay = 0
    s.summaries.rate_limit_cooldown = 0
    s.store.batch_pause = 0
    s.store.ready_attempts = 2
    s.store.ready_interval = 0
    return s


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fake_llm(fake_provider: FakeProvider) -> LLMClient:
    return LLMClient(fake_provider)


@pytest.fixture
def embedder() -> HashEmbeddingModel:
    return HashEmbeddingModel(dim=64)


@pytest.fixture
def store(temp_dir: Path) -> VectorStore:
    """Real LanceDB store in a temporary directory."""
    return VectorStore(temp_dir / "lancedb", index_name="test-index")


@pytest.fixture
def mock_store() -> MagicMock:
    """Store double; ``query`` returns no matches unless configured."""
    mock = MagicMock(spec=VectorStore)
    mock.query.return_value = []
    mock.describe_stats.return_value = {"total_record_count": 0}
    return mock


@pytest.fixture
def sample_context() -> RelevantContext:
    files = [
        ContextFile(
            path="src/services/userService.ts",
            content="File: src/services/userService.ts",
            similarity=0.82,
            language="typescript",
            description="Service layer providing 2 business operations",
            metadata={"complexityScore": 14, "hasIssues": True},
        ),
        ContextFile(
            path="src/api/users/route.ts",
            content="File: src/api/users/route.ts",
            similarity=0.71,
            language="typescript",
            description="API endpoint handling GET requests",
            metadata={"complexityScore": 6, "hasIssues": False},
        ),
        ContextFile(
            path="src/components/UserCard.tsx",
            content="File: src/components/UserCard.tsx",
            similarity=0.64,
            language="typescript",
            description="React component: UserCard",
            metadata={"complexityScore": 4, "hasIssues": False},
        ),
        ContextFile(
            path="src/middleware/errorHandler.ts",
            content="File: src/middleware/errorHandler.ts",
            similarity=0.52,
            language="typescript",
            description="Middleware module",
            metadata={"complexityScore": 3, "hasIssues": False},
        ),
        ContextFile(
            path="tests/userService.test.ts",
            content="File: tests/userService.test.ts",
            similarity=0.41,
            language="typescript",
            description="Test suite",
            metadata={"complexityScore": 2, "hasIssues": False},
        ),
    ]
    return RelevantContext(files=files, total_files_found=len(files))


@pytest.fixture
def make_match():
    """Factory for store-shaped query matches of file records."""

    def _make(path: str, score: float, **meta: Any) -> Dict[str, Any]:
        metadata = {"type": "file", "filePath": path, "content": f"File: {path}"}
        metadata.update(meta)
        return {"id": path, "score": score, "metadata": metadata}

    return _make
