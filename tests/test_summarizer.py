"""Tests for rule-based descriptions and rate-limited AI summaries."""

from vibeplan.config import SummarySettings
from vibeplan.errors import ProviderError, RateLimitError
from vibeplan.llm import LLMClient
from vibeplan.models import FileRecord, FunctionInfo, SummaryRequest, SummaryResult
from vibeplan.summarizer import (
    SummaryGenerator,
    apply_summaries,
    build_summary_prompt,
    generate_rule_based_summary,
)

from conftest import FakeProvider


def _record(path, functions=(), classes=0, exports=()):
    return FileRecord(
        path=path,
        language="typescript",
        functions=[FunctionInfo(name=n) for n in functions],
        exports=list(exports),
    )


def _requests(n):
    return [
        SummaryRequest(path=f"src/f{i}.ts", content="x", language="typescript",
                       record=_record(f"src/f{i}.ts"))
        for i in range(n)
    ]


class TestRuleBasedSummary:
    """Path-keyed one-line descriptions."""

    def test_config_first(self):
        assert generate_rule_based_summary(_record("src/config/app.ts", exports=["a", "b"])) == (
            "Configuration file defining 2 settings and options"
        )

    def test_react_component(self):
        summary = generate_rule_based_summary(_record("src/components/Card.tsx", ["render"], exports=["Card"]))
        assert summary == "React component: Card with 1 methods and 0 classes"

    def test_api_route_lists_methods(self):
        summary = generate_rule_based_summary(_record("src/api/users/route.ts", ["GET", "POST"]))
        assert summary == "API endpoint handling GET, POST requests with 2 handlers"

    def test_api_route_without_methods(self):
        summary = generate_rule_based_summary(_record("src/api/users/handler.ts", ["run"]))
        assert summary.startswith("API endpoint handling HTTP requests")

    def test_fallback_lists_counts(self):
        record = FileRecord(path="lib/x.py", language="python",
                            functions=[FunctionInfo(name="a"), FunctionInfo(name="b")])
        assert generate_rule_based_summary(record) == "Python module containing 2 functions"

    def test_fallback_empty(self):
        record = FileRecord(path="lib/x.py", language="python")
        assert generate_rule_based_summary(record) == (
            "Python file containing basic code structure and definitions"
        )

    def test_spec_file(self):
        summary = generate_rule_based_summary(_record("tests/a.spec.ts", ["t1", "t2"]))
        assert summary.startswith("Test suite with 2 test cases")


class TestPrompt:
    def test_truncates_content(self):
        request = SummaryRequest(path="src/a.ts", content="x" * 50, language="typescript",
                                 record=_record("src/a.ts"))
        prompt = build_summary_prompt(request, content_chars=10)
        assert "x" * 10 + "\n... (truncated)" in prompt
        assert "**File Path:** src/a.ts" in prompt


class TestSummaryGenerator:
    """Dispatch between the parallel and batched paths."""

    def test_empty_input_makes_no_calls(self):
        provider = FakeProvider()
        generator = SummaryGenerator(LLMClient(provider), SummarySettings())
        assert generator.generate_summaries([]) == []
        assert provider.calls == []

    def test_parallel_keeps_input_order(self):
        provider = FakeProvider()
        generator = SummaryGenerator(LLMClient(provider), SummarySettings())
        results = generator.generate_summaries(_requests(3))

        assert [r.path for r in results] == ["src/f0.ts", "src/f1.ts", "src/f2.ts"]
        assert all(r.generated for r in results)
        assert len(provider.calls) == 3
        assert provider.calls[0]["model"] == "llama-3.1-8b-instant"
        assert provider.calls[0]["max_tokens"] == 150

    def test_large_input_is_batched(self):
        settings = SummarySettings(concurrency=2, parallel_max_files=0,
                                   inter_call_delay=1.0, rate_limit_delay=20.0,
                                   rate_limit_cooldown=120.0)
        provider = FakeProvider(["one", RateLimitError("rate_limit"), "three", "four"])
        sleeps = []
        progress = []
        generator = SummaryGenerator(LLMClient(provider), settings, sleep=sleeps.append)

        results = generator.generate_summaries(
            _requests(4), on_progress=lambda done, total: progress.append((done, total)),
        )

        assert [r.generated for r in results] == [True, False, True, True]
        assert results[1].summary == ""
        assert "rate_limit" in results[1].error
        assert sleeps == [1.0, 120.0, 20.0, 1.0]
        assert progress == [(2, 4), (4, 4)]

    def test_provider_error_does_not_abort(self):
        settings = SummarySettings(parallel_max_files=0)
        provider = FakeProvider([ProviderError("boom"), "ok"])
        generator = SummaryGenerator(LLMClient(provider), settings, sleep=lambda s: None)
        results = generator.generate_summaries(_requests(2))
        assert [r.generated for r in results] == [False, True]

    def test_batch_size_respects_token_budget(self):
        settings = SummarySettings(concurrency=10, max_tokens_per_minute=1200,
                                   estimated_tokens_per_request=600)
        generator = SummaryGenerator(LLMClient(FakeProvider()), settings)
        assert generator.batch_size == 2
        assert generator.fits_parallel_budget(2)
        assert not generator.fits_parallel_budget(3)


class TestApplySummaries:
    def test_apply(self):
        records = [_record("a.ts"), _record("b.ts"), _record("c.ts")]
        for r in records:
            r.description = "rule"
        results = [
            SummaryResult(path="a.ts", summary="AI text", generated=True),
            SummaryResult(path="b.ts", summary="", generated=False, error="x"),
        ]
        updated = apply_summaries(records, results)
        assert updated[0].description == "AI text"
        assert updated[0].summary_type == "ai-generated"
        assert updated[1].description == "rule"
        assert updated[1].summary_type == "rule-based"
        assert updated[2] is records[2]
