"""Tests for prompt analysis and atomic phase generation."""

import json

import pytest

from vibeplan.config import PlannerSettings
from vibeplan.errors import GenerationError, PlanningError, ProviderError
from vibeplan.llm import LLMClient
from vibeplan.models import RelevantContext
from vibeplan.planner import (
    MAX_PHASES,
    PhasePlanner,
    analyze_prompt,
    normalize_phases,
    summarize_context,
)
from vibeplan.prompts import PHASES_RESPONSE_SCHEMA

from conftest import FakeProvider


def assert_phase_contract(phases, context):
    allowed = {f.path for f in context.files}
    assert 1 <= len(phases) <= MAX_PHASES
    assert [p.id for p in phases] == [f"phase-{i + 1:02d}" for i in range(len(phases))]
    seen = set()
    for phase in phases:
        assert set(phase.relevant_files) <= allowed
        assert set(phase.dependencies) <= seen
        seen.add(phase.id)


class TestAnalyzePrompt:
    """Rule-based prompt classification."""

    def test_debug_prompt(self):
        analysis = analyze_prompt("Fix the login bug in the auth form")
        assert analysis.query_type == "debug"
        assert analysis.keywords == ["auth", "login", "form", "bug"]
        assert analysis.target_areas == ["auth", "login", "form", "bug", "authentication"]
        assert analysis.complexity == "medium"
        assert analysis.intent == "Identify and fix bugs or errors: Fix the login bug in the auth form"

    def test_feature_prompt(self):
        analysis = analyze_prompt("Add a simple notification service")
        assert analysis.query_type == "feature"
        assert analysis.complexity == "low"
        assert "backend services" in analysis.target_areas

    def test_refactor_prompt(self):
        analysis = analyze_prompt("Refactor the entire checkout module")
        assert analysis.query_type == "refactor"
        assert analysis.complexity == "high"

    def test_specific_prompt(self):
        assert analyze_prompt("make the login page faster").query_type == "specific"

    def test_improvement_default(self):
        analysis = analyze_prompt("tidy things up")
        assert analysis.query_type == "improvement"
        assert analysis.keywords == []
        assert analysis.target_areas == []

    def test_to_dict_keys(self):
        assert set(analyze_prompt("fix it").to_dict()) == {
            "queryType", "intent", "targetAreas", "complexity", "keywords",
        }


class TestSummarizeContext:
    def test_summary(self, sample_context):
        summary = summarize_context(sample_context)
        assert summary["total_files_found"] == 5
        assert summary["languages_found"] == ["typescript"]
        assert summary["file_types"] == ["ts", "tsx"]
        assert summary["top_relevant_files"][0] == {
            "path": "src/services/userService.ts", "language": "typescript", "similarity": 0.82,
        }


class TestRuleBasedPhases:
    """Deterministic templates honour the phase contract."""

    @pytest.mark.parametrize("prompt", [
        "Fix the login bug in the auth form",
        "Add a notification service with a dashboard component",
        "Refactor the entire checkout module",
        "make the login page faster",
        "tidy things up",
    ])
    def test_contract(self, prompt, sample_context):
        phases = PhasePlanner().generate_atomic_phases(prompt, sample_context)
        assert_phase_contract(phases, sample_context)

    @pytest.mark.parametrize("prompt", [
        "Fix the login bug", "Add payments", "Refactor everything", "make login nicer", "tidy up",
    ])
    def test_empty_context_has_no_files(self, prompt):
        phases = PhasePlanner().generate_atomic_phases(prompt, RelevantContext())
        assert phases
        assert all(p.relevant_files == [] for p in phases)

    def test_debug_phases(self, sample_context):
        phases = PhasePlanner().generate_atomic_phases("Fix the login bug in the auth form", sample_context)
        assert [p.title for p in phases] == [
            "Fix auth bug",
            "Harden auth error handling",
            "Add regression tests for auth fix",
        ]
        assert phases[0].category == "bug_fix"
        assert phases[1].relevant_files == ["src/middleware/errorHandler.ts"]
        assert phases[2].relevant_files == ["tests/userService.test.ts"]
        assert phases[2].dependencies == ["phase-01"]

    def test_feature_phases_split_backend_and_ui(self, sample_context):
        phases = PhasePlanner().generate_atomic_phases(
            "Add a notification service with a dashboard component", sample_context,
        )
        assert len(phases) == 3
        assert "src/components/UserCard.tsx" in phases[1].relevant_files
        assert phases[2].dependencies == ["phase-01", "phase-02"]

    def test_refactor_targets_complex_files(self, sample_context):
        phases = PhasePlanner().generate_atomic_phases("Refactor the checkout module", sample_context)
        assert phases[0].relevant_files[0] == "src/services/userService.ts"
        assert phases[0].category == "refactor"

    def test_cap_drops_dangling_dependencies(self, sample_context):
        planner = PhasePlanner(PlannerSettings(max_phases=2))
        phases = planner.generate_atomic_phases("Fix the login bug in the auth form", sample_context)
        assert len(phases) == 2
        assert_phase_contract(phases, sample_context)


class TestNormalizePhases:
    """Provider output is validated and renumbered."""

    def test_normalize(self):
        raw = {"phases": [
            {"id": "a", "title": "T1", "description": "d", "relevantFiles": ["x.ts", "bogus.ts", "x.ts"],
             "dependencies": ["b"], "estimatedComplexity": "huge", "priority": "high",
             "category": "cleanup"},
            {"id": "b", "title": "T2", "description": "d", "dependencies": ["a", "b"]},
            {"title": "no id"},
            "junk",
        ]}
        phases = normalize_phases(raw, ["x.ts"])
        assert [p.id for p in phases] == ["phase-01", "phase-02"]
        assert phases[0].relevant_files == ["x.ts"]
        assert phases[0].dependencies == []
        assert phases[0].estimated_complexity == "medium"
        assert phases[0].priority == "high"
        assert phases[0].category == "improvement"
        assert phases[1].dependencies == ["phase-01"]

    def test_limit(self):
        raw = [{"id": str(i), "title": "t", "description": "d"} for i in range(10)]
        assert len(normalize_phases(raw, [], limit=7)) == 7

    def test_no_usable_phases(self):
        with pytest.raises(GenerationError):
            normalize_phases({"phases": []}, [])
        with pytest.raises(GenerationError):
            normalize_phases({"steps": []}, [])


class TestLLMStrategy:
    """Schema-constrained generation with rule fallback."""

    def _payload(self):
        return json.dumps({"phases": [
            {"id": "phase-1", "title": "Patch login", "description": "Fix the login handler",
             "relevantFiles": ["src/services/userService.ts", "src/made/up.ts"],
             "dependencies": [], "estimatedComplexity": "low", "priority": "high",
             "category": "bug_fix", "reasoning": "Because it is broken"},
            {"id": "phase-2", "title": "Test login", "description": "Add tests",
             "relevantFiles": ["tests/userService.test.ts"], "dependencies": ["phase-1"],
             "estimatedComplexity": "low", "priority": "medium", "category": "improvement",
             "reasoning": "Prevent regressions"},
        ]})

    def test_llm_phases(self, sample_context):
        provider = FakeProvider([self._payload()])
        planner = PhasePlanner(PlannerSettings(strategy="llm"), LLMClient(provider))
        phases = planner.generate_atomic_phases("Fix the login bug", sample_context)

        assert [p.title for p in phases] == ["Patch login", "Test login"]
        assert phases[0].relevant_files == ["src/services/userService.ts"]
        assert phases[1].dependencies == ["phase-01"]
        assert provider.calls[0]["response_schema"] == PHASES_RESPONSE_SCHEMA
        assert "src/services/userService.ts" in provider.calls[0]["messages"][1]["content"]

    def test_strategy_override(self, sample_context):
        provider = FakeProvider([self._payload()])
        planner = PhasePlanner(PlannerSettings(strategy="rules"), LLMClient(provider))
        phases = planner.generate_atomic_phases("Fix the login bug", sample_context, strategy="llm")
        assert phases[0].title == "Patch login"

    def test_falls_back_to_rules(self, sample_context):
        provider = FakeProvider([ProviderError("down")])
        planner = PhasePlanner(PlannerSettings(strategy="llm"), LLMClient(provider))
        phases = planner.generate_atomic_phases("Fix the login bug", sample_context)
        assert phases[0].title == "Fix login bug"

    def test_invalid_json_falls_back(self, sample_context):
        provider = FakeProvider(["not json at all"])
        planner = PhasePlanner(PlannerSettings(strategy="llm"), LLMClient(provider))
        assert planner.generate_atomic_phases("Fix the login bug", sample_context)

    def test_no_fallback_raises(self, sample_context):
        provider = FakeProvider([ProviderError("down")])
        planner = PhasePlanner(
            PlannerSettings(strategy="llm", fallback_to_rules=False), LLMClient(provider),
        )
        with pytest.raises(PlanningError):
            planner.generate_atomic_phases("Fix the login bug", sample_context)

    def test_no_llm_configured(self, sample_context):
        planner = PhasePlanner(PlannerSettings(strategy="llm"))
        assert planner.generate_atomic_phases("Fix the login bug", sample_context)
