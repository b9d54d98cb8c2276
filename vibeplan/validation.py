"""Request models for the service boundary.

Validation reports every violated field at once; see :func:`validate_request`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import RequestValidationError

Level = Literal["low", "medium", "high"]
Category = Literal["bug_fix", "feature", "refactor", "improvement", "documentation"]
ContextType = Literal["specific", "improvement", "refactor", "debug", "feature"]

M = TypeVar("M", bound=BaseModel)


class IndexRequest(BaseModel):
    repo_url: str = Field(min_length=1)
    branch: str = Field(default="main", min_length=1)

    @field_validator("repo_url")
    @classmethod
    def _looks_like_repo(cls, value: str) -> str:
        value = value.strip()
        if "/" not in value:
            raise ValueError("must be a repository URL or path")
        return value


class SearchRequest(IndexRequest):
    query: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=100)


class PhaseRequest(BaseModel):
    namespace: str = Field(min_length=3, max_length=100)
    user_prompt: str = Field(min_length=5, max_length=1000)
    context_type: Optional[ContextType] = None


class PhasePayload(BaseModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=3, max_length=200)
    description: str = Field(min_length=10, max_length=2000)
    relevant_files: List[str] = Field(default_factory=list, alias="relevantFiles")
    dependencies: List[str] = Field(default_factory=list)
    estimated_complexity: Level = Field(alias="estimatedComplexity")
    priority: Level
    category: Category
    reasoning: str = Field(min_length=10, max_length=1000)

    model_config = {"populate_by_name": True}


class RelevantFileRef(BaseModel):
    path: str = Field(min_length=1)
    language: Optional[str] = None
    similarity: float = Field(ge=0.0, le=1.0)


class PlanRequest(BaseModel):
    namespace: str = Field(min_length=3, max_length=100)
    phase: PhasePayload
    top_relevant_files: List[RelevantFileRef] = Field(min_length=1, max_length=20)


def _format_errors(exc: ValidationError) -> List[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "request"
        messages.append(f"{location}: {error.get('msg', 'invalid value')}")
    return messages


def validate_request(model: Type[M], payload: Dict[str, Any]) -> M:
    """Build *model* from *payload* or raise with every violation listed."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(_format_errors(exc)) from exc
