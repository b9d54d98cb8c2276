"""Exception hierarchy shared by every pipeline stage."""

from __future__ import annotations

from typing import List


class VibePlanError(Exception):
    """Base class for all errors raised by vibeplan."""


class ConfigError(VibePlanError):
    """Configuration file could not be read or parsed."""


class RequestValidationError(VibePlanError):
    """One or more request fields violate their constraints.

    ``errors`` lists *every* violation, not just the first one.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid request")


class CollaboratorError(VibePlanError):
    """An external collaborator (git, vector store, provider) failed."""


class CloneError(CollaboratorError):
    """Repository could not be fetched."""


class VectorStoreError(CollaboratorError):
    """Vector store rejected or failed an operation."""


class ProviderError(CollaboratorError):
    """Transport-level failure talking to an LLM or embedding provider."""


class RateLimitError(ProviderError):
    """Provider signalled a rate limit (HTTP 429 or ``rate_limit`` error)."""


class GenerationError(VibePlanError):
    """Provider answered, but with empty or schema-invalid content."""


class PlanningError(VibePlanError):
    """Phase or plan generation produced no usable structured output."""

    public_message = "Failed to generate a plan for the requested phase"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)


class ServiceError(VibePlanError):
    """Generic boundary error; only ``public_message`` reaches the caller."""

    def __init__(self, public_message: str):
        self.public_message = public_message
        super().__init__(public_message)
