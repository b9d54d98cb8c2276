"""Text-completion providers (Groq, OpenAI-compatible, Ollama) behind one client."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

import requests

from .config import LLMSettings
from .errors import GenerationError, ProviderError, RateLimitError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class LLMProvider:
    """Base class for LLM providers."""

    def __init__(self, model: str, endpoint: str, api_key: str = "", timeout: float = 60.0):
        self.model = model
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        response_schema: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
    ) -> str:
        raise NotImplementedError

    def _post(self, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = requests.post(
                self.endpoint, headers=headers, json=payload, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"{type(self).__name__} request failed: {exc}") from exc

        if response.status_code == 429 or (
            response.status_code >= 400 and "rate_limit" in response.text[:2000]
        ):
            raise RateLimitError(
                f"{type(self).__name__} rate limited (HTTP {response.status_code}): rate_limit"
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"{type(self).__name__} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GenerationError(f"{type(self).__name__} returned non-JSON body") from exc


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions API shared by OpenAI, Groq and OpenRouter."""

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        response_schema: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
    ) -> str:
        if not self.api_key:
            raise ProviderError(f"No API key configured for {type(self).__name__}")

        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": response_schema.get("title", "response"),
                    "schema": response_schema,
                },
            }

        parsed = self._post(payload, {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        })
        try:
            return parsed["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationError("Malformed chat completion response") from exc


class GroqProvider(OpenAICompatibleProvider):
    """Groq cloud API provider."""


class OpenAIProvider(OpenAICompatibleProvider):
    """OpenAI API provider (also works with other OpenAI-compatible APIs)."""


class OllamaProvider(LLMProvider):
    """Ollama local LLM provider using ``/api/chat``."""

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        response_schema: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if response_schema is not None:
            payload["format"] = response_schema
        parsed = self._post(payload, {"Content-Type": "application/json"})
        message = parsed.get("message") or {}
        return message.get("content") or ""


PROVIDERS = {
    "groq": GroqProvider,
    "openai": OpenAIProvider,
    "openrouter": OpenAIProvider,
    "ollama": OllamaProvider,
}


def create_provider(settings: LLMSettings) -> LLMProvider:
    provider_cls = PROVIDERS.get(settings.provider.lower())
    if provider_cls is None:
        logger.warning("Unknown LLM provider '%s', using groq", settings.provider)
        provider_cls = GroqProvider
    return provider_cls(
        model=settings.resolved_model(),
        endpoint=settings.resolved_endpoint(),
        api_key=settings.api_key,
        timeout=settings.timeout,
    )


def parse_json_response(text: str) -> Any:
    """Parse a JSON completion, tolerating a surrounding markdown code fence."""
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    if not cleaned:
        raise GenerationError("Empty JSON completion")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise GenerationError(f"Completion is not valid JSON: {exc}") from exc


class LLMClient:
    """Single entry point for text completions.

    ``complete`` never returns empty text: an empty answer is a
    :class:`GenerationError` so callers can treat it like any other failure.
    """

    def __init__(self, provider: LLMProvider):
        self.provider = provider

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> "LLMClient":
        return cls(create_provider(settings))

    @property
    def model(self) -> str:
        return self.provider.model

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        response_schema: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
    ) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        text = self.provider.complete(
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            response_schema=response_schema,
            model=model,
        )
        if not text or not text.strip():
            raise GenerationError("No content received from LLM")
        return text.strip()

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        response_schema: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
    ) -> Any:
        text = self.complete(
            system_prompt,
            user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            response_schema=response_schema,
            model=model,
        )
        return parse_json_response(text)
