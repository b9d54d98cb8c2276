"""Tests for the LLM providers and client."""

from unittest.mock import MagicMock

import pytest
import requests

from vibeplan.config import LLMSettings
from vibeplan.errors import GenerationError, ProviderError, RateLimitError
from vibeplan.llm import (
    GroqProvider,
    LLMClient,
    OllamaProvider,
    OpenAIProvider,
    create_provider,
    parse_json_response,
)

from conftest import FakeProvider


def _response(status=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class TestCreateProvider:
    def test_known_providers(self):
        assert isinstance(create_provider(LLMSettings(provider="groq")), GroqProvider)
        ollama = create_provider(LLMSettings(provider="ollama"))
        assert isinstance(ollama, OllamaProvider)
        assert ollama.endpoint.endswith("/api/chat")

    def test_openrouter_uses_its_own_endpoint(self):
        provider = create_provider(LLMSettings(provider="openrouter", api_key="k"))
        assert isinstance(provider, OpenAIProvider)
        assert "openrouter.ai" in provider.endpoint

    def test_unknown_provider_falls_back_to_groq(self):
        assert isinstance(create_provider(LLMSettings(provider="mystery")), GroqProvider)


class TestOpenAICompatibleProvider:
    def _provider(self):
        return GroqProvider(model="m", endpoint="http://llm", api_key="k")

    def test_payload_and_content(self, monkeypatch):
        captured = {}

        def fake_post(url, headers, json, timeout):
            captured.update(json)
            captured["auth"] = headers["Authorization"]
            return _response(payload={"choices": [{"message": {"content": "hello"}}]})

        monkeypatch.setattr("vibeplan.llm.requests.post", fake_post)
        text = self._provider().complete(
            [{"role": "user", "content": "hi"}], 0.2, 50, response_schema={"title": "phases"},
        )
        assert text == "hello"
        assert captured["auth"] == "Bearer k"
        assert captured["max_tokens"] == 50
        assert captured["response_format"]["json_schema"]["name"] == "phases"

    def test_missing_key(self):
        with pytest.raises(ProviderError):
            GroqProvider(model="m", endpoint="http://llm").complete([], 0.2, 10)

    def test_rate_limit(self, monkeypatch):
        monkeypatch.setattr("vibeplan.llm.requests.post", lambda *a, **k: _response(status=429))
        with pytest.raises(RateLimitError):
            self._provider().complete([], 0.2, 10)

    def test_rate_limit_in_error_body(self, monkeypatch):
        monkeypatch.setattr(
            "vibeplan.llm.requests.post",
            lambda *a, **k: _response(status=400, text='{"error": {"code": "rate_limit_exceeded"}}'),
        )
        with pytest.raises(RateLimitError):
            self._provider().complete([], 0.2, 10)

    def test_http_error(self, monkeypatch):
        monkeypatch.setattr("vibeplan.llm.requests.post", lambda *a, **k: _response(status=500, text="oops"))
        with pytest.raises(ProviderError, match="HTTP 500"):
            self._provider().complete([], 0.2, 10)

    def test_transport_error(self, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.Timeout("slow")

        monkeypatch.setattr("vibeplan.llm.requests.post", boom)
        with pytest.raises(ProviderError):
            self._provider().complete([], 0.2, 10)

    def test_malformed_body(self, monkeypatch):
        monkeypatch.setattr("vibeplan.llm.requests.post", lambda *a, **k: _response(payload={"choices": []}))
        with pytest.raises(GenerationError):
            self._provider().complete([], 0.2, 10)


class TestOllamaProvider:
    def test_payload(self, monkeypatch):
        captured = {}

        def fake_post(url, headers, json, timeout):
            captured.update(json)
            return _response(payload={"message": {"content": "local"}})

        monkeypatch.setattr("vibeplan.llm.requests.post", fake_post)
        provider = OllamaProvider(model="qwen", endpoint="http://ollama/api/chat")
        assert provider.complete([], 0.1, 20, response_schema={"type": "object"}) == "local"
        assert captured["stream"] is False
        assert captured["options"] == {"temperature": 0.1, "num_predict": 20}
        assert captured["format"] == {"type": "object"}


class TestLLMClient:
    def test_complete_strips_and_builds_messages(self):
        provider = FakeProvider(["  answer \n"])
        assert LLMClient(provider).complete("sys", "user") == "answer"
        assert provider.calls[0]["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "user"},
        ]

    def test_empty_completion_is_an_error(self):
        with pytest.raises(GenerationError):
            LLMClient(FakeProvider(["   "])).complete("sys", "user")

    def test_complete_json_with_fence(self):
        client = LLMClient(FakeProvider(['```json\n{"plan": "p"}\n```']))
        assert client.complete_json("sys", "user") == {"plan": "p"}


class TestParseJsonResponse:
    def test_plain(self):
        assert parse_json_response('[1, 2]') == [1, 2]

    def test_invalid(self):
        with pytest.raises(GenerationError):
            parse_json_response("{broken")
