"""Tests for the embedders."""

import math
from unittest.mock import MagicMock

import pytest
import requests

from vibeplan.config import EmbeddingSettings
from vibeplan.embeddings import (
    HashEmbeddingModel,
    OpenAIEmbedder,
    code_tokens,
    get_embedder,
)
from vibeplan.errors import ProviderError


def dot(a, b):
    return sum(x * y for x, y in zip(a, b))


class TestHashEmbedding:
    def test_deterministic_and_normalised(self):
        model = HashEmbeddingModel(dim=32)
        a = model.embed_text("user login service")
        assert a == model.embed_text("user login service")
        assert len(a) == 32
        assert math.isclose(sum(v * v for v in a), 1.0, rel_tol=1e-9)

    def test_related_text_scores_higher(self):
        model = HashEmbeddingModel(dim=256)
        query = model.embed_text("login service")
        related = model.embed_text("the login service handles sessions")
        unrelated = model.embed_text("css grid layout colors")
        assert dot(query, related) > dot(query, unrelated)

    def test_empty_text_is_zero_vector(self):
        assert HashEmbeddingModel(dim=8).embed_text("  ...  ") == [0.0] * 8


class TestOpenAIEmbedder:
    def _response(self, status=200, payload=None):
        response = MagicMock()
        response.status_code = status
        response.text = "error body"
        response.json.return_value = payload
        return response

    def test_batches_and_orders_by_index(self, monkeypatch):
        calls = []

        def fake_post(url, headers, json, timeout):
            calls.append(json["input"])
            data = [{"index": i, "embedding": [float(i + 1), 0.0]} for i in range(len(json["input"]))]
            return self._response(payload={"data": list(reversed(data))})

        monkeypatch.setattr("vibeplan.embeddings.requests.post", fake_post)
        embedder = OpenAIEmbedder(model="m", api_key="k", dim=2, batch_size=2)
        vectors = embedder.embed_many(["a", "b", "c"])

        assert calls == [["a", "b"], ["c"]]
        assert vectors == [[1.0, 0.0], [1.0, 0.0], [1.0, 0.0]]

    def test_missing_key(self):
        with pytest.raises(ProviderError):
            OpenAIEmbedder(model="m", api_key="").embed_text("x")

    def test_http_error(self, monkeypatch):
        monkeypatch.setattr(
            "vibeplan.embeddings.requests.post", lambda *a, **k: self._response(status=500),
        )
        with pytest.raises(ProviderError, match="HTTP 500"):
            OpenAIEmbedder(model="m", api_key="k").embed_text("x")

    def test_transport_error(self, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.ConnectionError("down")

        monkeypatch.setattr("vibeplan.embeddings.requests.post", boom)
        with pytest.raises(ProviderError, match="request failed"):
            OpenAIEmbedder(model="m", api_key="k").embed_text("x")

    def test_malformed_body(self, monkeypatch):
        monkeypatch.setattr(
            "vibeplan.embeddings.requests.post", lambda *a, **k: self._response(payload={"nope": 1}),
        )
        with pytest.raises(ProviderError, match="Malformed"):
            OpenAIEmbedder(model="m", api_key="k").embed_text("x")


class TestFactory:
    def test_get_embedder(self):
        assert isinstance(get_embedder(EmbeddingSettings(provider="hash", dim=16)), HashEmbeddingModel)
        openai = get_embedder(EmbeddingSettings(provider="openai", api_key="k", dim=1536))
        assert isinstance(openai, OpenAIEmbedder)
        assert openai.dim == 1536

    def test_unknown_provider_falls_back(self):
        embedder = get_embedder(EmbeddingSettings(provider="word2vec", dim=16))
        assert isinstance(embedder, HashEmbeddingModel)
        assert embedder.dim == 16


class TestCodeTokens:
    def test_compound_identifiers_split(self):
        assert code_tokens("loadUserProfile") == [
            ("loaduserprofile", 1.0), ("load", 0.5), ("user", 0.5), ("profile", 0.5),
        ]
        assert [t for t, _ in code_tokens("HTTPServer max_retries")] == [
            "httpserver", "http", "server", "max_retries", "max", "retries",
        ]

    def test_plain_words_are_not_split(self):
        assert code_tokens("fix the bug") == [("fix", 1.0), ("the", 1.0), ("bug", 1.0)]

    def test_prose_reaches_code_names(self):
        model = HashEmbeddingModel(dim=256)
        code = model.embed_text("async function loadUserProfile(id)")
        assert dot(model.embed_text("user profile"), code) > dot(model.embed_text("css colors"), code)
