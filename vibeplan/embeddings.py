"""Text embedders used to index and query the knowledge base.

========== ============================ ====== ==============================
Provider   Backend                      Dim    Notes
========== ============================ ====== ==============================
hash       (none)                        256   Offline, keyword-level only
openai     ``/v1/embeddings`` over HTTP 1536   Needs ``OPENAI_API_KEY``
========== ============================ ====== ==============================

Every embedder returns L2-normalised vectors so the store's cosine distance
and a plain dot product agree.
"""

from __future__ import annotations

import logging
import math
import re
from hashlib import blake2b
from typing import Iterable, List, Tuple, Union

import requests

from .config import EmbeddingSettings
from .errors import ProviderError

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_SUBWORD_RE = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|[0-9]+")

# Compound identifiers contribute their parts at reduced weight
SUBWORD_WEIGHT = 0.5


def code_tokens(text: str) -> List[Tuple[str, float]]:
    """Weighted tokens of *text*: each identifier, then its camelCase/snake_case parts.

    ``loadUserProfile`` yields ``loaduserprofile`` (1.0) plus ``load``,
    ``user`` and ``profile`` (0.5 each), so prose queries reach code names.
    """
    weighted: List[Tuple[str, float]] = []
    for identifier in _IDENTIFIER_RE.findall(text):
        weighted.append((identifier.lower(), 1.0))
        parts = [p.lower() for p in _SUBWORD_RE.findall(identifier)]
        if len(parts) > 1:
            weighted.extend((p, SUBWORD_WEIGHT) for p in parts if len(p) > 1)
    return weighted


class HashEmbeddingModel:
    """Deterministic feature-hashing embedder for source code and prose.

    Each token lands in one signed bucket chosen by a keyed blake2b hash, so
    equal texts always produce equal vectors and nothing is downloaded.
    """

    def __init__(self, dim: int = 256) -> None:
        self.dim = dim

    def _bucket(self, token: str) -> Tuple[int, float]:
        value = int.from_bytes(
            blake2b(token.encode("utf-8"), digest_size=8, person=b"vibeplan").digest(),
            "little",
        )
        return value % self.dim, (-1.0 if value >> 63 else 1.0)

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for token, weight in code_tokens(text):
            idx, sign = self._bucket(token)
            vec[idx] += sign * weight
        return _l2_normalize(vec)

    def embed_many(self, texts: Iterable[str]) -> List[List[float]]:
        return list(map(self.embed_text, texts))


class OpenAIEmbedder:
    """Remote embeddings from an OpenAI-compatible ``/v1/embeddings`` endpoint."""

    def __init__(
        self,
        model: str,
        api_key: str,
        endpoint: str = "https://api.openai.com/v1/embeddings",
        dim: int = 1536,
        timeout: float = 30.0,
        batch_size: int = 64,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint
        self.dim = dim
        self.timeout = timeout
        self.batch_size = batch_size

    def embed_text(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: Iterable[str]) -> List[List[float]]:
        items = list(texts)
        vectors: List[List[float]] = []
        for start in range(0, len(items), self.batch_size):
            vectors.extend(self._request(items[start:start + self.batch_size]))
        return vectors

    def _request(self, batch: List[str]) -> List[List[float]]:
        if not self.api_key:
            raise ProviderError("No API key configured for OpenAI embeddings")
        try:
            response = requests.post(
                self.endpoint,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json={"model": self.model, "input": batch},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(
                f"Embedding endpoint returned HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            data = sorted(response.json()["data"], key=lambda item: item.get("index", 0))
            return [_l2_normalize([float(v) for v in item["embedding"]]) for item in data]
        except (ValueError, KeyError, TypeError) as exc:
            raise ProviderError("Malformed embedding response") from exc


Embedder = Union[HashEmbeddingModel, OpenAIEmbedder]


def get_embedder(settings: EmbeddingSettings) -> Embedder:
    """Return the configured embedder, falling back to hash for unknown names."""
    provider = settings.provider.lower()
    if provider == "openai":
        return OpenAIEmbedder(
            model=settings.model,
            api_key=settings.api_key,
            endpoint=settings.endpoint,
            dim=settings.dim,
            timeout=settings.timeout,
        )
    if provider != "hash":
        logger.warning("Unknown embedding provider '%s', falling back to hash.", settings.provider)
    return HashEmbeddingModel(dim=settings.dim)


def _l2_normalize(vec: List[float]) -> List[float]:
    length = math.hypot(*vec) if vec else 0.0
    return [v / length for v in vec] if length > 0 else vec
