"""Embedding providers and the model-fallback embedding service."""

from __future__ import annotations

import hashlib
import math
import re
from array import array
from dataclasses import dataclass
from typing import Protocol, Sequence

import openai

from kennisbank.core.config import Settings
from kennisbank.core.errors import (
    AllModelsUnavailableError,
    EmbeddingError,
    EmbeddingProviderError,
    EmbeddingsDisabledError,
    ModelUnavailableError,
)
from kennisbank.core.logging import get_logger, log_context
from kennisbank.core.metrics import EMBEDDING_FALLBACKS, EMBEDDING_REQUESTS

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")
_MODEL_NOT_FOUND = "model_not_found"
_AVAILABILITY_STATUSES = frozenset({403, 404})

# USD per million input tokens
PRICE_PER_MILLION_TOKENS = 0.02


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int


class EmbeddingProvider(Protocol):
    """Turns texts into vectors with one named model.

    Implementations raise :class:`ModelUnavailableError` when the model itself
    cannot be used and :class:`EmbeddingProviderError` for everything else.
    """

    def create_embeddings(self, model: str, texts: Sequence[str]) -> list[list[float]]: ...


class OpenAIEmbeddingProvider:
    """Embedding provider backed by the OpenAI embeddings endpoint."""

    def __init__(self, api_key: str, timeout: float = 30.0, client: openai.OpenAI | None = None) -> None:
        self._client = client or openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def create_embeddings(self, model: str, texts: Sequence[str]) -> list[list[float]]:
        try:
            response = self._client.embeddings.create(model=model, input=list(texts))
        except openai.APIStatusError as exc:
            if exc.status_code in _AVAILABILITY_STATUSES and getattr(exc, "code", None) == _MODEL_NOT_FOUND:
                raise ModelUnavailableError(model, exc.message) from exc
            raise EmbeddingProviderError(model, exc.message) from exc
        except openai.OpenAIError as exc:
            raise EmbeddingProviderError(model, str(exc)) from exc
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


class HashedEmbeddingProvider:
    """Deterministic bag-of-words hashing embeddings; needs no network."""

    def __init__(self, dim: int = 384) -> None:
        self.dim = dim

    def create_embeddings(self, model: str, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self.dim
            for token in _TOKEN_RE.findall(text.lower()):
                vector[_hash_token(token, self.dim)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return vectors


class EmbeddingService:
    """Embed texts with an ordered list of candidate models.

    The first model is tried first. Only a :class:`ModelUnavailableError` moves
    on to the next candidate; any other provider error aborts the call. Batches
    are passed through as given.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None,
        models: Sequence[str],
        enabled: bool = True,
        disabled_reason: str = "Embeddings are disabled",
    ) -> None:
        if not models:
            raise ValueError("At least one embedding model is required")
        self.provider = provider
        self.models = list(models)
        self.enabled = enabled and provider is not None
        self.disabled_reason = disabled_reason

    def embed(self, texts: Sequence[str]) -> EmbeddingBatch:
        if not self.enabled or self.provider is None:
            raise EmbeddingsDisabledError(self.disabled_reason)
        if not texts:
            return EmbeddingBatch(vectors=[], model=self.models[0], dim=0)

        for model in self.models:
            try:
                logger.debug("Trying embedding model %s", model, extra=log_context(model=model, batch=len(texts)))
                vectors = self.provider.create_embeddings(model, texts)
            except ModelUnavailableError as exc:
                EMBEDDING_REQUESTS.labels(model=model, outcome="unavailable").inc()
                EMBEDDING_FALLBACKS.labels(model=model).inc()
                logger.warning("Embedding model %s unavailable: %s", model, exc, extra=log_context(model=model))
                continue
            except EmbeddingError:
                EMBEDDING_REQUESTS.labels(model=model, outcome="error").inc()
                raise
            EMBEDDING_REQUESTS.labels(model=model, outcome="ok").inc()
            return _checked_batch(model, texts, vectors)

        raise AllModelsUnavailableError(self.models)

    def embed_one(self, text: str) -> list[float]:
        return self.embed([text]).vectors[0]

    @staticmethod
    def as_bytes(vector: Sequence[float]) -> bytes:
        return array("f", vector).tobytes()

    @staticmethod
    def from_bytes(payload: bytes) -> list[float]:
        floats = array("f")
        floats.frombytes(payload)
        return list(floats)


def build_embedding_service(settings: Settings) -> EmbeddingService:
    """Create the service described by ``settings``."""
    if not settings.embeddings_enabled:
        return EmbeddingService(None, settings.embedding_models, enabled=False)
    if settings.embedding_provider == "hashed":
        return EmbeddingService(HashedEmbeddingProvider(settings.hashed_dim), settings.embedding_models)
    if not settings.openai_api_key:
        return EmbeddingService(
            None,
            settings.embedding_models,
            enabled=False,
            disabled_reason="OpenAI API key not configured",
        )
    provider = OpenAIEmbeddingProvider(settings.openai_api_key, timeout=settings.embedding_timeout)
    return EmbeddingService(provider, settings.embedding_models)


def estimate_cost(token_count: int) -> float:
    """Approximate embedding cost in USD for ``token_count`` tokens."""
    return token_count / 1_000_000 * PRICE_PER_MILLION_TOKENS


def _checked_batch(model: str, texts: Sequence[str], vectors: list[list[float]]) -> EmbeddingBatch:
    if len(vectors) != len(texts):
        raise EmbeddingProviderError(model, f"expected {len(texts)} vectors, got {len(vectors)}")
    dims = {len(vector) for vector in vectors}
    if len(dims) != 1:
        raise EmbeddingProviderError(model, "provider returned vectors of mixed dimensionality")
    return EmbeddingBatch(vectors=vectors, model=model, dim=dims.pop())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingBatch",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "HashedEmbeddingProvider",
    "EmbeddingService",
    "build_embedding_service",
    "estimate_cost",
]
