"""Embedding providers and the embedding service adapter."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import httpx
from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

from docsense.metrics.observability import PipelineMetrics, get_logger
from docsense.models import EmbeddingResult, EmbeddingSource, Vector
from docsense.services.retry import ProviderError, RetryPolicy

FALLBACK_DIMENSION = 384


class EmbeddingDimensionError(ValueError):
    """Raised when a vector would not match the configured index dimensionality."""


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for the embedding adapter."""

    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    dim: int = FALLBACK_DIMENSION
    fallback_enabled: bool = True
    normalize: bool = True


class EmbeddingProvider(Protocol):
    """External model turning one string into a vector."""

    name: str

    async def embed(self, text: str) -> Sequence[Any]:
        """Return the raw provider output for ``text``."""


def fallback_embedding(text: str, dim: int = FALLBACK_DIMENSION) -> Vector:
    """Deterministic, content-sensitive but non-semantic embedding.

    Each character at position ``i`` with code point ``c`` adds
    ``sin(c * 0.1) * 0.5`` to slot ``(c + i) % dim``; the result is
    L2-normalized and stays all-zero for empty input.
    """

    vector = [0.0] * dim
    for position, char in enumerate(text):
        code = ord(char)
        vector[(code + position) % dim] += math.sin(code * 0.1) * 0.5
    return _l2_normalize(vector)


def _l2_normalize(values: Sequence[float]) -> Vector:
    norm = math.sqrt(sum(value * value for value in values))
    if norm == 0:
        return tuple(float(value) for value in values)
    return tuple(value / norm for value in values)


def flatten_vector(raw: Sequence[Any]) -> Vector:
    """Unwrap a provider response nested one level deep into a flat vector."""

    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"Unexpected embedding response type: {type(raw).__name__}")
    if len(raw) == 0:
        raise ValueError("Embedding provider returned an empty vector")
    candidate = raw[0] if isinstance(raw[0], (list, tuple)) else raw
    if len(candidate) == 0:
        raise ValueError("Embedding provider returned an empty vector")
    try:
        return tuple(float(value) for value in candidate)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Embedding provider returned non-numeric values: {exc}") from exc


def mean_vector(vectors: Sequence[Vector]) -> Vector | None:
    """Component-wise mean of vectors sharing the first vector's dimensionality."""

    valid = [vector for vector in vectors if vector]
    if not valid:
        return None
    dim = len(valid[0])
    valid = [vector for vector in valid if len(vector) == dim]
    totals = [0.0] * dim
    for vector in valid:
        for index, value in enumerate(vector):
            totals[index] += value
    return tuple(total / len(valid) for total in totals)


class HuggingFaceInferenceProvider:
    """Feature-extraction endpoint of the Hugging Face inference API."""

    name = "huggingface"

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        base_url: str = "https://router.huggingface.co/hf-inference/models",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/{model}/pipeline/feature-extraction"
        self._timeout = timeout
        self._transport = transport

    async def embed(self, text: str) -> Sequence[Any]:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json={"inputs": text}, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Embedding request timed out: {exc}", status=503, provider=self.name) from exc
        except httpx.TransportError as exc:
            raise ProviderError(f"Embedding provider unreachable: {exc}", status=503, provider=self.name) from exc
        if response.status_code >= 400:
            raise ProviderError(
                f"Embedding provider returned {response.status_code}: {response.text[:200]}",
                status=response.status_code,
                provider=self.name,
            )
        return response.json()


class LocalModelEmbeddingProvider:
    """Sentence-transformers model loaded in-process via LangChain."""

    name = "local"

    def __init__(self, model: str, *, device: str | None = None, client: LangChainEmbeddings | None = None) -> None:
        if client is None:
            model_kwargs = {"device": device} if device else {}
            client = HuggingFaceEmbeddings(model_name=model, model_kwargs=model_kwargs)
        self._client = client

    async def embed(self, text: str) -> Sequence[Any]:
        try:
            return await asyncio.to_thread(self._client.embed_query, text)
        except Exception as exc:
            raise ProviderError(f"Local embedding model failed: {exc}", provider=self.name) from exc


class EmbeddingService:
    """Embeds text with the primary provider, degrading to ``fallback_embedding``."""

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        config: EmbeddingConfig | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._provider = provider
        self._config = config or EmbeddingConfig()
        self._retry = retry_policy or RetryPolicy()
        self._logger = get_logger("embeddings")
        if self._config.fallback_enabled and self._config.dim != FALLBACK_DIMENSION:
            raise EmbeddingDimensionError(
                f"Configured embedding dimension {self._config.dim} does not match the "
                f"{FALLBACK_DIMENSION}-dimensional fallback; disable the fallback or use a "
                f"{FALLBACK_DIMENSION}-dimensional model",
            )

    @property
    def dim(self) -> int:
        return self._config.dim

    async def embed(self, text: str) -> EmbeddingResult:
        if self._provider is not None:
            try:
                vector = await self._embed_primary(text)
                PipelineMetrics.observe_embedding(EmbeddingSource.PRIMARY.value)
                return EmbeddingResult(vector=vector, source=EmbeddingSource.PRIMARY)
            except (ProviderError, EmbeddingDimensionError, ValueError) as exc:
                if not self._config.fallback_enabled:
                    raise
                self._log_primary_failure(exc, text)
        elif not self._config.fallback_enabled:
            raise ProviderError("No embedding provider configured and fallback disabled")

        PipelineMetrics.observe_embedding(EmbeddingSource.FALLBACK.value)
        return EmbeddingResult(vector=fallback_embedding(text, FALLBACK_DIMENSION), source=EmbeddingSource.FALLBACK)

    async def _embed_primary(self, text: str) -> Vector:
        assert self._provider is not None
        raw = await self._retry.run(lambda: self._provider.embed(text), name="embedding.primary")
        vector = flatten_vector(raw)
        if len(vector) != self._config.dim:
            raise EmbeddingDimensionError(
                f"Embedding model returned {len(vector)} dimensions, expected {self._config.dim}",
            )
        if self._config.normalize:
            vector = _l2_normalize(vector)
        return vector

    def _log_primary_failure(self, exc: Exception, text: str) -> None:
        status = getattr(exc, "status", None)
        hint = None
        if status == 401:
            hint = "Embedding provider rejected the API key; check the configured token."
        elif status == 403:
            hint = "Embedding provider denied access; the token needs inference permissions."
        self._logger.warning(
            "embedding.fallback",
            status=status,
            error=str(exc),
            hint=hint,
            text_preview=text[:50],
        )
