from __future__ import annotations

import math

import httpx
import pytest

from docsense.embeddings.service import (
    EmbeddingConfig,
    EmbeddingDimensionError,
    EmbeddingService,
    HuggingFaceInferenceProvider,
    fallback_embedding,
    flatten_vector,
    mean_vector,
)
from docsense.models import EmbeddingSource
from docsense.services.retry import ProviderError
from stubs import ScriptedEmbeddingProvider


def _norm(vector) -> float:
    return math.sqrt(sum(value * value for value in vector))


def test_fallback_embedding_is_deterministic_and_normalized():
    first = fallback_embedding("The quarterly report covers revenue.")
    second = fallback_embedding("The quarterly report covers revenue.")

    assert first == second
    assert len(first) == 384
    assert _norm(first) == pytest.approx(1.0)


def test_fallback_embedding_empty_text_is_zero_vector():
    vector = fallback_embedding("")
    assert len(vector) == 384
    assert all(value == 0.0 for value in vector)


def test_fallback_embedding_slot_formula():
    vector = fallback_embedding("a")
    code = ord("a")
    assert vector[code % 384] == pytest.approx(math.copysign(1.0, math.sin(code * 0.1)))


def test_flatten_vector_unwraps_one_level():
    assert flatten_vector([[0.1, 0.2]]) == (0.1, 0.2)
    assert flatten_vector([1, 2]) == (1.0, 2.0)
    with pytest.raises(ValueError):
        flatten_vector([])
    with pytest.raises(ValueError):
        flatten_vector({"error": "loading"})


def test_mean_vector():
    assert mean_vector([(1.0, 3.0), (3.0, 5.0)]) == (2.0, 4.0)
    assert mean_vector([]) is None


@pytest.mark.asyncio
async def test_primary_vector_is_used_and_labelled(fast_retry):
    provider = ScriptedEmbeddingProvider(vector=[3.0, 4.0] + [0.0] * 382)
    service = EmbeddingService(provider, EmbeddingConfig(), fast_retry)

    result = await service.embed("hello")

    assert result.source is EmbeddingSource.PRIMARY
    assert result.vector[:2] == pytest.approx((0.6, 0.8))


@pytest.mark.asyncio
async def test_transient_failures_are_retried_then_fall_back(fast_retry):
    provider = ScriptedEmbeddingProvider(error=ProviderError("overloaded", status=503))
    service = EmbeddingService(provider, EmbeddingConfig(), fast_retry)

    result = await service.embed("hello")

    assert provider.calls == 3
    assert result.source is EmbeddingSource.FALLBACK
    assert result.vector == fallback_embedding("hello")


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried(fast_retry):
    provider = ScriptedEmbeddingProvider(error=ProviderError("forbidden", status=403))
    service = EmbeddingService(provider, EmbeddingConfig(), fast_retry)

    result = await service.embed("hello")

    assert provider.calls == 1
    assert result.source is EmbeddingSource.FALLBACK


@pytest.mark.asyncio
async def test_wrong_dimension_from_primary_falls_back(fast_retry):
    provider = ScriptedEmbeddingProvider(vector=[1.0] * 16)
    service = EmbeddingService(provider, EmbeddingConfig(), fast_retry)

    result = await service.embed("hello")

    assert result.source is EmbeddingSource.FALLBACK
    assert len(result.vector) == 384


@pytest.mark.asyncio
async def test_wrong_dimension_without_fallback_raises(fast_retry):
    provider = ScriptedEmbeddingProvider(vector=[1.0] * 16)
    service = EmbeddingService(provider, EmbeddingConfig(fallback_enabled=False), fast_retry)

    with pytest.raises(EmbeddingDimensionError):
        await service.embed("hello")


def test_mismatched_fallback_dimension_rejected_at_construction():
    with pytest.raises(EmbeddingDimensionError):
        EmbeddingService(None, EmbeddingConfig(dim=1536))


@pytest.mark.asyncio
async def test_huggingface_provider_posts_inputs_and_maps_errors():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        if b"fail" in request.content:
            return httpx.Response(429, text="slow down")
        return httpx.Response(200, json=[[0.5, 0.5]])

    provider = HuggingFaceInferenceProvider(
        "sentence-transformers/all-MiniLM-L6-v2",
        api_key="hf_test",
        base_url="https://hf.test/models",
        transport=httpx.MockTransport(handler),
    )

    assert await provider.embed("hello") == [[0.5, 0.5]]
    assert seen["url"] == "https://hf.test/models/sentence-transformers/all-MiniLM-L6-v2/pipeline/feature-extraction"
    assert seen["auth"] == "Bearer hf_test"

    with pytest.raises(ProviderError) as excinfo:
        await provider.embed("please fail")
    assert excinfo.value.status == 429
    assert excinfo.value.is_transient
