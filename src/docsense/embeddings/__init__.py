"""Embedding services."""

from .service import (
    FALLBACK_DIMENSION,
    EmbeddingConfig,
    EmbeddingDimensionError,
    EmbeddingProvider,
    EmbeddingService,
    HuggingFaceInferenceProvider,
    LocalModelEmbeddingProvider,
    fallback_embedding,
    mean_vector,
)
from .store import ChromaVectorStore

__all__ = [
    "FALLBACK_DIMENSION",
    "ChromaVectorStore",
    "EmbeddingConfig",
    "EmbeddingDimensionError",
    "EmbeddingProvider",
    "EmbeddingService",
    "HuggingFaceInferenceProvider",
    "LocalModelEmbeddingProvider",
    "fallback_embedding",
    "mean_vector",
]
