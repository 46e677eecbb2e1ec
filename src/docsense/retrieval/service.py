"""Retrieval orchestration built on top of the datastore query surface."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Sequence

from docsense.embeddings.service import EmbeddingDimensionError, EmbeddingService
from docsense.metrics.observability import PipelineMetrics, get_logger
from docsense.models import RetrievedChunk, SimilarDocument
from docsense.retrieval.hybrid import with_similarity
from docsense.services.retry import ProviderError
from docsense.storage.base import AuthorizationError, Datastore, DatastoreError, DocumentNotFoundError, require_owner


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    limit: int = 5
    similarity_threshold: float = 0.0
    keyword_similarity: float = 0.7
    fallback_similarity: float = 0.5
    keyword_from_query: bool = True


class HybridRetriever:
    """Vector plus keyword search scoped to one owner.

    Retrieval problems degrade to the owner's most recent chunks scored with
    ``fallback_similarity``. Only authorization failures reach the caller.
    """

    def __init__(
        self,
        datastore: Datastore,
        embeddings: EmbeddingService,
        config: RetrievalConfig | None = None,
    ) -> None:
        self._datastore = datastore
        self._embeddings = embeddings
        self._config = config or RetrievalConfig()
        self._logger = get_logger("retrieval")

    async def search(
        self,
        query: str,
        owner_id: str,
        limit: int | None = None,
        keyword: str | None = None,
    ) -> List[RetrievedChunk]:
        require_owner(owner_id)
        limit = max(1, limit or self._config.limit)
        if keyword is None and self._config.keyword_from_query:
            keyword = query.strip() or None
        start = time.perf_counter()
        try:
            embedding = await self._embeddings.embed(query)
        except (ProviderError, EmbeddingDimensionError, ValueError) as exc:
            self._logger.warning("retrieval.embedding_failed", error=str(exc))
            return self._degraded(owner_id, limit, "embedding_failed", start)
        try:
            rows = list(
                self._datastore.hybrid_search(
                    embedding.vector,
                    owner_id,
                    self._config.similarity_threshold,
                    limit,
                    keyword,
                    keyword_similarity=self._config.keyword_similarity,
                ),
            )
        except AuthorizationError:
            raise
        except DatastoreError as exc:
            self._logger.warning("retrieval.search_failed", owner_id=owner_id, error=str(exc))
            return self._degraded(owner_id, limit, "search_failed", start)
        if not rows and self._has_chunks(owner_id):
            return self._degraded(owner_id, limit, "empty_result", start)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(rows), (row.similarity for row in rows))
        self._logger.info(
            "retrieval.complete",
            owner_id=owner_id,
            chunk_count=len(rows),
            duration_seconds=duration,
            embedding_source=embedding.source.value,
            keyword=keyword,
        )
        return rows

    def _has_chunks(self, owner_id: str) -> bool:
        try:
            return self._datastore.count_chunks(owner_id) > 0
        except DatastoreError as exc:
            self._logger.warning("retrieval.count_failed", owner_id=owner_id, error=str(exc))
            return True

    def _degraded(self, owner_id: str, limit: int, reason: str, start: float) -> List[RetrievedChunk]:
        PipelineMetrics.observe_retrieval_fallback(reason)
        try:
            recent = self._datastore.get_recent_chunks(owner_id, limit)
        except DatastoreError as exc:
            self._logger.error("retrieval.fallback_failed", owner_id=owner_id, reason=reason, error=str(exc))
            return []
        rows = with_similarity(recent, self._config.fallback_similarity)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(rows), (row.similarity for row in rows))
        self._logger.warning("retrieval.degraded", owner_id=owner_id, reason=reason, chunk_count=len(rows))
        return rows


class SimilarDocumentFinder:
    """Document-to-document similarity over whole-document embeddings."""

    def __init__(self, datastore: Datastore, *, threshold: float = 0.7, limit: int = 5) -> None:
        self._datastore = datastore
        self._threshold = threshold
        self._limit = limit

    def find_similar(self, document_id: str, owner_id: str) -> Sequence[SimilarDocument]:
        embedding = self._datastore.get_document_embedding(document_id, owner_id)
        if embedding is None:
            raise DocumentNotFoundError(f"Source document or its embedding not found: {document_id}")
        rows = self._datastore.nearest_documents(embedding, owner_id, self._threshold, self._limit + 1)
        return [row for row in rows if row.document_id != document_id][: self._limit]
