"""Tests for hybrid retrieval, degraded-mode fallback and similar documents."""

from __future__ import annotations

import pytest

from docsense.embeddings.service import EmbeddingService, fallback_embedding
from docsense.models import (
    ChunkMetadata,
    Document,
    DocumentStatus,
    DocumentUpdate,
    RetrievedChunk,
    StoredChunk,
)
from docsense.retrieval.hybrid import dedupe_by_document_content, keyword_matches, merge_hybrid
from docsense.retrieval.service import HybridRetriever, RetrievalConfig, SimilarDocumentFinder
from docsense.storage import AuthorizationError, DatastoreError, DocumentNotFoundError


def _row(chunk_id: str, similarity: float, document_id: str = "d1", content: str | None = None) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=chunk_id,
        document_id=document_id,
        content=content or f"content {chunk_id}",
        metadata=ChunkMetadata(type="text", section="Paragraph 1"),
        similarity=similarity,
    )


def _stored(document_id: str, order: int, content: str) -> StoredChunk:
    return StoredChunk(
        chunk_id=f"{document_id}-{order}",
        document_id=document_id,
        owner_id="owner-a",
        content=content,
        metadata=ChunkMetadata(type="text", section=f"Paragraph {order + 1}"),
        order=order,
        embedding=fallback_embedding(content),
    )


def _seed(datastore, document_id: str, *contents: str) -> None:
    datastore.create_document(
        Document(document_id=document_id, owner_id="owner-a", name=f"{document_id}.txt", media_type="text/plain", size_bytes=1),
    )
    datastore.insert_chunks(document_id, [_stored(document_id, order, text) for order, text in enumerate(contents)])


def test_merge_hybrid_keeps_higher_score_and_sorts():
    vector_rows = [_row("a", 0.9), _row("b", 0.2), _row("c", 0.4)]
    keyword_rows = [_row("b", 0.7), _row("d", 0.7)]

    merged = merge_hybrid(vector_rows, keyword_rows, limit=3)

    assert [(row.chunk_id, row.similarity) for row in merged] == [("a", 0.9), ("b", 0.7), ("d", 0.7)]


def test_keyword_matches_case_insensitive_and_capped():
    chunks = [_stored("d1", 0, "Solar Panels"), _stored("d1", 1, "solar farms"), _stored("d1", 2, "wind")]

    rows = keyword_matches(chunks, "SOLAR", similarity=0.7, limit=1)

    assert [row.content for row in rows] == ["Solar Panels"]
    assert rows[0].similarity == 0.7
    assert keyword_matches(chunks, None, similarity=0.7, limit=5) == []


def test_dedupe_by_document_and_content():
    rows = [_row("a", 0.9, content="same"), _row("b", 0.8, content="same"), _row("c", 0.5, document_id="d2", content="same")]

    deduped = dedupe_by_document_content(rows)

    assert [row.chunk_id for row in deduped] == ["a", "c"]


@pytest.mark.asyncio
async def test_search_keyword_path_ranks_verbatim_phrase(datastore):
    _seed(datastore, "d1", "Apples are grown in orchards across the valley.", "The bridge toll increased to five dollars.")
    retriever = HybridRetriever(datastore, EmbeddingService())

    rows = await retriever.search("bridge toll increased", "owner-a", limit=5)

    assert rows[0].content == "The bridge toll increased to five dollars."
    assert rows[0].similarity >= 0.7


@pytest.mark.asyncio
async def test_search_falls_back_to_recent_chunks_when_nothing_matches(datastore):
    _seed(datastore, "d1", "only chunk")
    retriever = HybridRetriever(
        datastore,
        EmbeddingService(),
        RetrievalConfig(similarity_threshold=0.99, keyword_from_query=False),
    )

    rows = await retriever.search("completely unrelated words", "owner-a")

    assert [row.content for row in rows] == ["only chunk"]
    assert rows[0].similarity == 0.5


@pytest.mark.asyncio
async def test_search_with_no_chunks_returns_empty(datastore):
    retriever = HybridRetriever(datastore, EmbeddingService())

    assert await retriever.search("anything", "owner-a") == []


class FailingSearchDatastore:
    def __init__(self, recent):
        self.recent = recent

    def hybrid_search(self, *args, **kwargs):
        raise DatastoreError("function missing")

    def count_chunks(self, owner_id):
        return len(self.recent)

    def get_recent_chunks(self, owner_id, limit):
        return self.recent[:limit]


@pytest.mark.asyncio
async def test_search_error_degrades_to_recent_chunks():
    datastore = FailingSearchDatastore([_stored("d1", 0, "recent one"), _stored("d1", 1, "recent two")])
    retriever = HybridRetriever(datastore, EmbeddingService())

    rows = await retriever.search("question", "owner-a", limit=1)

    assert [(row.content, row.similarity) for row in rows] == [("recent one", 0.5)]


@pytest.mark.asyncio
async def test_search_requires_owner(datastore):
    retriever = HybridRetriever(datastore, EmbeddingService())

    with pytest.raises(AuthorizationError):
        await retriever.search("question", "")


def test_find_similar_excludes_source_document(datastore):
    for document_id, text in [("d1", "grid storage"), ("d2", "grid storage"), ("d3", "grid storage")]:
        _seed(datastore, document_id, text)
        datastore.update_document(
            document_id,
            DocumentUpdate(status=DocumentStatus.COMPLETED, embedding=fallback_embedding(text), chunk_count=1),
        )
    finder = SimilarDocumentFinder(datastore, threshold=0.7, limit=5)

    similar = finder.find_similar("d1", "owner-a")

    assert {row.document_id for row in similar} == {"d2", "d3"}


def test_find_similar_without_embedding_is_not_found(datastore):
    _seed(datastore, "d1", "still processing")
    finder = SimilarDocumentFinder(datastore)

    with pytest.raises(DocumentNotFoundError):
        finder.find_similar("d1", "owner-a")
    with pytest.raises(AuthorizationError):
        finder.find_similar("d1", "owner-b")
