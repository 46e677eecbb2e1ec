"""Datastore query surface used by ingestion, retrieval and chat."""

from __future__ import annotations

from typing import Sequence

from docsense.embeddings.store import ChromaVectorStore
from docsense.metrics.observability import get_logger
from docsense.models import (
    ConversationTurn,
    Document,
    DocumentStatus,
    DocumentUpdate,
    RetrievedChunk,
    SimilarDocument,
    StoredChunk,
    Vector,
)
from docsense.retrieval.hybrid import filter_by_threshold, keyword_matches, merge_hybrid
from docsense.storage.base import AuthorizationError, DatastoreError, DocumentNotFoundError, require_owner
from docsense.storage.records import SQLiteRecordStore


class ChromaSQLiteDatastore:
    """Document records and turns in SQLite, vectors in Chroma."""

    def __init__(self, records: SQLiteRecordStore, vectors: ChromaVectorStore) -> None:
        self._records = records
        self._vectors = vectors
        self._logger = get_logger("datastore")

    # documents

    def create_document(self, document: Document) -> Document:
        require_owner(document.owner_id)
        return self._records.insert_document(document)

    def get_document(self, document_id: str, owner_id: str) -> Document:
        require_owner(owner_id)
        document = self._records.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        if document.owner_id != owner_id:
            raise AuthorizationError(f"Document {document_id} is not accessible to this owner")
        return document

    def list_documents(self, owner_id: str) -> Sequence[Document]:
        return self._records.list_documents(require_owner(owner_id))

    def delete_document(self, document_id: str, owner_id: str) -> None:
        self.get_document(document_id, owner_id)
        self._vectors.delete_document(document_id)
        self._records.delete_document(document_id)
        self._logger.info("document.deleted", document_id=document_id)

    def update_document(self, document_id: str, update: DocumentUpdate) -> None:
        document = self._records.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        self._records.update_document(document_id, update)
        if update.embedding is not None and update.status is DocumentStatus.COMPLETED:
            self._vectors.upsert_document_vector(
                document_id,
                update.embedding,
                owner_id=document.owner_id,
                name=document.name,
                media_type=document.media_type,
            )

    # chunks

    def insert_chunks(self, document_id: str, chunks: Sequence[StoredChunk]) -> Sequence[StoredChunk]:
        if any(chunk.document_id != document_id for chunk in chunks):
            raise DatastoreError("All chunks must belong to the target document")
        try:
            self._vectors.add_chunks(chunks)
        except Exception as exc:
            raise DatastoreError(f"Failed to store chunks for {document_id}: {exc}") from exc
        return list(chunks)

    def delete_chunks(self, document_id: str) -> None:
        try:
            self._vectors.delete_chunks(document_id)
        except Exception as exc:
            raise DatastoreError(f"Failed to delete chunks for {document_id}: {exc}") from exc

    def hybrid_search(
        self,
        query_embedding: Vector,
        owner_id: str,
        threshold: float,
        limit: int,
        keyword: str | None = None,
        *,
        keyword_similarity: float = 0.7,
    ) -> Sequence[RetrievedChunk]:
        require_owner(owner_id)
        try:
            vector_rows = filter_by_threshold(
                self._vectors.query_chunks(query_embedding, owner_id=owner_id, limit=limit),
                threshold,
                limit,
            )
            keyword_rows: list[RetrievedChunk] = []
            if keyword:
                keyword_rows = keyword_matches(
                    self._vectors.get_chunks(owner_id=owner_id),
                    keyword,
                    similarity=keyword_similarity,
                    limit=limit,
                )
        except Exception as exc:
            raise DatastoreError(f"Hybrid search failed: {exc}") from exc
        return merge_hybrid(vector_rows, keyword_rows, limit)

    def count_chunks(self, owner_id: str) -> int:
        return self._vectors.count_chunks(owner_id=require_owner(owner_id))

    def get_recent_chunks(self, owner_id: str, limit: int) -> Sequence[StoredChunk]:
        chunks = list(self._vectors.get_chunks(owner_id=require_owner(owner_id)))
        chunks.sort(key=lambda chunk: chunk.order)
        chunks.sort(key=lambda chunk: chunk.created_at, reverse=True)
        return chunks[:limit]

    def get_document_chunks(self, document_ids: Sequence[str], owner_id: str) -> Sequence[StoredChunk]:
        return self._vectors.get_chunks(owner_id=require_owner(owner_id), document_ids=document_ids)

    # document vectors

    def get_document_embedding(self, document_id: str, owner_id: str) -> Vector | None:
        self.get_document(document_id, owner_id)
        return self._vectors.get_document_vector(document_id)

    def nearest_documents(
        self,
        query_embedding: Vector,
        owner_id: str,
        threshold: float,
        limit: int,
    ) -> Sequence[SimilarDocument]:
        rows = self._vectors.query_documents(query_embedding, owner_id=require_owner(owner_id), limit=limit)
        similar = [
            SimilarDocument(
                document_id=document_id,
                name=str(metadata.get("name", "")),
                media_type=str(metadata.get("media_type", "")),
                similarity=similarity,
            )
            for document_id, metadata, similarity in rows
            if similarity > threshold
        ]
        similar.sort(key=lambda row: row.similarity, reverse=True)
        return similar

    # conversation turns

    def insert_conversation_turn(self, turn: ConversationTurn) -> ConversationTurn:
        require_owner(turn.owner_id)
        try:
            return self._records.insert_turn(turn)
        except Exception as exc:
            raise DatastoreError(f"Failed to store conversation turn: {exc}") from exc

    def recent_conversation_turns(self, owner_id: str, limit: int) -> Sequence[ConversationTurn]:
        require_owner(owner_id)
        try:
            return self._records.recent_turns(owner_id, limit)
        except Exception as exc:
            raise DatastoreError(f"Failed to load conversation history: {exc}") from exc
