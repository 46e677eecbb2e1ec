"""Datastore contracts and errors shared by the storage implementations."""

from __future__ import annotations

from typing import Protocol, Sequence

from docsense.models import (
    ConversationTurn,
    Document,
    DocumentUpdate,
    RetrievedChunk,
    SimilarDocument,
    StoredChunk,
    Vector,
)


class DatastoreError(RuntimeError):
    """Raised when a datastore query or write fails."""


class DocumentNotFoundError(LookupError):
    """Raised when a document does not exist."""


class AuthorizationError(PermissionError):
    """Raised for missing owner scope or cross-owner access. Never masked."""


class Datastore(Protocol):
    """Query contracts consumed by the core services."""

    def create_document(self, document: Document) -> Document: ...

    def get_document(self, document_id: str, owner_id: str) -> Document: ...

    def list_documents(self, owner_id: str) -> Sequence[Document]: ...

    def delete_document(self, document_id: str, owner_id: str) -> None: ...

    def insert_chunks(self, document_id: str, chunks: Sequence[StoredChunk]) -> Sequence[StoredChunk]: ...

    def delete_chunks(self, document_id: str) -> None: ...

    def hybrid_search(
        self,
        query_embedding: Vector,
        owner_id: str,
        threshold: float,
        limit: int,
        keyword: str | None = None,
        *,
        keyword_similarity: float = 0.7,
    ) -> Sequence[RetrievedChunk]: ...

    def count_chunks(self, owner_id: str) -> int: ...

    def get_recent_chunks(self, owner_id: str, limit: int) -> Sequence[StoredChunk]: ...

    def get_document_chunks(self, document_ids: Sequence[str], owner_id: str) -> Sequence[StoredChunk]: ...

    def update_document(self, document_id: str, update: DocumentUpdate) -> None: ...

    def get_document_embedding(self, document_id: str, owner_id: str) -> Vector | None: ...

    def nearest_documents(
        self,
        query_embedding: Vector,
        owner_id: str,
        threshold: float,
        limit: int,
    ) -> Sequence[SimilarDocument]: ...

    def insert_conversation_turn(self, turn: ConversationTurn) -> ConversationTurn: ...

    def recent_conversation_turns(self, owner_id: str, limit: int) -> Sequence[ConversationTurn]: ...


def require_owner(owner_id: str | None) -> str:
    if not owner_id or not owner_id.strip():
        raise AuthorizationError("Missing owner scope")
    return owner_id

