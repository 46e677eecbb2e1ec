"""Chroma-backed storage for chunk and document vectors."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Sequence

import chromadb
from chromadb.api import ClientAPI

from docsense.models import ChunkMetadata, RetrievedChunk, StoredChunk, Vector


class ChromaVectorStore:
    """Two cosine collections: one row per chunk, one row per embedded document."""

    def __init__(
        self,
        chunk_collection: str = "docsense-chunks",
        document_collection: str = "docsense-documents",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._chunks = self._client.get_or_create_collection(
            name=chunk_collection,
            metadata={"hnsw:space": "cosine"},
        )
        self._documents = self._client.get_or_create_collection(
            name=document_collection,
            metadata={"hnsw:space": "cosine"},
        )

    # chunks

    def add_chunks(self, chunks: Sequence[StoredChunk]) -> Sequence[str]:
        if not chunks:
            return []
        ids = [chunk.chunk_id for chunk in chunks]
        self._chunks.add(
            ids=ids,
            documents=[chunk.content for chunk in chunks],
            embeddings=[list(chunk.embedding) for chunk in chunks],
            metadatas=[self._serialize_chunk(chunk) for chunk in chunks],
        )
        return ids

    def query_chunks(self, vector: Vector, *, owner_id: str, limit: int) -> Sequence[RetrievedChunk]:
        available = self.count_chunks(owner_id=owner_id)
        n_results = min(limit, available)
        if n_results <= 0:
            return []
        results = self._chunks.query(
            query_embeddings=[list(vector)],
            n_results=n_results,
            where={"owner_id": owner_id},
            include=["documents", "metadatas", "distances"],
        )
        ids = self._first(results.get("ids"))
        documents = self._first(results.get("documents"))
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        retrieved: list[RetrievedChunk] = []
        for chunk_id, content, metadata, distance in zip(ids, documents, metadatas, distances):
            retrieved.append(
                RetrievedChunk(
                    chunk_id=chunk_id,
                    document_id=str(metadata.get("document_id", "")),
                    content=content,
                    metadata=self._load_metadata(metadata.get("chunk_metadata")),
                    similarity=1.0 - float(distance),
                ),
            )
        return retrieved

    def get_chunks(self, *, owner_id: str, document_ids: Sequence[str] | None = None) -> Sequence[StoredChunk]:
        """Return an owner's chunks (optionally limited to some documents) without vectors."""

        where: dict[str, Any] = {"owner_id": owner_id}
        if document_ids is not None:
            if not document_ids:
                return []
            where = {"$and": [{"owner_id": owner_id}, {"document_id": {"$in": list(document_ids)}}]}
        batch = self._chunks.get(where=where, include=["documents", "metadatas"])
        ids = batch.get("ids") or []
        documents = batch.get("documents") or []
        metadatas = batch.get("metadatas") or []
        stored = [
            self._deserialize_chunk(chunk_id, content, metadata)
            for chunk_id, content, metadata in zip(ids, documents, metadatas)
        ]
        stored.sort(key=lambda chunk: (chunk.document_id, chunk.order))
        return stored

    def count_chunks(self, *, owner_id: str) -> int:
        batch = self._chunks.get(where={"owner_id": owner_id}, include=["metadatas"])
        return len(batch.get("ids") or [])

    def delete_document(self, document_id: str) -> None:
        self.delete_chunks(document_id)
        self._documents.delete(ids=[document_id])

    def delete_chunks(self, document_id: str) -> None:
        self._chunks.delete(where={"document_id": document_id})

    # documents

    def upsert_document_vector(
        self,
        document_id: str,
        vector: Vector,
        *,
        owner_id: str,
        name: str,
        media_type: str,
    ) -> None:
        self._documents.upsert(
            ids=[document_id],
            embeddings=[list(vector)],
            metadatas=[{"owner_id": owner_id, "name": name, "media_type": media_type}],
        )

    def get_document_vector(self, document_id: str) -> Vector | None:
        batch = self._documents.get(ids=[document_id], include=["embeddings"])
        embeddings = batch.get("embeddings")
        if embeddings is None or len(embeddings) == 0:
            return None
        return tuple(float(value) for value in embeddings[0])

    def query_documents(
        self,
        vector: Vector,
        *,
        owner_id: str,
        limit: int,
    ) -> Sequence[tuple[str, Mapping[str, Any], float]]:
        available = len(self._documents.get(where={"owner_id": owner_id}, include=["metadatas"]).get("ids") or [])
        n_results = min(limit, available)
        if n_results <= 0:
            return []
        results = self._documents.query(
            query_embeddings=[list(vector)],
            n_results=n_results,
            where={"owner_id": owner_id},
            include=["metadatas", "distances"],
        )
        ids = self._first(results.get("ids"))
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        return [
            (document_id, dict(metadata or {}), 1.0 - float(distance))
            for document_id, metadata, distance in zip(ids, metadatas, distances)
        ]

    # serialization

    def _serialize_chunk(self, chunk: StoredChunk) -> MutableMapping[str, object]:
        return {
            "owner_id": chunk.owner_id,
            "document_id": chunk.document_id,
            "order": chunk.order,
            "created_at": chunk.created_at.timestamp(),
            "chunk_metadata": self._dumps(chunk.metadata.to_dict()),
        }

    def _deserialize_chunk(self, chunk_id: str, content: str, metadata: Mapping[str, object]) -> StoredChunk:
        return StoredChunk(
            chunk_id=chunk_id,
            document_id=str(metadata.get("document_id", "")),
            owner_id=str(metadata.get("owner_id", "")),
            content=content,
            metadata=self._load_metadata(metadata.get("chunk_metadata")),
            order=int(metadata.get("order", 0)),
            created_at=datetime.fromtimestamp(float(metadata.get("created_at", 0.0)), tz=timezone.utc),
        )

    def _load_metadata(self, value: object) -> ChunkMetadata:
        return ChunkMetadata.from_dict(self._loads_dict(value))

    @staticmethod
    def _first(value: object) -> Sequence:
        if isinstance(value, list):
            return value[0] if value else []
        return []

    @staticmethod
    def _dumps(value: object) -> str:
        try:
            return json.dumps(value, default=str)
        except TypeError:
            return json.dumps({}, default=str)

    @staticmethod
    def _loads_dict(value: object) -> Dict[str, object]:
        if isinstance(value, str) and value:
            try:
                loaded = json.loads(value)
                if isinstance(loaded, dict):
                    return loaded
            except json.JSONDecodeError:
                return {}
        if isinstance(value, Mapping):
            return dict(value)
        return {}
