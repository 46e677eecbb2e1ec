"""Shared domain models used across the docsense pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Mapping, Sequence, TypeVar

T = TypeVar("T")

Vector = tuple[float, ...]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class EmbeddingSource(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class ProcessingStatus(str, Enum):
    """Marks chunks that describe an extraction limitation instead of real text."""

    FAILED = "failed"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class Document:
    """An uploaded file owned by a single user."""

    document_id: str
    owner_id: str
    name: str
    media_type: str
    size_bytes: int
    status: DocumentStatus = DocumentStatus.PROCESSING
    summary: str | None = None
    tags: Sequence[str] = ()
    chunk_count: int = 0
    location: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class DocumentUpdate:
    """Fields written once by the ingestion pipeline."""

    status: DocumentStatus
    summary: str | None = None
    tags: Sequence[str] | None = None
    embedding: Vector | None = None
    chunk_count: int | None = None


_WIRE_KEYS = {
    "chunk_index": "chunkIndex",
    "cell_type": "cellType",
    "processing_status": "processingStatus",
}


@dataclass(frozen=True)
class ChunkMetadata:
    """Known chunk metadata fields plus an opaque extension map.

    Serialized keys follow the stored wire format (`cellType`,
    `processingStatus`, `embedding_model`).
    """

    type: str
    section: str
    filename: str | None = None
    chunk_index: int | None = None
    page: int | None = None
    row: int | None = None
    sheet: str | None = None
    cell: int | None = None
    cell_type: str | None = None
    processing_status: ProcessingStatus | None = None
    error: str | None = None
    embedding_model: EmbeddingSource | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def with_embedding_source(self, source: EmbeddingSource) -> "ChunkMetadata":
        return replace(self, embedding_model=source)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        for name in (
            "type",
            "section",
            "filename",
            "chunk_index",
            "page",
            "row",
            "sheet",
            "cell",
            "cell_type",
            "processing_status",
            "error",
            "embedding_model",
        ):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            data[_WIRE_KEYS.get(name, name)] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChunkMetadata":
        remaining = dict(data)
        wire_to_attr = {wire: attr for attr, wire in _WIRE_KEYS.items()}
        known: dict[str, Any] = {}
        for key in list(remaining):
            attr = wire_to_attr.get(key, key)
            if attr in cls.__dataclass_fields__ and attr != "extra":
                known[attr] = remaining.pop(key)
        if known.get("processing_status") is not None:
            known["processing_status"] = ProcessingStatus(known["processing_status"])
        if known.get("embedding_model") is not None:
            known["embedding_model"] = EmbeddingSource(known["embedding_model"])
        known.setdefault("type", "text")
        known.setdefault("section", "Document")
        return cls(**known, extra=remaining)


@dataclass(frozen=True)
class ExtractedChunk:
    """Raw content produced by an extractor or the chunking engine."""

    content: str
    metadata: ChunkMetadata


@dataclass(frozen=True)
class StoredChunk:
    """Chunk persisted together with its embedding."""

    chunk_id: str
    document_id: str
    owner_id: str
    content: str
    metadata: ChunkMetadata
    order: int
    embedding: Vector = ()
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class RetrievedChunk:
    """Chunk returned from retrieval with its similarity score."""

    chunk_id: str
    document_id: str
    content: str
    metadata: ChunkMetadata
    similarity: float


@dataclass(frozen=True)
class SimilarDocument:
    document_id: str
    name: str
    media_type: str
    similarity: float


@dataclass(frozen=True)
class EmbeddingResult:
    """Vector plus the label of the source that produced it."""

    vector: Vector
    source: EmbeddingSource


@dataclass(frozen=True)
class SourceCitation:
    document_id: str
    content: str
    similarity: float
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class ConversationTurn:
    """One question/answer pair with the sources it cited."""

    turn_id: str
    owner_id: str
    message: str
    response: str
    sources: Sequence[SourceCitation] = ()
    sub_queries: Sequence[str] = ()
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ItemResult(Generic[T]):
    """Per-item outcome used where one failure must not abort its siblings."""

    index: int
    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class IngestionReport:
    document_id: str
    status: DocumentStatus
    chunk_count: int
    embedded_count: int
    failed_count: int
    fallback_count: int = 0
    failures: Sequence[str] = ()
    error: str | None = None


@dataclass(frozen=True)
class ChatAnswer:
    """Answer returned to the user for one chat turn."""

    text: str
    sources: Sequence[SourceCitation]
    sub_queries: Sequence[str]
    persisted: bool
    warning: str | None = None
    persist_error: str | None = None
    latency_ms: float | None = None
