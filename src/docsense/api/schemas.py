"""Pydantic models for the docsense API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from docsense.models import ChatAnswer, Document, IngestionReport, SimilarDocument, SourceCitation


class DocumentModel(BaseModel):
    document_id: str = Field(..., description="Opaque document identifier")
    name: str
    media_type: str = Field(..., description="Declared media type of the uploaded file")
    size_bytes: int = Field(..., ge=0)
    status: Literal["processing", "completed", "error"]
    summary: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    chunk_count: int = Field(default=0, ge=0)
    location: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_document(cls, document: Document) -> "DocumentModel":
        return cls(
            document_id=document.document_id,
            name=document.name,
            media_type=document.media_type,
            size_bytes=document.size_bytes,
            status=document.status.value,
            summary=document.summary,
            tags=list(document.tags),
            chunk_count=document.chunk_count,
            location=document.location,
            created_at=document.created_at,
        )


class IngestionReportModel(BaseModel):
    document_id: str
    status: Literal["processing", "completed", "error"]
    chunk_count: int
    embedded_count: int
    failed_count: int
    fallback_count: int
    failures: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def from_report(cls, report: IngestionReport) -> "IngestionReportModel":
        return cls(
            document_id=report.document_id,
            status=report.status.value,
            chunk_count=report.chunk_count,
            embedded_count=report.embedded_count,
            failed_count=report.failed_count,
            fallback_count=report.fallback_count,
            failures=list(report.failures),
            error=report.error,
        )


class DocumentIngestionResponse(BaseModel):
    document: DocumentModel
    report: IngestionReportModel


class DocumentListResponse(BaseModel):
    documents: List[DocumentModel]


class TextIngestionRequest(BaseModel):
    """Payload for ingesting raw text content."""

    name: str = Field(..., min_length=1, description="Display name for the text document")
    text: str = Field(..., min_length=1, description="Raw text to index")


class UrlIngestionRequest(BaseModel):
    url: str = Field(..., description="URL of the file to ingest")
    media_type: Optional[str] = Field(default=None, description="Override the served content type")


class ChatMessageModel(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="End-user question to answer")
    history: Optional[List[ChatMessageModel]] = Field(
        default=None,
        description="Prior turns; stored history is used when omitted",
    )


class SourceModel(BaseModel):
    document_id: str
    content: str
    similarity: float
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_citation(cls, citation: SourceCitation) -> "SourceModel":
        return cls(
            document_id=citation.document_id,
            content=citation.content,
            similarity=citation.similarity,
            metadata=dict(citation.metadata),
        )


class ChatResponse(BaseModel):
    response: str
    sources: List[SourceModel]
    decomposed_queries: List[str]
    warning: Optional[str] = None
    persisted: bool
    latency_ms: Optional[float] = None

    @classmethod
    def from_answer(cls, answer: ChatAnswer) -> "ChatResponse":
        return cls(
            response=answer.text,
            sources=[SourceModel.from_citation(source) for source in answer.sources],
            decomposed_queries=list(answer.sub_queries),
            warning=answer.warning,
            persisted=answer.persisted,
            latency_ms=answer.latency_ms,
        )


class SimilarDocumentModel(BaseModel):
    document_id: str
    name: str
    media_type: str
    similarity: float

    @classmethod
    def from_similar(cls, similar: SimilarDocument) -> "SimilarDocumentModel":
        return cls(
            document_id=similar.document_id,
            name=similar.name,
            media_type=similar.media_type,
            similarity=similar.similarity,
        )


class SimilarDocumentsResponse(BaseModel):
    similar_documents: List[SimilarDocumentModel]


class SummarizeRequest(BaseModel):
    document_ids: List[str] = Field(..., min_length=1)


class SummarizeResponse(BaseModel):
    summary: str
