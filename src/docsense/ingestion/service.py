"""Document ingestion service for docsense."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from typing import List, Sequence
from uuid import uuid4

from docsense.embeddings.service import EmbeddingDimensionError, EmbeddingService, mean_vector
from docsense.ingestion.chunking import bound_chunks, chunk_text
from docsense.ingestion.extractors import ExtractionDispatcher
from docsense.ingestion.fetch import FetchedFile, HttpFileFetcher
from docsense.metrics.observability import PipelineMetrics, get_logger
from docsense.models import (
    Document,
    DocumentStatus,
    DocumentUpdate,
    EmbeddingResult,
    EmbeddingSource,
    ExtractedChunk,
    IngestionReport,
    ItemResult,
    StoredChunk,
    utcnow,
)
from docsense.services.enrichment import DocumentEnricher
from docsense.services.retry import ProviderError
from docsense.storage.base import Datastore, DatastoreError, require_owner


class IngestionError(RuntimeError):
    """Raised when ingestion fails for a particular document."""


@dataclass(frozen=True)
class IngestionConfig:
    """Configuration for document ingestion."""

    max_length: int = 1000
    overlap: int = 200
    embedding_concurrency: int = 4


class IngestionPipeline:
    """Extract, chunk, embed, persist and enrich one document at a time.

    The document row is written once at registration (``processing``) and once
    when ingestion ends: ``completed`` with summary, tags and the mean chunk
    embedding, or ``error`` with the failure detail in its summary.
    """

    def __init__(
        self,
        datastore: Datastore,
        embeddings: EmbeddingService,
        *,
        dispatcher: ExtractionDispatcher | None = None,
        enricher: DocumentEnricher | None = None,
        fetcher: HttpFileFetcher | None = None,
        config: IngestionConfig | None = None,
    ) -> None:
        self._datastore = datastore
        self._embeddings = embeddings
        self._dispatcher = dispatcher or ExtractionDispatcher()
        self._enricher = enricher or DocumentEnricher()
        self._fetcher = fetcher or HttpFileFetcher()
        self._config = config or IngestionConfig()
        if self._config.embedding_concurrency < 1:
            raise ValueError("embedding_concurrency must be at least 1")
        self._logger = get_logger("ingestion")

    def register_document(
        self,
        *,
        owner_id: str,
        name: str,
        media_type: str,
        size_bytes: int,
        location: str | None = None,
    ) -> Document:
        document = Document(
            document_id=uuid4().hex,
            owner_id=require_owner(owner_id),
            name=name,
            media_type=media_type,
            size_bytes=size_bytes,
            location=location,
        )
        return self._datastore.create_document(document)

    async def ingest_file(self, document: Document, file: FetchedFile) -> IngestionReport:
        start = time.perf_counter()
        try:
            extracted = await asyncio.to_thread(self._dispatcher.extract, file, document.media_type)
            chunks = bound_chunks(extracted, self._config.max_length, self._config.overlap)
        except Exception as exc:
            return self._fail(document, exc, start)
        return await self._process(document, chunks, start)

    async def ingest_text(self, document: Document, text: str) -> IngestionReport:
        """Index raw text with the sliding-window chunker instead of an extractor."""

        start = time.perf_counter()
        try:
            chunks = chunk_text(text, self._config.max_length, self._config.overlap)
        except ValueError as exc:
            return self._fail(document, exc, start)
        return await self._process(document, chunks, start)

    async def ingest_url(self, owner_id: str, url: str, media_type: str | None = None) -> IngestionReport:
        """Fetch ``url`` then ingest it; a failed fetch raises ``FetchError`` before any row is written."""

        require_owner(owner_id)
        file = await self._fetcher.fetch(url, media_type)
        document = self.register_document(
            owner_id=owner_id,
            name=file.name,
            media_type=file.media_type,
            size_bytes=file.size,
            location=url,
        )
        return await self.ingest_file(document, file)

    async def _process(self, document: Document, chunks: Sequence[ExtractedChunk], start: float) -> IngestionReport:
        inserted = False
        try:
            if not chunks:
                raise IngestionError("No content to ingest")
            results = await self._embed_all(chunks)
            stored = self._to_stored(document, chunks, results)
            failures = [f"chunk {result.index}: {result.error}" for result in results if not result.ok]
            if not stored:
                raise IngestionError(f"No chunk could be embedded ({len(failures)} failures)")
            self._datastore.insert_chunks(document.document_id, stored)
            inserted = True

            contents = [chunk.content for chunk in chunks]
            document_vector = mean_vector([chunk.embedding for chunk in stored])
            summary, tags = await asyncio.gather(
                self._enricher.summarize(contents),
                self._enricher.generate_tags(contents),
            )
            self._datastore.update_document(
                document.document_id,
                DocumentUpdate(
                    status=DocumentStatus.COMPLETED,
                    summary=summary,
                    tags=tags,
                    embedding=document_vector,
                    chunk_count=len(stored),
                ),
            )
        except Exception as exc:
            if inserted:
                self._discard_chunks(document)
            return self._fail(document, exc, start)

        fallback_count = sum(1 for chunk in stored if chunk.metadata.embedding_model is EmbeddingSource.FALLBACK)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(stored), DocumentStatus.COMPLETED.value)
        self._logger.info(
            "ingestion.complete",
            document_id=document.document_id,
            filename=document.name,
            chunk_count=len(chunks),
            embedded_count=len(stored),
            failed_count=len(failures),
            fallback_count=fallback_count,
            duration_seconds=duration,
        )
        return IngestionReport(
            document_id=document.document_id,
            status=DocumentStatus.COMPLETED,
            chunk_count=len(chunks),
            embedded_count=len(stored),
            failed_count=len(failures),
            fallback_count=fallback_count,
            failures=failures,
        )

    async def _embed_all(self, chunks: Sequence[ExtractedChunk]) -> List[ItemResult[EmbeddingResult]]:
        semaphore = asyncio.Semaphore(self._config.embedding_concurrency)

        async def embed_one(index: int, chunk: ExtractedChunk) -> ItemResult[EmbeddingResult]:
            async with semaphore:
                try:
                    return ItemResult(index=index, value=await self._embeddings.embed(chunk.content))
                except (ProviderError, EmbeddingDimensionError, ValueError) as exc:
                    self._logger.warning("ingestion.embedding_failed", chunk_index=index, error=str(exc))
                    return ItemResult(index=index, error=str(exc))

        return list(await asyncio.gather(*(embed_one(index, chunk) for index, chunk in enumerate(chunks))))

    @staticmethod
    def _to_stored(
        document: Document,
        chunks: Sequence[ExtractedChunk],
        results: Sequence[ItemResult[EmbeddingResult]],
    ) -> List[StoredChunk]:
        created_at = utcnow()
        stored: List[StoredChunk] = []
        for result in results:
            if not result.ok or result.value is None:
                continue
            chunk = chunks[result.index]
            metadata = chunk.metadata.with_embedding_source(result.value.source)
            if metadata.filename is None:
                metadata = replace(metadata, filename=document.name)
            stored.append(
                StoredChunk(
                    chunk_id=f"{document.document_id}-{result.index}",
                    document_id=document.document_id,
                    owner_id=document.owner_id,
                    content=chunk.content,
                    metadata=metadata,
                    order=result.index,
                    embedding=result.value.vector,
                    created_at=created_at,
                ),
            )
        return stored

    def _discard_chunks(self, document: Document) -> None:
        try:
            self._datastore.delete_chunks(document.document_id)
        except DatastoreError as exc:
            self._logger.error("ingestion.rollback_failed", document_id=document.document_id, error=str(exc))

    def _fail(self, document: Document, exc: BaseException, start: float) -> IngestionReport:
        message = f"Error processing document: {exc}"
        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, 0, DocumentStatus.ERROR.value)
        self._logger.error(
            "ingestion.failed",
            document_id=document.document_id,
            filename=document.name,
            error=str(exc),
            duration_seconds=duration,
        )
        try:
            self._datastore.update_document(
                document.document_id,
                DocumentUpdate(status=DocumentStatus.ERROR, summary=message),
            )
        except Exception as update_exc:
            self._logger.error("ingestion.status_update_failed", document_id=document.document_id, error=str(update_exc))
        return IngestionReport(
            document_id=document.document_id,
            status=DocumentStatus.ERROR,
            chunk_count=0,
            embedded_count=0,
            failed_count=0,
            error=message,
        )
