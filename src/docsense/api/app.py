"""FastAPI application exposing docsense services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

import chromadb
import httpx
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from docsense.api.schemas import (
    ChatRequest,
    ChatResponse,
    DocumentIngestionResponse,
    DocumentListResponse,
    DocumentModel,
    IngestionReportModel,
    SimilarDocumentModel,
    SimilarDocumentsResponse,
    SummarizeRequest,
    SummarizeResponse,
    TextIngestionRequest,
    UrlIngestionRequest,
)
from docsense.config import Settings, get_settings
from docsense.embeddings import (
    ChromaVectorStore,
    EmbeddingConfig,
    EmbeddingProvider,
    EmbeddingService,
    HuggingFaceInferenceProvider,
    LocalModelEmbeddingProvider,
)
from docsense.ingestion import FetchedFile, FetchError, HttpFileFetcher, IngestionConfig, IngestionPipeline
from docsense.metrics.observability import configure_logging, correlation_scope, get_logger
from docsense.models import ChatMessage, IngestionReport
from docsense.retrieval import HybridRetriever, RetrievalConfig, SimilarDocumentFinder
from docsense.services.chat import ChatConfig, ChatService
from docsense.services.decomposition import QueryDecomposer
from docsense.services.enrichment import DocumentEnricher
from docsense.services.generation import GeminiGenerator, GenerationConfig, GenerativeProvider
from docsense.services.retry import RetryPolicy
from docsense.services.synthesis import AnswerSynthesizer
from docsense.storage import AuthorizationError, ChromaSQLiteDatastore, Datastore, DocumentNotFoundError, SQLiteRecordStore

_MB = 1024 * 1024


@dataclass(frozen=True)
class AppDependencies:
    datastore: Datastore
    pipeline: IngestionPipeline
    chat_service: ChatService


def _build_embedding_provider(settings: Settings) -> EmbeddingProvider | None:
    if settings.embedding_provider == "huggingface":
        return HuggingFaceInferenceProvider(
            settings.embedding_model,
            api_key=settings.huggingface_api_key,
            base_url=settings.huggingface_api_url,
            timeout=settings.provider_timeout_seconds,
        )
    if settings.embedding_provider == "local":
        return LocalModelEmbeddingProvider(settings.embedding_model, device=settings.embedding_device)
    return None


def _build_generator(settings: Settings) -> GenerativeProvider | None:
    if settings.generator_provider != "gemini":
        return None
    return GeminiGenerator(
        GenerationConfig(
            model=settings.generator_model,
            temperature=settings.generator_temperature,
            timeout=settings.provider_timeout_seconds,
        ),
        api_key=settings.gemini_api_key,
        base_url=settings.gemini_api_url,
    )


def build_dependencies(settings: Settings) -> AppDependencies:
    retry = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        jitter=settings.retry_jitter_seconds,
    )
    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    vectors = ChromaVectorStore(
        settings.chroma_chunk_collection,
        settings.chroma_document_collection,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
    )
    datastore = ChromaSQLiteDatastore(SQLiteRecordStore(settings.sqlite_path), vectors)
    embeddings = EmbeddingService(
        _build_embedding_provider(settings),
        EmbeddingConfig(
            model=settings.embedding_model,
            dim=settings.embedding_dim,
            fallback_enabled=settings.embedding_fallback_enabled,
        ),
        retry,
    )
    # Template mode leaves decomposition and enrichment on their offline fallbacks.
    generator = _build_generator(settings)
    enricher = DocumentEnricher(
        generator,
        retry_policy=retry,
        tag_limit=settings.tag_limit,
        tag_context_chunks=settings.tag_context_chunks,
    )
    pipeline = IngestionPipeline(
        datastore,
        embeddings,
        enricher=enricher,
        fetcher=HttpFileFetcher(max_bytes=settings.max_download_size_mb * _MB),
        config=IngestionConfig(
            max_length=settings.chunk_max_length,
            overlap=settings.chunk_overlap,
            embedding_concurrency=settings.embedding_concurrency,
        ),
    )
    retriever = HybridRetriever(
        datastore,
        embeddings,
        RetrievalConfig(
            limit=settings.retrieval_limit,
            similarity_threshold=settings.retrieval_similarity_threshold,
            keyword_similarity=settings.retrieval_keyword_similarity,
            fallback_similarity=settings.retrieval_fallback_similarity,
            keyword_from_query=settings.retrieval_keyword_from_query,
        ),
    )
    chat_service = ChatService(
        datastore,
        retriever,
        decomposer=QueryDecomposer(
            generator,
            retry_policy=retry,
            max_subqueries=settings.decomposition_max_subqueries,
            include_original=settings.decomposition_include_original,
        ),
        synthesizer=AnswerSynthesizer(generator, retry),
        enricher=enricher,
        similar=SimilarDocumentFinder(
            datastore,
            threshold=settings.similar_documents_threshold,
            limit=settings.similar_documents_limit,
        ),
        config=ChatConfig(
            retrieval_limit=settings.retrieval_limit,
            history_turns=settings.history_turns,
            source_excerpt_chars=settings.source_excerpt_chars,
        ),
    )
    return AppDependencies(datastore=datastore, pipeline=pipeline, chat_service=chat_service)


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging(settings.log_level, settings.log_format)
    logger = get_logger("api")
    app = FastAPI(title="docsense API", version="0.1.0")
    app.state.dependencies = deps

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        with correlation_scope(correlation_id):
            response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    def require_owner_id(request: Request) -> str:
        owner_id = (request.headers.get("X-Owner-ID") or "").strip()
        if not owner_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized - No owner provided")
        return owner_id

    def _error(request: Request, status_code: int, detail: str) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        return JSONResponse(status_code=status_code, content={"detail": detail, "correlation_id": correlation_id})

    @app.exception_handler(AuthorizationError)
    async def handle_authorization_error(request: Request, exc: AuthorizationError) -> JSONResponse:
        logger.warning("authorization.denied", path=request.url.path, detail=str(exc))
        return _error(request, status.HTTP_403_FORBIDDEN, str(exc))

    @app.exception_handler(DocumentNotFoundError)
    async def handle_not_found(request: Request, exc: DocumentNotFoundError) -> JSONResponse:
        return _error(request, status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(FetchError)
    async def handle_fetch_error(request: Request, exc: FetchError) -> JSONResponse:
        logger.warning("fetch.failed", detail=str(exc))
        return _error(request, status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(ValueError)
    async def handle_bad_request(request: Request, exc: ValueError) -> JSONResponse:
        return _error(request, status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error", "correlation_id": correlation_id},
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_datastore(dep: AppDependencies = Depends(get_dependencies)) -> Datastore:
        return dep.datastore

    def get_pipeline(dep: AppDependencies = Depends(get_dependencies)) -> IngestionPipeline:
        return dep.pipeline

    def get_chat_service(dep: AppDependencies = Depends(get_dependencies)) -> ChatService:
        return dep.chat_service

    def _ingestion_response(datastore: Datastore, report: IngestionReport, owner_id: str) -> DocumentIngestionResponse:
        document = datastore.get_document(report.document_id, owner_id)
        return DocumentIngestionResponse(
            document=DocumentModel.from_document(document),
            report=IngestionReportModel.from_report(report),
        )

    @app.post("/documents", response_model=DocumentIngestionResponse, status_code=status.HTTP_201_CREATED)
    async def upload_document(
        file: UploadFile = File(...),
        media_type: Optional[str] = Form(default=None),
        owner_id: str = Depends(require_owner_id),
        datastore: Datastore = Depends(get_datastore),
        pipeline: IngestionPipeline = Depends(get_pipeline),
        _auth: None = Depends(require_api_key),
    ) -> DocumentIngestionResponse:
        filename = file.filename or f"upload-{uuid4().hex}"
        data = bytearray()
        while True:
            block = await file.read(_MB)
            if not block:
                break
            data.extend(block)
            if len(data) > settings.max_upload_size_mb * _MB:
                await file.close()
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=f"File too large (>{settings.max_upload_size_mb}MB): {filename}",
                )
        await file.close()
        if not data:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {filename}")
        declared = media_type or file.content_type or "text/plain"
        document = pipeline.register_document(
            owner_id=owner_id,
            name=filename,
            media_type=declared,
            size_bytes=len(data),
        )
        report = await pipeline.ingest_file(
            document,
            FetchedFile(name=filename, media_type=declared, data=bytes(data)),
        )
        return _ingestion_response(datastore, report, owner_id)

    @app.post("/documents/text", response_model=DocumentIngestionResponse, status_code=status.HTTP_201_CREATED)
    async def ingest_raw_text(
        payload: TextIngestionRequest,
        owner_id: str = Depends(require_owner_id),
        datastore: Datastore = Depends(get_datastore),
        pipeline: IngestionPipeline = Depends(get_pipeline),
        _auth: None = Depends(require_api_key),
    ) -> DocumentIngestionResponse:
        if not payload.text.strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No non-empty text provided")
        document = pipeline.register_document(
            owner_id=owner_id,
            name=payload.name,
            media_type="text/plain",
            size_bytes=len(payload.text.encode("utf-8")),
        )
        report = await pipeline.ingest_text(document, payload.text)
        return _ingestion_response(datastore, report, owner_id)

    @app.post("/documents/url", response_model=DocumentIngestionResponse, status_code=status.HTTP_201_CREATED)
    async def ingest_from_url(
        payload: UrlIngestionRequest,
        owner_id: str = Depends(require_owner_id),
        datastore: Datastore = Depends(get_datastore),
        pipeline: IngestionPipeline = Depends(get_pipeline),
        _auth: None = Depends(require_api_key),
    ) -> DocumentIngestionResponse:
        try:
            host = httpx.URL(payload.url).host or ""
        except httpx.InvalidURL as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid URL: {payload.url}") from exc
        allowed = settings.allowed_ingest_domains_tuple
        if not allowed or host not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Domain not allowed: {host}")
        report = await pipeline.ingest_url(owner_id, payload.url, payload.media_type)
        return _ingestion_response(datastore, report, owner_id)

    @app.get("/documents", response_model=DocumentListResponse)
    async def list_documents(
        owner_id: str = Depends(require_owner_id),
        datastore: Datastore = Depends(get_datastore),
        _auth: None = Depends(require_api_key),
    ) -> DocumentListResponse:
        documents = datastore.list_documents(owner_id)
        return DocumentListResponse(documents=[DocumentModel.from_document(document) for document in documents])

    @app.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_document(
        document_id: str,
        owner_id: str = Depends(require_owner_id),
        datastore: Datastore = Depends(get_datastore),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        datastore.delete_document(document_id, owner_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/documents/{document_id}/similar", response_model=SimilarDocumentsResponse)
    async def similar_documents(
        document_id: str,
        owner_id: str = Depends(require_owner_id),
        service: ChatService = Depends(get_chat_service),
        _auth: None = Depends(require_api_key),
    ) -> SimilarDocumentsResponse:
        similar = service.find_similar(document_id, owner_id)
        return SimilarDocumentsResponse(similar_documents=[SimilarDocumentModel.from_similar(row) for row in similar])

    @app.post("/documents/summarize", response_model=SummarizeResponse)
    async def summarize_documents(
        payload: SummarizeRequest,
        owner_id: str = Depends(require_owner_id),
        service: ChatService = Depends(get_chat_service),
        _auth: None = Depends(require_api_key),
    ) -> SummarizeResponse:
        summary = await service.summarize_documents(payload.document_ids, owner_id)
        return SummarizeResponse(summary=summary)

    @app.post("/chat", response_model=ChatResponse)
    async def chat(
        payload: ChatRequest,
        owner_id: str = Depends(require_owner_id),
        service: ChatService = Depends(get_chat_service),
        _auth: None = Depends(require_api_key),
    ) -> ChatResponse:
        history = None
        if payload.history is not None:
            history = [ChatMessage(role=message.role, content=message.content) for message in payload.history]
        answer = await service.chat(payload.message, owner_id, history)
        return ChatResponse.from_answer(answer)

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from docsense import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    return app
