"""Chat orchestration combining decomposition, retrieval and synthesis."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Sequence
from uuid import uuid4

from docsense.metrics.observability import get_logger
from docsense.models import (
    ChatAnswer,
    ChatMessage,
    ConversationTurn,
    ItemResult,
    RetrievedChunk,
    SimilarDocument,
    SourceCitation,
)
from docsense.retrieval.service import HybridRetriever, SimilarDocumentFinder
from docsense.services.decomposition import QueryDecomposer, retrieve_for_subqueries
from docsense.services.enrichment import DocumentEnricher
from docsense.services.synthesis import AnswerSynthesizer
from docsense.storage.base import Datastore, DatastoreError, DocumentNotFoundError, require_owner

NO_DOCUMENTS_WARNING = "No relevant documents found. Response based on general knowledge."


@dataclass(frozen=True)
class ChatConfig:
    retrieval_limit: int = 5
    history_turns: int = 10
    source_excerpt_chars: int = 200


def excerpt(content: str, limit: int) -> str:
    return content if len(content) <= limit else f"{content[:limit]}..."


class ChatService:
    """Answers questions over one owner's documents."""

    def __init__(
        self,
        datastore: Datastore,
        retriever: HybridRetriever,
        *,
        decomposer: QueryDecomposer | None = None,
        synthesizer: AnswerSynthesizer | None = None,
        enricher: DocumentEnricher | None = None,
        similar: SimilarDocumentFinder | None = None,
        config: ChatConfig | None = None,
    ) -> None:
        self._datastore = datastore
        self._retriever = retriever
        self._decomposer = decomposer or QueryDecomposer()
        self._synthesizer = synthesizer or AnswerSynthesizer()
        self._enricher = enricher or DocumentEnricher()
        self._similar = similar or SimilarDocumentFinder(datastore)
        self._config = config or ChatConfig()
        self._logger = get_logger("chat")

    async def chat(
        self,
        question: str,
        owner_id: str,
        history: Sequence[ChatMessage] | None = None,
    ) -> ChatAnswer:
        """Decompose, retrieve per sub-query, synthesize, then record the turn.

        When ``history`` is omitted the owner's stored turns are replayed.
        Recording the turn is best effort; its outcome is reported on the
        answer instead of raised.
        """

        require_owner(owner_id)
        if not question.strip():
            raise ValueError("Message is required")
        start = time.perf_counter()
        sub_queries = await self._decomposer.decompose(question)
        chunks = await retrieve_for_subqueries(
            self._retriever,
            sub_queries,
            owner_id,
            limit=self._config.retrieval_limit,
        )
        if history is None:
            history = self._stored_history(owner_id)
        text = await self._synthesizer.synthesize(question, chunks, history)

        sources = [self._citation(chunk) for chunk in chunks]
        persisted = self._persist_turn(owner_id, question, text, sources, sub_queries)
        latency_ms = (time.perf_counter() - start) * 1000
        self._logger.info(
            "chat.complete",
            owner_id=owner_id,
            sub_query_count=len(sub_queries),
            source_count=len(sources),
            persisted=persisted.ok,
            latency_ms=latency_ms,
        )
        return ChatAnswer(
            text=text,
            sources=sources,
            sub_queries=sub_queries,
            persisted=persisted.ok,
            warning=None if chunks else NO_DOCUMENTS_WARNING,
            persist_error=persisted.error,
            latency_ms=latency_ms,
        )

    def find_similar(self, document_id: str, owner_id: str) -> Sequence[SimilarDocument]:
        return self._similar.find_similar(document_id, owner_id)

    async def summarize_documents(self, document_ids: Sequence[str], owner_id: str) -> str:
        if not document_ids:
            raise ValueError("Document IDs are required")
        chunks = self._datastore.get_document_chunks(document_ids, owner_id)
        if not chunks:
            raise DocumentNotFoundError("No relevant document content found for summarization")
        return await self._enricher.summarize([chunk.content for chunk in chunks])

    def _stored_history(self, owner_id: str) -> List[ChatMessage]:
        try:
            turns = self._datastore.recent_conversation_turns(owner_id, self._config.history_turns)
        except DatastoreError as exc:
            self._logger.warning("chat.history_unavailable", owner_id=owner_id, error=str(exc))
            return []
        messages: List[ChatMessage] = []
        for turn in turns:
            messages.append(ChatMessage(role="user", content=turn.message))
            messages.append(ChatMessage(role="assistant", content=turn.response))
        return messages

    def _citation(self, chunk: RetrievedChunk) -> SourceCitation:
        return SourceCitation(
            document_id=chunk.document_id,
            content=excerpt(chunk.content, self._config.source_excerpt_chars),
            similarity=chunk.similarity,
            metadata=chunk.metadata.to_dict(),
        )

    def _persist_turn(
        self,
        owner_id: str,
        question: str,
        response: str,
        sources: Sequence[SourceCitation],
        sub_queries: Sequence[str],
    ) -> ItemResult[ConversationTurn]:
        turn = ConversationTurn(
            turn_id=uuid4().hex,
            owner_id=owner_id,
            message=question,
            response=response,
            sources=tuple(sources),
            sub_queries=tuple(sub_queries),
        )
        try:
            return ItemResult(index=0, value=self._datastore.insert_conversation_turn(turn))
        except DatastoreError as exc:
            self._logger.warning("chat.persist_failed", owner_id=owner_id, error=str(exc))
            return ItemResult(index=0, error=str(exc))
