from __future__ import annotations

import pytest

from docsense.embeddings.service import EmbeddingService
from docsense.ingestion import FetchedFile, IngestionPipeline
from docsense.models import ChatMessage
from docsense.retrieval.service import HybridRetriever
from docsense.services.chat import NO_DOCUMENTS_WARNING, ChatService, excerpt
from docsense.services.synthesis import AnswerSynthesizer
from docsense.storage import AuthorizationError, DatastoreError, DocumentNotFoundError
from stubs import ScriptedGenerator

LONG_PARAGRAPH = "Quarterly revenue grew because of new storage contracts. " * 6


async def _ingest(datastore, embeddings, name: str, text: str) -> str:
    pipeline = IngestionPipeline(datastore, embeddings)
    data = text.encode()
    document = pipeline.register_document(owner_id="owner-a", name=name, media_type="text/plain", size_bytes=len(data))
    report = await pipeline.ingest_file(document, FetchedFile(name, "text/plain", data))
    return report.document_id


def _service(datastore, embeddings, generator=None, fast_retry=None) -> ChatService:
    synthesizer = AnswerSynthesizer(generator, fast_retry) if generator is not None else None
    return ChatService(datastore, HybridRetriever(datastore, embeddings), synthesizer=synthesizer)


def test_excerpt_marks_truncation_only():
    assert excerpt("short", 200) == "short"
    assert excerpt("x" * 205, 200) == "x" * 200 + "..."


@pytest.mark.asyncio
async def test_chat_without_documents_warns_and_persists(datastore):
    service = _service(datastore, EmbeddingService())

    answer = await service.chat("What is the revenue?", "owner-a")

    assert answer.sources == []
    assert answer.warning == NO_DOCUMENTS_WARNING
    assert answer.sub_queries == ["What is the revenue?"]
    assert answer.persisted is True
    [turn] = datastore.recent_conversation_turns("owner-a", 10)
    assert turn.message == "What is the revenue?"
    assert turn.response == answer.text


@pytest.mark.asyncio
async def test_chat_cites_truncated_sources(datastore):
    embeddings = EmbeddingService()
    document_id = await _ingest(datastore, embeddings, "revenue.txt", LONG_PARAGRAPH)
    service = _service(datastore, embeddings)

    answer = await service.chat("Quarterly revenue grew", "owner-a")

    assert answer.warning is None
    assert answer.sources[0].document_id == document_id
    assert answer.sources[0].content == LONG_PARAGRAPH[:200] + "..."
    assert answer.sources[0].metadata["section"] == "Paragraph 1"
    assert "Quarterly revenue grew" in answer.text


@pytest.mark.asyncio
async def test_stored_history_feeds_the_next_prompt(datastore, fast_retry):
    generator = ScriptedGenerator("First answer", "Second answer")
    service = _service(datastore, EmbeddingService(), generator, fast_retry)

    await service.chat("first question", "owner-a")
    await service.chat("second question", "owner-a")

    assert "user: first question\nassistant: First answer" in generator.prompts[1]


@pytest.mark.asyncio
async def test_explicit_history_replaces_stored_turns(datastore, fast_retry):
    generator = ScriptedGenerator("ok")
    service = _service(datastore, EmbeddingService(), generator, fast_retry)
    await service.chat("stored question", "owner-a")

    await service.chat("next", "owner-a", history=[ChatMessage(role="user", content="given turn")])

    assert "user: given turn" in generator.prompts[-1]
    assert "stored question" not in generator.prompts[-1]


@pytest.mark.asyncio
async def test_persistence_failure_is_reported_not_raised(datastore, monkeypatch):
    def refuse(turn):
        raise DatastoreError("disk full")

    monkeypatch.setattr(datastore, "insert_conversation_turn", refuse)
    service = _service(datastore, EmbeddingService())

    answer = await service.chat("anything", "owner-a")

    assert answer.persisted is False
    assert answer.persist_error == "disk full"
    assert answer.text


@pytest.mark.asyncio
async def test_chat_validates_owner_and_message(datastore):
    service = _service(datastore, EmbeddingService())

    with pytest.raises(AuthorizationError):
        await service.chat("question", "")
    with pytest.raises(ValueError):
        await service.chat("   ", "owner-a")


@pytest.mark.asyncio
async def test_summarize_documents(datastore):
    embeddings = EmbeddingService()
    first = await _ingest(datastore, embeddings, "a.txt", "alpha beta\n\ngamma")
    second = await _ingest(datastore, embeddings, "b.txt", "delta")
    service = _service(datastore, embeddings)

    summary = await service.summarize_documents([first, second], "owner-a")

    assert "approximately 4 words across 3 sections" in summary
    with pytest.raises(ValueError):
        await service.summarize_documents([], "owner-a")
    with pytest.raises(DocumentNotFoundError):
        await service.summarize_documents(["missing"], "owner-a")


@pytest.mark.asyncio
async def test_find_similar_delegates_to_document_vectors(datastore):
    embeddings = EmbeddingService()
    first = await _ingest(datastore, embeddings, "a.txt", "grid scale battery storage")
    second = await _ingest(datastore, embeddings, "b.txt", "grid scale battery storage")
    service = _service(datastore, embeddings)

    similar = service.find_similar(first, "owner-a")

    assert [row.document_id for row in similar] == [second]
    assert similar[0].name == "b.txt"
