"""Answer synthesis over retrieved context and conversation history."""

from __future__ import annotations

import time
from typing import Sequence

from docsense.metrics.observability import PipelineMetrics, get_logger
from docsense.models import ChatMessage, RetrievedChunk
from docsense.services.generation import GenerativeProvider, TemplateGenerator
from docsense.services.retry import ProviderError, RetryPolicy

CHAT_PROMPT = """
You are an intelligent document assistant. You can analyze and answer questions about uploaded documents.

RELEVANT DOCUMENT CONTEXT:
{documents}

CONVERSATION HISTORY:
{history}

USER QUESTION: {question}

Please provide a comprehensive answer based on the document context. If the question cannot be answered from the provided documents, clearly state that and explain what information is missing.

Guidelines:
- Always cite which documents or sections you're referencing
- Be specific and accurate
- If you're unsure about something, say so
- Provide relevant quotes when helpful
- Keep your response clear and well-structured

Answer:
"""

OVERLOADED_REPLY = (
    "I'm sorry, but the AI service is currently experiencing high traffic. Please try again in a few moments. "
    "In the meantime, I can see you're asking about your documents - could you try rephrasing your question "
    "or asking about a specific aspect?"
)
RATE_LIMITED_REPLY = "I'm receiving too many requests right now. Please wait a moment and try again."
MALFORMED_REPLY = (
    "I encountered an issue processing your request. Could you please rephrase your question "
    "or make it more specific?"
)
GENERIC_REPLY = (
    "I'm experiencing technical difficulties right now. Please try again in a few minutes. "
    "If the problem persists, the AI service might be temporarily unavailable."
)

_FALLBACK_REPLIES = {
    503: ("overloaded", OVERLOADED_REPLY),
    429: ("rate_limited", RATE_LIMITED_REPLY),
    400: ("malformed_request", MALFORMED_REPLY),
}


def build_chat_prompt(question: str, chunks: Sequence[RetrievedChunk], history: Sequence[ChatMessage]) -> str:
    documents = "\n\n".join(f"Document: {chunk.content}" for chunk in chunks)
    transcript = "\n".join(f"{message.role}: {message.content}" for message in history)
    return CHAT_PROMPT.format(documents=documents, history=transcript, question=question)


def fallback_reply(status: int | None) -> tuple[str, str]:
    """Return ``(reason, text)`` for an unrecoverable provider failure."""

    return _FALLBACK_REPLIES.get(status or 0, ("generic", GENERIC_REPLY))


class AnswerSynthesizer:
    """Produces answer text; a provider failure yields a canned apology, never an exception."""

    def __init__(self, generator: GenerativeProvider | None = None, retry_policy: RetryPolicy | None = None) -> None:
        self._generator = generator or TemplateGenerator()
        self._retry = retry_policy or RetryPolicy()
        self._logger = get_logger("synthesis")

    async def synthesize(
        self,
        question: str,
        chunks: Sequence[RetrievedChunk],
        history: Sequence[ChatMessage] = (),
    ) -> str:
        prompt = build_chat_prompt(question, chunks, history)
        generator = self._generator
        start = time.perf_counter()
        try:
            text = await self._retry.run(lambda: generator.generate(prompt), name="synthesis.generate")
        except ProviderError as exc:
            reason, reply = fallback_reply(exc.status)
            PipelineMetrics.observe_generation_fallback(reason)
            self._logger.warning(
                "synthesis.fallback",
                reason=reason,
                status=exc.status,
                provider=exc.provider,
                error=str(exc),
            )
            return reply
        duration = time.perf_counter() - start
        PipelineMetrics.observe_generation(duration)
        self._logger.info(
            "generation.complete",
            provider=generator.name,
            duration_seconds=duration,
            context_chunks=len(chunks),
            history_messages=len(history),
        )
        return text.strip()
