"""Scripted collaborators shared by the test modules."""

from __future__ import annotations

from typing import Any, List, Sequence

import httpx

from docsense.services.generation import GeminiGenerator
from docsense.services.retry import ProviderError


async def no_sleep(_: float) -> None:
    return None


class ScriptedGenerator:
    """Returns queued replies in order, repeating the last; queued exceptions are raised."""

    name = "scripted"

    def __init__(self, *replies: Any) -> None:
        self.replies: List[Any] = list(replies)
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class ScriptedEmbeddingProvider:
    name = "scripted"

    def __init__(self, vector: Sequence[float] | None = None, error: ProviderError | None = None) -> None:
        self.vector = list(vector) if vector is not None else None
        self.error = error
        self.calls = 0

    async def embed(self, text: str) -> Any:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [self.vector]


def proxy_error_gemini() -> GeminiGenerator:
    """Gemini client whose every call gets a 200 HTML page instead of JSON."""

    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>proxy error</html>"))
    return GeminiGenerator(api_key="test-key", base_url="https://gemini.invalid/v1beta", transport=transport)
