"""Generation backends for docsense."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from docsense.services.retry import ProviderError

_DOCUMENT_BLOCK = re.compile(
    r"^Document: (.*?)(?=\n\nDocument: |\n\nCONVERSATION HISTORY:|\Z)",
    re.MULTILINE | re.DOTALL,
)


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "gemini-1.5-flash"
    temperature: float = 0.3
    timeout: float = 60.0


class GenerativeProvider(Protocol):
    """Protocol describing generation behaviour."""

    name: str

    async def generate(self, prompt: str) -> str:
        """Return the model completion for ``prompt`` or raise ``ProviderError``."""


class TemplateGenerator:
    """Simple deterministic generator used for tests and offline environments."""

    name = "template"

    async def generate(self, prompt: str) -> str:
        documents = [text.strip() for text in _DOCUMENT_BLOCK.findall(prompt)]
        if not documents:
            return "I do not have enough relevant context to answer that question."
        sources = "\n".join(f"[{index}] {text[:200]}" for index, text in enumerate(documents, start=1))
        return (
            f"Summary: {documents[0]}\n\n"
            "Answer: Based on the provided documents, the passages above are the closest match.\n"
            f"Sources:\n{sources}"
        )


class GeminiGenerator:
    """Calls the Gemini ``generateContent`` REST endpoint."""

    name = "gemini"

    def __init__(
        self,
        config: GenerationConfig | None = None,
        *,
        api_key: str | None = None,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or GenerationConfig()
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/models/{self._config.model}:generateContent"
        self._transport = transport

    async def generate(self, prompt: str) -> str:
        if not self._api_key:
            raise ProviderError("Gemini API key is not configured", status=401, provider=self.name)
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self._config.temperature},
        }
        try:
            async with httpx.AsyncClient(timeout=self._config.timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload, headers={"x-goog-api-key": self._api_key})
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Gemini request timed out: {exc}", status=503, provider=self.name) from exc
        except httpx.TransportError as exc:
            raise ProviderError(f"Gemini unreachable: {exc}", status=503, provider=self.name) from exc
        if response.status_code >= 400:
            raise ProviderError(
                f"Gemini returned {response.status_code}: {response.text[:200]}",
                status=response.status_code,
                provider=self.name,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Gemini returned a non-JSON body: {response.text[:200]}",
                status=500,
                provider=self.name,
            ) from exc
        return _candidate_text(body)


def _candidate_text(body: Any) -> str:
    try:
        parts = body["candidates"][0]["content"]["parts"]
        text = "".join(str(part.get("text", "")) for part in parts)
    except (KeyError, IndexError, TypeError, AttributeError) as exc:
        raise ProviderError(f"Gemini response has no candidate text: {exc}", status=500, provider="gemini") from exc
    if not text.strip():
        raise ProviderError("Gemini returned an empty completion", status=500, provider="gemini")
    return text
