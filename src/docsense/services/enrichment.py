"""Document summaries and tags, with offline fallbacks."""

from __future__ import annotations

from typing import List, Sequence

from docsense.metrics.observability import PipelineMetrics, get_logger
from docsense.services.generation import GenerativeProvider
from docsense.services.retry import ProviderError, RetryPolicy

SUMMARY_PROMPT = """
Please analyze the following document and provide a comprehensive summary.

DOCUMENT CONTENT:
{content}

Please provide:
1. A brief executive summary (2-3 sentences)
2. Key topics covered
3. Main insights or findings
4. Important data points or statistics mentioned
5. Any notable conclusions or recommendations

Summary:
"""

TAGS_PROMPT = """
Analyze the following document content and generate relevant tags.

DOCUMENT CONTENT:
{content}

Generate 5-10 relevant tags that describe the main topics, themes, or categories of this document.
Return only the tags as a comma-separated list, nothing else.

Tags:
"""

BASE_TAGS = ("document", "analysis", "content")
KEYWORD_TAGS = (
    "research",
    "report",
    "analysis",
    "data",
    "study",
    "business",
    "technical",
    "guide",
    "manual",
    "presentation",
)
FALLBACK_TAG_LIMIT = 5


def fallback_summary(contents: Sequence[str]) -> str:
    word_count = sum(len(content.split(" ")) for content in contents)
    return (
        "Document Summary (Auto-generated due to service unavailability):\n\n"
        f"This document contains approximately {word_count} words across {len(contents)} sections.\n\n"
        "Key topics appear to include the main themes and concepts discussed in the uploaded content. "
        "For a detailed analysis, please try again when the AI service is available, or ask specific "
        "questions about particular sections of your document.\n\n"
        "Note: This is a fallback summary due to temporary service unavailability."
    )


def fallback_tags(contents: Sequence[str]) -> List[str]:
    text = " ".join(contents).lower()
    found = [word for word in KEYWORD_TAGS if word in text]
    return [*BASE_TAGS, *found][:FALLBACK_TAG_LIMIT]


def parse_tags(text: str, limit: int) -> List[str]:
    return [tag.strip() for tag in text.strip().split(",") if tag.strip()][:limit]


class DocumentEnricher:
    """Generates a summary and a tag list for a set of chunk contents."""

    def __init__(
        self,
        generator: GenerativeProvider | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        tag_limit: int = 10,
        tag_context_chunks: int = 5,
    ) -> None:
        self._generator = generator
        self._retry = retry_policy or RetryPolicy()
        self._tag_limit = tag_limit
        self._tag_context_chunks = tag_context_chunks
        self._logger = get_logger("enrichment")

    async def summarize(self, contents: Sequence[str]) -> str:
        prompt = SUMMARY_PROMPT.format(content="\n\n".join(contents))
        text = await self._generate(prompt, name="enrichment.summary")
        if text is None or not text.strip():
            PipelineMetrics.observe_generation_fallback("summary")
            return fallback_summary(contents)
        return text.strip()

    async def generate_tags(self, contents: Sequence[str]) -> List[str]:
        context = contents[: self._tag_context_chunks]
        text = await self._generate(TAGS_PROMPT.format(content="\n\n".join(context)), name="enrichment.tags")
        tags = parse_tags(text, self._tag_limit) if text is not None else []
        if not tags:
            PipelineMetrics.observe_generation_fallback("tags")
            return fallback_tags(contents)
        return tags

    async def _generate(self, prompt: str, *, name: str) -> str | None:
        if self._generator is None:
            return None
        generator = self._generator
        try:
            return await self._retry.run(lambda: generator.generate(prompt), name=name)
        except ProviderError as exc:
            self._logger.warning(f"{name}.fallback", status=exc.status, provider=exc.provider, error=str(exc))
            return None
