"""Query decomposition: one question in, several atomic sub-queries out."""

from __future__ import annotations

import json
import re
from typing import Any, List, Protocol, Sequence

from docsense.metrics.observability import PipelineMetrics, get_logger
from docsense.models import RetrievedChunk
from docsense.retrieval.hybrid import dedupe_by_document_content
from docsense.services.generation import GenerativeProvider
from docsense.services.retry import ProviderError, RetryPolicy

_CODE_FENCE = re.compile(r"^\s*```[\w-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)

DECOMPOSITION_PROMPT = """
You are a search query planner. Break the user question below into atomic,
complementary sub-queries that together cover everything the question asks.
Each sub-query must be answerable on its own by a document search.

Return ONLY a JSON array of strings, with no explanation and no markdown.

USER QUESTION: {query}

Sub-queries:
"""


class ChunkSearcher(Protocol):
    async def search(
        self,
        query: str,
        owner_id: str,
        limit: int | None = None,
        keyword: str | None = None,
    ) -> Sequence[RetrievedChunk]: ...


def strip_code_fence(text: str) -> str:
    match = _CODE_FENCE.match(text)
    return match.group(1) if match else text.strip()


def parse_subqueries(text: str) -> List[str]:
    """Parse a model response into sub-query strings; empty list when unusable."""

    try:
        parsed: Any = json.loads(strip_code_fence(text))
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, list):
        return []
    queries: List[str] = []
    for item in parsed:
        if not isinstance(item, str):
            continue
        candidate = item.strip()
        if candidate and candidate not in queries:
            queries.append(candidate)
    return queries


class QueryDecomposer:
    """Expands a question via the language model; never returns an empty list."""

    def __init__(
        self,
        generator: GenerativeProvider | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        max_subqueries: int = 5,
        include_original: bool = True,
    ) -> None:
        if max_subqueries < 1:
            raise ValueError("max_subqueries must be at least 1")
        self._generator = generator
        self._retry = retry_policy or RetryPolicy()
        self._max = max_subqueries
        self._include_original = include_original
        self._logger = get_logger("decomposition")

    async def decompose(self, query: str) -> List[str]:
        sub_queries = await self._model_subqueries(query)
        if not sub_queries:
            sub_queries = [query]
        elif self._include_original and query not in sub_queries:
            sub_queries.insert(0, query)
        sub_queries = sub_queries[: self._max]
        PipelineMetrics.observe_decomposition(len(sub_queries))
        self._logger.info("decomposition.complete", query=query, sub_queries=sub_queries)
        return sub_queries

    async def _model_subqueries(self, query: str) -> List[str]:
        if self._generator is None:
            return []
        generator = self._generator
        try:
            text = await self._retry.run(
                lambda: generator.generate(DECOMPOSITION_PROMPT.format(query=query)),
                name="decomposition.generate",
            )
        except ProviderError as exc:
            self._logger.warning("decomposition.fallback", status=exc.status, error=str(exc))
            return []
        parsed = parse_subqueries(text)
        if not parsed:
            self._logger.warning("decomposition.unparsable", response_preview=text[:200])
        return parsed


async def retrieve_for_subqueries(
    searcher: ChunkSearcher,
    sub_queries: Sequence[str],
    owner_id: str,
    *,
    limit: int | None = None,
) -> List[RetrievedChunk]:
    """Search each sub-query in order, then drop repeated (document, content) pairs."""

    collected: List[RetrievedChunk] = []
    for sub_query in sub_queries:
        collected.extend(await searcher.search(sub_query, owner_id, limit))
    return dedupe_by_document_content(collected)
