"""Structured logging, correlation ids and Prometheus metrics for docsense."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterable, Iterator, Literal

import structlog
from prometheus_client import Counter, Histogram

_configured_level: int | None = None
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="-")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(level: int | str = logging.INFO, renderer: Literal["json", "console"] = "json") -> None:
    """Route structlog through stdlib logging; later calls only adjust the level."""

    global _configured_level  # noqa: PLW0603 - module-level guard
    numeric = _resolve_level(level)
    if _configured_level is not None:
        if numeric != _configured_level:
            logging.getLogger().setLevel(numeric)
            _configured_level = numeric
        return
    logging.basicConfig(level=numeric, format="%(message)s")
    final = structlog.dev.ConsoleRenderer() if renderer == "console" else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            final,
        ],
        context_class=dict,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured_level = numeric


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind ``correlation_id`` to every log line emitted inside the block."""

    token = _correlation_id.set(correlation_id)
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    try:
        yield correlation_id
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")
        _correlation_id.reset(token)


def current_correlation_id() -> str:
    return _correlation_id.get()


def get_logger(component: str = "docsense") -> structlog.stdlib.BoundLogger:
    if _configured_level is None:
        configure_logging()
    return structlog.get_logger(f"docsense.{component}" if component != "docsense" else component)


def _unit_interval(score: float) -> float:
    return min(1.0, max(0.0, score))

class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "docsense_ingestion_duration_seconds",
        "Time spent ingesting a document.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    ingestion_chunks = Histogram(
        "docsense_ingestion_chunk_count",
        "Chunks produced per ingested document.",
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    ingestion_outcomes = Counter(
        "docsense_ingestion_total",
        "Ingested documents by final status.",
        ["status"],
    )
    embeddings = Counter(
        "docsense_embeddings_total",
        "Embeddings produced, labelled by the source that produced them.",
        ["source"],
    )
    retrieval_latency = Histogram(
        "docsense_retrieval_duration_seconds",
        "Time spent retrieving context chunks.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_chunk_count = Histogram(
        "docsense_retrieved_chunk_count",
        "Number of chunks returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    retrieval_fallbacks = Counter(
        "docsense_retrieval_fallback_total",
        "Searches answered from the recent-chunks fallback.",
        ["reason"],
    )
    grounding_score = Histogram(
        "docsense_grounding_score",
        "Similarity score of retrieved chunks.",
        buckets=(0.0, 0.25, 0.5, 0.75, 1.0),
    )
    generation_latency = Histogram(
        "docsense_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 15.0),
    )
    generation_fallbacks = Counter(
        "docsense_generation_fallback_total",
        "Canned replies returned instead of a generated answer.",
        ["reason"],
    )
    subquery_count = Histogram(
        "docsense_decomposition_subquery_count",
        "Sub-queries produced per decomposed question.",
        buckets=(1, 2, 3, 4, 5, 8),
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, chunk_count: int, status: str) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        cls.ingestion_chunks.observe(chunk_count)
        cls.ingestion_outcomes.labels(status=status).inc()

    @classmethod
    def observe_embedding(cls, source: str) -> None:
        cls.embeddings.labels(source=source).inc()

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        chunk_count: int,
        scores: Iterable[float],
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(chunk_count)
        for score in scores:
            cls.grounding_score.observe(_unit_interval(score))

    @classmethod
    def observe_retrieval_fallback(cls, reason: str) -> None:
        cls.retrieval_fallbacks.labels(reason=reason).inc()

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def observe_generation_fallback(cls, reason: str) -> None:
        cls.generation_fallbacks.labels(reason=reason).inc()

    @classmethod
    def observe_decomposition(cls, subquery_count: int) -> None:
        cls.subquery_count.observe(subquery_count)


__all__ = [
    "PipelineMetrics",
    "configure_logging",
    "correlation_scope",
    "current_correlation_id",
    "get_logger",
]
