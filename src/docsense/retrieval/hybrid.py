"""Pure helpers for combining vector and keyword retrieval results."""

from __future__ import annotations

from typing import Iterable, Sequence

from docsense.models import RetrievedChunk, StoredChunk


def filter_by_threshold(rows: Iterable[RetrievedChunk], threshold: float, limit: int) -> list[RetrievedChunk]:
    """Vector set: similarity strictly above ``threshold``, best first, capped at ``limit``."""

    kept = [row for row in rows if row.similarity > threshold]
    kept.sort(key=lambda row: row.similarity, reverse=True)
    return kept[:limit]


def keyword_matches(
    chunks: Iterable[StoredChunk],
    keyword: str | None,
    *,
    similarity: float,
    limit: int,
) -> list[RetrievedChunk]:
    """Keyword set: case-insensitive substring matches scored with a fixed similarity."""

    if not keyword:
        return []
    needle = keyword.casefold()
    matches: list[RetrievedChunk] = []
    for chunk in chunks:
        if needle not in chunk.content.casefold():
            continue
        matches.append(
            RetrievedChunk(
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
                content=chunk.content,
                metadata=chunk.metadata,
                similarity=similarity,
            ),
        )
        if len(matches) >= limit:
            break
    return matches


def merge_hybrid(
    vector_rows: Sequence[RetrievedChunk],
    keyword_rows: Sequence[RetrievedChunk],
    limit: int,
) -> list[RetrievedChunk]:
    """Union by chunk id keeping the higher score, sorted by similarity descending."""

    best: dict[str, RetrievedChunk] = {}
    for row in (*vector_rows, *keyword_rows):
        current = best.get(row.chunk_id)
        if current is None or row.similarity > current.similarity:
            best[row.chunk_id] = row
    merged = sorted(best.values(), key=lambda row: row.similarity, reverse=True)
    return merged[:limit]


def dedupe_by_document_content(rows: Iterable[RetrievedChunk]) -> list[RetrievedChunk]:
    """Drop repeats of the same (document id, content) pair, keeping first occurrence order."""

    seen: set[tuple[str, str]] = set()
    ordered: list[RetrievedChunk] = []
    for row in rows:
        key = (row.document_id, row.content)
        if key in seen:
            continue
        seen.add(key)
        ordered.append(row)
    return ordered


def with_similarity(chunks: Iterable[StoredChunk], similarity: float) -> list[RetrievedChunk]:
    return [
        RetrievedChunk(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            content=chunk.content,
            metadata=chunk.metadata,
            similarity=similarity,
        )
        for chunk in chunks
    ]
