"""Sliding-window chunking and paragraph splitting."""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable, List, Sequence

from docsense.models import ChunkMetadata, ExtractedChunk

_BLANK_LINES = re.compile(r"\n\s*\n")


def split_sections(text: str) -> List[str]:
    """Split on blank-line boundaries, dropping whitespace-only sections."""

    return [section.strip() for section in _BLANK_LINES.split(text) if section.strip()]


def window_offsets(length: int, max_length: int, overlap: int) -> List[tuple[int, int]]:
    if max_length <= 0:
        raise ValueError(f"max_length must be positive, got {max_length}")
    if overlap < 0 or overlap >= max_length:
        raise ValueError(f"Overlap ({overlap}) must be non-negative and less than max_length ({max_length})")
    offsets: List[tuple[int, int]] = []
    start = 0
    while start < length:
        end = min(start + max_length, length)
        offsets.append((start, end))
        if end == length:
            break
        start = end - overlap
    return offsets


def chunk_text(text: str, max_length: int = 1000, overlap: int = 200) -> List[ExtractedChunk]:
    """Cut ``text`` into overlapping windows labelled ``Chunk 1``, ``Chunk 2``, ...

    Each window starts ``max_length - overlap`` characters after the previous
    one; the last window ends exactly at the end of the text.
    """

    return [
        ExtractedChunk(
            content=text[start:end],
            metadata=ChunkMetadata(type="text", section=f"Chunk {index}", chunk_index=index - 1),
        )
        for index, (start, end) in enumerate(window_offsets(len(text), max_length, overlap), start=1)
    ]


def bound_chunks(chunks: Iterable[ExtractedChunk], max_length: int, overlap: int) -> List[ExtractedChunk]:
    """Window any extracted chunk longer than ``max_length``, keeping its section label."""

    bounded: List[ExtractedChunk] = []
    for chunk in chunks:
        if len(chunk.content) <= max_length:
            bounded.append(chunk)
            continue
        offsets: Sequence[tuple[int, int]] = window_offsets(len(chunk.content), max_length, overlap)
        for part, (start, end) in enumerate(offsets, start=1):
            extra = {**chunk.metadata.extra, "window": part, "windows": len(offsets)}
            bounded.append(
                ExtractedChunk(
                    content=chunk.content[start:end],
                    metadata=replace(chunk.metadata, extra=extra),
                ),
            )
    return bounded
