"""Chunking utilities.

Text is cut into windows of ``chunk_size`` characters. Consecutive windows
share exactly ``overlap`` characters: the next window starts ``overlap``
characters before the previous one ended. When a window would end mid-text,
its end is pulled back to the last paragraph or sentence boundary found in
the final ``lookback`` characters, so the step between windows is
``chunk_size - overlap`` at most and a little less when a boundary is used.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterator

from kennisbank.models.entities import Chunk, ChunkMetadata
from kennisbank.utils.ids import new_id
from kennisbank.utils.text import estimate_tokens, normalize_paragraphs

DEFAULT_LOOKBACK = 200

_PARAGRAPH_RE = re.compile(r"\n\n")
_SENTENCE_RE = re.compile(r"[.!?][\"')\]]*\s+|\n")


@dataclass(slots=True)
class Window:
    start: int
    end: int


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
    metadata: ChunkMetadata | None = None,
    lookback: int = DEFAULT_LOOKBACK,
) -> list[Chunk]:
    """Split ``text`` into overlapping chunks carrying a copy of ``metadata``.

    The input is whitespace-normalized first (paragraph breaks survive).
    Empty or whitespace-only input yields no chunks.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must satisfy 0 <= overlap < chunk_size")

    normalized = normalize_paragraphs(text)
    if not normalized:
        return []

    base = metadata or ChunkMetadata(source_id="", document_id="")
    chunks: list[Chunk] = []
    for index, window in enumerate(iter_windows(normalized, chunk_size, overlap, lookback)):
        content = normalized[window.start : window.end]
        chunks.append(
            Chunk(
                id=new_id("chk"),
                chunk_index=index,
                content=content,
                start_char=window.start,
                end_char=window.end,
                token_count=estimate_tokens(content),
                metadata=replace(base, chunk_index=index, extra=dict(base.extra)),
            )
        )
    return chunks


def iter_windows(text: str, chunk_size: int, overlap: int, lookback: int = DEFAULT_LOOKBACK) -> Iterator[Window]:
    """Yield the character windows used by :func:`chunk_text`."""
    length = len(text)
    # keep every step strictly positive
    lookback = max(0, min(lookback, chunk_size - overlap - 1))
    start = 0
    while True:
        end = min(start + chunk_size, length)
        if end < length:
            end = _seek_boundary(text, start + chunk_size - lookback, end)
        yield Window(start=start, end=end)
        if end >= length:
            return
        start = end - overlap


def reconstruct(chunks: list[Chunk], overlap: int) -> str:
    """Join chunks in index order, dropping the shared overlap prefix."""
    ordered = sorted(chunks, key=lambda chunk: chunk.chunk_index)
    if not ordered:
        return ""
    parts = [ordered[0].content]
    for chunk in ordered[1:]:
        parts.append(chunk.content[overlap:])
    return "".join(parts)


def _seek_boundary(text: str, floor: int, end: int) -> int:
    """Return the offset just past the last boundary in ``text[floor:end]``."""
    if floor >= end:
        return end
    region = text[floor:end]
    for pattern in (_PARAGRAPH_RE, _SENTENCE_RE):
        last = None
        for match in pattern.finditer(region):
            last = match
        if last is not None:
            return floor + last.end()
    return end


__all__ = ["chunk_text", "iter_windows", "reconstruct", "Window", "DEFAULT_LOOKBACK"]
