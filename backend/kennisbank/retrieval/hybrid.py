"""Score fusion helpers for hybrid retrieval."""

from __future__ import annotations

from typing import Iterable, Mapping

from kennisbank.db.store import ChunkHit


def normalize_by_max(hits: Iterable[ChunkHit]) -> dict[str, float]:
    """Map chunk id -> score scaled into [0, 1] by the best score of the set."""
    hits = list(hits)
    if not hits:
        return {}
    best = max(hit.score for hit in hits)
    if best <= 0:
        return {hit.chunk_id: 0.0 for hit in hits}
    return {hit.chunk_id: max(hit.score, 0.0) / best for hit in hits}


def blend_scores(
    semantic: Mapping[str, float],
    keyword: Mapping[str, float],
    semantic_weight: float,
) -> dict[str, float]:
    """``semantic * w + keyword * (1 - w)`` over the union of both candidate sets.

    A chunk missing from one side scores 0 on that side.
    """
    if not 0.0 <= semantic_weight <= 1.0:
        raise ValueError("semantic_weight must be within [0, 1]")
    keyword_weight = 1.0 - semantic_weight
    blended: dict[str, float] = {}
    for chunk_id in {*semantic, *keyword}:
        blended[chunk_id] = semantic.get(chunk_id, 0.0) * semantic_weight + keyword.get(chunk_id, 0.0) * keyword_weight
    return blended


__all__ = ["normalize_by_max", "blend_scores"]
