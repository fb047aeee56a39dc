"""Search orchestration."""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from kennisbank.core.config import Settings
from kennisbank.core.errors import EmbeddingError, RetrievalUnavailableError
from kennisbank.core.logging import get_logger, log_context
from kennisbank.core.metrics import SEARCH_LATENCY
from kennisbank.db.store import ChunkHit, KnowledgeStore, SearchFilters
from kennisbank.ingest.embeddings import EmbeddingService
from kennisbank.models.entities import DocumentType, SearchResult
from kennisbank.retrieval.hybrid import blend_scores, normalize_by_max

logger = get_logger(__name__)


class QueryService:
    """Semantic, keyword, hybrid and related-content retrieval over stored chunks.

    Every method is read-only: one query embedding (at most) and one or two
    store queries per call. Ties are broken by ingestion order.
    """

    def __init__(self, store: KnowledgeStore, embedder: EmbeddingService, settings: Settings) -> None:
        self.store = store
        self.embedder = embedder
        self.settings = settings

    def search(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        document_types: Sequence[DocumentType] | None = None,
        filters: SearchFilters | None = None,
    ) -> list[SearchResult]:
        """Chunks with cosine similarity above ``threshold``, best first."""
        limit = _check_limit(self.settings.search_limit if limit is None else limit)
        threshold = self.settings.similarity_threshold if threshold is None else threshold
        filters = _with_types(filters, document_types)
        with SEARCH_LATENCY.labels(mode="semantic").time():
            vector = self._embed_query(query)
            hits = self.store.query_by_similarity(vector, threshold, limit, filters)
        return [_to_result(hit) for hit in hits]

    def keyword_search(
        self,
        query: str,
        limit: int | None = None,
        min_score: float | None = None,
        filters: SearchFilters | None = None,
    ) -> list[SearchResult]:
        """Full-text ranking alone, scores normalized to [0, 1]; no embedding call."""
        limit = _check_limit(self.settings.search_limit if limit is None else limit)
        min_score = self.settings.hybrid_min_score if min_score is None else min_score
        _check_query(query)
        with SEARCH_LATENCY.labels(mode="keyword").time():
            hits = self.store.query_by_keyword(query, filters)
        scores = normalize_by_max(hits)
        return _rank({hit.chunk_id: hit for hit in hits}, scores, min_score, limit)

    def hybrid_search(
        self,
        query: str,
        limit: int | None = None,
        semantic_weight: float | None = None,
        filters: SearchFilters | None = None,
        min_score: float | None = None,
    ) -> list[SearchResult]:
        """Blend cosine similarity with normalized keyword relevance.

        Chunks without a keyword match still qualify on their semantic score.
        """
        limit = _check_limit(self.settings.search_limit if limit is None else limit)
        weight = self.settings.semantic_weight if semantic_weight is None else semantic_weight
        min_score = self.settings.hybrid_min_score if min_score is None else min_score
        if not 0.0 <= weight <= 1.0:
            raise ValueError("semantic_weight must be within [0, 1]")
        with SEARCH_LATENCY.labels(mode="hybrid").time():
            vector = self._embed_query(query)
            semantic_hits = self.store.query_by_similarity(vector, None, None, filters)
            keyword_hits = self.store.query_by_keyword(query, filters)

        candidates = {hit.chunk_id: hit for hit in keyword_hits}
        candidates.update({hit.chunk_id: hit for hit in semantic_hits})
        scores = blend_scores(
            {hit.chunk_id: hit.score for hit in semantic_hits},
            normalize_by_max(keyword_hits),
            weight,
        )
        return _rank(candidates, scores, min_score, limit)

    def related(
        self,
        chunk_id: str,
        limit: int | None = None,
        threshold: float | None = None,
        filters: SearchFilters | None = None,
    ) -> list[SearchResult]:
        """Nearest neighbours of a stored chunk, reusing its stored vector."""
        limit = _check_limit(self.settings.related_limit if limit is None else limit)
        threshold = self.settings.related_threshold if threshold is None else threshold
        with SEARCH_LATENCY.labels(mode="related").time():
            vector = self.store.get_chunk_embedding(chunk_id)
            if vector is None:
                logger.info("Chunk has no embedding; no related content", extra=log_context(chunk_id=chunk_id))
                return []
            hits = self.store.query_by_similarity(vector, threshold, limit, filters, exclude_chunk_id=chunk_id)
        return [_to_result(hit) for hit in hits]

    def search_source(
        self,
        query: str,
        source_id: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SearchResult]:
        """Semantic search restricted to one Source."""
        return self.search(query, limit=limit, threshold=threshold, filters=SearchFilters(source_ids=[source_id]))

    def _embed_query(self, query: str) -> list[float]:
        _check_query(query)
        try:
            return self.embedder.embed_one(query)
        except EmbeddingError as exc:
            logger.warning("Query embedding failed: %s", exc)
            raise RetrievalUnavailableError(f"Retrieval unavailable: {exc}") from exc


def _check_query(query: str) -> None:
    if not query or not query.strip():
        raise ValueError("query must not be empty")


def _check_limit(limit: int) -> int:
    if limit < 1:
        raise ValueError("limit must be at least 1")
    return limit


def _with_types(filters: SearchFilters | None, document_types: Sequence[DocumentType] | None) -> SearchFilters | None:
    if document_types is None:
        return filters
    if filters is None:
        return SearchFilters(document_types=list(document_types))
    return replace(filters, document_types=list(document_types))


def _rank(
    candidates: dict[str, ChunkHit],
    scores: dict[str, float],
    min_score: float,
    limit: int,
) -> list[SearchResult]:
    kept = [candidates[chunk_id] for chunk_id, score in scores.items() if score > min_score]
    kept.sort(key=lambda hit: (-scores[hit.chunk_id], hit.seq))
    return [_to_result(hit, scores[hit.chunk_id]) for hit in kept[:limit]]


def _to_result(hit: ChunkHit, score: float | None = None) -> SearchResult:
    return SearchResult(
        chunk_id=hit.chunk_id,
        document_id=hit.document_id,
        document_name=hit.document_name,
        document_type=hit.document_type,
        content=hit.content,
        score=hit.score if score is None else score,
        url=hit.url,
        source_id=hit.source_id,
        chunk_index=hit.chunk_index,
    )


__all__ = ["QueryService"]
