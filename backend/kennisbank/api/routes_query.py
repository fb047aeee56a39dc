"""Query API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from kennisbank.api.dependencies import get_query_service
from kennisbank.db.store import SearchFilters
from kennisbank.models.dto import SearchRequest, SearchResponse, SearchResultModel
from kennisbank.retrieval.search import QueryService

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Execute a retrieval query")
def run_search(
    request: SearchRequest,
    service: QueryService = Depends(get_query_service),
) -> SearchResponse:
    filters = SearchFilters(
        assistant_id=request.assistant_id,
        source_ids=request.filters.source_ids if request.filters else None,
        document_types=request.filters.document_types if request.filters else None,
    )
    if request.mode == "hybrid":
        results = service.hybrid_search(
            request.query,
            limit=request.limit,
            semantic_weight=request.semantic_weight,
            filters=filters,
        )
    elif request.mode == "keyword":
        results = service.keyword_search(request.query, limit=request.limit, filters=filters)
    else:
        results = service.search(request.query, limit=request.limit, threshold=request.threshold, filters=filters)
    return SearchResponse(
        query=request.query,
        mode=request.mode,
        results=[SearchResultModel.from_result(result) for result in results],
    )


@router.get(
    "/chunks/{chunk_id}/related",
    response_model=list[SearchResultModel],
    summary="Chunks similar to a stored chunk",
)
async def related_chunks(
    chunk_id: str,
    limit: int | None = Query(default=None, ge=1, le=100),
    threshold: float | None = Query(default=None, ge=-1.0, le=1.0),
    service: QueryService = Depends(get_query_service),
) -> list[SearchResultModel]:
    return [SearchResultModel.from_result(result) for result in service.related(chunk_id, limit=limit, threshold=threshold)]


__all__ = ["router"]
