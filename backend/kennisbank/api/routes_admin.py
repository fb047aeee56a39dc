"""Source management routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from kennisbank.api.dependencies import get_ingest_pipeline, get_store
from kennisbank.core.metrics import metrics_response
from kennisbank.db.store import SQLiteKnowledgeStore
from kennisbank.ingest.pipeline import IngestPipeline
from kennisbank.models.dto import (
    DeleteResponse,
    DocumentResponse,
    PageResponse,
    SourceCreateRequest,
    SourceResponse,
)
from kennisbank.models.entities import SourceKind

router = APIRouter()


@router.get("/sources", response_model=list[SourceResponse], summary="List sources")
async def list_sources(
    assistant_id: str | None = None,
    store: SQLiteKnowledgeStore = Depends(get_store),
) -> list[SourceResponse]:
    return [SourceResponse.from_entity(source) for source in store.list_sources(assistant_id)]


@router.post(
    "/sources",
    response_model=SourceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a website or file source",
)
async def create_source(
    request: SourceCreateRequest,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> SourceResponse:
    if request.kind is SourceKind.WEBSITE:
        source = pipeline.create_website_source(
            assistant_id=request.assistant_id,
            url=request.url or "",
            name=request.name,
            allowed_domains=request.allowed_domains,
            sync_interval=request.sync_interval,
        )
    else:
        source = pipeline.create_file_source(request.assistant_id, name=request.name)
    return SourceResponse.from_entity(source)


@router.get("/sources/{source_id}", response_model=SourceResponse, summary="Fetch one source")
async def get_source(source_id: str, store: SQLiteKnowledgeStore = Depends(get_store)) -> SourceResponse:
    return SourceResponse.from_entity(store.get_source(source_id))


@router.delete("/sources/{source_id}", response_model=DeleteResponse, summary="Remove a source and its content")
async def delete_source(source_id: str, store: SQLiteKnowledgeStore = Depends(get_store)) -> DeleteResponse:
    store.delete_source(source_id)
    return DeleteResponse(status="ok", deleted=1)


@router.get("/sources/{source_id}/pages", response_model=list[PageResponse], summary="Pages of the last crawl")
async def list_pages(source_id: str, store: SQLiteKnowledgeStore = Depends(get_store)) -> list[PageResponse]:
    store.get_source(source_id)
    return [PageResponse.from_entity(page) for page in store.list_pages(source_id)]


@router.get("/sources/{source_id}/documents", response_model=list[DocumentResponse], summary="Documents of a source")
async def list_documents(source_id: str, store: SQLiteKnowledgeStore = Depends(get_store)) -> list[DocumentResponse]:
    store.get_source(source_id)
    return [DocumentResponse.from_entity(document) for document in store.list_documents(source_id)]


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
