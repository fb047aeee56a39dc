"""Ingest API routes."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile, status

from kennisbank.api.dependencies import get_ingest_pipeline
from kennisbank.ingest.pipeline import IngestPipeline
from kennisbank.models.dto import CrawlResponse, DocumentResponse, IngestReportResponse

router = APIRouter()


@router.post(
    "/sources/{source_id}/crawl",
    response_model=CrawlResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start crawling a website source",
)
async def start_crawl(
    source_id: str,
    background_tasks: BackgroundTasks,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> CrawlResponse:
    source = pipeline.start_crawl(source_id)
    background_tasks.add_task(pipeline.crawl_source, source_id)
    return CrawlResponse(source_id=source.id, status=source.status)


@router.post(
    "/sources/{source_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload and ingest one document",
)
def upload_document(
    source_id: str,
    file: UploadFile = File(...),
    mime_type: str | None = Form(default=None),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> DocumentResponse:
    data = file.file.read()
    document = pipeline.upload_document(
        source_id,
        data,
        mime_type or file.content_type or "",
        filename=file.filename,
    )
    return DocumentResponse.from_entity(document)


@router.post("/sync", response_model=list[IngestReportResponse], summary="Crawl every source that is due")
def sync_due_sources(pipeline: IngestPipeline = Depends(get_ingest_pipeline)) -> list[IngestReportResponse]:
    return [IngestReportResponse.from_report(report) for report in pipeline.sync_due_sources()]


__all__ = ["router"]
