"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from kennisbank.ingest.types import IngestReport
from kennisbank.models.entities import (
    Document,
    DocumentStatus,
    DocumentType,
    Page,
    SearchResult,
    Source,
    SourceKind,
    SyncInterval,
    SyncStatus,
)


class SourceCreateRequest(BaseModel):
    assistant_id: str = Field(min_length=1)
    kind: SourceKind = SourceKind.WEBSITE
    name: str | None = None
    url: str | None = None
    allowed_domains: list[str] = Field(default_factory=list)
    sync_interval: SyncInterval = SyncInterval.NEVER

    @model_validator(mode="after")
    def _website_needs_url(self) -> "SourceCreateRequest":
        if self.kind is SourceKind.WEBSITE and not self.url:
            raise ValueError("url is required for website sources")
        return self


class SourceResponse(BaseModel):
    id: str
    assistant_id: str
    kind: SourceKind
    name: str | None
    url: str | None
    allowed_domains: list[str]
    sync_interval: SyncInterval
    original_name: str | None
    mime_type: str | None
    size_bytes: int | None
    status: SyncStatus
    error_message: str | None
    page_count: int
    last_sync: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, source: Source) -> "SourceResponse":
        return cls(
            id=source.id,
            assistant_id=source.assistant_id,
            kind=source.kind,
            name=source.name,
            url=source.url,
            allowed_domains=list(source.allowed_domains),
            sync_interval=source.sync_interval,
            original_name=source.original_name,
            mime_type=source.mime_type,
            size_bytes=source.size_bytes,
            status=source.status,
            error_message=source.error_message,
            page_count=source.page_count,
            last_sync=source.last_sync,
            created_at=source.created_at,
            updated_at=source.updated_at,
        )


class PageResponse(BaseModel):
    id: str | None
    url: str
    title: str | None
    status: SyncStatus
    depth: int
    error_message: str | None
    links: list[str]
    content_length: int
    scraped_at: datetime

    @classmethod
    def from_entity(cls, page: Page) -> "PageResponse":
        return cls(
            id=page.id,
            url=page.url,
            title=page.title,
            status=page.status,
            depth=page.depth,
            error_message=page.error_message,
            links=list(page.links),
            content_length=len(page.content),
            scraped_at=page.scraped_at,
        )


class DocumentResponse(BaseModel):
    id: str
    source_id: str
    name: str
    type: DocumentType
    status: DocumentStatus
    url: str | None
    error_message: str | None
    chunk_count: int
    total_tokens: int
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, document: Document) -> "DocumentResponse":
        return cls(
            id=document.id,
            source_id=document.source_id,
            name=document.name,
            type=document.type,
            status=document.status,
            url=document.url,
            error_message=document.error_message,
            chunk_count=document.metadata.chunk_count,
            total_tokens=document.metadata.total_tokens,
            metadata=dict(document.metadata.extra),
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class CrawlResponse(BaseModel):
    source_id: str
    status: SyncStatus


class IngestReportResponse(BaseModel):
    source_id: str
    status: SyncStatus
    pages: int
    documents: int
    failed_documents: int
    chunks: int
    embedded_chunks: int
    errors: list[str]
    deadline_reached: bool

    @classmethod
    def from_report(cls, report: IngestReport) -> "IngestReportResponse":
        return cls(**report.to_dict())


class SearchFiltersModel(BaseModel):
    source_ids: list[str] | None = None
    document_types: list[DocumentType] | None = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    assistant_id: str | None = None
    mode: Literal["semantic", "hybrid", "keyword"] = "semantic"
    limit: int | None = Field(default=None, ge=1, le=100)
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    semantic_weight: float | None = Field(default=None, ge=0.0, le=1.0)
    filters: SearchFiltersModel | None = None


class SearchResultModel(BaseModel):
    chunk_id: str
    document_id: str
    document_name: str
    document_type: DocumentType
    content: str
    score: float
    url: str | None
    source_id: str | None
    chunk_index: int

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchResultModel":
        return cls(
            chunk_id=result.chunk_id,
            document_id=result.document_id,
            document_name=result.document_name,
            document_type=result.document_type,
            content=result.content,
            score=result.score,
            url=result.url,
            source_id=result.source_id,
            chunk_index=result.chunk_index,
        )


class SearchResponse(BaseModel):
    query: str
    mode: str
    results: list[SearchResultModel]


class DeleteResponse(BaseModel):
    status: Literal["ok"]
    deleted: int


__all__ = [
    "SourceCreateRequest",
    "SourceResponse",
    "PageResponse",
    "DocumentResponse",
    "CrawlResponse",
    "IngestReportResponse",
    "SearchFiltersModel",
    "SearchRequest",
    "SearchResultModel",
    "SearchResponse",
    "DeleteResponse",
]
