"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from kennisbank.utils.time import utc_now


class SourceKind(str, Enum):
    WEBSITE = "website"
    FILE = "file"


class SyncStatus(str, Enum):
    """Lifecycle of a Source or a crawled Page."""

    PENDING = "PENDING"
    SYNCING = "SYNCING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class DocumentType(str, Enum):
    URL = "URL"
    PDF = "PDF"
    DOCX = "DOCX"
    TXT = "TXT"


class DocumentStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SyncInterval(str, Enum):
    NEVER = "never"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def period(self) -> timedelta | None:
        return {
            SyncInterval.DAILY: timedelta(days=1),
            SyncInterval.WEEKLY: timedelta(weeks=1),
            SyncInterval.MONTHLY: timedelta(days=30),
        }.get(self)


@dataclass(slots=True)
class Source:
    id: str
    assistant_id: str
    kind: SourceKind
    name: str | None = None
    url: str | None = None
    allowed_domains: list[str] = field(default_factory=list)
    sync_interval: SyncInterval = SyncInterval.NEVER
    original_name: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None
    status: SyncStatus = SyncStatus.PENDING
    error_message: str | None = None
    page_count: int = 0
    last_sync: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def is_due(self, now: datetime) -> bool:
        period = self.sync_interval.period
        if self.kind is not SourceKind.WEBSITE or period is None:
            return False
        if self.status is SyncStatus.SYNCING:
            return False
        return self.last_sync is None or now - self.last_sync >= period


@dataclass(slots=True)
class Page:
    """One fetched URL. ``id`` and ``source_id`` are set when persisted."""

    url: str
    title: str | None
    content: str
    links: list[str]
    status: SyncStatus
    depth: int = 0
    error_message: str | None = None
    scraped_at: datetime = field(default_factory=utc_now)
    id: str | None = None
    source_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is SyncStatus.COMPLETED


@dataclass(slots=True)
class DocumentMetadata:
    source_id: str
    file_id: str | None = None
    chunk_count: int = 0
    total_tokens: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "file_id": self.file_id,
            "chunk_count": self.chunk_count,
            "total_tokens": self.total_tokens,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentMetadata":
        return cls(
            source_id=data["source_id"],
            file_id=data.get("file_id"),
            chunk_count=int(data.get("chunk_count") or 0),
            total_tokens=int(data.get("total_tokens") or 0),
            extra=dict(data.get("extra") or {}),
        )


@dataclass(slots=True)
class Document:
    id: str
    name: str
    type: DocumentType
    content_text: str
    metadata: DocumentMetadata
    status: DocumentStatus = DocumentStatus.PROCESSING
    url: str | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def source_id(self) -> str:
        return self.metadata.source_id


@dataclass(slots=True)
class ChunkMetadata:
    """Fixed provenance fields plus an open map for ingestion-specific extras."""

    source_id: str
    document_id: str
    chunk_index: int = 0
    origin_url: str | None = None
    title: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "origin_url": self.origin_url,
            "title": self.title,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChunkMetadata":
        return cls(
            source_id=data["source_id"],
            document_id=data["document_id"],
            chunk_index=int(data.get("chunk_index") or 0),
            origin_url=data.get("origin_url"),
            title=data.get("title"),
            extra=dict(data.get("extra") or {}),
        )


@dataclass(slots=True)
class Chunk:
    id: str
    chunk_index: int
    content: str
    start_char: int
    end_char: int
    token_count: int
    metadata: ChunkMetadata
    embedding: list[float] | None = None
    embedding_model: str | None = None

    @property
    def document_id(self) -> str:
        return self.metadata.document_id


@dataclass(slots=True, frozen=True)
class SearchResult:
    """Read-only projection returned by the retrieval engine."""

    chunk_id: str
    document_id: str
    document_name: str
    document_type: DocumentType
    content: str
    score: float
    url: str | None = None
    source_id: str | None = None
    chunk_index: int = 0


__all__ = [
    "SourceKind",
    "SyncStatus",
    "DocumentType",
    "DocumentStatus",
    "SyncInterval",
    "Source",
    "Page",
    "DocumentMetadata",
    "Document",
    "ChunkMetadata",
    "Chunk",
    "SearchResult",
]
