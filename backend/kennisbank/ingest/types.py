"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from kennisbank.models.entities import DocumentType, SyncStatus


@dataclass(slots=True)
class LoadedDocument:
    """Text extracted from an uploaded file, before chunking."""

    name: str
    type: DocumentType
    text: str
    mime_type: str
    size_bytes: int
    title: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IngestReport:
    """Outcome of one crawl or upload run for a source."""

    source_id: str
    status: SyncStatus = SyncStatus.SYNCING
    pages: int = 0
    documents: int = 0
    failed_documents: int = 0
    chunks: int = 0
    embedded_chunks: int = 0
    errors: list[str] = field(default_factory=list)
    deadline_reached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "status": self.status.value,
            "pages": self.pages,
            "documents": self.documents,
            "failed_documents": self.failed_documents,
            "chunks": self.chunks,
            "embedded_chunks": self.embedded_chunks,
            "errors": list(self.errors),
            "deadline_reached": self.deadline_reached,
        }


__all__ = ["LoadedDocument", "IngestReport"]
