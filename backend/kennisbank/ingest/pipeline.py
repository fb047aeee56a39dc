"""Ingest pipeline orchestration.

A crawl or an upload runs as one sequential pipeline per source:
fetch or read -> chunk -> embed (batched, one batch at a time) -> persist.
Per-page and per-document failures are recorded on the Document and rolled
up into the Source status; they never abort the run.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from kennisbank.core.config import Settings
from kennisbank.core.errors import (
    CrawlError,
    EmbeddingError,
    IngestionError,
    UnsupportedFormatError,
    UploadTooLargeError,
)
from kennisbank.core.logging import get_logger, log_context
from kennisbank.core.metrics import CHUNKS_STORED, INGEST_DURATION
from kennisbank.crawl.crawler import Crawler
from kennisbank.crawl.policy import is_crawlable_url
from kennisbank.db.store import KnowledgeStore
from kennisbank.ingest.chunker import chunk_text
from kennisbank.ingest.embeddings import EmbeddingService
from kennisbank.ingest.loaders import LoaderRegistry, normalize_mime
from kennisbank.ingest.types import IngestReport
from kennisbank.models.entities import (
    Chunk,
    ChunkMetadata,
    Document,
    DocumentMetadata,
    DocumentStatus,
    DocumentType,
    Source,
    SourceKind,
    SyncInterval,
    SyncStatus,
)
from kennisbank.utils.ids import new_id
from kennisbank.utils.time import utc_now

logger = get_logger(__name__)

EMPTY_CONTENT_MESSAGE = "No content could be extracted"


class IngestPipeline:
    """Coordinate crawling, loaders, chunking, embeddings, and persistence."""

    def __init__(
        self,
        store: KnowledgeStore,
        settings: Settings,
        embedder: EmbeddingService,
        crawler: Crawler,
        loaders: LoaderRegistry | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.embedder = embedder
        self.crawler = crawler
        self.loaders = loaders or LoaderRegistry()

    # Sources ----------------------------------------------------------

    def create_website_source(
        self,
        assistant_id: str,
        url: str,
        name: str | None = None,
        allowed_domains: Sequence[str] = (),
        sync_interval: SyncInterval = SyncInterval.NEVER,
    ) -> Source:
        url = url.strip()
        if not is_crawlable_url(url):
            raise ValueError(f"Website URL must be an absolute http(s) URL: {url!r}")
        source = Source(
            id=new_id("src"),
            assistant_id=assistant_id,
            kind=SourceKind.WEBSITE,
            name=name or url,
            url=url,
            allowed_domains=[domain.strip().lower() for domain in allowed_domains if domain.strip()],
            sync_interval=sync_interval,
        )
        return self.store.create_source(source)

    def create_file_source(self, assistant_id: str, name: str | None = None) -> Source:
        source = Source(id=new_id("src"), assistant_id=assistant_id, kind=SourceKind.FILE, name=name)
        return self.store.create_source(source)

    # Crawling ---------------------------------------------------------

    def start_crawl(self, source_id: str) -> Source:
        """Mark a website Source as syncing; the crawl itself runs in :meth:`crawl_source`."""
        source = self.store.get_source(source_id)
        if source.kind is not SourceKind.WEBSITE or not source.url:
            raise ValueError(f"Source {source_id} is not a website")
        return self.store.update_source_status(source_id, SyncStatus.SYNCING)

    def crawl_source(self, source_id: str) -> IngestReport:
        source = self.store.get_source(source_id)
        if source.kind is not SourceKind.WEBSITE or not source.url:
            raise ValueError(f"Source {source_id} is not a website")
        report = IngestReport(source_id=source_id)
        ctx = log_context(source_id=source_id, url=source.url)
        logger.info("Crawl started", extra=ctx)
        self.store.update_source_status(source_id, SyncStatus.SYNCING)

        with INGEST_DURATION.labels(kind="crawl").time():
            try:
                result = self.crawler.crawl(
                    source.url,
                    max_pages=self.settings.crawl_max_pages,
                    max_depth=self.settings.crawl_max_depth,
                    deadline=self.settings.crawl_deadline,
                    allowed_domains=source.allowed_domains,
                )
            except CrawlError as exc:
                logger.warning("Crawl failed: %s", exc, extra=ctx)
                report.status = SyncStatus.ERROR
                report.errors.append(str(exc))
                self.store.update_source_status(
                    source_id, SyncStatus.ERROR, error_message=str(exc), last_sync=utc_now()
                )
                return report
            except Exception as exc:
                self._abort(source_id, "Crawl aborted", exc, ctx)
                raise

            try:
                self.store.delete_documents_for_source(source_id, DocumentType.URL)
                pages = self.store.replace_pages(source_id, result.pages)
                report.pages = len(pages)
                report.deadline_reached = result.deadline_reached
                report.errors.extend(result.error_messages)

                for page in pages:
                    if not page.ok:
                        continue
                    document = self._ingest_text(
                        source,
                        name=page.title or page.url,
                        document_type=DocumentType.URL,
                        text=page.content,
                        url=page.url,
                        extra={"page_id": page.id, "depth": page.depth},
                        report=report,
                    )
                    if document.status is DocumentStatus.FAILED:
                        report.errors.append(f"{page.url}: {document.error_message}")
            except Exception as exc:
                self._abort(source_id, "Storing crawl results failed", exc, ctx)
                raise

        report.status = SyncStatus.COMPLETED if not report.errors else SyncStatus.ERROR
        self.store.update_source_status(
            source_id,
            report.status,
            error_message="; ".join(report.errors) or None,
            page_count=len(result.successful_pages),
            last_sync=utc_now(),
        )
        logger.info(
            "Crawl finished with status %s",
            report.status.value,
            extra=log_context(
                source_id=source_id,
                pages=report.pages,
                documents=report.documents,
                chunks=report.chunks,
                errors=len(report.errors),
            ),
        )
        return report

    def sync_due_sources(self, now: datetime | None = None) -> list[IngestReport]:
        """Crawl every website Source whose sync interval has elapsed."""
        due = self.store.list_due_sources(now or utc_now())
        if due:
            logger.info("Syncing %s due sources", len(due))
        return [self.crawl_source(source.id) for source in due]

    # Uploads ----------------------------------------------------------

    def upload_document(
        self,
        source_id: str,
        data: bytes,
        mime_type: str,
        filename: str | None = None,
    ) -> Document:
        """Ingest one uploaded file synchronously and return its Document.

        Size and format are validated before anything is written.
        """
        source = self.store.get_source(source_id)
        filename = filename or source.original_name or source.name or "upload"
        if len(data) > self.settings.max_upload_bytes:
            raise UploadTooLargeError(len(data), self.settings.max_upload_bytes)
        if not self.loaders.supports(mime_type, filename):
            raise UnsupportedFormatError(normalize_mime(mime_type))

        ctx = log_context(source_id=source_id, filename=filename, mime_type=mime_type)
        try:
            loaded = self.loaders.load(data, filename, mime_type)
        except UnsupportedFormatError:
            raise
        except Exception as exc:
            logger.warning("Could not read upload: %s", exc, extra=ctx)
            raise IngestionError(f"Could not read {filename}: {exc}") from exc

        report = IngestReport(source_id=source_id)
        with INGEST_DURATION.labels(kind="upload").time():
            self.store.update_source_status(source_id, SyncStatus.SYNCING)
            try:
                if source.kind is SourceKind.FILE:
                    self.store.delete_documents_for_source(source_id)
                    self.store.update_source_file(source_id, filename, loaded.mime_type, loaded.size_bytes)
                document = self._ingest_text(
                    source,
                    name=filename,
                    document_type=loaded.type,
                    text=loaded.text,
                    url=None,
                    extra={"mime_type": loaded.mime_type, "size_bytes": loaded.size_bytes, "title": loaded.title, **loaded.metadata},
                    report=report,
                    file_id=source_id if source.kind is SourceKind.FILE else None,
                )
            except Exception as exc:
                self._abort(source_id, "Upload ingestion failed", exc, ctx)
                raise

        failed = document.status is DocumentStatus.FAILED
        self.store.update_source_status(
            source_id,
            SyncStatus.ERROR if failed else SyncStatus.COMPLETED,
            error_message=document.error_message if failed else None,
            last_sync=utc_now(),
        )
        logger.info("Upload ingested as %s", document.status.value, extra=ctx)
        return document

    # Internal helpers -------------------------------------------------

    def _abort(self, source_id: str, message: str, exc: Exception, ctx: dict[str, Any]) -> None:
        """Leave the Source in ERROR so it never stays SYNCING after a failure."""
        logger.exception("%s: %s", message, exc, extra=ctx)
        self.store.update_source_status(source_id, SyncStatus.ERROR, error_message=str(exc), last_sync=utc_now())

    def _ingest_text(
        self,
        source: Source,
        name: str,
        document_type: DocumentType,
        text: str,
        url: str | None,
        extra: dict[str, Any],
        report: IngestReport,
        file_id: str | None = None,
    ) -> Document:
        metadata = DocumentMetadata(source_id=source.id, file_id=file_id, extra={k: v for k, v in extra.items() if v is not None})
        document = self.store.save_document(
            Document(
                id=new_id("doc"),
                name=name,
                type=document_type,
                content_text=text,
                metadata=metadata,
                url=url,
            )
        )
        report.documents += 1

        chunks = chunk_text(
            text,
            chunk_size=self.settings.chunk_size,
            overlap=self.settings.chunk_overlap,
            metadata=ChunkMetadata(source_id=source.id, document_id=document.id, origin_url=url, title=name),
            lookback=self.settings.boundary_lookback,
        )
        if not chunks:
            return self._fail_document(document, EMPTY_CONTENT_MESSAGE, report)

        embedding_error = self._embed_chunks(chunks, document.id)
        if embedding_error is not None and not self.settings.allow_unembedded_chunks:
            return self._fail_document(document, f"Embedding failed: {embedding_error}", report)

        self.store.save_chunks(chunks)
        embedded = sum(1 for chunk in chunks if chunk.embedding is not None)
        CHUNKS_STORED.labels(embedded="true").inc(embedded)
        CHUNKS_STORED.labels(embedded="false").inc(len(chunks) - embedded)
        report.chunks += len(chunks)
        report.embedded_chunks += embedded

        metadata.chunk_count = len(chunks)
        metadata.total_tokens = sum(chunk.token_count for chunk in chunks)
        models = sorted({chunk.embedding_model for chunk in chunks if chunk.embedding_model})
        if models:
            metadata.extra["embedding_models"] = models
        if embedding_error is not None:
            metadata.extra["embedding_error"] = embedding_error
        self.store.update_document_status(
            document.id,
            DocumentStatus.COMPLETED,
            error_message=embedding_error,
            metadata=metadata,
        )
        document.status = DocumentStatus.COMPLETED
        document.error_message = embedding_error
        return document

    def _embed_chunks(self, chunks: list[Chunk], document_id: str) -> str | None:
        """Attach vectors batch by batch; return the failure message, if any.

        Batches that succeeded before a failure keep their vectors.
        """
        size = self.settings.embedding_batch_size
        for offset in range(0, len(chunks), size):
            batch = chunks[offset : offset + size]
            try:
                result = self.embedder.embed([chunk.content for chunk in batch])
            except EmbeddingError as exc:
                logger.warning(
                    "Embedding failed, %s chunks left without vectors: %s",
                    len(chunks) - offset,
                    exc,
                    extra=log_context(document_id=document_id),
                )
                return str(exc)
            for chunk, vector in zip(batch, result.vectors):
                chunk.embedding = vector
                chunk.embedding_model = result.model
        return None

    def _fail_document(self, document: Document, message: str, report: IngestReport) -> Document:
        self.store.update_document_status(document.id, DocumentStatus.FAILED, error_message=message)
        document.status = DocumentStatus.FAILED
        document.error_message = message
        report.failed_documents += 1
        logger.warning("Document failed: %s", message, extra=log_context(document_id=document.id, name=document.name))
        return document


__all__ = ["IngestPipeline", "EMPTY_CONTENT_MESSAGE"]
