"""Knowledge-base storage: the interface used by ingestion and retrieval,
and its SQLite implementation."""

from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence

import orjson

from kennisbank.core.errors import DuplicateSourceError, RecordNotFoundError
from kennisbank.db.sqlite import SQLiteDatabase
from kennisbank.ingest.embeddings import EmbeddingService
from kennisbank.models.entities import (
    Chunk,
    Document,
    DocumentMetadata,
    DocumentStatus,
    DocumentType,
    Page,
    Source,
    SourceKind,
    SyncInterval,
    SyncStatus,
)
from kennisbank.utils.ids import new_id
from kennisbank.utils.text import terms
from kennisbank.utils.time import from_ms, now_ms, to_ms


@dataclass(slots=True)
class SearchFilters:
    assistant_id: str | None = None
    source_ids: Sequence[str] | None = None
    document_types: Sequence[DocumentType] | None = None


@dataclass(slots=True)
class ChunkHit:
    """A stored chunk joined with its document, plus one relevance score."""

    chunk_id: str
    seq: int
    document_id: str
    document_name: str
    document_type: DocumentType
    content: str
    chunk_index: int
    source_id: str
    url: str | None
    score: float = 0.0
    meta: dict[str, Any] = field(default_factory=dict)


class KnowledgeStore(Protocol):
    """Durable store with vector-similarity and full-text query capabilities."""

    def create_source(self, source: Source) -> Source: ...

    def get_source(self, source_id: str) -> Source: ...

    def list_sources(self, assistant_id: str | None = None) -> list[Source]: ...

    def list_due_sources(self, now: datetime) -> list[Source]: ...

    def update_source_status(
        self,
        source_id: str,
        status: SyncStatus,
        error_message: str | None = None,
        page_count: int | None = None,
        last_sync: datetime | None = None,
    ) -> Source: ...

    def update_source_file(self, source_id: str, original_name: str, mime_type: str, size_bytes: int) -> Source: ...

    def delete_source(self, source_id: str) -> None: ...

    def replace_pages(self, source_id: str, pages: Sequence[Page]) -> list[Page]: ...

    def list_pages(self, source_id: str) -> list[Page]: ...

    def save_document(self, document: Document) -> Document: ...

    def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: str | None = None,
        metadata: DocumentMetadata | None = None,
    ) -> None: ...

    def get_document(self, document_id: str) -> Document: ...

    def list_documents(self, source_id: str) -> list[Document]: ...

    def delete_documents_for_source(self, source_id: str, document_type: DocumentType | None = None) -> int: ...

    def save_chunks(self, chunks: Sequence[Chunk]) -> int: ...

    def get_chunk_embedding(self, chunk_id: str) -> list[float] | None: ...

    def query_by_similarity(
        self,
        vector: Sequence[float],
        threshold: float | None,
        limit: int | None,
        filters: SearchFilters | None = None,
        exclude_chunk_id: str | None = None,
    ) -> list[ChunkHit]: ...

    def query_by_keyword(self, text: str, filters: SearchFilters | None = None) -> list[ChunkHit]: ...


_HIT_COLUMNS = """
    c.id AS chunk_id,
    c.seq,
    c.document_id,
    c.chunk_index,
    c.content,
    c.meta_json,
    d.name AS document_name,
    d.type AS document_type,
    d.url,
    d.source_id
"""


class SQLiteKnowledgeStore:
    """:class:`KnowledgeStore` backed by :class:`SQLiteDatabase`."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    # Sources ------------------------------------------------------------

    def create_source(self, source: Source) -> Source:
        with self.db.transaction() as conn:
            if source.kind is SourceKind.WEBSITE and source.url:
                existing = conn.execute(
                    "SELECT id FROM sources WHERE assistant_id = ? AND kind = ? AND url = ?",
                    [source.assistant_id, SourceKind.WEBSITE.value, source.url],
                ).fetchone()
                if existing:
                    raise DuplicateSourceError(
                        f"Website with URL {source.url} already exists for assistant {source.assistant_id}"
                    )
            conn.execute(
                """
                INSERT INTO sources (
                  id, assistant_id, kind, name, url, allowed_domains_json, sync_interval,
                  original_name, mime_type, size_bytes, status, error_message, page_count,
                  last_sync, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    source.id,
                    source.assistant_id,
                    source.kind.value,
                    source.name,
                    source.url,
                    _dumps(source.allowed_domains),
                    source.sync_interval.value,
                    source.original_name,
                    source.mime_type,
                    source.size_bytes,
                    source.status.value,
                    source.error_message,
                    source.page_count,
                    to_ms(source.last_sync),
                    to_ms(source.created_at),
                    to_ms(source.updated_at),
                ],
            )
        return source

    def get_source(self, source_id: str) -> Source:
        row = self.db.query_one("SELECT * FROM sources WHERE id = ?", [source_id])
        if row is None:
            raise RecordNotFoundError("Source", source_id)
        return _row_to_source(row)

    def list_sources(self, assistant_id: str | None = None) -> list[Source]:
        if assistant_id is None:
            rows = self.db.query("SELECT * FROM sources ORDER BY created_at, id")
        else:
            rows = self.db.query(
                "SELECT * FROM sources WHERE assistant_id = ? ORDER BY created_at, id",
                [assistant_id],
            )
        return [_row_to_source(row) for row in rows]

    def list_due_sources(self, now: datetime) -> list[Source]:
        rows = self.db.query("SELECT * FROM sources WHERE kind = ? AND sync_interval != ?", [
            SourceKind.WEBSITE.value,
            SyncInterval.NEVER.value,
        ])
        return [source for source in map(_row_to_source, rows) if source.is_due(now)]

    def update_source_status(
        self,
        source_id: str,
        status: SyncStatus,
        error_message: str | None = None,
        page_count: int | None = None,
        last_sync: datetime | None = None,
    ) -> Source:
        updates = ["status = ?", "error_message = ?", "updated_at = ?"]
        params: list[Any] = [status.value, error_message, now_ms()]
        if page_count is not None:
            updates.append("page_count = ?")
            params.append(page_count)
        if last_sync is not None:
            updates.append("last_sync = ?")
            params.append(to_ms(last_sync))
        with self.db.transaction() as conn:
            cursor = conn.execute(f"UPDATE sources SET {', '.join(updates)} WHERE id = ?", [*params, source_id])
            if cursor.rowcount == 0:
                raise RecordNotFoundError("Source", source_id)
        return self.get_source(source_id)

    def update_source_file(self, source_id: str, original_name: str, mime_type: str, size_bytes: int) -> Source:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE sources SET original_name = ?, mime_type = ?, size_bytes = ?, updated_at = ? WHERE id = ?",
                [original_name, mime_type, size_bytes, now_ms(), source_id],
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError("Source", source_id)
        return self.get_source(source_id)

    def delete_source(self, source_id: str) -> None:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM sources WHERE id = ?", [source_id])
            if cursor.rowcount == 0:
                raise RecordNotFoundError("Source", source_id)

    # Pages --------------------------------------------------------------

    def replace_pages(self, source_id: str, pages: Sequence[Page]) -> list[Page]:
        stored: list[Page] = []
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM pages WHERE source_id = ?", [source_id])
            for page in pages:
                page.id = page.id or new_id("pg")
                page.source_id = source_id
                conn.execute(
                    """
                    INSERT INTO pages (id, source_id, url, title, content, links_json, status, depth, error_message, scraped_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        page.id,
                        source_id,
                        page.url,
                        page.title,
                        page.content,
                        _dumps(page.links),
                        page.status.value,
                        page.depth,
                        page.error_message,
                        to_ms(page.scraped_at),
                    ],
                )
                stored.append(page)
        return stored

    def list_pages(self, source_id: str) -> list[Page]:
        rows = self.db.query("SELECT * FROM pages WHERE source_id = ? ORDER BY rowid", [source_id])
        return [
            Page(
                id=row["id"],
                source_id=row["source_id"],
                url=row["url"],
                title=row["title"],
                content=row["content"],
                links=orjson.loads(row["links_json"]),
                status=SyncStatus(row["status"]),
                depth=row["depth"],
                error_message=row["error_message"],
                scraped_at=from_ms(row["scraped_at"]),
            )
            for row in rows
        ]

    # Documents ----------------------------------------------------------

    def save_document(self, document: Document) -> Document:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO documents (id, source_id, name, type, url, content_text, status, error_message, meta_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    document.id,
                    document.source_id,
                    document.name,
                    document.type.value,
                    document.url,
                    document.content_text,
                    document.status.value,
                    document.error_message,
                    _dumps(document.metadata.to_dict()),
                    to_ms(document.created_at),
                    to_ms(document.updated_at),
                ],
            )
        return document

    def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: str | None = None,
        metadata: DocumentMetadata | None = None,
    ) -> None:
        updates = ["status = ?", "error_message = ?", "updated_at = ?"]
        params: list[Any] = [status.value, error_message, now_ms()]
        if metadata is not None:
            updates.append("meta_json = ?")
            params.append(_dumps(metadata.to_dict()))
        with self.db.transaction() as conn:
            cursor = conn.execute(f"UPDATE documents SET {', '.join(updates)} WHERE id = ?", [*params, document_id])
            if cursor.rowcount == 0:
                raise RecordNotFoundError("Document", document_id)

    def get_document(self, document_id: str) -> Document:
        row = self.db.query_one("SELECT * FROM documents WHERE id = ?", [document_id])
        if row is None:
            raise RecordNotFoundError("Document", document_id)
        return _row_to_document(row)

    def list_documents(self, source_id: str) -> list[Document]:
        rows = self.db.query("SELECT * FROM documents WHERE source_id = ? ORDER BY created_at, id", [source_id])
        return [_row_to_document(row) for row in rows]

    def delete_documents_for_source(self, source_id: str, document_type: DocumentType | None = None) -> int:
        sql = "DELETE FROM documents WHERE source_id = ?"
        params: list[Any] = [source_id]
        if document_type is not None:
            sql += " AND type = ?"
            params.append(document_type.value)
        with self.db.transaction() as conn:
            return conn.execute(sql, params).rowcount

    # Chunks -------------------------------------------------------------

    def save_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Insert chunks (and their vectors, where present); repeated ids are ignored."""
        now = now_ms()
        with self.db.transaction() as conn:
            conn.executemany(
                """
                INSERT OR IGNORE INTO chunks (id, document_id, chunk_index, content, start_char, end_char, token_count, meta_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        chunk.document_id,
                        chunk.chunk_index,
                        chunk.content,
                        chunk.start_char,
                        chunk.end_char,
                        chunk.token_count,
                        _dumps(chunk.metadata.to_dict()),
                        now,
                    )
                    for chunk in chunks
                ],
            )
            conn.executemany(
                """
                INSERT OR REPLACE INTO embeddings (chunk_id, model, dim, vector, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        chunk.embedding_model or "",
                        len(chunk.embedding),
                        EmbeddingService.as_bytes(chunk.embedding),
                        now,
                    )
                    for chunk in chunks
                    if chunk.embedding is not None
                ],
            )
        return len(chunks)

    def get_chunk_embedding(self, chunk_id: str) -> list[float] | None:
        row = self.db.query_one(
            """
            SELECT c.id, e.vector
            FROM chunks c
            LEFT JOIN embeddings e ON e.chunk_id = c.id
            WHERE c.id = ?
            """,
            [chunk_id],
        )
        if row is None:
            raise RecordNotFoundError("Chunk", chunk_id)
        if row["vector"] is None:
            return None
        return EmbeddingService.from_bytes(row["vector"])

    # Queries ------------------------------------------------------------

    def query_by_similarity(
        self,
        vector: Sequence[float],
        threshold: float | None,
        limit: int | None,
        filters: SearchFilters | None = None,
        exclude_chunk_id: str | None = None,
    ) -> list[ChunkHit]:
        """Score chunks by cosine similarity; keep ``score > threshold``, best first.

        ``threshold=None`` keeps every chunk with a vector of matching dimension;
        ``limit=None`` returns all of them.
        """
        where, params = _filter_clause(filters)
        if exclude_chunk_id is not None:
            where.append("c.id != ?")
            params.append(exclude_chunk_id)
        where.append("e.dim = ?")
        params.append(len(vector))
        rows = self.db.query(
            f"""
            SELECT {_HIT_COLUMNS}, e.vector
            FROM chunks c
            JOIN embeddings e ON e.chunk_id = c.id
            JOIN documents d ON d.id = c.document_id
            JOIN sources s ON s.id = d.source_id
            WHERE {' AND '.join(where)}
            """,
            params,
        )
        query_norm = _norm(vector)
        hits: list[ChunkHit] = []
        for row in rows:
            score = _cosine(vector, query_norm, EmbeddingService.from_bytes(row["vector"]))
            if threshold is not None and not score > threshold:
                continue
            hits.append(_row_to_hit(row, score))
        hits.sort(key=lambda hit: (-hit.score, hit.seq))
        return hits if limit is None else hits[:limit]

    def query_by_keyword(self, text: str, filters: SearchFilters | None = None) -> list[ChunkHit]:
        """Full-text match (any query term); score is the positive bm25 relevance."""
        words = terms(text)
        if not words:
            return []
        match = " OR ".join(f'"{word}"' for word in dict.fromkeys(words))
        where, params = _filter_clause(filters)
        rows = self.db.query(
            f"""
            SELECT {_HIT_COLUMNS}, -bm25(chunks_fts) AS keyword_score
            FROM chunks_fts
            JOIN chunks c ON c.seq = chunks_fts.rowid
            JOIN documents d ON d.id = c.document_id
            JOIN sources s ON s.id = d.source_id
            WHERE chunks_fts MATCH ? AND {' AND '.join(where)}
            """,
            [match, *params],
        )
        hits = [_row_to_hit(row, float(row["keyword_score"])) for row in rows]
        hits.sort(key=lambda hit: (-hit.score, hit.seq))
        return hits


def _filter_clause(filters: SearchFilters | None) -> tuple[list[str], list[Any]]:
    where = ["d.status = ?"]
    params: list[Any] = [DocumentStatus.COMPLETED.value]
    if filters is None:
        return where, params
    if filters.assistant_id is not None:
        where.append("s.assistant_id = ?")
        params.append(filters.assistant_id)
    if filters.source_ids is not None:
        where.append(f"d.source_id IN ({_placeholders(filters.source_ids)})")
        params.extend(filters.source_ids)
    if filters.document_types is not None:
        where.append(f"d.type IN ({_placeholders(filters.document_types)})")
        params.extend(DocumentType(value).value for value in filters.document_types)
    return where, params


def _placeholders(values: Sequence[Any]) -> str:
    # "IN ()" is a syntax error; NULL matches nothing
    return ",".join("?" for _ in values) or "NULL"


def _norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(value * value for value in vector))


def _cosine(query: Sequence[float], query_norm: float, other: Sequence[float]) -> float:
    other_norm = _norm(other)
    if query_norm == 0 or other_norm == 0:
        return 0.0
    return sum(a * b for a, b in zip(query, other)) / (query_norm * other_norm)


def _dumps(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


def _row_to_hit(row: sqlite3.Row, score: float) -> ChunkHit:
    return ChunkHit(
        chunk_id=row["chunk_id"],
        seq=row["seq"],
        document_id=row["document_id"],
        document_name=row["document_name"],
        document_type=DocumentType(row["document_type"]),
        content=row["content"],
        chunk_index=row["chunk_index"],
        source_id=row["source_id"],
        url=row["url"],
        score=score,
        meta=orjson.loads(row["meta_json"]) if row["meta_json"] else {},
    )


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        assistant_id=row["assistant_id"],
        kind=SourceKind(row["kind"]),
        name=row["name"],
        url=row["url"],
        allowed_domains=orjson.loads(row["allowed_domains_json"]),
        sync_interval=SyncInterval(row["sync_interval"]),
        original_name=row["original_name"],
        mime_type=row["mime_type"],
        size_bytes=row["size_bytes"],
        status=SyncStatus(row["status"]),
        error_message=row["error_message"],
        page_count=row["page_count"],
        last_sync=from_ms(row["last_sync"]),
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        name=row["name"],
        type=DocumentType(row["type"]),
        url=row["url"],
        content_text=row["content_text"],
        status=DocumentStatus(row["status"]),
        error_message=row["error_message"],
        metadata=DocumentMetadata.from_dict(orjson.loads(row["meta_json"])),
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


__all__ = ["KnowledgeStore", "SQLiteKnowledgeStore", "SearchFilters", "ChunkHit"]
