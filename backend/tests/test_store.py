"""Tests for the SQLite knowledge store."""

from __future__ import annotations

from datetime import timedelta

import pytest

from kennisbank.core.errors import DuplicateSourceError, RecordNotFoundError
from kennisbank.db.store import SearchFilters, SQLiteKnowledgeStore
from kennisbank.models.entities import (
    Chunk,
    ChunkMetadata,
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
from kennisbank.utils.time import utc_now


def _source(source_id: str, assistant_id: str = "assistant-1", url: str | None = "https://example.com") -> Source:
    kind = SourceKind.WEBSITE if url else SourceKind.FILE
    return Source(id=source_id, assistant_id=assistant_id, kind=kind, url=url)


def _document(store: SQLiteKnowledgeStore, doc_id: str, source_id: str, doc_type: DocumentType = DocumentType.TXT) -> Document:
    document = store.save_document(
        Document(
            id=doc_id,
            name=f"{doc_id}.txt",
            type=doc_type,
            content_text="",
            metadata=DocumentMetadata(source_id=source_id),
        )
    )
    store.update_document_status(doc_id, DocumentStatus.COMPLETED)
    return document


def _chunk(chunk_id: str, doc_id: str, source_id: str, content: str, vector: list[float] | None) -> Chunk:
    return Chunk(
        id=chunk_id,
        chunk_index=0,
        content=content,
        start_char=0,
        end_char=len(content),
        token_count=1,
        metadata=ChunkMetadata(source_id=source_id, document_id=doc_id),
        embedding=vector,
        embedding_model="m" if vector else None,
    )


def test_duplicate_website_per_assistant(store: SQLiteKnowledgeStore) -> None:
    store.create_source(_source("src_1"))
    with pytest.raises(DuplicateSourceError):
        store.create_source(_source("src_2"))
    store.create_source(_source("src_3", assistant_id="assistant-2"))
    assert [source.id for source in store.list_sources("assistant-1")] == ["src_1"]
    assert len(store.list_sources()) == 2


def test_missing_records(store: SQLiteKnowledgeStore) -> None:
    with pytest.raises(RecordNotFoundError):
        store.get_source("src_missing")
    with pytest.raises(RecordNotFoundError):
        store.delete_source("src_missing")
    with pytest.raises(RecordNotFoundError):
        store.update_source_status("src_missing", SyncStatus.ERROR)
    with pytest.raises(RecordNotFoundError):
        store.get_chunk_embedding("chk_missing")


def test_status_update_round_trip(store: SQLiteKnowledgeStore) -> None:
    store.create_source(_source("src_1"))
    synced = utc_now()
    source = store.update_source_status("src_1", SyncStatus.ERROR, error_message="boom", page_count=4, last_sync=synced)
    assert source.status is SyncStatus.ERROR
    assert source.error_message == "boom"
    assert source.page_count == 4
    assert abs((source.last_sync - synced).total_seconds()) < 0.01


def test_delete_source_cascades(store: SQLiteKnowledgeStore) -> None:
    store.create_source(_source("src_1"))
    store.replace_pages("src_1", [Page(url="https://example.com", title="Home", content="hi", links=[], status=SyncStatus.COMPLETED)])
    _document(store, "doc_1", "src_1")
    store.save_chunks([_chunk("chk_1", "doc_1", "src_1", "solar power", [1.0, 0.0])])

    store.delete_source("src_1")
    assert store.list_pages("src_1") == []
    assert store.list_documents("src_1") == []
    assert store.query_by_keyword("solar") == []
    with pytest.raises(RecordNotFoundError):
        store.get_chunk_embedding("chk_1")


def test_chunk_without_vector(store: SQLiteKnowledgeStore) -> None:
    store.create_source(_source("src_1", url=None))
    _document(store, "doc_1", "src_1")
    store.save_chunks([_chunk("chk_1", "doc_1", "src_1", "no vector here", None)])
    assert store.get_chunk_embedding("chk_1") is None
    assert store.query_by_similarity([1.0, 0.0], None, None) == []
    assert [hit.chunk_id for hit in store.query_by_keyword("vector")] == ["chk_1"]


def test_similarity_threshold_and_filters(store: SQLiteKnowledgeStore) -> None:
    store.create_source(_source("src_1", url=None))
    store.create_source(_source("src_2", assistant_id="assistant-2", url=None))
    _document(store, "doc_1", "src_1")
    _document(store, "doc_2", "src_2", DocumentType.PDF)
    store.save_chunks(
        [
            _chunk("chk_1", "doc_1", "src_1", "one", [1.0, 0.0]),
            _chunk("chk_2", "doc_2", "src_2", "two", [1.0, 1.0]),
        ]
    )

    hits = store.query_by_similarity([1.0, 0.0], None, None)
    assert [hit.chunk_id for hit in hits] == ["chk_1", "chk_2"]
    assert hits[0].score == pytest.approx(1.0)
    assert hits[1].score == pytest.approx(0.7071, abs=1e-4)

    assert [hit.chunk_id for hit in store.query_by_similarity([1.0, 0.0], 0.8, None)] == ["chk_1"]
    # strictly greater than the threshold
    assert store.query_by_similarity([1.0, 0.0], 1.0, None) == []
    assert [hit.chunk_id for hit in store.query_by_similarity([1.0, 0.0], None, 1)] == ["chk_1"]

    by_assistant = store.query_by_similarity([1.0, 0.0], None, None, SearchFilters(assistant_id="assistant-2"))
    assert [hit.chunk_id for hit in by_assistant] == ["chk_2"]
    by_type = store.query_by_similarity([1.0, 0.0], None, None, SearchFilters(document_types=[DocumentType.PDF]))
    assert [hit.chunk_id for hit in by_type] == ["chk_2"]
    assert store.query_by_similarity([1.0, 0.0], None, None, SearchFilters(source_ids=[])) == []
    excluded = store.query_by_similarity([1.0, 0.0], None, None, exclude_chunk_id="chk_1")
    assert [hit.chunk_id for hit in excluded] == ["chk_2"]
    # vectors of another dimension never match
    assert store.query_by_similarity([1.0, 0.0, 0.0], None, None) == []


def test_keyword_scores_rank_better_matches_first(store: SQLiteKnowledgeStore) -> None:
    store.create_source(_source("src_1", url=None))
    _document(store, "doc_1", "src_1")
    store.save_chunks(
        [
            _chunk("chk_1", "doc_1", "src_1", "battery storage and more words about many other topics entirely", None),
            _chunk("chk_2", "doc_1", "src_1", "battery battery storage", None),
        ]
    )
    hits = store.query_by_keyword("battery storage")
    assert [hit.chunk_id for hit in hits] == ["chk_2", "chk_1"]
    assert all(hit.score > 0 for hit in hits)
    assert store.query_by_keyword("!!!") == []


def test_delete_documents_by_type(store: SQLiteKnowledgeStore) -> None:
    store.create_source(_source("src_1"))
    _document(store, "doc_url", "src_1", DocumentType.URL)
    _document(store, "doc_pdf", "src_1", DocumentType.PDF)
    assert store.delete_documents_for_source("src_1", DocumentType.URL) == 1
    assert [document.id for document in store.list_documents("src_1")] == ["doc_pdf"]


def test_list_due_sources(store: SQLiteKnowledgeStore) -> None:
    now = utc_now()
    never = _source("src_never", url="https://a.example")
    daily = _source("src_daily", url="https://b.example")
    daily.sync_interval = SyncInterval.DAILY
    weekly = _source("src_weekly", url="https://c.example")
    weekly.sync_interval = SyncInterval.WEEKLY
    weekly.last_sync = now - timedelta(days=2)
    for source in (never, daily, weekly):
        store.create_source(source)

    assert [source.id for source in store.list_due_sources(now)] == ["src_daily"]
    assert {source.id for source in store.list_due_sources(now + timedelta(days=6))} == {"src_daily", "src_weekly"}
    store.update_source_status("src_daily", SyncStatus.SYNCING)
    assert store.list_due_sources(now) == []
