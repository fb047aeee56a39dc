"""Tests for semantic, keyword, hybrid and related-content retrieval."""

from __future__ import annotations

import pytest

from conftest import ScriptedProvider
from kennisbank.core.errors import RecordNotFoundError, RetrievalUnavailableError
from kennisbank.crawl.crawler import Crawler
from kennisbank.db.store import SearchFilters
from kennisbank.ingest.embeddings import EmbeddingService
from kennisbank.ingest.pipeline import IngestPipeline
from kennisbank.models.entities import DocumentStatus, DocumentType
from kennisbank.retrieval.hybrid import blend_scores
from kennisbank.retrieval.search import QueryService

SOLAR = "Solar panels convert sunlight into electricity for homes."
BATTERY = "Battery storage keeps electricity available at night."
GARDEN = "Tomatoes grow best in warm gardens with plenty of water."


@pytest.fixture
def corpus(pipeline) -> dict[str, str]:
    """Ingest three one-chunk documents; returns name -> document id."""
    ids: dict[str, str] = {}
    for name, text in (("solar.txt", SOLAR), ("battery.txt", BATTERY), ("garden.txt", GARDEN)):
        source = pipeline.create_file_source("assistant-1", name=name)
        document = pipeline.upload_document(source.id, text.encode("utf-8"), "text/plain", filename=name)
        assert document.status is DocumentStatus.COMPLETED
        ids[name] = document.id
    return ids


def test_exact_text_ranks_first(query_service: QueryService, corpus: dict[str, str]) -> None:
    results = query_service.search(SOLAR, limit=5, threshold=0.9)
    assert [result.document_id for result in results] == [corpus["solar.txt"]]
    assert results[0].score == pytest.approx(1.0, abs=1e-5)
    assert results[0].document_type is DocumentType.TXT
    assert results[0].document_name == "solar.txt"


def test_no_match_above_threshold_is_empty(query_service: QueryService, corpus: dict[str, str]) -> None:
    assert query_service.search("zebra quantum violin", limit=5, threshold=0.9) == []


def test_raising_threshold_never_adds_results(query_service: QueryService, corpus: dict[str, str]) -> None:
    counts = [
        len(query_service.search("electricity for homes", limit=10, threshold=threshold))
        for threshold in (-1.0, 0.0, 0.1, 0.3, 0.5, 0.9, 0.99)
    ]
    assert counts == sorted(counts, reverse=True)
    assert counts[0] == 3


def test_limit_caps_results(query_service: QueryService, corpus: dict[str, str]) -> None:
    assert len(query_service.search("electricity", limit=1, threshold=-1.0)) == 1


def test_type_filter(query_service: QueryService, corpus: dict[str, str]) -> None:
    assert query_service.search(SOLAR, threshold=-1.0, document_types=[DocumentType.PDF]) == []
    assert len(query_service.search(SOLAR, limit=10, threshold=-1.0, document_types=[DocumentType.TXT])) == 3


def test_assistant_and_source_filters(query_service: QueryService, pipeline, corpus: dict[str, str]) -> None:
    other = pipeline.create_file_source("assistant-2", name="other.txt")
    pipeline.upload_document(other.id, SOLAR.encode("utf-8"), "text/plain", filename="other.txt")

    scoped = query_service.search(SOLAR, limit=10, threshold=0.9, filters=SearchFilters(assistant_id="assistant-2"))
    assert [result.source_id for result in scoped] == [other.id]

    by_source = query_service.search_source(SOLAR, other.id, limit=10, threshold=-1.0)
    assert {result.source_id for result in by_source} == {other.id}


def test_only_completed_documents_are_searchable(query_service: QueryService, store, corpus: dict[str, str]) -> None:
    store.update_document_status(corpus["solar.txt"], DocumentStatus.PROCESSING)
    results = query_service.search(SOLAR, limit=10, threshold=-1.0)
    assert corpus["solar.txt"] not in {result.document_id for result in results}


def test_equal_scores_keep_ingestion_order(query_service: QueryService, pipeline) -> None:
    first = pipeline.create_file_source("assistant-1", name="a.txt")
    second = pipeline.create_file_source("assistant-1", name="b.txt")
    doc_a = pipeline.upload_document(first.id, b"identical words here", "text/plain", filename="a.txt")
    doc_b = pipeline.upload_document(second.id, b"identical words here", "text/plain", filename="b.txt")
    results = query_service.search("identical words here", limit=5, threshold=0.5)
    assert [result.document_id for result in results] == [doc_a.id, doc_b.id]


def test_hybrid_with_full_semantic_weight_equals_semantic(query_service: QueryService, corpus: dict[str, str]) -> None:
    query = "electricity for homes"
    hybrid = query_service.hybrid_search(query, limit=10, semantic_weight=1.0)
    semantic = query_service.search(query, limit=10, threshold=query_service.settings.hybrid_min_score)
    assert hybrid == semantic


def test_hybrid_with_zero_semantic_weight_equals_keyword(query_service: QueryService, corpus: dict[str, str]) -> None:
    query = "electricity homes"
    hybrid = query_service.hybrid_search(query, limit=10, semantic_weight=0.0)
    keyword = query_service.keyword_search(query, limit=10)
    assert hybrid == keyword
    assert hybrid[0].document_id == corpus["solar.txt"]


def test_hybrid_keeps_semantic_only_matches(store, settings, fetcher) -> None:
    # every text embeds to the same direction, so similarity is 1.0 without any keyword match
    embedder = EmbeddingService(ScriptedProvider({}, dim=4), ["flat"])
    pipeline = IngestPipeline(store, settings, embedder, Crawler(fetcher))
    source = pipeline.create_file_source("assistant-1", name="garden.txt")
    pipeline.upload_document(source.id, GARDEN.encode("utf-8"), "text/plain", filename="garden.txt")
    service = QueryService(store, embedder, settings)

    assert service.keyword_search("zebra", min_score=0.0) == []
    results = service.hybrid_search("zebra", semantic_weight=0.7)
    assert len(results) == 1
    assert results[0].score == pytest.approx(0.7)


def test_hybrid_rejects_weight_out_of_range(query_service: QueryService, corpus: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        query_service.hybrid_search("solar", semantic_weight=1.5)


def test_blend_scores_treats_missing_side_as_zero() -> None:
    blended = blend_scores({"a": 1.0, "b": 0.5}, {"b": 1.0, "c": 1.0}, 0.7)
    assert blended == pytest.approx({"a": 0.7, "b": 0.65, "c": 0.3})


def test_related_excludes_source_chunk(query_service: QueryService, store, corpus: dict[str, str]) -> None:
    hits = store.query_by_similarity(
        query_service.embedder.embed_one(SOLAR), None, None, SearchFilters()
    )
    solar_chunk = next(hit.chunk_id for hit in hits if hit.document_id == corpus["solar.txt"])
    related = query_service.related(solar_chunk, limit=10, threshold=-1.0)
    assert solar_chunk not in {result.chunk_id for result in related}
    assert len(related) == 2
    assert query_service.related(solar_chunk) == []


def test_related_unknown_chunk(query_service: QueryService, corpus: dict[str, str]) -> None:
    with pytest.raises(RecordNotFoundError):
        query_service.related("chk_missing")


def test_embedding_failure_makes_retrieval_unavailable(store, settings, corpus: dict[str, str]) -> None:
    service = QueryService(store, EmbeddingService(None, ["m"], enabled=False), settings)
    with pytest.raises(RetrievalUnavailableError):
        service.search("solar")
    assert service.keyword_search("solar", min_score=0.0)


def test_empty_query_is_rejected(query_service: QueryService) -> None:
    with pytest.raises(ValueError):
        query_service.search("   ")


def test_zero_limit_is_rejected_not_defaulted(query_service: QueryService, corpus: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        query_service.search("solar", limit=0)
    with pytest.raises(ValueError):
        query_service.keyword_search("solar", limit=0)
    with pytest.raises(ValueError):
        query_service.hybrid_search("solar", limit=0)
    with pytest.raises(ValueError):
        query_service.related("chk_any", limit=0)
