"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from kennisbank.core.config import Settings, get_settings
from kennisbank.crawl.crawler import Crawler
from kennisbank.crawl.fetch import RequestsFetcher
from kennisbank.db.sqlite import SQLiteDatabase
from kennisbank.db.store import SQLiteKnowledgeStore
from kennisbank.ingest.embeddings import EmbeddingService, build_embedding_service
from kennisbank.ingest.pipeline import IngestPipeline
from kennisbank.retrieval import QueryService

_DB: SQLiteDatabase | None = None
_STORE: SQLiteKnowledgeStore | None = None
_EMBEDDER: EmbeddingService | None = None
_CRAWLER: Crawler | None = None
_PIPELINE: IngestPipeline | None = None
_QUERY_SERVICE: QueryService | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path, timeout=settings.storage_timeout)
        db.ensure_schema()
        _DB = db
    return _DB


def get_store() -> SQLiteKnowledgeStore:
    global _STORE
    if _STORE is None:
        _STORE = SQLiteKnowledgeStore(get_database())
    return _STORE


def get_embedding_service() -> EmbeddingService:
    global _EMBEDDER
    if _EMBEDDER is None:
        _EMBEDDER = build_embedding_service(get_app_settings())
    return _EMBEDDER


def get_crawler() -> Crawler:
    global _CRAWLER
    if _CRAWLER is None:
        settings = get_app_settings()
        _CRAWLER = Crawler(
            RequestsFetcher(user_agent=settings.user_agent),
            timeout=settings.fetch_timeout,
            allowed_domains=settings.allowed_domains,
        )
    return _CRAWLER


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        _PIPELINE = IngestPipeline(
            store=get_store(),
            settings=get_app_settings(),
            embedder=get_embedding_service(),
            crawler=get_crawler(),
        )
    return _PIPELINE


def get_query_service() -> QueryService:
    global _QUERY_SERVICE
    if _QUERY_SERVICE is None:
        _QUERY_SERVICE = QueryService(
            store=get_store(),
            embedder=get_embedding_service(),
            settings=get_app_settings(),
        )
    return _QUERY_SERVICE


__all__ = [
    "get_app_settings",
    "get_database",
    "get_store",
    "get_embedding_service",
    "get_crawler",
    "get_ingest_pipeline",
    "get_query_service",
]
