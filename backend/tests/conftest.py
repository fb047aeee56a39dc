"""Test fixtures for Kennisbank."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from kennisbank.core.config import Settings, get_settings  # noqa: E402
from kennisbank.crawl.crawler import Crawler  # noqa: E402
from kennisbank.crawl.fetch import FetchResponse  # noqa: E402
from kennisbank.db.sqlite import SQLiteDatabase  # noqa: E402
from kennisbank.db.store import SQLiteKnowledgeStore  # noqa: E402
from kennisbank.ingest.embeddings import EmbeddingService, HashedEmbeddingProvider  # noqa: E402
from kennisbank.ingest.pipeline import IngestPipeline  # noqa: E402
from kennisbank.retrieval.search import QueryService  # noqa: E402


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("KNB_DB_PATH", str(tmp_path / "kb.db"))
    monkeypatch.setenv("KNB_EMBEDDING_PROVIDER", "hashed")
    monkeypatch.setenv("KNB_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    from kennisbank.api import dependencies as deps

    def _reset() -> None:
        get_settings.cache_clear()
        deps.get_app_settings.cache_clear()
        if deps._DB is not None:
            deps._DB.close()
        deps._DB = None
        deps._STORE = None
        deps._EMBEDDER = None
        deps._CRAWLER = None
        deps._PIPELINE = None
        deps._QUERY_SERVICE = None

    _reset()
    yield
    _reset()


class FakeFetcher:
    """Serves canned responses by URL; unknown URLs answer 404."""

    def __init__(self, pages: dict[str, FetchResponse | Exception | str] | None = None) -> None:
        self.pages: dict[str, FetchResponse | Exception | str] = dict(pages or {})
        self.calls: list[str] = []

    def get(self, url: str, timeout: float) -> FetchResponse:
        self.calls.append(url)
        entry = self.pages.get(url)
        if entry is None:
            return FetchResponse(status=404, body="", final_url=url)
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, str):
            return FetchResponse(status=200, body=entry, final_url=url)
        return entry


class ScriptedProvider:
    """Embedding provider whose behaviour per model is scripted by the test."""

    def __init__(self, outcomes: dict[str, Exception | int], dim: int = 8) -> None:
        self.outcomes = outcomes
        self.dim = dim
        self.calls: list[tuple[str, int]] = []

    def create_embeddings(self, model: str, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append((model, len(texts)))
        outcome = self.outcomes.get(model, self.dim)
        if isinstance(outcome, Exception):
            raise outcome
        return [[float(index + 1)] * outcome for index, _ in enumerate(texts)]


def html_page(title: str, body: str, links: Sequence[str] = ()) -> str:
    anchors = "".join(f'<a href="{link}">{link}</a>' for link in links)
    return (
        f"<html><head><title>{title}</title><script>var x = 1;</script></head>"
        f"<body><nav>Menu</nav><main><h1>{title}</h1><p>{body}</p>{anchors}</main>"
        "<footer>Footer text</footer></body></html>"
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "kb.db",
        embedding_provider="hashed",
        embedding_models=["hash-v1"],
        hashed_dim=256,
        crawl_deadline=None,
    )


@pytest.fixture
def database(settings: Settings) -> SQLiteDatabase:
    db = SQLiteDatabase(settings.db_path)
    db.ensure_schema()
    yield db
    db.close()


@pytest.fixture
def store(database: SQLiteDatabase) -> SQLiteKnowledgeStore:
    return SQLiteKnowledgeStore(database)


@pytest.fixture
def embedder(settings: Settings) -> EmbeddingService:
    return EmbeddingService(HashedEmbeddingProvider(settings.hashed_dim), settings.embedding_models)


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def pipeline(store: SQLiteKnowledgeStore, settings: Settings, embedder: EmbeddingService, fetcher: FakeFetcher) -> IngestPipeline:
    return IngestPipeline(store, settings, embedder, Crawler(fetcher))


@pytest.fixture
def query_service(store: SQLiteKnowledgeStore, embedder: EmbeddingService, settings: Settings) -> QueryService:
    return QueryService(store, embedder, settings)
