"""API integration tests."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import FakeFetcher, html_page
from kennisbank.api import dependencies as deps
from kennisbank.app import app
from kennisbank.crawl.crawler import Crawler

SEED = "https://docs.example.com"


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher(
        {
            SEED: html_page("Docs", "Install the solar inverter first.", [f"{SEED}/faq"]),
            f"{SEED}/faq": html_page("FAQ", "Batteries last about ten years."),
        }
    )


@pytest.fixture
def client(fake_fetcher: FakeFetcher) -> TestClient:
    deps._CRAWLER = Crawler(fake_fetcher)
    with TestClient(app) as test_client:
        yield test_client


def _file_source(client: TestClient, name: str = "notes.txt") -> str:
    resp = client.post("/sources", json={"assistant_id": "assistant-1", "kind": "file", "name": name})
    assert resp.status_code == 201
    return resp.json()["id"]


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "embeddings": True}


def test_create_and_list_sources(client: TestClient) -> None:
    resp = client.post("/sources", json={"assistant_id": "assistant-1", "url": SEED, "sync_interval": "daily"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["kind"] == "website"
    assert body["status"] == "PENDING"
    assert body["sync_interval"] == "daily"

    duplicate = client.post("/sources", json={"assistant_id": "assistant-1", "url": SEED})
    assert duplicate.status_code == 409

    listed = client.get("/sources", params={"assistant_id": "assistant-1"}).json()
    assert [source["id"] for source in listed] == [body["id"]]
    assert client.get(f"/sources/{body['id']}").json()["url"] == SEED


def test_website_source_requires_valid_url(client: TestClient) -> None:
    assert client.post("/sources", json={"assistant_id": "assistant-1", "kind": "website"}).status_code == 422
    resp = client.post("/sources", json={"assistant_id": "assistant-1", "url": "ftp://example.com"})
    assert resp.status_code == 400


def test_crawl_runs_in_background(client: TestClient) -> None:
    source_id = client.post("/sources", json={"assistant_id": "assistant-1", "url": SEED}).json()["id"]
    resp = client.post(f"/sources/{source_id}/crawl")
    assert resp.status_code == 202
    assert resp.json() == {"source_id": source_id, "status": "SYNCING"}

    # TestClient runs background tasks before returning
    source = client.get(f"/sources/{source_id}").json()
    assert source["status"] == "COMPLETED"
    assert source["page_count"] == 2
    pages = client.get(f"/sources/{source_id}/pages").json()
    assert {page["url"] for page in pages} == {SEED, f"{SEED}/faq"}
    documents = client.get(f"/sources/{source_id}/documents").json()
    assert {document["type"] for document in documents} == {"URL"}

    results = client.post("/search", json={"query": "Batteries last about ten years.", "threshold": 0.5}).json()
    assert results["results"][0]["url"] == f"{SEED}/faq"


def test_crawl_of_file_source_is_rejected(client: TestClient) -> None:
    source_id = _file_source(client)
    assert client.post(f"/sources/{source_id}/crawl").status_code == 400


def test_upload_search_and_related(client: TestClient) -> None:
    first = _file_source(client, "solar.txt")
    second = _file_source(client, "battery.txt")
    resp = client.post(
        f"/sources/{first}/documents",
        files={"file": ("solar.txt", b"Solar panels convert sunlight into electricity.", "text/plain")},
    )
    assert resp.status_code == 201
    document = resp.json()
    assert document["status"] == "COMPLETED"
    assert document["type"] == "TXT"
    assert document["chunk_count"] == 1
    client.post(
        f"/sources/{second}/documents",
        files={"file": ("battery.txt", b"Battery storage keeps electricity at night.", "text/plain")},
    )

    semantic = client.post("/search", json={"query": "Solar panels convert sunlight into electricity.", "threshold": 0.9})
    assert semantic.status_code == 200
    [hit] = semantic.json()["results"]
    assert hit["document_id"] == document["id"]

    keyword = client.post("/search", json={"query": "battery", "mode": "keyword"}).json()
    assert [result["source_id"] for result in keyword["results"]] == [second]

    hybrid = client.post("/search", json={"query": "electricity", "mode": "hybrid", "semantic_weight": 0.0}).json()
    assert hybrid["mode"] == "hybrid"
    assert len(hybrid["results"]) == 2

    filtered = client.post(
        "/search",
        json={"query": "electricity", "threshold": -1.0, "filters": {"document_types": ["PDF"]}},
    ).json()
    assert filtered["results"] == []

    related = client.get(f"/chunks/{hit['chunk_id']}/related", params={"threshold": -1.0})
    assert related.status_code == 200
    assert [result["source_id"] for result in related.json()] == [second]


def test_upload_errors(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    source_id = _file_source(client)
    unsupported = client.post(
        f"/sources/{source_id}/documents",
        files={"file": ("photo.png", b"\x89PNG", "image/png")},
    )
    assert unsupported.status_code == 415

    monkeypatch.setattr(deps.get_app_settings(), "max_upload_bytes", 4)
    too_large = client.post(
        f"/sources/{source_id}/documents",
        files={"file": ("notes.txt", b"more than four bytes", "text/plain")},
    )
    assert too_large.status_code == 413
    assert client.get(f"/sources/{source_id}/documents").json() == []


def test_mime_type_form_field_overrides_upload_type(client: TestClient) -> None:
    source_id = _file_source(client, "readme")
    resp = client.post(
        f"/sources/{source_id}/documents",
        files={"file": ("readme", b"# Readme\n\nMarkdown body.", "application/octet-stream")},
        data={"mime_type": "text/markdown"},
    )
    assert resp.status_code == 201
    assert client.get(f"/sources/{source_id}").json()["mime_type"] == "text/markdown"


def test_missing_records(client: TestClient) -> None:
    assert client.get("/sources/src_missing").status_code == 404
    assert client.delete("/sources/src_missing").status_code == 404
    assert client.get("/sources/src_missing/pages").status_code == 404
    assert client.post("/sources/src_missing/crawl").status_code == 404
    assert client.get("/chunks/chk_missing/related").status_code == 404


def test_delete_source(client: TestClient) -> None:
    source_id = _file_source(client)
    client.post(f"/sources/{source_id}/documents", files={"file": ("a.txt", b"delete me", "text/plain")})
    resp = client.delete(f"/sources/{source_id}")
    assert resp.json() == {"status": "ok", "deleted": 1}
    assert client.post("/search", json={"query": "delete me", "mode": "keyword"}).json()["results"] == []


def test_search_validation(client: TestClient) -> None:
    assert client.post("/search", json={"query": ""}).status_code == 422
    assert client.post("/search", json={"query": "x", "mode": "hybrid", "semantic_weight": 2}).status_code == 422


def test_search_without_embeddings_is_unavailable(client: TestClient) -> None:
    deps.get_embedding_service().enabled = False
    assert client.post("/search", json={"query": "anything"}).status_code == 503
    assert client.post("/search", json={"query": "anything", "mode": "keyword"}).status_code == 200


def test_sync_endpoint(client: TestClient) -> None:
    client.post("/sources", json={"assistant_id": "assistant-1", "url": SEED, "sync_interval": "weekly"})
    reports = client.post("/sync").json()
    assert len(reports) == 1
    assert reports[0]["status"] == "COMPLETED"
    assert reports[0]["pages"] == 2
    assert client.post("/sync").json() == []


def test_metrics(client: TestClient) -> None:
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "knb_crawl_pages_total" in resp.text


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def test_blocking_work_runs_off_the_event_loop(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    provider = deps.get_embedding_service().provider
    original = provider.create_embeddings
    calls: list[bool] = []

    def tracking(model: str, texts: list[str]) -> list[list[float]]:
        calls.append(_on_event_loop())
        return original(model, texts)

    monkeypatch.setattr(provider, "create_embeddings", tracking)

    source_id = _file_source(client)
    upload = client.post(f"/sources/{source_id}/documents", files={"file": ("a.txt", b"Solar power.", "text/plain")})
    assert upload.status_code == 201
    assert client.post("/search", json={"query": "solar"}).status_code == 200
    client.post("/sources", json={"assistant_id": "assistant-1", "url": SEED, "sync_interval": "daily"})
    assert len(client.post("/sync").json()) == 1

    assert len(calls) >= 3
    assert not any(calls)
