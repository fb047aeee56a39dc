"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

PAGES_FETCHED = Counter(
    "knb_crawl_pages_total",
    "Pages fetched by the crawler",
    labelnames=("status",),
    registry=REGISTRY,
)

CRAWL_EVENTS = Counter(
    "knb_crawl_events_total",
    "Skipped or failed URLs classified during crawling",
    labelnames=("kind",),
    registry=REGISTRY,
)

EMBEDDING_REQUESTS = Counter(
    "knb_embedding_requests_total",
    "Embedding provider calls",
    labelnames=("model", "outcome"),
    registry=REGISTRY,
)

EMBEDDING_FALLBACKS = Counter(
    "knb_embedding_fallbacks_total",
    "Times a model was skipped because the provider reported it unavailable",
    labelnames=("model",),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "knb_ingest_duration_seconds",
    "Ingest pipeline duration",
    labelnames=("kind",),
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "knb_search_latency_seconds",
    "Latency of retrieval queries",
    labelnames=("mode",),
    registry=REGISTRY,
)

CHUNKS_STORED = Counter(
    "knb_chunks_stored_total",
    "Chunks persisted by ingestion runs",
    labelnames=("embedded",),
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "PAGES_FETCHED",
    "CRAWL_EVENTS",
    "EMBEDDING_REQUESTS",
    "EMBEDDING_FALLBACKS",
    "INGEST_DURATION",
    "SEARCH_LATENCY",
    "CHUNKS_STORED",
    "metrics_response",
]
