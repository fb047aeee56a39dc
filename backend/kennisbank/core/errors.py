"""Exception hierarchy shared by crawling, ingestion and retrieval."""

from __future__ import annotations

from typing import Sequence


class KennisbankError(Exception):
    """Base class for all domain errors."""


class RecordNotFoundError(KennisbankError, LookupError):
    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class DuplicateSourceError(KennisbankError):
    """A website with the same URL already exists for the assistant."""


# Crawling --------------------------------------------------------------


class FetchError(KennisbankError):
    """Network, timeout or transport failure while fetching a URL."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url


class CrawlError(KennisbankError):
    """The crawl run as a whole could not complete."""


class SeedUnreachableError(CrawlError):
    def __init__(self, seed_url: str, reason: str) -> None:
        super().__init__(f"Could not reach {seed_url}: {reason}")
        self.seed_url = seed_url
        self.reason = reason


# Ingestion -------------------------------------------------------------


class IngestionError(KennisbankError):
    """A source or document could not be ingested."""


class UnsupportedFormatError(IngestionError):
    def __init__(self, mime_type: str) -> None:
        super().__init__(f"Unsupported document format: {mime_type or 'unknown'}")
        self.mime_type = mime_type


class UploadTooLargeError(IngestionError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Upload of {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


# Embeddings ------------------------------------------------------------


class EmbeddingError(KennisbankError):
    """Embedding generation failed."""


class EmbeddingsDisabledError(EmbeddingError):
    pass


class ModelUnavailableError(EmbeddingError):
    """The provider reports that one specific model cannot be used."""

    def __init__(self, model: str, message: str = "model not available") -> None:
        super().__init__(f"{model}: {message}")
        self.model = model


class EmbeddingProviderError(EmbeddingError):
    """Any provider failure other than model availability (auth, quota, input)."""

    def __init__(self, model: str, message: str) -> None:
        super().__init__(f"Failed to generate embeddings with model {model}: {message}")
        self.model = model


class AllModelsUnavailableError(EmbeddingError):
    def __init__(self, models: Sequence[str]) -> None:
        super().__init__(f"All embedding models failed. Tried: {', '.join(models)}")
        self.models = list(models)


# Retrieval -------------------------------------------------------------


class RetrievalUnavailableError(KennisbankError):
    """Search could not run because the query embedding failed."""


__all__ = [
    "KennisbankError",
    "RecordNotFoundError",
    "DuplicateSourceError",
    "FetchError",
    "CrawlError",
    "SeedUnreachableError",
    "IngestionError",
    "UnsupportedFormatError",
    "UploadTooLargeError",
    "EmbeddingError",
    "EmbeddingsDisabledError",
    "ModelUnavailableError",
    "EmbeddingProviderError",
    "AllModelsUnavailableError",
    "RetrievalUnavailableError",
]
