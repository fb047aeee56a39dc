"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "KNB_"
DEFAULT_CONFIG_PATH = Path("~/.config/kennisbank/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "timeout"): "storage_timeout",
    ("embeddings", "provider"): "embedding_provider",
    ("embeddings", "models"): "embedding_models",
    ("embeddings", "api_key"): "openai_api_key",
    ("embeddings", "enabled"): "embeddings_enabled",
    ("embeddings", "timeout"): "embedding_timeout",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("embeddings", "hashed_dim"): "hashed_dim",
    ("chunking", "size"): "chunk_size",
    ("chunking", "overlap"): "chunk_overlap",
    ("chunking", "boundary_lookback"): "boundary_lookback",
    ("crawler", "max_pages"): "crawl_max_pages",
    ("crawler", "max_depth"): "crawl_max_depth",
    ("crawler", "fetch_timeout"): "fetch_timeout",
    ("crawler", "deadline"): "crawl_deadline",
    ("crawler", "user_agent"): "user_agent",
    ("crawler", "allowed_domains"): "allowed_domains",
    ("ingest", "allow_unembedded_chunks"): "allow_unembedded_chunks",
    ("ingest", "max_upload_bytes"): "max_upload_bytes",
    ("retrieval", "limit"): "search_limit",
    ("retrieval", "similarity_threshold"): "similarity_threshold",
    ("retrieval", "semantic_weight"): "semantic_weight",
    ("retrieval", "hybrid_min_score"): "hybrid_min_score",
    ("retrieval", "related_limit"): "related_limit",
    ("retrieval", "related_threshold"): "related_threshold",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".kennisbank" / "kb.db")
    storage_timeout: float = 10.0

    embedding_provider: Literal["openai", "hashed"] = "openai"
    embedding_models: list[str] = Field(
        default_factory=lambda: ["text-embedding-3-small", "text-embedding-ada-002"],
        min_length=1,
    )
    openai_api_key: str | None = None
    embeddings_enabled: bool = True
    embedding_timeout: float = 30.0
    embedding_batch_size: int = Field(default=64, ge=1)
    hashed_dim: int = Field(default=384, ge=8)

    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    boundary_lookback: int = Field(default=200, ge=0)

    crawl_max_pages: int = Field(default=10, ge=1)
    crawl_max_depth: int = Field(default=2, ge=0)
    fetch_timeout: float = 15.0
    crawl_deadline: float | None = 300.0
    user_agent: str = "kennisbank-crawler/0.1 (+https://kennisbank.local/bot)"
    allowed_domains: list[str] = Field(default_factory=list)

    allow_unembedded_chunks: bool = True
    max_upload_bytes: int = 10 * 1024 * 1024

    search_limit: int = Field(default=5, ge=1)
    similarity_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    semantic_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    hybrid_min_score: float = 0.5
    related_limit: int = Field(default=3, ge=1)
    related_threshold: float = Field(default=0.8, ge=-1.0, le=1.0)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @field_validator("embedding_models", "allowed_domains", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        # env vars arrive as "a,b,c"
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with KNB_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    api_key = os.environ.get("OPENAI_API_KEY")
    if api_key:
        overrides["openai_api_key"] = api_key
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
