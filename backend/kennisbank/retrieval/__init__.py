"""Retrieval orchestration components."""

from .hybrid import blend_scores, normalize_by_max
from .search import QueryService

__all__ = [
    "QueryService",
    "blend_scores",
    "normalize_by_max",
]
