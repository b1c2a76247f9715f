"""Retrieval components."""

from .vector_index import SearchResult, VectorIndex
from .search import SearchHit, SearchService

__all__ = [
    "VectorIndex",
    "SearchResult",
    "SearchService",
    "SearchHit",
]
