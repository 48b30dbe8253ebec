"""Data models for library_search."""

from library_search.models.model_library import (
    BookKey,
    BookRecord,
    DetailQuery,
    DiffBatch,
    FreeTextQuery,
    IsbnQuery,
    Query,
    SessionSnapshot,
    SessionState,
)

__all__ = [
    "BookKey",
    "BookRecord",
    "DetailQuery",
    "DiffBatch",
    "FreeTextQuery",
    "IsbnQuery",
    "Query",
    "SessionSnapshot",
    "SessionState",
]
