"""Resolve bookmarked ISBNs to book records, one ISBN lookup each."""

import asyncio
import logging

from library_search.models.model_library import BookRecord, IsbnQuery, SessionState
from library_search.services.registry import SessionRegistry, book_slot

logger = logging.getLogger(__name__)


async def lookup_book(registry: SessionRegistry, isbn: str) -> BookRecord | None:
    """Return the first holding for ``isbn``, or None if not found or failed."""
    query = IsbnQuery(isbn=isbn)
    session = registry.submit(book_slot(query.isbn), query)
    await session.wait()
    if session.state is SessionState.FAILED:
        logger.warning("Lookup failed for isbn=%s: %s", query.isbn, session.error)
        return None
    return session.book


async def lookup_books(
    registry: SessionRegistry, isbns: list[str]
) -> dict[str, BookRecord | None]:
    """Look up many ISBNs concurrently.

    Repeated ISBNs are looked up once; the result keeps the input order.
    """
    unique = list(dict.fromkeys(isbns))
    books = await asyncio.gather(*(lookup_book(registry, isbn) for isbn in unique))
    return dict(zip(unique, books))
