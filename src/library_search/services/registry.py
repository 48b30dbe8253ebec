"""
Session registry: at most one live search session per slot.

A slot is a logical search context. Free-text and detail searches share
``SEARCH_SLOT``; every ISBN lookup gets its own ``book_slot(isbn)``.

``submit`` swaps sessions without awaiting anything, so on a single event
loop no reader of ``get(slot)`` can see the slot empty or see two live
sessions for it.
"""

import logging

from library_search.config import Settings
from library_search.constants import BOOK_SLOT_PREFIX, POLL_INTERVAL
from library_search.data_sources.aggregator import AggregatorClient
from library_search.models.model_library import Query, SessionState
from library_search.services.session import SearchSession
from library_search.utils.cache import QueryCache

logger = logging.getLogger(__name__)


def book_slot(isbn: str) -> str:
    """Slot for a single-ISBN lookup."""
    return f"{BOOK_SLOT_PREFIX}{isbn}"


class SessionRegistry:
    """Process-wide table of the current session for each slot."""

    def __init__(
        self,
        client: AggregatorClient,
        *,
        poll_interval: float = POLL_INTERVAL,
        ceiling: float | None = None,
        cache: QueryCache | None = None,
        reuse_completed: bool = True,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.ceiling = ceiling
        self.cache = cache
        self.reuse_completed = reuse_completed
        self._slots: dict[str, SearchSession] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionRegistry":
        """Build a registry, its aggregator client and query cache from settings."""
        client = AggregatorClient(
            base_url=settings.aggregator_base_url,
            region=settings.region,
            timeout_seconds=settings.request_timeout_seconds,
        )
        cache = (
            QueryCache(settings.cache_dir, settings.cache_ttl_seconds)
            if settings.cache_dir
            else None
        )
        return cls(
            client,
            ceiling=settings.session_ceiling_seconds,
            cache=cache,
            reuse_completed=settings.reuse_completed_sessions,
        )

    def submit(self, slot: str, query: Query) -> SearchSession:
        """Return the session for ``query`` in ``slot``, superseding any live one.

        With ``reuse_completed`` on, an identical query whose session already
        completed (in this process or in the query cache) is served without
        touching the network.
        """
        current = self._slots.get(slot)

        if self.reuse_completed:
            if (
                current is not None
                and current.state is SessionState.COMPLETE
                and current.query == query
            ):
                logger.debug("Reusing completed session for slot=%s", slot)
                return current
            cached = self.cache.get(slot, query) if self.cache else None
            if cached is not None:
                if current is not None:
                    current.cancel()
                session = SearchSession.completed(self.client, query, cached)
                self._slots[slot] = session
                logger.info("Restored slot=%s from query cache", slot)
                return session

        session = SearchSession(
            self.client,
            query,
            poll_interval=self.poll_interval,
            ceiling=self.ceiling,
        )
        if self.cache is not None:
            session.subscribe(self._cache_writer(slot))

        if current is not None and current.cancel():
            logger.info("Superseded live session in slot=%s", slot)
        self._slots[slot] = session
        session.start()
        return session

    def get(self, slot: str) -> SearchSession | None:
        return self._slots.get(slot)

    def params(self, slot: str) -> dict[str, str] | None:
        """Address-bar parameters of the slot's current query."""
        session = self._slots.get(slot)
        return session.params if session else None

    def discard(self, slot: str) -> None:
        """Cancel (if live) and evict the slot's session."""
        session = self._slots.pop(slot, None)
        if session is not None:
            session.cancel()

    async def close(self) -> None:
        """Cancel every live session and release the client."""
        for session in self._slots.values():
            session.cancel()
        self._slots.clear()
        await self.client.close()

    def _cache_writer(self, slot: str):
        def write(session: SearchSession) -> None:
            if session.state is SessionState.COMPLETE and session.snapshot is not None:
                self.cache.set(slot, session.query, session.snapshot)

        return write
