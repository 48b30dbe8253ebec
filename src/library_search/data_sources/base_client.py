"""
Base client for the remote aggregator.

Provides: lazy aiohttp session management, structured request logging,
and classification of transport failures. It deliberately makes exactly one
network call per request; retry policy belongs to the caller.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import aiohttp
from pydantic import BaseModel

from library_search.constants import DEFAULT_TIMEOUT

logger = logging.getLogger("library_search.data_sources")


# ---------------------------------------------------------------------------
# Request context (for structured logging)
# ---------------------------------------------------------------------------


class RequestContext(BaseModel):
    """Metadata attached to every outgoing request for logging."""

    source: str  # e.g. "unitrad"
    method: str  # e.g. "initiate", "poll_once"
    params: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class AggregatorError(Exception):
    """Base exception for aggregator failures."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        self.source = source
        self.status_code = status_code
        super().__init__(f"[{source}] {message}")


class NetworkError(AggregatorError):
    """Transport-level failure: connection refused, DNS, timeout, HTTP error status."""

    pass


class ProtocolError(AggregatorError):
    """The response body does not have the shape the protocol requires."""

    pass


class SessionTimeoutError(AggregatorError):
    """The caller-supplied wall-clock ceiling elapsed before the session finished."""

    pass


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------


class BaseClient(ABC):
    """
    Abstract base for aggregator clients.

    Subclasses implement `_source_name` and their own typed methods that
    call `_rest_get()` and parse the raw body.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT):
        self.timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    @property
    @abstractmethod
    def _source_name(self) -> str:
        """Identifier for this data source, e.g. 'unitrad'."""
        ...

    # -- Session management --------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # -- Single request --------------------------------------------------------

    async def _rest_get(
        self,
        url: str,
        params: dict[str, str],
        *,
        context: RequestContext | None = None,
    ) -> str:
        """
        Issue one GET request and return the raw response body.

        Parameters
        ----------
        url : str
            Full URL.
        params : dict
            Query string parameters; values must already be strings.
        context : RequestContext, optional
            Logging context.

        Raises
        ------
        NetworkError
            On connection errors, timeouts, and HTTP status >= 400.
        ProtocolError
            If a successful response body cannot be decoded as text.
        """
        ctx = context or RequestContext(source=self._source_name, method="unknown")
        start = time.monotonic()

        try:
            session = await self._get_session()
            logger.info("Request [%s.%s] url=%s", ctx.source, ctx.method, url)
            resp = await session.get(url, params=params)

            if resp.status >= 400:
                body = await resp.text(errors="replace")
                logger.warning(
                    "HTTP %d from %s.%s: %s",
                    resp.status,
                    ctx.source,
                    ctx.method,
                    body[:200],
                )
                raise NetworkError(
                    ctx.source,
                    f"HTTP {resp.status}: {body[:500]}",
                    status_code=resp.status,
                )

            try:
                body = await resp.text()
            except UnicodeDecodeError as e:
                logger.warning(
                    "Undecodable body [%s.%s]: %s", ctx.source, ctx.method, e
                )
                raise ProtocolError(
                    ctx.source, f"undecodable response body: {e}"
                ) from e

        except asyncio.TimeoutError as e:
            elapsed = time.monotonic() - start
            logger.warning(
                "Timeout [%s.%s] elapsed=%.1fs", ctx.source, ctx.method, elapsed
            )
            raise NetworkError(ctx.source, f"Timeout after {elapsed:.1f}s") from e

        except aiohttp.ClientError as e:
            logger.warning("Connection error [%s.%s]: %s", ctx.source, ctx.method, e)
            raise NetworkError(ctx.source, f"Connection error: {e}") from e

        logger.debug(
            "Response [%s.%s] elapsed=%.2fs bytes=%d",
            ctx.source,
            ctx.method,
            time.monotonic() - start,
            len(body),
        )
        return body
