"""
Search session controller.

Drives one logical search through the aggregator protocol:

    pending --initiate--> polling --poll_once every 500 ms--> complete
       |                     |
       +------> failed <-----+          (any non-terminal) --cancel--> cancelled

Requests within a session are strictly sequential, so the version echoed
on each poll is always the one from the most recent successful response.
Cancellation is cooperative: it is observed while waiting between polls and
when a response arrives; a response that lands after cancellation is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from library_search.constants import POLL_INTERVAL
from library_search.data_sources.aggregator import AggregatorClient
from library_search.data_sources.base_client import (
    AggregatorError,
    ProtocolError,
    SessionTimeoutError,
)
from library_search.models.model_library import (
    BookRecord,
    DiffBatch,
    Query,
    SessionSnapshot,
    SessionState,
)
from library_search.services.accumulator import dedupe, merge
from library_search.services.query_codec import encode

logger = logging.getLogger(__name__)

_SOURCE = "session"

Observer = Callable[["SearchSession"], None]


class CancellationToken:
    """One-shot flag that can also be awaited with a timeout."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return True if cancelled meanwhile."""
        if seconds <= 0:
            await asyncio.sleep(0)
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


class SearchSession:
    """Single-writer owner of one search's state and accumulated records.

    Readers get immutable SessionSnapshot objects; a new snapshot is
    published per applied diff, never mutated in place.
    """

    def __init__(
        self,
        client: AggregatorClient,
        query: Query,
        *,
        poll_interval: float = POLL_INTERVAL,
        ceiling: float | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.client = client
        self.query = query
        self.poll_interval = poll_interval
        self.ceiling = ceiling
        self.token = token or CancellationToken()

        self._state = SessionState.PENDING
        self._snapshot: SessionSnapshot | None = None
        self._error: AggregatorError | None = None
        self._observers: list[Observer] = []
        self._task: asyncio.Task | None = None
        self._done = asyncio.Event()
        self._polls = 0
        self._deadline: float | None = None

    @classmethod
    def completed(
        cls, client: AggregatorClient, query: Query, snapshot: SessionSnapshot
    ) -> SearchSession:
        """A session that is already Complete, e.g. restored from the query cache."""
        session = cls(client, query)
        session._snapshot = snapshot
        session._state = SessionState.COMPLETE
        session._done.set()
        return session

    # -- Read-only view --------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error(self) -> AggregatorError | None:
        return self._error

    @property
    def snapshot(self) -> SessionSnapshot | None:
        """Last good snapshot; kept after Failed so partial results stay visible."""
        return self._snapshot

    @property
    def records(self) -> tuple[BookRecord, ...]:
        return self._snapshot.records if self._snapshot else ()

    @property
    def count(self) -> int:
        """Aggregator-reported total; advisory, may differ from len(records)."""
        return self._snapshot.count if self._snapshot else 0

    @property
    def running(self) -> bool:
        return not self._state.is_terminal

    @property
    def polls(self) -> int:
        return self._polls

    @property
    def params(self) -> dict[str, str]:
        return encode(self.query)

    @property
    def book(self) -> BookRecord | None:
        """Result of an ISBN lookup: the first record once Complete."""
        if self._state is SessionState.COMPLETE and self.records:
            return self.records[0]
        return None

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call ``observer(session)`` after every published change.

        Returns a callable that removes the observer.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Schedule the protocol on the running event loop (idempotent)."""
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def wait(self) -> SessionSnapshot | None:
        """Wait for a terminal state and return the last good snapshot."""
        if self._task is None and not self._state.is_terminal:
            self.start()
        await self._done.wait()
        return self._snapshot

    def cancel(self) -> bool:
        """Cancel a non-terminal session. Returns False if it had already finished."""
        if self._state.is_terminal:
            return False
        self.token.cancel()
        self._state = SessionState.CANCELLED
        self._done.set()
        logger.info("Session cancelled query=%s polls=%d", self.params, self._polls)
        return True

    async def run(self) -> SessionSnapshot | None:
        """Execute the protocol inline until a terminal state is reached."""
        if self._state is not SessionState.PENDING:
            return self._snapshot
        if self.ceiling is not None:
            self._deadline = time.monotonic() + self.ceiling
        try:
            await self._run()
        except AggregatorError as e:
            self._fail(e)
        except asyncio.CancelledError:
            self.cancel()
            raise
        except Exception as e:
            logger.exception("Unexpected error in session query=%s", self.params)
            self._fail(
                AggregatorError(_SOURCE, f"unexpected {type(e).__name__}: {e}")
            )
            raise
        finally:
            self._done.set()
        return self._snapshot

    # -- Protocol --------------------------------------------------------------

    async def _run(self) -> None:
        logger.info("Session initiate query=%s", self.params)
        snapshot = await self._call(self.client.initiate, self.query)
        if self.token.cancelled:
            logger.debug("Dropping initiate response for cancelled session")
            return
        snapshot = snapshot.model_copy(update={"records": dedupe(snapshot.records)})
        self._publish(
            snapshot,
            SessionState.POLLING if snapshot.running else SessionState.COMPLETE,
        )

        while self._state is SessionState.POLLING:
            if await self.token.sleep(self.poll_interval):
                return
            self._check_deadline()

            self._polls += 1
            diff = await self._call(
                self.client.poll_once, snapshot.uuid, snapshot.version
            )
            if self.token.cancelled:
                logger.debug("Dropping poll response for cancelled session")
                return
            if diff is None:
                logger.debug(
                    "No update uuid=%s version=%d", snapshot.uuid, snapshot.version
                )
                continue

            snapshot = self._apply(snapshot, diff)
            self._publish(
                snapshot,
                SessionState.POLLING if diff.running else SessionState.COMPLETE,
            )

    def _apply(self, snapshot: SessionSnapshot, diff: DiffBatch) -> SessionSnapshot:
        if diff.version < snapshot.version:
            raise ProtocolError(
                _SOURCE,
                f"version regressed from {snapshot.version} to {diff.version}",
            )
        return SessionSnapshot(
            uuid=snapshot.uuid,
            version=diff.version,
            running=diff.running,
            count=snapshot.count if diff.count is None else diff.count,
            records=merge(snapshot.records, diff),
        )

    async def _call(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Await one client call, bounded by the ceiling if there is one."""
        if self._deadline is None:
            return await fn(*args)
        remaining = self._check_deadline()
        try:
            return await asyncio.wait_for(fn(*args), timeout=remaining)
        except asyncio.TimeoutError as e:
            raise self._timeout_error() from e

    def _check_deadline(self) -> float | None:
        if self._deadline is None:
            return None
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise self._timeout_error()
        return remaining

    def _timeout_error(self) -> SessionTimeoutError:
        return SessionTimeoutError(
            _SOURCE,
            f"session exceeded {self.ceiling:.1f}s ceiling",
        )

    # -- Publication -----------------------------------------------------------

    def _publish(self, snapshot: SessionSnapshot, state: SessionState) -> None:
        if self.token.cancelled:
            return
        self._snapshot = snapshot
        self._state = state
        logger.info(
            "Session %s uuid=%s version=%d received=%d count=%d",
            state.value,
            snapshot.uuid,
            snapshot.version,
            len(snapshot.records),
            snapshot.count,
        )
        if state.is_terminal:
            self._done.set()
        self._notify()

    def _fail(self, error: AggregatorError) -> None:
        if self.token.cancelled:
            logger.debug("Ignoring error from cancelled session: %s", error)
            return
        self._error = error
        self._state = SessionState.FAILED
        self._done.set()
        logger.warning(
            "Session failed query=%s received=%d: %s",
            self.params,
            len(self.records),
            error,
        )
        self._notify()

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self)
            except Exception:
                logger.exception("Session observer %r raised", observer)
