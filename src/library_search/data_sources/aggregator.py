"""
Calil Unitrad aggregator client.

Two methods, one network call each:
  1. initiate  : start a search, receive the first partial result set
  2. poll_once : fetch the next diff for a running search

No retry and no merging happen here; the session controller owns both.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from library_search.constants import (
    AGGREGATOR_BASE_URL,
    DEFAULT_REGION,
    DEFAULT_TIMEOUT,
    INITIAL_VERSION,
    POLLING_PATH,
    SEARCH_PATH,
)
from library_search.data_sources.base_client import (
    BaseClient,
    ProtocolError,
    RequestContext,
)
from library_search.models.model_library import (
    BookKey,
    BookRecord,
    DiffBatch,
    Query,
    SessionSnapshot,
)
from library_search.services.query_codec import request_params


class AggregatorClient(BaseClient):
    """Client for the Unitrad /search and /polling endpoints."""

    def __init__(
        self,
        base_url: str = AGGREGATOR_BASE_URL,
        region: str = DEFAULT_REGION,
        timeout_seconds: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds)
        self.base_url = base_url.rstrip("/")
        self.region = region

    @property
    def _source_name(self) -> str:
        return "unitrad"

    # ------------------------------------------------------------------
    # Public: initiate
    # ------------------------------------------------------------------

    async def initiate(self, query: Query) -> SessionSnapshot:
        """Start a search and return the aggregator's first snapshot.

        Free-text, detail and ISBN queries map to mutually exclusive
        parameter sets; ``region`` is always sent.
        """
        params = request_params(query, self.region)
        body = await self._rest_get(
            self.base_url + SEARCH_PATH,
            params,
            context=RequestContext(
                source=self._source_name, method="initiate", params=params
            ),
        )
        data = self._load_json(body)
        if not isinstance(data, dict):
            raise ProtocolError(self._source_name, "search response is not an object")
        return self._parse_snapshot(data)

    # ------------------------------------------------------------------
    # Public: poll_once
    # ------------------------------------------------------------------

    async def poll_once(self, uuid: str, version: int) -> DiffBatch | None:
        """Fetch the diff after ``version``.

        Returns None when the aggregator has nothing new yet (an empty,
        undecodable or non-object body). That is not an error: wait and poll
        again with the same version.
        """
        params = {"uuid": uuid, "version": str(version), "diff": "1"}
        try:
            body = await self._rest_get(
                self.base_url + POLLING_PATH,
                params,
                context=RequestContext(
                    source=self._source_name, method="poll_once", params=params
                ),
            )
        except ProtocolError:
            # Undecodable bytes are an invalid body like any other.
            return None
        if not body.strip():
            return None
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        return self._parse_diff(data)

    # ------------------------------------------------------------------
    # Parsing helpers
    # ------------------------------------------------------------------

    def _load_json(self, body: str) -> Any:
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise ProtocolError(self._source_name, f"invalid JSON: {e}") from e

    def _parse_snapshot(self, data: dict[str, Any]) -> SessionSnapshot:
        """Map a /search response onto a SessionSnapshot."""
        try:
            books = data.get("books") or []
            records = tuple(BookRecord.model_validate(b) for b in books)
            return SessionSnapshot(
                uuid=data["uuid"],
                # The first poll always echoes version 1, whatever /search says.
                version=INITIAL_VERSION,
                running=data["running"],
                count=data.get("count", len(records)),
                records=records,
            )
        except (KeyError, TypeError, ValidationError) as e:
            raise ProtocolError(
                self._source_name, f"malformed search response: {e}"
            ) from e

    def _parse_diff(self, data: dict[str, Any]) -> DiffBatch:
        """Map a /polling response onto a DiffBatch."""
        try:
            books_diff = data.get("books_diff") or {}
            inserted = tuple(
                BookRecord.model_validate(b) for b in books_diff.get("insert") or []
            )
            removed = tuple(
                BookKey.model_validate(k) for k in books_diff.get("delete") or []
            )
            return DiffBatch(
                version=data["version"],
                running=data["running"],
                count=data.get("count"),
                inserted=inserted,
                removed=removed,
            )
        except (AttributeError, KeyError, TypeError, ValidationError) as e:
            raise ProtocolError(
                self._source_name, f"malformed polling response: {e}"
            ) from e
