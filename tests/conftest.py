"""Pytest configuration and fixtures."""

import asyncio

import pytest

from library_search.models.model_library import (
    BookRecord,
    DiffBatch,
    FreeTextQuery,
    SessionSnapshot,
)


class ScriptedAggregator:
    """Stands in for AggregatorClient with canned responses.

    ``script(query, initial, polls)`` registers what ``initiate(query)``
    returns and what successive ``poll_once`` calls for that session's uuid
    return (DiffBatch, None for "no update", or an exception to raise).
    ``gate(uuid, n)`` returns an Event that poll number ``n`` waits on before
    answering, to hold a request in flight.
    """

    def __init__(self) -> None:
        self._initial: dict = {}
        self._polls: dict[str, list] = {}
        self._gates: dict[tuple[str, int], asyncio.Event] = {}
        self.initiate_calls: list = []
        self.poll_calls: list[tuple[str, int]] = []
        self.closed = False

    def script(self, query, initial, polls=()) -> None:
        self._initial[query] = initial
        if isinstance(initial, SessionSnapshot):
            self._polls[initial.uuid] = list(polls)

    def gate(self, uuid: str, n: int) -> asyncio.Event:
        event = asyncio.Event()
        self._gates[(uuid, n)] = event
        return event

    def polls_for(self, uuid: str) -> list[int]:
        return [version for u, version in self.poll_calls if u == uuid]

    async def initiate(self, query):
        self.initiate_calls.append(query)
        await asyncio.sleep(0)
        initial = self._initial[query]
        if isinstance(initial, Exception):
            raise initial
        return initial

    async def poll_once(self, uuid: str, version: int):
        self.poll_calls.append((uuid, version))
        n = len(self.polls_for(uuid))
        gate = self._gates.get((uuid, n))
        if gate is not None:
            await gate.wait()
        remaining = self._polls[uuid]
        if not remaining:
            # Keep answering "not ready" rather than failing the session.
            return None
        item = remaining.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


def make_book(item_id: str, library: str = "Tokyo_Pref", **kwargs) -> BookRecord:
    return BookRecord(id=item_id, library=library, title=f"Book {item_id}", **kwargs)


@pytest.fixture
def scripted_client() -> ScriptedAggregator:
    return ScriptedAggregator()


@pytest.fixture
def books() -> dict[str, BookRecord]:
    """b1..b5, all held by the same library."""
    return {f"b{i}": make_book(f"b{i}") for i in range(1, 6)}


@pytest.fixture
def robot_query() -> FreeTextQuery:
    return FreeTextQuery(free="robot")


@pytest.fixture
def robot_script(scripted_client, books, robot_query) -> ScriptedAggregator:
    """initiate -> [b1, b2]; poll 1 -> +b3; poll 2 -> +b4, b5 and done."""
    scripted_client.script(
        robot_query,
        SessionSnapshot(
            uuid="u1",
            version=1,
            running=True,
            count=5,
            records=(books["b1"], books["b2"]),
        ),
        polls=[
            DiffBatch(version=2, running=True, count=5, inserted=(books["b3"],)),
            DiffBatch(
                version=3,
                running=False,
                count=5,
                inserted=(books["b4"], books["b5"]),
            ),
        ],
    )
    return scripted_client
