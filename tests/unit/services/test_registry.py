"""Unit tests for the session registry."""

import asyncio

from library_search.config import Settings
from library_search.constants import SEARCH_SLOT
from library_search.data_sources.aggregator import AggregatorClient
from library_search.data_sources.base_client import NetworkError
from library_search.models.model_library import (
    DetailQuery,
    DiffBatch,
    FreeTextQuery,
    IsbnQuery,
    SessionSnapshot,
    SessionState,
)
from library_search.services.registry import SessionRegistry, book_slot
from library_search.utils.cache import QueryCache


async def _until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def _registry(client, **kwargs) -> SessionRegistry:
    return SessionRegistry(client, poll_interval=0, **kwargs)


class TestSubmit:
    async def test_submit_starts_session_visible_through_get(
        self, robot_script, robot_query
    ):
        registry = _registry(robot_script)

        session = registry.submit(SEARCH_SLOT, robot_query)

        assert registry.get(SEARCH_SLOT) is session
        await session.wait()
        assert session.state is SessionState.COMPLETE
        assert len(session.records) == 5

    async def test_get_unknown_slot_is_none(self, scripted_client):
        assert _registry(scripted_client).get("nope") is None

    async def test_params_follow_current_query(self, robot_script, robot_query):
        registry = _registry(robot_script)
        assert registry.params(SEARCH_SLOT) is None

        registry.submit(SEARCH_SLOT, robot_query)

        assert registry.params(SEARCH_SLOT) == {"free": "robot"}


class TestSupersession:
    async def test_new_query_cancels_polling_session(self, scripted_client, books):
        query_a = FreeTextQuery(free="alpha")
        query_b = DetailQuery(title="beta")
        scripted_client.script(
            query_a,
            SessionSnapshot(
                uuid="ua", version=1, running=True, count=2, records=(books["b1"],)
            ),
            [DiffBatch(version=2, running=False, inserted=(books["b2"],))],
        )
        scripted_client.script(
            query_b,
            SessionSnapshot(
                uuid="ub", version=1, running=False, count=1, records=(books["b3"],)
            ),
        )
        release_a = scripted_client.gate("ua", 1)
        registry = _registry(scripted_client)

        session_a = registry.submit(SEARCH_SLOT, query_a)
        await _until(lambda: len(scripted_client.polls_for("ua")) == 1)
        a_updates: list[int] = []
        session_a.subscribe(lambda s: a_updates.append(len(s.records)))

        session_b = registry.submit(SEARCH_SLOT, query_b)

        # The swap is atomic: no await happened between cancel and install.
        assert session_a.state is SessionState.CANCELLED
        assert registry.get(SEARCH_SLOT) is session_b

        release_a.set()
        await session_a.start()
        await session_b.wait()

        assert [r.id for r in session_a.records] == ["b1"]
        assert a_updates == []
        assert registry.get(SEARCH_SLOT) is session_b
        assert session_b.state is SessionState.COMPLETE

    async def test_slots_are_independent(self, scripted_client, books):
        search = FreeTextQuery(free="robot")
        lookup = IsbnQuery(isbn="9784000000001")
        scripted_client.script(
            search, SessionSnapshot(uuid="us", version=1, running=False, count=0)
        )
        scripted_client.script(
            lookup,
            SessionSnapshot(
                uuid="ul", version=1, running=False, count=1, records=(books["b1"],)
            ),
        )
        registry = _registry(scripted_client)

        s1 = registry.submit(SEARCH_SLOT, search)
        s2 = registry.submit(book_slot(lookup.isbn), lookup)
        await asyncio.gather(s1.wait(), s2.wait())

        assert s1.state is SessionState.COMPLETE
        assert s2.state is SessionState.COMPLETE
        assert registry.get(SEARCH_SLOT) is s1
        assert registry.get("book:9784000000001") is s2

    async def test_discard_cancels_and_evicts(self, scripted_client):
        query = FreeTextQuery(free="gone")
        scripted_client.script(
            query, SessionSnapshot(uuid="ug", version=1, running=True, count=0)
        )
        registry = _registry(scripted_client)
        session = registry.submit(SEARCH_SLOT, query)

        registry.discard(SEARCH_SLOT)

        assert session.state is SessionState.CANCELLED
        assert registry.get(SEARCH_SLOT) is None
        await session.start()

    async def test_close_cancels_everything_and_closes_client(self, scripted_client):
        query = FreeTextQuery(free="closing")
        scripted_client.script(
            query, SessionSnapshot(uuid="uc", version=1, running=True, count=0)
        )
        registry = _registry(scripted_client)
        session = registry.submit(SEARCH_SLOT, query)

        await registry.close()

        assert session.state is SessionState.CANCELLED
        assert scripted_client.closed
        assert registry.get(SEARCH_SLOT) is None
        await session.start()


class TestReuse:
    async def test_identical_completed_query_is_reused(
        self, robot_script, robot_query
    ):
        registry = _registry(robot_script)
        first = registry.submit(SEARCH_SLOT, robot_query)
        await first.wait()

        second = registry.submit(SEARCH_SLOT, FreeTextQuery(free=" robot "))

        assert second is first
        assert len(robot_script.initiate_calls) == 1

    async def test_reuse_can_be_turned_off(self, robot_script, robot_query, books):
        registry = _registry(robot_script, reuse_completed=False)
        first = registry.submit(SEARCH_SLOT, robot_query)
        await first.wait()
        # Re-arm the script for the second run.
        robot_script.script(
            robot_query,
            SessionSnapshot(
                uuid="u2", version=1, running=False, count=1, records=(books["b1"],)
            ),
        )

        second = registry.submit(SEARCH_SLOT, robot_query)
        await second.wait()

        assert second is not first
        assert len(robot_script.initiate_calls) == 2
        assert first.state is SessionState.COMPLETE

    async def test_completed_session_is_written_to_cache_and_restored(
        self, robot_script, robot_query, tmp_path
    ):
        cache = QueryCache(tmp_path)
        registry = _registry(robot_script, cache=cache)
        session = registry.submit(SEARCH_SLOT, robot_query)
        await session.wait()

        assert cache.get(SEARCH_SLOT, robot_query) == session.snapshot

        fresh = _registry(robot_script, cache=cache)
        restored = fresh.submit(SEARCH_SLOT, robot_query)

        assert restored.state is SessionState.COMPLETE
        assert restored.records == session.records
        assert len(robot_script.initiate_calls) == 1

    async def test_failed_session_is_not_cached(self, scripted_client, tmp_path):
        query = FreeTextQuery(free="broken")
        scripted_client.script(query, NetworkError("unitrad", "Connection refused"))
        cache = QueryCache(tmp_path)
        registry = _registry(scripted_client, cache=cache)

        session = registry.submit(SEARCH_SLOT, query)
        await session.wait()

        assert session.state is SessionState.FAILED
        assert cache.get(SEARCH_SLOT, query) is None

    async def test_cache_is_keyed_by_slot(self, robot_script, robot_query, tmp_path):
        cache = QueryCache(tmp_path)
        registry = _registry(robot_script, cache=cache)
        await registry.submit(SEARCH_SLOT, robot_query).wait()

        assert cache.get("other", robot_query) is None


class TestFromSettings:
    def test_builds_client_and_cache(self, tmp_path):
        settings = Settings(
            region="test-region",
            cache_dir=tmp_path,
            session_ceiling_seconds=30.0,
            reuse_completed_sessions=False,
        )

        registry = SessionRegistry.from_settings(settings)

        assert isinstance(registry.client, AggregatorClient)
        assert registry.client.region == "test-region"
        assert registry.cache.directory == tmp_path
        assert registry.ceiling == 30.0
        assert registry.reuse_completed is False

    def test_cache_can_be_disabled(self):
        registry = SessionRegistry.from_settings(Settings(cache_dir=None))
        assert registry.cache is None
