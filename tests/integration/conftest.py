"""Shared fixtures for integration tests."""

import pytest

from library_search.config import get_settings
from library_search.services.registry import SessionRegistry


@pytest.fixture
async def live_registry(tmp_path):
    """A registry talking to the real aggregator, with a throwaway cache.

    Skipped unless LIBRARY_SEARCH_LIVE_TESTS=true, since it needs network
    access to unitrad.calil.jp.
    """
    settings = get_settings()
    if not settings.live_tests:
        pytest.skip("LIBRARY_SEARCH_LIVE_TESTS not set, skipping live aggregator test")
    registry = SessionRegistry.from_settings(
        settings.model_copy(
            update={"cache_dir": tmp_path, "session_ceiling_seconds": 60.0}
        )
    )
    yield registry
    await registry.close()
