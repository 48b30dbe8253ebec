"""
File-based query cache for completed search sessions.

Entries are JSON files keyed by a SHA-256 hash of (slot, encoded query),
so the key is the same one the address bar shows. Only the key derivation
and expiry decision live here; callers decide what is worth caching.
"""

import hashlib
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from library_search.constants import CACHE_TTL
from library_search.models.model_library import Query, SessionSnapshot
from library_search.services.query_codec import encode

logger = logging.getLogger(__name__)


def cache_key(namespace: str, params: dict[str, Any]) -> str:
    """Return a deterministic hex digest for the given namespace and params."""
    raw = json.dumps({"ns": namespace, **params}, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()


class QueryCache:
    """Completed session snapshots, one JSON file per (slot, query)."""

    def __init__(self, directory: Path, ttl_seconds: int = CACHE_TTL) -> None:
        self.directory = directory
        self.ttl = ttl_seconds

    def _path(self, slot: str, query: Query) -> Path:
        return self.directory / f"{cache_key(slot, encode(query))}.json"

    def get(self, slot: str, query: Query) -> SessionSnapshot | None:
        """Return the cached snapshot if present and unexpired, otherwise None."""
        path = self._path(slot, query)
        if not path.exists():
            return None
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
            age = (
                datetime.now() - datetime.fromisoformat(entry["cached_at"])
            ).total_seconds()
            if age > entry.get("ttl", self.ttl):
                logger.debug("Cache expired for %s (age=%.0fs)", slot, age)
                path.unlink(missing_ok=True)
                return None
            snapshot = SessionSnapshot.model_validate(entry["data"])
        except (json.JSONDecodeError, KeyError, ValueError, ValidationError):
            path.unlink(missing_ok=True)
            return None
        if snapshot.running:
            # Only finished sessions are valid stand-ins for a new one.
            return None
        logger.debug("Cache hit for %s %s", slot, encode(query))
        return snapshot

    def set(
        self,
        slot: str,
        query: Query,
        snapshot: SessionSnapshot,
        ttl: int | None = None,
    ) -> None:
        """Write a completed snapshot under (slot, query)."""
        self.directory.mkdir(parents=True, exist_ok=True)
        entry = {
            "data": snapshot.model_dump(mode="json"),
            "cached_at": datetime.now().isoformat(),
            "ttl": ttl if ttl is not None else self.ttl,
        }
        self._path(slot, query).write_text(
            json.dumps(entry, ensure_ascii=False), encoding="utf-8"
        )

    def invalidate(self, slot: str, query: Query) -> None:
        self._path(slot, query).unlink(missing_ok=True)
