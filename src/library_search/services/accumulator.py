"""Merge aggregator diffs into an ordered, de-duplicated record sequence."""

from collections.abc import Iterable, Sequence

from library_search.models.model_library import BookKey, BookRecord, DiffBatch


def _keyed(records: Iterable[BookRecord]) -> dict[BookKey, BookRecord]:
    merged: dict[BookKey, BookRecord] = {}
    for record in records:
        merged[record.key] = record
    return merged


def dedupe(records: Iterable[BookRecord]) -> tuple[BookRecord, ...]:
    """Collapse repeated keys, keeping first position and last-seen value."""
    return tuple(_keyed(records).values())


def merge(current: Sequence[BookRecord], diff: DiffBatch) -> tuple[BookRecord, ...]:
    """Apply ``diff`` to ``current`` and return the new record sequence.

    Inserted records are appended in arrival order; the aggregator's order is
    the ranking the UI shows, so nothing is re-sorted. A record whose key is
    already present replaces the earlier value in place (last seen wins),
    which makes re-applying the same diff a no-op. Removed keys are dropped
    and the remainder keeps its relative order. A removed key without a
    library drops that id at every library.
    """
    merged = _keyed(current)
    for record in diff.inserted:
        merged[record.key] = record
    for key in diff.removed:
        if key.library:
            merged.pop(key, None)
            continue
        for existing in [k for k in merged if k.id == key.id]:
            del merged[existing]
    return tuple(merged.values())
