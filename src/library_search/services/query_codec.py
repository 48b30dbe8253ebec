"""
Query <-> flat string mapping.

The same mapping is used for three things: the address-bar query string,
the aggregator's /search parameters (plus ``region``), and the query-cache
key. Empty fields are omitted, never encoded as "".
"""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import parse_qsl, urlencode

from pydantic import TypeAdapter, ValidationError

from library_search.constants import DETAIL_FIELDS
from library_search.models.model_library import (
    DetailQuery,
    FreeTextQuery,
    IsbnQuery,
    Query,
)

_QUERY_ADAPTER: TypeAdapter[Query] = TypeAdapter(Query)


class DecodeError(ValueError):
    """A parameter mapping does not describe exactly one valid query."""

    pass


def encode(query: Query) -> dict[str, str]:
    """Return the minimal string mapping for ``query``."""
    if isinstance(query, FreeTextQuery):
        return {"free": query.free}
    if isinstance(query, IsbnQuery):
        return {"isbn": query.isbn}
    if isinstance(query, DetailQuery):
        params: dict[str, str] = {}
        for name in DETAIL_FIELDS:
            value = getattr(query, name)
            if value is not None and value != "":
                params[name] = str(value)
        return params
    raise TypeError(f"not a query: {query!r}")


def decode(params: Mapping[str, str]) -> Query:
    """Rebuild a query from ``params``, ignoring unrelated keys.

    Raises DecodeError when no mode is implied, when more than one mode is
    implied (e.g. both ``free`` and ``title``), or when a field is invalid.
    """
    present = {
        key: value.strip()
        for key, value in params.items()
        if isinstance(value, str) and value.strip()
    }

    families: dict[str, dict[str, str]] = {}
    if "isbn" in present:
        families["isbn"] = {"isbn": present["isbn"]}
    if "free" in present:
        families["free"] = {"free": present["free"]}
    detail = {name: present[name] for name in DETAIL_FIELDS if name in present}
    if detail:
        families["detail"] = detail

    if not families:
        raise DecodeError("no search parameters present")
    if len(families) > 1:
        raise DecodeError(f"ambiguous search parameters: {sorted(families)}")

    mode, fields = next(iter(families.items()))
    try:
        return _QUERY_ADAPTER.validate_python({"mode": mode, **fields})
    except ValidationError as e:
        raise DecodeError(f"invalid {mode} query: {e.errors()[0]['msg']}") from e


def encode_query_string(query: Query) -> str:
    """Address-bar form of ``query``; replaces the whole search-param set."""
    return urlencode(encode(query))


def decode_query_string(query_string: str) -> Query:
    """Parse a raw URL query string (leading ``?`` allowed). Last value wins."""
    return decode(dict(parse_qsl(query_string.lstrip("?"))))


def request_params(query: Query, region: str) -> dict[str, str]:
    """Parameters for the aggregator's /search endpoint."""
    return {**encode(query), "region": region}
