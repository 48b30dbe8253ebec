"""
Pydantic models for the Unitrad library search aggregator.

These are the data contracts between the aggregator client, the session
controller and its callers. Callers receive these models and never see
raw aggregator responses.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


# ------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------


class FreeTextQuery(BaseModel):
    """Keyword search across every catalog field."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["free"] = "free"
    free: str

    @field_validator("free", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("free")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value:
            raise ValueError("free-text term must not be blank")
        return value


class DetailQuery(BaseModel):
    """Structured search; at least one filter must be set."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["detail"] = "detail"
    title: str | None = None
    author: str | None = None
    publisher: str | None = None
    ndc: str | None = None  # Nippon Decimal Classification prefix, e.g. "913"
    year_start: int | None = None
    year_end: int | None = None

    @field_validator("title", "author", "publisher", "ndc", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("year_start", "year_end", mode="before")
    @classmethod
    def _blank_year(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @model_validator(mode="after")
    def _has_filter(self) -> DetailQuery:
        if not any(
            getattr(self, name) is not None
            for name in ("title", "author", "publisher", "ndc", "year_start", "year_end")
        ):
            raise ValueError("detail search needs at least one filter")
        return self


class IsbnQuery(BaseModel):
    """Single-book lookup by ISBN."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["isbn"] = "isbn"
    isbn: str

    @field_validator("isbn", mode="before")
    @classmethod
    def _normalise(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.replace("-", "").replace(" ", "").strip()
        return value

    @field_validator("isbn")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value:
            raise ValueError("isbn must not be blank")
        return value


Query = Annotated[
    Union[FreeTextQuery, DetailQuery, IsbnQuery], Field(discriminator="mode")
]


# ------------------------------------------------------------------
# Book records
# ------------------------------------------------------------------


class BookKey(BaseModel):
    """Identity of one holding: the same title at two libraries is two keys.

    A bare id (``"b1"`` instead of ``{"library": ..., "id": "b1"}``) parses
    to a key with an empty library, which removal treats as "any library".
    """

    model_config = ConfigDict(frozen=True)

    library: str = ""
    id: str

    @model_validator(mode="before")
    @classmethod
    def _bare_id(cls, value: Any) -> Any:
        if isinstance(value, (str, int)):
            return {"id": value}
        return value

    @field_validator("library", "id", mode="before")
    @classmethod
    def _to_str(cls, value: Any) -> Any:
        return "" if value is None else str(value)


class BookRecord(BaseModel):
    """A single catalog holding reported by one physical library."""

    model_config = ConfigDict(frozen=True)

    id: str  # aggregator-assigned item id
    library: str = ""  # source library (system) id
    title: str = ""
    author: str = ""
    publisher: str = ""
    pubdate: str = ""
    isbn: str = ""
    status: str = ""  # availability, e.g. "貸出可"
    url: str = ""

    @field_validator(
        "id",
        "library",
        "title",
        "author",
        "publisher",
        "pubdate",
        "isbn",
        "status",
        "url",
        mode="before",
    )
    @classmethod
    def _to_str(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @property
    def key(self) -> BookKey:
        return BookKey(library=self.library, id=self.id)


# ------------------------------------------------------------------
# Session data
# ------------------------------------------------------------------


class SessionSnapshot(BaseModel):
    """Accumulated state of one aggregator session at a given version."""

    model_config = ConfigDict(frozen=True)

    uuid: str
    version: int
    running: bool
    count: int  # aggregator-reported total; advisory, may differ from len(records)
    records: tuple[BookRecord, ...] = ()


class DiffBatch(BaseModel):
    """Incremental update returned by one successful poll."""

    model_config = ConfigDict(frozen=True)

    version: int
    running: bool
    count: int | None = None  # None means "unchanged"
    inserted: tuple[BookRecord, ...] = ()
    removed: tuple[BookKey, ...] = ()


class SessionState(str, Enum):
    """Externally observed lifecycle of a search session."""

    PENDING = "pending"
    POLLING = "polling"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETE, SessionState.CANCELLED, SessionState.FAILED)
