"""FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, ValidationError

from library_search import __version__
from library_search.config import configure_logging, get_settings
from library_search.models.model_library import BookRecord, Query, SessionState
from library_search.services.bookmarks import lookup_book
from library_search.services.registry import SessionRegistry
from library_search.services.session import SearchSession


class SearchRequest(BaseModel):
    query: Query


class SessionView(BaseModel):
    """What a UI needs to render one slot."""

    slot: str
    state: SessionState
    error: str | None = None
    running: bool
    count: int
    received: int
    records: list[BookRecord]
    params: dict[str, str]

    @classmethod
    def from_session(cls, slot: str, session: SearchSession) -> "SessionView":
        return cls(
            slot=slot,
            state=session.state,
            error=str(session.error) if session.error else None,
            running=session.running,
            count=session.count,
            received=len(session.records),
            records=list(session.records),
            params=session.params,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.registry = SessionRegistry.from_settings(get_settings())
    yield
    await app.state.registry.close()


app = FastAPI(
    title="library-search API",
    description="Incremental search across the region's library catalogs",
    version=__version__,
    lifespan=lifespan,
)


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.post("/search/{slot}")
async def submit_search(
    slot: str, body: SearchRequest, request: Request
) -> SessionView:
    """Start (or reuse) the session for ``body.query`` in ``slot``."""
    session = _registry(request).submit(slot, body.query)
    return SessionView.from_session(slot, session)


@app.get("/search/{slot}")
async def get_search(slot: str, request: Request) -> SessionView:
    session = _registry(request).get(slot)
    if session is None:
        raise HTTPException(status_code=404, detail=f"No session in slot {slot!r}")
    return SessionView.from_session(slot, session)


@app.delete("/search/{slot}", status_code=204)
async def discard_search(slot: str, request: Request) -> None:
    _registry(request).discard(slot)


@app.get("/books/{isbn}")
async def get_book(isbn: str, request: Request) -> BookRecord:
    """Wait for the ISBN lookup to finish and return the first holding."""
    try:
        book = await lookup_book(_registry(request), isbn)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid ISBN {isbn!r}") from e
    if book is None:
        raise HTTPException(status_code=404, detail=f"No holdings for {isbn}")
    return book
