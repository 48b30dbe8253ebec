"""Command-line interface for library_search."""

import asyncio
import json
from pathlib import Path

import click
from pydantic import ValidationError

from library_search.config import configure_logging, get_settings
from library_search.constants import SEARCH_SLOT
from library_search.models.model_library import (
    BookRecord,
    IsbnQuery,
    Query,
    SessionState,
)
from library_search.services.bookmarks import lookup_book, lookup_books
from library_search.services.query_codec import (
    DecodeError,
    decode,
    decode_query_string,
    encode_query_string,
)
from library_search.services.registry import SessionRegistry
from library_search.services.session import SearchSession


def _format_book(book: BookRecord) -> str:
    line = book.title or "(untitled)"
    if book.author:
        line += f" / {book.author}"
    if book.library:
        line += f" [{book.library}]"
    if book.status:
        line += f" {book.status}"
    return line


def _echo_progress(session: SearchSession) -> None:
    click.echo(
        f"  ... {len(session.records)} received (count {session.count}, "
        f"{session.state.value})",
        err=True,
    )


async def _run_search(query: Query) -> SearchSession:
    registry = SessionRegistry.from_settings(get_settings())
    try:
        session = registry.submit(SEARCH_SLOT, query)
        session.subscribe(_echo_progress)
        await session.wait()
        return session
    finally:
        await registry.close()


def _check_isbns(isbns: list[str]) -> None:
    for isbn in isbns:
        try:
            IsbnQuery(isbn=isbn)
        except ValidationError as e:
            raise click.UsageError(f"invalid ISBN {isbn!r}") from e


async def _run_lookup(isbns: list[str]) -> dict[str, BookRecord | None]:
    registry = SessionRegistry.from_settings(get_settings())
    try:
        if len(isbns) == 1:
            return {isbns[0]: await lookup_book(registry, isbns[0])}
        return await lookup_books(registry, isbns)
    finally:
        await registry.close()


@click.group()
@click.version_option(package_name="library-search")
def main():
    """library-search: search every library in the region at once."""
    configure_logging()


@main.command()
@click.option("--free", help="Free-text keyword (excludes the field filters)")
@click.option("--title", help="Title filter")
@click.option("--author", help="Author filter")
@click.option("--publisher", help="Publisher filter")
@click.option("--ndc", help="NDC classification prefix")
@click.option("--year-start", type=int, help="Published in or after this year")
@click.option("--year-end", type=int, help="Published in or before this year")
@click.option("-o", "--output", type=click.Path(), help="Output file path (JSON)")
def search(
    free: str | None,
    title: str | None,
    author: str | None,
    publisher: str | None,
    ndc: str | None,
    year_start: int | None,
    year_end: int | None,
    output: str | None,
):
    """Search the region's library catalogs."""
    options = {
        "free": free,
        "title": title,
        "author": author,
        "publisher": publisher,
        "ndc": ndc,
        "year_start": year_start,
        "year_end": year_end,
    }
    try:
        query = decode({k: str(v) for k, v in options.items() if v is not None})
    except DecodeError as e:
        raise click.UsageError(str(e)) from e

    click.echo(f"Searching: ?{encode_query_string(query)}")
    session = asyncio.run(_run_search(query))

    for i, book in enumerate(session.records, 1):
        click.echo(f"  {i}. {_format_book(book)}")
    click.echo(f"{len(session.records)} records (aggregator count {session.count})")

    if output:
        payload = {
            "query": query.model_dump(mode="json"),
            "state": session.state.value,
            "count": session.count,
            "records": [r.model_dump(mode="json") for r in session.records],
        }
        Path(output).write_text(
            json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        click.echo(f"\nResults saved to: {output}")

    if session.state is SessionState.FAILED:
        click.echo(f"Search failed: {session.error}", err=True)
        raise SystemExit(1)


@main.command()
@click.argument("isbn")
def book(isbn: str):
    """Look up a single book by ISBN."""
    _check_isbns([isbn])
    found = asyncio.run(_run_lookup([isbn]))[isbn]
    if found is None:
        click.echo(f"No holdings found for {isbn}", err=True)
        raise SystemExit(1)
    click.echo(_format_book(found))


@main.command()
@click.argument("isbns", nargs=-1, required=True)
def bookmarks(isbns: tuple[str, ...]):
    """Resolve a list of bookmarked ISBNs."""
    _check_isbns(list(isbns))
    results = asyncio.run(_run_lookup(list(isbns)))
    for isbn, found in results.items():
        click.echo(f"{isbn}: {_format_book(found) if found else '(not found)'}")


@main.command()
@click.argument("query_string")
def params(query_string: str):
    """Decode an address-bar query string and print its canonical form."""
    try:
        query = decode_query_string(query_string)
    except DecodeError as e:
        raise click.UsageError(str(e)) from e
    click.echo(f"mode: {query.mode}")
    click.echo(f"?{encode_query_string(query)}")


if __name__ == "__main__":
    main()
