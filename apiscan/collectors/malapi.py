"""
MalAPI.io Source
=================

Scrapes the category index and per-API detail pages of malapi.io.

Index page layout (simplified)::

    <table>
      <tr><th>Enumeration</th><th>Injection</th> ...</tr>
      <tr>
        <td><table><tr><td><a class="map-item">CreateToolhelp32Snapshot</a>...
        <td><table><tr><td><a class="map-item">VirtualAllocEx</a>...
      </tr>
    </table>

Each ``th`` is a category header; the ``.map-item`` elements inside the
n-th ``td > table`` are the members of the n-th category.

Detail pages live at ``/winapi/<name>``.  The page carries several
``.content`` blocks; positions 1, 2 and 4 hold the summary, the library
and the documentation link.  The site answers ``406 Not Acceptable`` for
APIs it lists but has no page for.

References:
    - MalAPI.io. https://malapi.io/
    - Beautiful Soup documentation.
      https://www.crummy.com/software/BeautifulSoup/bs4/doc/
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable
from urllib.parse import quote

from bs4 import BeautifulSoup
from pydantic import ValidationError

from shared.network import QuarryHTTP, QuarryHTTPError

from apiscan.core.errors import DetailFetchFailed, IndexParseError, SourceUnreachable
from apiscan.core.models import ApiDetail, CategoryIndex

DEFAULT_SOURCE_URL = "https://malapi.io"

# HTTP 406: the site lists the API but has no detail page for it
NOT_AVAILABLE_STATUS = 406

# Positions of the detail fields among the page's ``.content`` blocks
_SUMMARY_BLOCK = 1
_LIBRARY_BLOCK = 2
_DOCUMENTATION_BLOCK = 4


@runtime_checkable
class RemoteSource(Protocol):
    """Anything the synchronizer can pull categories and details from."""

    async def fetch_index(self) -> CategoryIndex:
        """Return the category headers and their member names.

        Raises:
            SourceUnreachable: If the index cannot be fetched or parsed.
        """
        ...

    async def fetch_detail(self, name: str) -> Optional[ApiDetail]:
        """Return details for *name*, or ``None`` if the source has none.

        Raises:
            DetailFetchFailed: If the page cannot be fetched or parsed.
        """
        ...


# ---------------------------------------------------------------------------
# HTML parsing
# ---------------------------------------------------------------------------

def parse_index(html: str) -> CategoryIndex:
    """Extract headers and member columns from the index page.

    Raises:
        IndexParseError: If the page lists no categories, or the number of
            headers differs from the number of member columns.
    """
    soup = BeautifulSoup(html, "html.parser")

    headers = [th.get_text(strip=True) for th in soup.select("th")]
    members = [
        [item.get_text().strip() for item in column.select(".map-item")]
        for column in soup.select("td > table")
    ]

    if not headers:
        raise IndexParseError("index page lists no categories")
    try:
        return CategoryIndex(headers=headers, members=members)
    except ValidationError as exc:
        raise IndexParseError(
            f"index page has {len(headers)} headers but {len(members)} member columns"
        ) from exc


def parse_detail(name: str, html: str) -> ApiDetail:
    """Extract summary, library and documentation link from a detail page.

    Raises:
        DetailFetchFailed: If the page has too few ``.content`` blocks.
    """
    soup = BeautifulSoup(html, "html.parser")
    blocks = soup.select(".content")
    if len(blocks) <= _DOCUMENTATION_BLOCK:
        raise DetailFetchFailed(
            name, f"expected at least {_DOCUMENTATION_BLOCK + 1} content blocks, found {len(blocks)}"
        )

    def text(position: int) -> Optional[str]:
        return blocks[position].get_text().strip() or None

    return ApiDetail(
        summary=text(_SUMMARY_BLOCK),
        library=text(_LIBRARY_BLOCK),
        documentation_url=text(_DOCUMENTATION_BLOCK),
    )


# ---------------------------------------------------------------------------
# MalApiSource
# ---------------------------------------------------------------------------

class MalApiSource:
    """:class:`RemoteSource` backed by malapi.io.

    The source borrows an open :class:`QuarryHTTP` client whose
    ``base_url`` points at the site; it never closes it.

    Usage::

        async with QuarryHTTP(base_url=DEFAULT_SOURCE_URL) as http:
            source = MalApiSource(http)
            index = await source.fetch_index()
            detail = await source.fetch_detail("VirtualAllocEx")
    """

    def __init__(self, http: QuarryHTTP) -> None:
        self._http = http

    async def fetch_index(self) -> CategoryIndex:
        try:
            html = await self._http.fetch_text("/")
        except QuarryHTTPError as exc:
            raise SourceUnreachable(f"could not fetch the category index: {exc}") from exc
        return parse_index(html)

    async def fetch_detail(self, name: str) -> Optional[ApiDetail]:
        try:
            response = await self._http.fetch(
                f"/winapi/{quote(name, safe='')}",
                passthrough_status={NOT_AVAILABLE_STATUS},
            )
        except QuarryHTTPError as exc:
            raise DetailFetchFailed(name, str(exc)) from exc

        if response.status_code == NOT_AVAILABLE_STATUS:
            return None
        return parse_detail(name, response.text)
