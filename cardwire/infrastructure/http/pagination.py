"""Cursor-based pagination over card API collections.

List endpoints answer with an item collection plus ``total``, ``offset``
and ``next_offset``; a null ``next_offset`` marks the last page. Walks are
strictly sequential and bounded by a page ceiling, so a server that keeps
handing out cursors cannot trap the caller in an endless loop.
"""

import itertools
import logging
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from cardwire.domain.events.api_events import EventSink, PaginationCeilingReached, dispatch
from cardwire.domain.models.common import Page, PageCursor
from cardwire.domain.models.errors import ResponseParseError
from cardwire.infrastructure.http.request_executor import RequestExecutor

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
MAX_PAGES = 100

# Collection fields used by the card API, checked in order when a
# response carries no generic 'items' list.
COLLECTION_FIELDS = ("items", "cards", "types", "children", "results", "data")


def extract_items(response: Any) -> List[Any]:
    """Finds the item list in a list-endpoint response."""
    if response is None:
        return []
    if isinstance(response, list):
        return response
    if not isinstance(response, dict):
        raise ResponseParseError(f"Unexpected page payload: {type(response).__name__}")
    for name in COLLECTION_FIELDS:
        value = response.get(name)
        if isinstance(value, list):
            return value
    for value in response.values():
        if isinstance(value, list):
            return value
    return []


def _as_offset(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ResponseParseError(f"Invalid pagination offset: {value!r}") from e


class Paginator:
    """Walks a paginated endpoint page by page through the request executor."""

    def __init__(
        self,
        executor: RequestExecutor,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
        max_pages: int = MAX_PAGES,
        event_sink: Optional[EventSink] = None,
    ):
        self.executor = executor
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.max_pages = max_pages
        self._event_sink = event_sink

    def clamp_limit(self, limit: Optional[int]) -> int:
        """Page size actually requested: between 1 and ``max_page_size``."""
        if limit is None:
            limit = self.default_page_size
        return max(1, min(int(limit), self.max_page_size))

    def fetch_page(
        self,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Page:
        """Fetches a single page at ``offset``."""
        limit = self.clamp_limit(limit)
        params: Dict[str, Any] = dict(query or {})
        params["limit"] = limit
        params["offset"] = offset

        response = self.executor.request("GET", path, query=params)
        items = extract_items(response)
        meta = response if isinstance(response, dict) else {}
        cursor = PageCursor(
            offset=_as_offset(meta.get("offset")) if meta.get("offset") is not None else offset,
            limit=_as_offset(meta.get("limit")) or limit,
            total=_as_offset(meta.get("total")),
            next_offset=_as_offset(meta.get("next_offset")),
        )
        return Page(items=items, cursor=cursor)

    def each_page(
        self,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        callback: Optional[Callable[[List[Any]], None]] = None,
        max_pages: Optional[int] = None,
    ) -> Optional[Iterator[List[Any]]]:
        """Walks every page of a collection, starting at offset 0.

        Args:
            path: List endpoint, e.g. '/cards'.
            query: Extra query parameters (filters).
            limit: Requested page size; clamped to ``max_page_size``.
            callback: If given, called with each page's items in order and
                ``None`` is returned once the last page was handled.
            max_pages: Override for the page ceiling of this walk.

        Returns:
            A lazy, single-pass iterator of item lists when no callback is
            given. Nothing is fetched until it is iterated.
        """
        pages = self._walk(path, query, self.clamp_limit(limit), max_pages or self.max_pages)
        if callback is None:
            return pages
        for items in pages:
            callback(items)
        return None

    def fetch_all(
        self,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> List[Any]:
        """Every item of the collection, in server order. Materializes all pages."""
        return list(itertools.chain.from_iterable(
            self._walk(path, query, self.clamp_limit(limit), max_pages or self.max_pages)
        ))

    def _walk(self, path: str, query: Optional[Mapping[str, Any]], limit: int, ceiling: int) -> Iterator[List[Any]]:
        offset = 0
        pages = 0
        while True:
            page = self.fetch_page(path, query=query, limit=limit, offset=offset)
            if not page.items:
                return
            pages += 1
            yield page.items

            if page.cursor.is_last:
                return
            if pages >= ceiling:
                logger.warning(
                    f"Pagination of {path} stopped after {pages} pages although the server "
                    f"reported next_offset={page.cursor.next_offset}; results are truncated."
                )
                dispatch(self._event_sink, PaginationCeilingReached(
                    path=path, pages=pages, next_offset=page.cursor.next_offset))
                return
            offset = page.cursor.next_offset
