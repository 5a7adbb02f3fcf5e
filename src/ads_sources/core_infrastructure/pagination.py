"""
Cursor pagination for list endpoints shaped like `{data: [...], paging: {next: url}}`.

Pages are fetched strictly one after another (each cursor comes from the
previous page) and their `data` arrays are concatenated in page order. The
aggregate keeps the single-page shape, with `paging.next` removed, so callers
do not need to know whether pagination happened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 1000

FetchPage = Callable[[str], Awaitable[Any]]


def next_cursor(response: Any) -> str | None:
    """The `paging.next` URL of a response, if any."""
    if not isinstance(response, dict):
        return None
    paging = response.get("paging")
    if not isinstance(paging, dict):
        return None
    nxt = paging.get("next")
    return nxt if isinstance(nxt, str) and nxt else None


def is_paginated(response: Any) -> bool:
    return next_cursor(response) is not None and isinstance(response.get("data"), list)


@dataclass(frozen=True)
class PageCursor:
    """Opaque continuation: the next-page URL as handed out by the upstream."""

    url: str
    page: int


@dataclass
class AggregatedResult:
    records: list[Any] = field(default_factory=list)
    pages: int = 1
    truncated: bool = False
    # exhausted | ceiling | anomaly
    stop_reason: str = "exhausted"
    extra: dict[str, Any] = field(default_factory=dict)
    paging: dict[str, Any] = field(default_factory=dict)

    def as_response(self) -> dict[str, Any]:
        paging = {k: v for k, v in self.paging.items() if k != "next"}
        return {**self.extra, "data": self.records, "paging": paging}


class PageAggregator:
    def __init__(self, fetch_page: FetchPage, *, max_pages: int = DEFAULT_MAX_PAGES) -> None:
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        self._fetch_page = fetch_page
        self.max_pages = max_pages

    async def drain(self, first: dict[str, Any], *, max_pages: int | None = None) -> AggregatedResult:
        """Follow `paging.next` from `first` until exhausted or the page ceiling.

        Hitting the ceiling or an unexpected page shape ends the walk early
        and returns what was collected so far.
        """
        limit = max_pages or self.max_pages
        paging = first.get("paging")
        result = AggregatedResult(
            records=list(first.get("data") or []),
            extra={k: v for k, v in first.items() if k not in ("data", "paging")},
            paging=dict(paging) if isinstance(paging, dict) else {},
        )

        nxt = next_cursor(first)
        while nxt and result.pages < limit:
            cursor = PageCursor(url=nxt, page=result.pages + 1)
            page = await self._fetch_page(cursor.url)

            data = page.get("data") if isinstance(page, dict) else None
            if not isinstance(data, list):
                logger.warning(
                    "Unexpected response format in pagination, stopping at page %s",
                    result.pages,
                )
                result.truncated = True
                result.stop_reason = "anomaly"
                return result

            result.records.extend(data)
            result.pages = cursor.page
            logger.info(
                "Retrieved page %s: %s records (total: %s)",
                result.pages,
                len(data),
                len(result.records),
            )
            nxt = next_cursor(page)

        if nxt:
            logger.warning(
                "Reached pagination safety limit (%s pages). Total records: %s",
                limit,
                len(result.records),
            )
            result.truncated = True
            result.stop_reason = "ceiling"
        elif result.pages > 1:
            logger.info(
                "Completed pagination: %s total records across %s pages",
                len(result.records),
                result.pages,
            )
        return result
