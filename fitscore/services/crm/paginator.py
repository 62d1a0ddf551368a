"""
Cursor-driven iteration over HubSpot search results.

The search API has returned its continuation token in three shapes over time,
so the cursor is read by trying a fixed list of extractors in order.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from urllib.parse import parse_qs, urlparse

import structlog
from pydantic import ValidationError

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.records import CrmRecord, parse_record
from fitscore.services.crm.hubspot_client import HubSpotClient
from fitscore.services.crm.resilient_caller import ResilientCaller
from fitscore.services.crm.search_filters import SearchFilter

CursorExtractor = Callable[[dict], str | None]


def _next_block(response: dict) -> dict:
    paging = response.get("paging") or {}
    return paging.get("next") or {}


def after_from_paging(response: dict) -> str | None:
    """``{"paging": {"next": {"after": "X"}}}``"""
    after = _next_block(response).get("after")
    return str(after) if after not in (None, "") else None


def after_from_link(response: dict) -> str | None:
    """``{"paging": {"next": {"link": "...?after=X"}}}``"""
    link = _next_block(response).get("link")
    if not link:
        return None
    values = parse_qs(urlparse(link).query).get("after")
    return values[0] if values and values[0] else None


def flat_offset(response: dict) -> str | None:
    """``{"offset": "X"}``"""
    offset = response.get("offset")
    return str(offset) if offset not in (None, "") else None


CURSOR_EXTRACTORS: tuple[CursorExtractor, ...] = (after_from_paging, after_from_link, flat_offset)


def extract_cursor(
    response: dict, extractors: Sequence[CursorExtractor] = CURSOR_EXTRACTORS
) -> str | None:
    for extractor in extractors:
        token = extractor(response)
        if token is not None:
            return token
    return None


class PaginatorExhaustedError(Exception):
    """A paginator was iterated a second time."""


class RecordPaginator:
    """
    Lazy, finite, single-use sequence of record batches.

    Usage:
        async for batch in RecordPaginator(client, caller, training_filter("ideal")):
            ...
    """

    def __init__(
        self,
        client: HubSpotClient,
        caller: ResilientCaller,
        search_filter: SearchFilter,
        *,
        page_size: int | None = None,
        max_records: int | None = None,
        page_delay: float | None = None,
        extractors: Sequence[CursorExtractor] = CURSOR_EXTRACTORS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._client = client
        self._caller = caller
        self._filter = search_filter
        self._page_size = page_size or settings.TRAINING_PAGE_SIZE
        self._max_records = settings.TRAINING_MAX_RECORDS if max_records is None else max_records
        self._page_delay = settings.CRM_PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self._extractors = tuple(extractors)
        self._sleep = sleep
        self._started = False
        self._log = component_logger(
            __name__, logger, component="record_paginator", kind=search_filter.kind
        )

        self.pages_fetched = 0
        self.records_yielded = 0
        self.records_skipped = 0
        self.capped = False

    def __aiter__(self) -> AsyncIterator[list[CrmRecord]]:
        if self._started:
            raise PaginatorExhaustedError("RecordPaginator can only be iterated once")
        self._started = True
        return self._pages()

    async def _pages(self) -> AsyncIterator[list[CrmRecord]]:
        after: str | None = None
        while True:
            remaining = self._max_records - self.records_yielded if self._max_records else None
            if remaining is not None and remaining <= 0:
                self.capped = True
                self._log.info("Record cap reached", max_records=self._max_records)
                return

            limit = min(self._page_size, remaining) if remaining is not None else self._page_size
            request = self._filter.to_request(limit, after)
            response = await self._caller.call(
                self._client.search_records, self._filter.kind, request
            )
            self.pages_fetched += 1
            await self._sleep(self._page_delay)

            raw_results = response.get("results") or []
            batch = self._parse(raw_results)
            if remaining is not None:
                batch = batch[:remaining]

            self._log.debug(
                "Fetched search page",
                page=self.pages_fetched,
                results=len(raw_results),
                total=response.get("total"),
            )

            if batch:
                self.records_yielded += len(batch)
                yield batch

            next_after = extract_cursor(response, self._extractors)
            if not raw_results or next_after is None or next_after == after:
                return
            after = next_after

    def _parse(self, raw_results: list[dict]) -> list[CrmRecord]:
        records = []
        for raw in raw_results:
            try:
                records.append(parse_record(self._filter.kind, raw))
            except (ValidationError, KeyError) as e:
                self.records_skipped += 1
                self._log.warning("Skipping malformed record", record_id=raw.get("id"), error=str(e))
        return records
