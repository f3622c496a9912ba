import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from providers.interface import IObjectStore, ObjectEntry, ObjectStoreError, Page

logger = logging.getLogger("listing_engine")


@dataclass
class ListingResult:
    entries: List[ObjectEntry] = field(default_factory=list)
    pages: int = 0
    retries: int = 0
    failed_pages: List[str] = field(default_factory=list)
    hit_page_limit: bool = False

    @property
    def keys(self) -> List[str]:
        return [e.key for e in self.entries]

    @property
    def complete(self) -> bool:
        return not self.failed_pages and not self.hit_page_limit

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


class ListingEngine:
    """
    Cursor-paginated listing with a bounded window of page fetches.

    The first page is fetched alone to seed a cursor. After that, each
    cursor is advanced by a sequential probe call, and a content fetch for
    that cursor is started before the probe. A new fetch only starts once
    the previous probe has returned, so with similar request latencies the
    window rarely fills: typically one content fetch overlaps one probe.
    `window` is the upper bound on outstanding content fetches.

    Setting `coalesce_cursor_probe` uses the probe response as the page
    content instead, halving request volume at the cost of running
    sequentially.
    """

    def __init__(self, store: IObjectStore, window: int = 3, max_attempts: int = 3,
                 retry_base_delay: float = 1.0, max_pages: int = 10000,
                 cursor_delay: float = 0.025, coalesce_cursor_probe: bool = False,
                 sleep=asyncio.sleep):
        if window < 1:
            raise ValueError("window must be >= 1")
        self.store = store
        self.window = window
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.max_pages = max_pages
        self.cursor_delay = cursor_delay
        self.coalesce_cursor_probe = coalesce_cursor_probe
        self._sleep = sleep
        self.retry_count = 0

    async def list_page(self, prefix: str, cursor: Optional[str] = None) -> Page:
        """
        Fetch one page, retrying the same cursor on retryable errors.
        At most `max_attempts` calls in total; backoff doubles from
        retry_base_delay (1s, 2s, ...) and there is no delay after the last.
        """
        attempt = 0
        while True:
            try:
                return await self.store.list_page(prefix, cursor)
            except ObjectStoreError as e:
                if not e.retryable or attempt + 1 >= self.max_attempts:
                    raise
                delay = self.retry_base_delay * (2 ** attempt)
                attempt += 1
                self.retry_count += 1
                logger.warning(f"Rate limited listing {prefix!r}, retrying in {delay:.0f}s "
                               f"(attempt {attempt + 1}/{self.max_attempts})")
                await self._sleep(delay)

    async def list_all(self, prefix: str) -> ListingResult:
        """List every object under prefix. Not restartable: runs to completion or raises."""
        self.retry_count = 0
        result = ListingResult()
        collected: Dict[int, List[ObjectEntry]] = {}

        first = await self.list_page(prefix)
        result.pages = 1
        collected[1] = first.entries
        cursor = first.cursor

        if cursor and self.coalesce_cursor_probe:
            cursor = await self._walk_sequential(prefix, cursor, result, collected)
        elif cursor:
            cursor = await self._walk_windowed(prefix, cursor, result, collected)

        if cursor and result.pages >= self.max_pages:
            result.hit_page_limit = True
            logger.warning(f"Reached maximum page limit ({self.max_pages}) listing {prefix!r}, "
                           f"returning partial result")

        for page_num in sorted(collected):
            result.entries.extend(collected[page_num])
        result.retries = self.retry_count
        logger.debug(f"Listed {len(result.entries)} objects under {prefix!r} "
                     f"in {result.pages} page(s), {result.retries} retries")
        return result

    async def _walk_sequential(self, prefix, cursor, result, collected) -> Optional[str]:
        while cursor and result.pages < self.max_pages:
            try:
                page = await self.list_page(prefix, cursor)
            except ObjectStoreError as e:
                result.failed_pages.append(f"page {result.pages + 1}: {e}")
                logger.warning(f"Error fetching page {result.pages + 1}: {e}")
                return None
            result.pages += 1
            collected[result.pages] = page.entries
            cursor = page.cursor
            if cursor:
                await self._sleep(self.cursor_delay)
        return cursor

    async def _fetch(self, prefix: str, cursor: str) -> List[ObjectEntry]:
        page = await self.list_page(prefix, cursor)
        return page.entries

    async def _advance(self, prefix: str, cursor: str, result: ListingResult) -> Optional[str]:
        try:
            probe = await self.list_page(prefix, cursor)
        except ObjectStoreError as e:
            result.failed_pages.append(f"cursor probe after page {result.pages}: {e}")
            logger.warning(f"Error getting next cursor: {e}")
            return None
        return probe.cursor

    async def _walk_windowed(self, prefix, cursor, result, collected) -> Optional[str]:
        in_flight: Dict[asyncio.Task, int] = {}
        try:
            while cursor and result.pages < self.max_pages:
                while len(in_flight) < self.window and cursor and result.pages < self.max_pages:
                    result.pages += 1
                    task = asyncio.create_task(self._fetch(prefix, cursor))
                    in_flight[task] = result.pages

                    cursor = await self._advance(prefix, cursor, result)
                    if cursor:
                        await self._sleep(self.cursor_delay)

                if in_flight:
                    done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
                    for task in done:
                        self._collect(task, in_flight.pop(task), result, collected)

            if in_flight:
                done, _ = await asyncio.wait(in_flight.keys())
                for task in done:
                    self._collect(task, in_flight.pop(task), result, collected)
        finally:
            for task in in_flight:
                task.cancel()
        return cursor

    def _collect(self, task: asyncio.Task, page_num: int, result: ListingResult,
                 collected: Dict[int, List[ObjectEntry]]):
        exc = task.exception()
        if exc is not None:
            result.failed_pages.append(f"page {page_num}: {exc}")
            logger.warning(f"Error fetching page {page_num}: {exc}")
            return
        collected[page_num] = task.result()
