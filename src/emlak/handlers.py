"""
Page handlers.

Handlers receive a page that already passed challenge handling, turn it
into records and follow-up requests, and consult the item quota
governor before every emission.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from emlak.config import TimingConfig
from emlak.infrastructure.rate_shaper import RateShaper
from emlak.models import CrawlRequest, ListingRecord, LoadedPage, RequestRole
from emlak.parsing import ListingPageParser, extract_listing_id
from emlak.scheduler import CrawlScheduler
from emlak.state import CrawlState
from emlak.storage import RecordPipeline

logger = logging.getLogger(__name__)

QUOTA_REACHED = "item quota reached"


class PageHandler(ABC):
    """Base for role-specific page handlers."""

    def __init__(
        self,
        parser: ListingPageParser,
        scheduler: CrawlScheduler,
        state: CrawlState,
        pipeline: RecordPipeline,
        shaper: Optional[RateShaper] = None,
        timing: Optional[TimingConfig] = None,
    ):
        self.parser = parser
        self.scheduler = scheduler
        self.state = state
        self.pipeline = pipeline
        self.shaper = shaper or RateShaper()
        self.timing = timing or TimingConfig()

    @property
    def governor(self):
        return self.state.governor

    @abstractmethod
    async def handle(self, page: LoadedPage) -> None:
        """Process one loaded page."""

    async def __call__(self, page: LoadedPage) -> None:
        await self.handle(page)

    def _stop_if_quota_reached(self) -> bool:
        if self.governor.reached:
            self.scheduler.request_stop(QUOTA_REACHED)
            return True
        return False


class CategoryPageHandler(PageHandler):
    """Listing index pages: rows become records or detail requests, then pagination."""

    def __init__(self, *args, include_details: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.include_details = include_details

    async def handle(self, page: LoadedPage) -> None:
        rows = self.parser.category_rows(page.html, page.url)
        logger.info(f"Found {len(rows)} listings on {page.url}")

        remaining = self.governor.remaining
        if remaining is not None and len(rows) > remaining:
            rows = rows[:remaining]

        batch = []
        queued = 0
        for index, row in enumerate(rows):
            if self.state.stop_requested:
                logger.info("Stop requested, abandoning remaining rows")
                break

            try:
                record = self.parser.parse_row(row, page.url)
            except Exception as e:
                logger.warning(f"Error extracting row {index} on {page.url}: {e}")
                continue
            if record is None:
                continue

            if self.include_details:
                if not record.url:
                    continue
                detail = CrawlRequest(
                    url=record.url,
                    role=RequestRole.DETAIL,
                    carried_data=record,
                    source_url=page.url,
                )
                if await self.scheduler.enqueue(detail):
                    queued += 1
            else:
                if not self.governor.try_acquire():
                    self.scheduler.request_stop(QUOTA_REACHED)
                    break
                batch.append(record)

        if batch:
            await self.pipeline.save_batch(batch)
            logger.info(f"Saved {len(batch)} listings from {page.url} ({self.governor.emitted} total)")
        if queued:
            logger.info(f"Enqueued {queued} detail pages from {page.url}")

        if self._stop_if_quota_reached() or self.state.stop_requested:
            return

        next_url = self.parser.next_page_url(page.html, page.url)
        if not next_url:
            logger.info(f"No next page found on {page.url}")
            return

        logger.info(f"Enqueueing next category page: {next_url}")
        await self.scheduler.enqueue(
            CrawlRequest(url=next_url, role=RequestRole.CATEGORY, source_url=page.url)
        )
        await self.shaper.delay(*self.timing.next_page_delay_ms)


class DetailPageHandler(PageHandler):
    """Single listing pages: merge detail fields onto the carried record and emit it."""

    async def handle(self, page: LoadedPage) -> None:
        request = page.request

        if self._stop_if_quota_reached():
            logger.info(f"Quota reached, skipping detail page {page.url}")
            return

        carried = request.carried_data or ListingRecord(url=request.url)

        try:
            detail = self.parser.parse_detail(page.html, page.url)
            record = carried.merge(detail)
        except Exception as e:
            if not carried.has_title:
                raise
            logger.warning(f"Could not parse detail page {page.url}, keeping listing data: {e}")
            record = carried

        if not record.url:
            record.url = request.url
        if not record.id:
            record.id = extract_listing_id(record.url)

        if not self.governor.try_acquire():
            self.scheduler.request_stop(QUOTA_REACHED)
            return

        await self.pipeline.save(record)
        logger.info(f"Saved listing {record.id or record.url} ({self.governor.emitted} total)")
        self._stop_if_quota_reached()
