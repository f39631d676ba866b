"""Wires the crawl components together for a single run."""

import logging
import random
from typing import Any, List, Optional

from emlak.browser_config import BrowserConfig
from emlak.config import CrawlConfig
from emlak.handlers import CategoryPageHandler, DetailPageHandler
from emlak.infrastructure.browser import StealthBrowser
from emlak.infrastructure.proxy_rotation import ProxyPool, create_proxy_pool
from emlak.infrastructure.rate_shaper import RateShaper
from emlak.infrastructure.session_pool import SessionPool
from emlak.models import CrawlRequest, CrawlStats, RequestRole
from emlak.navigation import NavigationSupervisor
from emlak.parsing import ListingPageParser, SahibindenParser
from emlak.scheduler import CrawlScheduler
from emlak.state import CrawlState, ItemQuotaGovernor
from emlak.storage import BaserowSink, DatasetSink, RecordPipeline, RecordSink

logger = logging.getLogger(__name__)


class ListingCrawler:
    """
    One crawl run: seeds, browser, sessions, scheduler and sinks.

    Usage:
        stats = await ListingCrawler(CrawlConfig.from_file("input.json")).run()

    ``browser``, ``parser``, ``sinks`` and ``proxy_pool`` can be injected;
    an injected browser is neither started nor stopped by the crawler.
    """

    def __init__(
        self,
        config: CrawlConfig,
        browser: Any = None,
        parser: Optional[ListingPageParser] = None,
        sinks: Optional[List[RecordSink]] = None,
        proxy_pool: Optional[ProxyPool] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.parser = parser or SahibindenParser()
        self.rng = rng or random.Random()
        self._browser = browser
        self._sinks = sinks
        self._proxy_pool = proxy_pool

        self.state = CrawlState(
            governor=ItemQuotaGovernor(config.max_items),
            max_concurrency=config.max_concurrency,
            max_requests=config.max_requests_per_crawl,
        )
        self.shaper = RateShaper(self.rng)
        self.scheduler = CrawlScheduler(
            self.state,
            max_attempts=config.max_attempts,
            timing=config.timing,
            rng=self.rng,
        )
        self.session_pool: Optional[SessionPool] = None
        self.pipeline: Optional[RecordPipeline] = None

    def _default_sinks(self) -> List[RecordSink]:
        sinks: List[RecordSink] = [DatasetSink(self.config.output_path)]
        if self.config.baserow_enabled:
            sinks.append(BaserowSink(
                api_token=self.config.baserow_api_token,
                table_id=self.config.baserow_table_id,
                database_id=self.config.baserow_database_id,
            ))
        else:
            logger.info("Baserow credentials not configured, writing to the dataset only")
        return sinks

    async def run(self) -> CrawlStats:
        """
        Execute the crawl.

        Returns:
            CrawlStats for the run

        Raises:
            NoValidSeedsError: if none of the start URLs is usable
        """
        config = self.config
        logger.info(f"Crawl configuration: {config.to_dict()}")

        # Fails fast, before any browser is launched
        self.scheduler.seed(config.start_urls)

        proxy_pool = self._proxy_pool
        if proxy_pool is None:
            proxy_pool = create_proxy_pool(config.proxy_urls, config.proxy_file, config.proxy_country)
        if proxy_pool is None:
            logger.info("No proxies configured, using direct connections")

        own_browser = self._browser is None
        browser = self._browser or StealthBrowser(BrowserConfig(headless=config.headless))

        self.session_pool = SessionPool(
            max_size=config.session_pool_size,
            max_usage=config.session_max_usage,
            proxy_pool=proxy_pool,
            on_evict=getattr(browser, "close_session", None),
            starvation_timeout=config.timing.session_starvation_timeout_secs,
        )
        supervisor = NavigationSupervisor(self.session_pool, browser, self.shaper, config.timing)

        self.pipeline = RecordPipeline(self._sinks if self._sinks is not None else self._default_sinks())
        handler_args = (self.parser, self.scheduler, self.state, self.pipeline)
        handlers = {
            RequestRole.CATEGORY: CategoryPageHandler(
                *handler_args, shaper=self.shaper, timing=config.timing,
                include_details=config.include_details,
            ),
            RequestRole.DETAIL: DetailPageHandler(*handler_args, shaper=self.shaper, timing=config.timing),
        }

        async def process(request: CrawlRequest):
            return await supervisor.visit(request, handlers[request.role])

        self.scheduler.set_processor(process)

        try:
            if proxy_pool is not None:
                await proxy_pool.start()
            if own_browser:
                await browser.start()
            stats = await self.scheduler.run()
        finally:
            await self.session_pool.close()
            if own_browser:
                await browser.stop()
            if proxy_pool is not None:
                await proxy_pool.stop()
            await self.pipeline.close()

        logger.info(f"Session pool: {self.session_pool.get_stats()}")
        if self.state.failed_requests:
            for url, failure in self.state.failed_requests.items():
                logger.warning(f"Failed: {url} ({failure['error_type']}: {failure['error']})")
        return stats
