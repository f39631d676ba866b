"""Command-line interface for the listing crawler."""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from emlak.config import CrawlConfig
from emlak.constants import EXIT_FAILURE, EXIT_NO_VALID_SEEDS, EXIT_OK
from emlak.crawler import ListingCrawler
from emlak.errors import NoValidSeedsError
from emlak.logging_config import setup_logging
from emlak.models import CrawlStats

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="emlak-crawl",
        description="Crawl real-estate listings from category pages (and optionally detail pages)"
    )
    parser.add_argument(
        "--input", type=str, metavar="PATH",
        help="Input JSON (startUrls, maxItems, includeDetails, proxyConfiguration, ...)"
    )
    parser.add_argument(
        "--start-url", action="append", dest="start_urls", metavar="URL",
        help="Category URL to start from (repeatable; overrides the input file)"
    )
    parser.add_argument(
        "--max-items", type=int, default=None,
        help="Stop after this many records (default: unlimited)"
    )
    parser.add_argument(
        "--include-details", action="store_true", default=None,
        help="Visit each listing's detail page for description, info and images"
    )
    parser.add_argument(
        "--max-concurrency", type=int, default=None,
        help="Number of concurrent pages (default: 3)"
    )
    parser.add_argument(
        "--max-attempts", type=int, default=None,
        help="Maximum attempts per request (default: 8)"
    )
    parser.add_argument(
        "--proxy-file", type=str, default=None,
        help="File with one proxy per line"
    )
    parser.add_argument(
        "--proxy-country", type=str, default=None,
        help="Only use proxies from this country code (default: TR)"
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="JSON Lines dataset path"
    )
    headless = parser.add_mutually_exclusive_group()
    headless.add_argument(
        "--headless", dest="headless", action="store_true", default=None,
        help="Run the browser headless (default)"
    )
    headless.add_argument(
        "--headed", dest="headless", action="store_false",
        help="Show the browser window"
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--log-file", type=str, default=None,
        help="Also write logs to this file"
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CrawlConfig:
    """Input file (or environment) first, then command-line overrides."""
    config = CrawlConfig.from_file(args.input) if args.input else CrawlConfig.from_env()

    if args.start_urls:
        config.start_urls = list(args.start_urls)
    if args.max_items is not None:
        config.max_items = args.max_items
    if args.include_details is not None:
        config.include_details = args.include_details
    if args.max_concurrency is not None:
        config.max_concurrency = args.max_concurrency
    if args.max_attempts is not None:
        config.max_attempts = args.max_attempts
    if args.proxy_file:
        config.proxy_file = args.proxy_file
    if args.proxy_country:
        config.proxy_country = args.proxy_country
    if args.output:
        config.output_path = args.output
    if args.headless is not None:
        config.headless = args.headless
    if args.log_level:
        config.log_level = args.log_level

    return config


def print_summary(stats: CrawlStats) -> None:
    """Print a short run summary."""
    print(f"\n{'=' * 60}")
    print("Crawl summary")
    print(f"{'=' * 60}")
    print(json.dumps(stats.to_dict(), indent=2))
    if stats.failed:
        print(f"\nFailed requests ({len(stats.failed)}):")
        for url, failure in stats.failed.items():
            print(f"  • {url}: {failure['error_type']} after {failure['attempts']} attempt(s)")
    print(f"{'=' * 60}\n")


async def _run(config: CrawlConfig) -> CrawlStats:
    return await ListingCrawler(config).run()


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point; returns the process exit code."""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except (OSError, ValueError) as e:
        setup_logging(args.log_level or "INFO", args.log_file)
        logger.error(f"Invalid input: {e}")
        return EXIT_FAILURE

    setup_logging(config.log_level, args.log_file)

    try:
        stats = asyncio.run(_run(config))
    except NoValidSeedsError as e:
        logger.error(f"{e}. Provide at least one http(s) start URL.")
        return EXIT_NO_VALID_SEEDS
    except KeyboardInterrupt:
        logger.warning("Crawl interrupted by user")
        return EXIT_FAILURE
    except Exception as e:
        logger.exception(f"Crawl failed: {e}")
        return EXIT_FAILURE

    print_summary(stats)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
