"""Polite, challenge-aware crawler for real-estate listings."""

__version__ = "0.1.0"

from emlak.config import CrawlConfig, TimingConfig, settings
from emlak.crawler import ListingCrawler
from emlak.errors import (
    CrawlError,
    RetryableNavigationError,
    BlockedError,
    ChallengeTimeoutError,
    ChallengeLingeringError,
    NavigationFailedError,
    SessionStarvedError,
    NonRetryableError,
    PageParseError,
    NoValidSeedsError,
    SinkError,
)
from emlak.models import CrawlRequest, CrawlStats, ListingRecord, LoadedPage, RequestRole
from emlak.navigation import NavigationResult, NavigationState, NavigationSupervisor
from emlak.scheduler import CrawlScheduler
from emlak.state import CrawlState, ItemQuotaGovernor
from emlak.storage import BaserowSink, DatasetSink, RecordPipeline

# Infrastructure
from emlak.infrastructure import (
    BrowserIdentity,
    RateShaper,
    Session,
    SessionHealth,
    SessionPool,
    ProxyPool,
)

__all__ = [
    "CrawlConfig",
    "TimingConfig",
    "settings",
    "ListingCrawler",
    "CrawlError",
    "RetryableNavigationError",
    "BlockedError",
    "ChallengeTimeoutError",
    "ChallengeLingeringError",
    "NavigationFailedError",
    "SessionStarvedError",
    "NonRetryableError",
    "PageParseError",
    "NoValidSeedsError",
    "SinkError",
    "CrawlRequest",
    "CrawlStats",
    "ListingRecord",
    "LoadedPage",
    "RequestRole",
    "NavigationResult",
    "NavigationState",
    "NavigationSupervisor",
    "CrawlScheduler",
    "CrawlState",
    "ItemQuotaGovernor",
    "BaserowSink",
    "DatasetSink",
    "RecordPipeline",
    "BrowserIdentity",
    "RateShaper",
    "Session",
    "SessionHealth",
    "SessionPool",
    "ProxyPool",
]
