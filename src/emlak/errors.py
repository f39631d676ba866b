"""Exception hierarchy for the listing crawler.

Retryable navigation errors are fed back into the scheduler's retry
accounting; non-retryable errors fail the request immediately.
"""

from typing import List, Optional


class CrawlError(Exception):
    """Base class for every crawler error."""

    retryable = False

    def __init__(self, message: str, url: Optional[str] = None):
        self.message = message
        self.url = url
        super().__init__(message)


class RetryableNavigationError(CrawlError):
    """A navigation failed in a way that another attempt may fix."""

    retryable = True

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        states: Optional[List[str]] = None,
    ):
        super().__init__(message, url=url)
        self.states = states or []


class BlockedError(RetryableNavigationError):
    """Hard reject (403/429/503 without a challenge page)."""

    def __init__(self, message: str, status_code: int, url: Optional[str] = None, **kwargs):
        super().__init__(message, url=url, **kwargs)
        self.status_code = status_code


class ChallengeTimeoutError(RetryableNavigationError):
    """The challenge page never redirected within the wait budget."""


class ChallengeLingeringError(RetryableNavigationError):
    """A challenge signature was still present after the DOM settled."""


class NavigationFailedError(RetryableNavigationError):
    """Network error or navigation timeout."""


class SessionStarvedError(RetryableNavigationError):
    """No GOOD session could be obtained before the starvation timeout."""


class NonRetryableError(CrawlError):
    """A failure that another attempt will not fix."""


class PageParseError(NonRetryableError):
    """No known extraction strategy produced data for the page."""


class NoValidSeedsError(CrawlError):
    """The crawl was started without a single valid entry point."""


class SinkError(CrawlError):
    """A storage sink failed to persist a record."""
