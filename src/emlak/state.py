"""Process-wide crawl state shared by the scheduler, handlers and governor."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from emlak.constants import DEFAULT_MAX_CONCURRENCY, DEFAULT_MAX_REQUESTS_PER_CRAWL

logger = logging.getLogger(__name__)


class ItemQuotaGovernor:
    """Single authority on how many records were emitted and whether to stop.

    ``try_acquire`` is the only way to count a record: the increment and
    the comparison against the quota happen under one lock, so concurrent
    workers can never push the count past the quota.
    """

    def __init__(self, max_items: Optional[int] = None):
        if max_items is not None and max_items < 0:
            raise ValueError("max_items must be >= 0 or None")
        self.max_items = max_items
        self._emitted = 0
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        """Claim one emission slot.

        Returns:
            True if the record may be emitted (counter incremented),
            False if the quota was already reached.
        """
        with self._lock:
            if self.max_items is not None and self._emitted >= self.max_items:
                return False
            self._emitted += 1
            return True

    @property
    def emitted(self) -> int:
        return self._emitted

    @property
    def reached(self) -> bool:
        """Whether the crawl should stop now."""
        with self._lock:
            return self.max_items is not None and self._emitted >= self.max_items

    @property
    def remaining(self) -> Optional[int]:
        """Slots left before the quota, or None when unbounded."""
        with self._lock:
            if self.max_items is None:
                return None
            return max(0, self.max_items - self._emitted)


@dataclass
class CrawlState:
    """Everything that lives exactly as long as one crawl run."""
    governor: ItemQuotaGovernor = field(default_factory=ItemQuotaGovernor)
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_requests: int = DEFAULT_MAX_REQUESTS_PER_CRAWL
    stop_requested: bool = False
    stop_reason: Optional[str] = None
    requests_admitted: int = 0
    failed_requests: Dict[str, dict] = field(default_factory=dict)

    def request_stop(self, reason: str = "stop requested") -> bool:
        """Set the stop flag. Returns True only on the first call."""
        if self.stop_requested:
            return False
        self.stop_requested = True
        self.stop_reason = reason
        logger.info(f"Stop requested: {reason}")
        return True

    def record_failure(self, url: str, error: Exception, attempts: int, role: str) -> None:
        """Record a permanently failed request."""
        self.failed_requests[url] = {
            "url": url,
            "role": role,
            "error": str(error)[:500],
            "error_type": type(error).__name__,
            "attempts": attempts,
            "failed_at": datetime.now().isoformat(),
        }
