"""
Human-like request pacing and identity rotation.

Automated browsers are easy to spot by their timing and by presenting
the same fingerprint on every request. The rate shaper provides:
- Uniformly random delays between page actions (cooperative sleeps)
- A fresh identity per request: user agent, viewport and header set,
  each drawn independently from a fixed catalog of desktop browsers
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from emlak.constants import BASE_VIEWPORT_WIDTH, BASE_VIEWPORT_HEIGHT, VIEWPORT_JITTER_PX

logger = logging.getLogger(__name__)


# Desktop user agents (Chrome, Firefox, Safari, Edge on Windows/macOS)
USER_AGENTS = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36",
    # Chrome on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    # Firefox on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:119.0) Gecko/20100101 Firefox/119.0",
    # Firefox on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:120.0) Gecko/20100101 Firefox/120.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:119.0) Gecko/20100101 Firefox/119.0",
    # Safari on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Safari/605.1.15",
    # Edge on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36 Edg/119.0.0.0",
]

# Common desktop resolutions, each jittered a little per identity
VIEWPORTS: List[Tuple[int, int]] = [
    (BASE_VIEWPORT_WIDTH, BASE_VIEWPORT_HEIGHT),
    (1440, 900),
    (1536, 864),
    (1600, 900),
    (1920, 1080),
]

_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"

HEADER_SETS: List[Dict[str, str]] = [
    {
        "Accept-Language": "tr-TR,tr;q=0.9,en-US;q=0.8,en;q=0.7",
        "Accept": _ACCEPT,
    },
    {
        "Accept-Language": "tr-TR,tr;q=0.9",
        "Accept": _ACCEPT,
        "Upgrade-Insecure-Requests": "1",
    },
    {
        "Accept-Language": "tr,en-US;q=0.7,en;q=0.3",
        "Accept": _ACCEPT,
        "DNT": "1",
    },
    {
        "Accept-Language": "en-US,en;q=0.9,tr;q=0.8",
        "Accept": _ACCEPT,
    },
]


@dataclass
class BrowserIdentity:
    """Fingerprint applied to a single navigation."""
    user_agent: str
    viewport: Dict[str, int]
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def extra_headers(self) -> Dict[str, str]:
        """Header set plus the user agent, ready for set_extra_http_headers."""
        return {**self.headers, "User-Agent": self.user_agent}


class RateShaper:
    """
    Random delays and rotating identities.

    Stateless apart from its random generator, which can be injected
    (seeded) for reproducible runs.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def pick_delay_ms(self, min_ms: float, max_ms: float) -> float:
        """Draw a delay uniformly from [min_ms, max_ms]."""
        if max_ms < min_ms:
            min_ms, max_ms = max_ms, min_ms
        return self._rng.uniform(min_ms, max_ms)

    async def delay(self, min_ms: float, max_ms: float) -> float:
        """
        Suspend the caller for a random duration.

        Args:
            min_ms: Lower bound in milliseconds
            max_ms: Upper bound in milliseconds

        Returns:
            Actual delay in milliseconds
        """
        delay_ms = self.pick_delay_ms(min_ms, max_ms)
        if delay_ms > 0:
            logger.debug(f"Delay: {delay_ms:.0f}ms")
            await asyncio.sleep(delay_ms / 1000)
        return delay_ms

    def uniform(self, low: float, high: float) -> float:
        """Random float in [low, high] from the shaper's generator."""
        return self._rng.uniform(low, high)

    def next_identity(self) -> BrowserIdentity:
        """Draw a fresh identity; every component is chosen independently."""
        width, height = self._rng.choice(VIEWPORTS)
        return BrowserIdentity(
            user_agent=self._rng.choice(USER_AGENTS),
            viewport={
                "width": width + self._rng.randint(0, VIEWPORT_JITTER_PX),
                "height": height + self._rng.randint(0, VIEWPORT_JITTER_PX),
            },
            headers=dict(self._rng.choice(HEADER_SETS)),
        )
