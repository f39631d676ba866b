# src/emlak/constants.py
"""Centralized constants for the listing crawler.

User-tunable values live on CrawlConfig / TimingConfig in config.py; the
numbers here are the defaults those dataclasses start from.
"""

# =============================================================================
# Target Site
# =============================================================================

DEFAULT_START_URL = "https://www.sahibinden.com/satilik-daire/istanbul?sorting=date_desc"

# Currency assumed when a price string carries no recognizable marker
DEFAULT_CURRENCY = "TL"

# Listing ids on the site are 8-12 digit numbers embedded in the URL path
LISTING_ID_PATTERN = r"/(\d{8,12})"


# =============================================================================
# Scheduler Constants
# =============================================================================

# Default number of concurrent workers
DEFAULT_MAX_CONCURRENCY = 3

# Maximum attempts per request before it is recorded as a permanent failure
DEFAULT_MAX_ATTEMPTS = 8

# Request ceiling when no item quota is configured
DEFAULT_MAX_REQUESTS_PER_CRAWL = 1000

# Request ceiling multiplier applied to the item quota (retries + detail fan-out)
REQUESTS_PER_ITEM_HEADROOM = 3

# Base for exponential backoff calculation
EXPONENTIAL_BACKOFF_BASE = 2

# Initial backoff delay in seconds
INITIAL_BACKOFF_DELAY_SECONDS = 2.0

# Maximum backoff delay in seconds (cap for exponential growth)
MAX_BACKOFF_DELAY_SECONDS = 60.0


# =============================================================================
# Session Pool Constants
# =============================================================================

# Maximum live sessions in the pool
DEFAULT_SESSION_POOL_SIZE = 10

# Navigations a session may serve before it is retired
DEFAULT_SESSION_MAX_USAGE = 50

# Seconds between proxy-slot polls while the pool is starved
SESSION_STARVATION_POLL_SECONDS = 1.0

# Seconds to wait for a fresh proxy slot before giving up on this attempt
SESSION_STARVATION_TIMEOUT_SECONDS = 60.0


# =============================================================================
# Challenge Detection Constants
# =============================================================================

# Status codes that mean a hard reject unless the body is a challenge page
BLOCKING_STATUS_CODES = frozenset({403, 429, 503})


# =============================================================================
# Timing Defaults (milliseconds for delays, seconds for timeouts)
# =============================================================================

PAGE_DELAY_MS = (2000, 5000)
CHALLENGE_DELAY_MS = (5000, 10000)
CHALLENGE_LINGER_DELAY_MS = (8000, 15000)
NEXT_PAGE_DELAY_MS = (1000, 3000)
DETAIL_DELAY_MS = (1000, 3000)

NAVIGATION_TIMEOUT_SECONDS = 60
CHALLENGE_REDIRECT_TIMEOUT_SECONDS = (30, 45)
BODY_TIMEOUT_SECONDS = 45
ROWS_TIMEOUT_SECONDS = 45


# =============================================================================
# Viewport Constants
# =============================================================================

# Base desktop viewport; the rate shaper adds up to VIEWPORT_JITTER_PX
BASE_VIEWPORT_WIDTH = 1366
BASE_VIEWPORT_HEIGHT = 768
VIEWPORT_JITTER_PX = 200


# =============================================================================
# Exit Codes
# =============================================================================

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NO_VALID_SEEDS = 2
