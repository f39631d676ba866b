"""
Anti-bot challenge detection.

Classifies a response as OK, CHALLENGE (a solvable interstitial that
usually redirects once the client-side check passes) or BLOCKED (a hard
reject of this IP/session).

Challenge markup wins over status codes: challenge pages are served
with 200, 403 and 503 alike.

Usage:
    verdict = classify_response(response.status, await page.content())
    if verdict is ResponseVerdict.CHALLENGE:
        ...
"""
import logging
from enum import Enum
from typing import Optional

from emlak.constants import BLOCKING_STATUS_CODES

logger = logging.getLogger(__name__)


class ResponseVerdict(str, Enum):
    """Outcome of classifying a response."""
    OK = "ok"
    CHALLENGE = "challenge"
    BLOCKED = "blocked"


# =============================================================================
# Challenge Signatures
# =============================================================================

# Lower-case substrings; any hit makes the page a challenge page.
CHALLENGE_SIGNATURES = {
    # Cloudflare interstitials
    "checking_browser": "checking your browser",
    "just_a_moment": "just a moment",
    "cf_browser_verification": "cf-browser-verification",
    "cf_challenge_running": "cf-challenge-running",
    "cf_challenge_platform": "/cdn-cgi/challenge-platform/",
    "cf_turnstile": "challenges.cloudflare.com",
    "verify_connection": "checking if the site connection is secure",
    "wait_verify": "please wait while we verify your browser",
    "ddos_protection": "ddos protection by",
    # Localized (Turkish) security-verification banners
    "tr_security_check": "güvenlik doğrulaması",
    "tr_security_check_ascii": "guvenlik dogrulamasi",
    "tr_one_moment": "bir dakika lütfen",
    "tr_checking_browser": "tarayıcınız kontrol ediliyor",
}


def detect_challenge_signature(content: Optional[str]) -> Optional[str]:
    """
    Find the first challenge signature present in page content.

    Args:
        content: Raw HTML or text snapshot of the page

    Returns:
        Name of the matched signature, or None if the page is not a challenge
    """
    if not content:
        return None

    content_lower = content.lower()
    for name, marker in CHALLENGE_SIGNATURES.items():
        if marker in content_lower:
            return name

    return None


def is_challenge_page(content: Optional[str]) -> bool:
    """Check if page content carries any challenge signature."""
    return detect_challenge_signature(content) is not None


def classify_response(status_code: Optional[int], content: Optional[str]) -> ResponseVerdict:
    """
    Classify a response for the navigation state machine.

    Pure and total: every (status, content) pair maps to exactly one
    verdict, and content with a challenge signature is always CHALLENGE.

    Args:
        status_code: HTTP status of the main document (None/0 if unknown)
        content: Page content snapshot (may be empty)

    Returns:
        ResponseVerdict.CHALLENGE, BLOCKED or OK
    """
    if is_challenge_page(content):
        return ResponseVerdict.CHALLENGE

    if status_code in BLOCKING_STATUS_CODES:
        return ResponseVerdict.BLOCKED

    return ResponseVerdict.OK
