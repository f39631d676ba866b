"""
Utilities Package.

Provides anti-bot challenge detection for the navigation supervisor.
"""

from .challenge_handler import (
    ResponseVerdict,
    classify_response,
    detect_challenge_signature,
    is_challenge_page,
    CHALLENGE_SIGNATURES,
)

__all__ = [
    "ResponseVerdict",
    "classify_response",
    "detect_challenge_signature",
    "is_challenge_page",
    "CHALLENGE_SIGNATURES",
]
