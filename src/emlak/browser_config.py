"""
Browser configuration for the Playwright-based listing crawler.

This module provides a validated Pydantic configuration model for all
browser-related settings.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


# Flags the crawler has always launched Chromium with in containers
DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]


class BrowserConfig(BaseModel):
    """
    Configuration for StealthBrowser.

    All fields are validated by Pydantic to ensure type safety and valid values.
    """

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode (no visible UI)"
    )

    stealth_mode: bool = Field(
        default=True,
        description="Inject scripts that hide common automation indicators"
    )

    channel: Optional[str] = Field(
        default=None,
        description="Browser channel (e.g. 'chrome' for an installed Chrome). None uses bundled Chromium."
    )

    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field(
        default="domcontentloaded",
        description="When to consider navigation complete"
    )

    locale: str = Field(
        default="tr-TR",
        description="Browser locale presented to the site"
    )

    timezone_id: str = Field(
        default="Europe/Istanbul",
        description="Timezone presented to the site"
    )

    block_resources: List[str] = Field(
        default_factory=list,
        description="Resource types to block (e.g., 'image', 'font', 'media')"
    )

    launch_args: List[str] = Field(
        default_factory=lambda: list(DEFAULT_LAUNCH_ARGS),
        description="Browser launch arguments"
    )

    mouse_moves: int = Field(
        default=3,
        description="Upper bound of random mouse moves while a challenge runs",
        ge=0,
        le=20
    )

    class Config:
        """Pydantic model configuration."""
        frozen = False
        validate_assignment = True
