"""
Stealth browser driver.

One Chromium instance per crawl, one browser context per session: the
context carries the session's proxy and first identity, so cookies
earned by passing a challenge stay with that session until it is
evicted. Every navigation opens a fresh page on the session's context
with the identity drawn for that navigation.

``BrowserPage`` is the narrow surface the navigation supervisor drives;
``PlaywrightPage`` implements it on top of rebrowser-playwright.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from rebrowser_playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from emlak.browser_config import BrowserConfig
from emlak.errors import NavigationFailedError
from emlak.infrastructure.rate_shaper import BrowserIdentity
from emlak.infrastructure.session_pool import Session

logger = logging.getLogger(__name__)


STEALTH_INIT_SCRIPT = """
    // Override webdriver property
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined,
    });

    // Override languages
    Object.defineProperty(navigator, 'languages', {
        get: () => ['tr-TR', 'tr', 'en-US', 'en'],
    });

    // Override chrome runtime
    window.chrome = {
        runtime: {},
    };
"""


class BrowserPage(ABC):
    """A single open page, as seen by the navigation supervisor."""

    @property
    @abstractmethod
    def url(self) -> str:
        """Current page URL."""

    @property
    @abstractmethod
    def status_code(self) -> Optional[int]:
        """Status of the latest main-document response (None if unknown)."""

    @abstractmethod
    async def goto(self, url: str, timeout_secs: float) -> Optional[int]:
        """Navigate and return the main document's status code.

        Raises:
            NavigationFailedError: network error or navigation timeout
        """

    @abstractmethod
    async def content(self) -> str:
        """Current page HTML."""

    @abstractmethod
    async def wait_for_redirect(
        self,
        timeout_secs: float,
        while_waiting: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> bool:
        """Wait for the page to navigate away.

        ``while_waiting`` runs after the wait has been armed, so a redirect
        that fires during it is still observed.

        Returns:
            True if a navigation happened before the timeout
        """

    @abstractmethod
    async def wait_for_body(self, timeout_secs: float) -> None:
        """Wait until the document body is attached.

        Raises:
            NavigationFailedError: on timeout
        """

    @abstractmethod
    async def interact(self) -> None:
        """Minor human-like interaction (mouse movement)."""

    @abstractmethod
    async def close(self) -> None:
        """Close the page."""


class PlaywrightPage(BrowserPage):
    """BrowserPage backed by a Playwright page."""

    def __init__(self, page: Page, config: BrowserConfig):
        self._page = page
        self._config = config
        self._status: Optional[int] = None

    @property
    def url(self) -> str:
        return self._page.url

    @property
    def status_code(self) -> Optional[int]:
        return self._status

    async def goto(self, url: str, timeout_secs: float) -> Optional[int]:
        try:
            response = await self._page.goto(
                url,
                timeout=timeout_secs * 1000,
                wait_until=self._config.wait_until,
            )
        except PlaywrightTimeoutError as e:
            raise NavigationFailedError(f"Navigation timed out after {timeout_secs:.0f}s", url=url) from e
        except PlaywrightError as e:
            raise NavigationFailedError(f"Navigation failed: {e}", url=url) from e

        self._status = response.status if response is not None else None
        return self._status

    async def content(self) -> str:
        try:
            return await self._page.content()
        except PlaywrightError as e:
            raise NavigationFailedError(f"Could not read page content: {e}", url=self.url) from e

    async def wait_for_redirect(
        self,
        timeout_secs: float,
        while_waiting: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> bool:
        try:
            async with self._page.expect_navigation(
                timeout=timeout_secs * 1000,
                wait_until=self._config.wait_until,
            ) as navigation:
                if while_waiting is not None:
                    await while_waiting()
            response = await navigation.value
        except PlaywrightTimeoutError:
            return False

        self._status = response.status if response is not None else None
        return True

    async def wait_for_body(self, timeout_secs: float) -> None:
        try:
            await self._page.wait_for_selector("body", timeout=timeout_secs * 1000)
        except PlaywrightTimeoutError as e:
            raise NavigationFailedError(f"Body not ready after {timeout_secs:.0f}s", url=self.url) from e
        except PlaywrightError as e:
            raise NavigationFailedError(f"Waiting for body failed: {e}", url=self.url) from e

    async def interact(self) -> None:
        """Simulate human-like mouse movements on the page."""
        viewport = self._page.viewport_size
        if not viewport or self._config.mouse_moves == 0:
            return

        try:
            for _ in range(random.randint(1, self._config.mouse_moves)):
                x = random.randint(100, max(101, viewport["width"] - 100))
                y = random.randint(100, max(101, viewport["height"] - 100))
                await self._page.mouse.move(x, y, steps=random.randint(5, 15))
                await asyncio.sleep(random.uniform(0.05, 0.2))
        except PlaywrightError as e:
            # Challenge pages navigate away mid-move
            logger.debug(f"Mouse movement interrupted: {e}")

    async def close(self) -> None:
        try:
            await self._page.close()
        except PlaywrightError as e:
            logger.debug(f"Error closing page: {e}")


class StealthBrowser:
    """
    Chromium driver with one isolated context per session.

    Usage:
        async with StealthBrowser(config) as browser:
            page = await browser.open_page(session, identity)
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()
        self._playwright = None
        self._browser: Optional[Browser] = None

    async def start(self) -> None:
        """Launch the browser."""
        if self._browser is not None:
            return

        self._playwright = await async_playwright().start()

        launch_options = {
            "headless": self.config.headless,
            "args": self.config.launch_args,
        }
        if self.config.channel:
            launch_options["channel"] = self.config.channel

        self._browser = await self._playwright.chromium.launch(**launch_options)
        logger.info(f"Browser launched (headless={self.config.headless})")

    async def stop(self) -> None:
        """Close the browser and stop Playwright."""
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser stopped")

    async def __aenter__(self) -> "StealthBrowser":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _new_context(self, session: Session, identity: BrowserIdentity) -> BrowserContext:
        """Create the browser context bound to a session."""
        if self._browser is None:
            raise RuntimeError("Browser not started. Call start() first.")

        context_options = {
            "viewport": identity.viewport,
            "user_agent": identity.user_agent,
            "locale": self.config.locale,
            "timezone_id": self.config.timezone_id,
            "ignore_https_errors": True,
        }
        if session.proxy is not None:
            context_options["proxy"] = session.proxy.config.playwright_proxy

        context = await self._browser.new_context(**context_options)

        if self.config.stealth_mode:
            await context.add_init_script(STEALTH_INIT_SCRIPT)

        if self.config.block_resources:
            blocked = set(self.config.block_resources)

            async def _route(route):
                if route.request.resource_type in blocked:
                    await route.abort()
                else:
                    await route.continue_()

            await context.route("**/*", _route)

        logger.debug(f"Opened browser context for session {session.id} via {session.proxy_label}")
        return context

    async def open_page(self, session: Session, identity: BrowserIdentity) -> PlaywrightPage:
        """
        Open a page on the session's context with the given identity.

        Raises:
            NavigationFailedError: if the context or page cannot be created
        """
        try:
            if session.handle is None:
                session.handle = await self._new_context(session, identity)

            page = await session.handle.new_page()
            await page.set_viewport_size(identity.viewport)
            await page.set_extra_http_headers(identity.extra_headers)
        except PlaywrightError as e:
            raise NavigationFailedError(f"Could not open page for session {session.id}: {e}") from e

        return PlaywrightPage(page, self.config)

    async def close_session(self, session: Session) -> None:
        """Close the context of an evicted session; used as the pool's on_evict hook."""
        context = session.handle
        if context is None:
            return
        session.handle = None
        try:
            await context.close()
        except PlaywrightError as e:
            logger.warning(f"Error closing context of session {session.id}: {e}")
