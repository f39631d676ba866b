"""Unit tests for the Playwright page wrapper and browser configuration."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError
from rebrowser_playwright.async_api import Error as PlaywrightError
from rebrowser_playwright.async_api import TimeoutError as PlaywrightTimeoutError

from emlak.browser_config import DEFAULT_LAUNCH_ARGS, BrowserConfig
from emlak.errors import NavigationFailedError
from emlak.infrastructure.browser import PlaywrightPage, StealthBrowser
from emlak.infrastructure.session_pool import Session


class _NavigationInfo:
    def __init__(self, response=None, error=None):
        self._response = response
        self._error = error

    @property
    def value(self):
        async def _value():
            if self._error is not None:
                raise self._error
            return self._response
        return _value()


class _ExpectNavigation:
    def __init__(self, info):
        self.info = info

    async def __aenter__(self):
        return self.info

    async def __aexit__(self, *exc):
        return False


def make_page(**attrs):
    page = MagicMock()
    page.url = "https://www.sahibinden.com/satilik-daire"
    page.viewport_size = {"width": 1400, "height": 900}
    page.mouse.move = AsyncMock()
    page.close = AsyncMock()
    for name, value in attrs.items():
        setattr(page, name, value)
    return page


class TestBrowserConfig:
    """Tests for BrowserConfig validation."""

    def test_defaults(self):
        """Defaults present a Turkish desktop browser."""
        config = BrowserConfig()
        assert config.headless is True
        assert config.locale == "tr-TR"
        assert config.timezone_id == "Europe/Istanbul"
        assert config.launch_args == DEFAULT_LAUNCH_ARGS

    def test_launch_args_not_shared(self):
        """Each config owns its launch argument list."""
        config = BrowserConfig()
        config.launch_args.append("--mute-audio")
        assert "--mute-audio" not in BrowserConfig().launch_args

    def test_invalid_wait_until(self):
        """Unknown load states are rejected."""
        with pytest.raises(ValidationError):
            BrowserConfig(wait_until="whenever")

    def test_mouse_moves_bounded(self):
        """Mouse moves are validated on assignment too."""
        config = BrowserConfig()
        with pytest.raises(ValidationError):
            config.mouse_moves = 50


class TestPlaywrightPage:
    """Tests for PlaywrightPage."""

    @pytest.mark.asyncio
    async def test_goto_returns_status(self):
        """The main document status is returned and remembered."""
        page = make_page(goto=AsyncMock(return_value=SimpleNamespace(status=403)))
        wrapper = PlaywrightPage(page, BrowserConfig())

        assert await wrapper.goto("https://www.sahibinden.com/a", 30) == 403
        assert wrapper.status_code == 403
        assert page.goto.await_args.kwargs["timeout"] == 30000
        assert page.goto.await_args.kwargs["wait_until"] == "domcontentloaded"

    @pytest.mark.asyncio
    async def test_goto_timeout_wrapped(self):
        """Navigation timeouts become retryable navigation failures."""
        page = make_page(goto=AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 30000ms exceeded")))
        wrapper = PlaywrightPage(page, BrowserConfig())

        with pytest.raises(NavigationFailedError) as exc_info:
            await wrapper.goto("https://www.sahibinden.com/a", 30)
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_goto_network_error_wrapped(self):
        """Network errors become retryable navigation failures."""
        page = make_page(goto=AsyncMock(side_effect=PlaywrightError("net::ERR_CONNECTION_RESET")))
        wrapper = PlaywrightPage(page, BrowserConfig())

        with pytest.raises(NavigationFailedError):
            await wrapper.goto("https://www.sahibinden.com/a", 30)

    @pytest.mark.asyncio
    async def test_wait_for_redirect_success(self):
        """A redirect updates the status and runs the waiting callback."""
        info = _NavigationInfo(response=SimpleNamespace(status=200))
        page = make_page(expect_navigation=MagicMock(return_value=_ExpectNavigation(info)))
        wrapper = PlaywrightPage(page, BrowserConfig())
        behave = AsyncMock()

        assert await wrapper.wait_for_redirect(10, while_waiting=behave)
        assert wrapper.status_code == 200
        behave.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wait_for_redirect_timeout(self):
        """No redirect within the timeout returns False."""
        info = _NavigationInfo(error=PlaywrightTimeoutError("Timeout 10000ms exceeded"))
        page = make_page(expect_navigation=MagicMock(return_value=_ExpectNavigation(info)))
        wrapper = PlaywrightPage(page, BrowserConfig())

        assert not await wrapper.wait_for_redirect(10)

    @pytest.mark.asyncio
    async def test_interact_moves_mouse(self, monkeypatch):
        """Interaction moves the mouse at least once."""
        monkeypatch.setattr("emlak.infrastructure.browser.asyncio.sleep", AsyncMock())
        page = make_page()
        wrapper = PlaywrightPage(page, BrowserConfig(mouse_moves=2))

        await wrapper.interact()

        assert 1 <= page.mouse.move.await_count <= 2

    @pytest.mark.asyncio
    async def test_interact_disabled(self):
        """Zero mouse moves means no interaction."""
        page = make_page()
        await PlaywrightPage(page, BrowserConfig(mouse_moves=0)).interact()
        page.mouse.move.assert_not_awaited()


class TestStealthBrowser:
    """Tests for session context handling."""

    @pytest.mark.asyncio
    async def test_close_session_closes_context(self):
        """Evicting a session closes its context once."""
        context = MagicMock()
        context.close = AsyncMock()
        session = Session(id=1, handle=context)
        browser = StealthBrowser()

        await browser.close_session(session)
        await browser.close_session(session)

        context.close.assert_awaited_once()
        assert session.handle is None

    @pytest.mark.asyncio
    async def test_open_page_requires_start(self):
        """Opening a page on a stopped browser is a programming error."""
        with pytest.raises(RuntimeError):
            await StealthBrowser().open_page(Session(id=0), identity=MagicMock())
