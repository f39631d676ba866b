"""
Navigation supervision.

Drives one request through the challenge-aware state machine:

    NAVIGATING -> (BLOCKED) ------------------------------------> FAILED
               -> (CHALLENGE) CHALLENGE_WAIT -> RESOLVED -------> HANDLER_DISPATCH
                                             -> CHALLENGE_TIMEOUT -> FAILED
               -> (OK) -------------------------------------------> HANDLER_DISPATCH

Content is re-checked once the DOM settles; a challenge that is still
there gets one extra bounded wait before the attempt is given up.
Every failure here is retryable and carries the traversed states.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from emlak.config import TimingConfig
from emlak.errors import (
    BlockedError,
    ChallengeLingeringError,
    ChallengeTimeoutError,
    RetryableNavigationError,
)
from emlak.infrastructure.browser import BrowserPage
from emlak.infrastructure.rate_shaper import RateShaper
from emlak.infrastructure.session_pool import Session, SessionPool
from emlak.models import CrawlRequest, LoadedPage, RequestRole
from emlak.utils.challenge_handler import ResponseVerdict, classify_response, detect_challenge_signature

logger = logging.getLogger(__name__)


class NavigationState(str, Enum):
    """States of a single navigation."""
    NAVIGATING = "NAVIGATING"
    CHALLENGE_WAIT = "CHALLENGE_WAIT"
    RESOLVED = "RESOLVED"
    CHALLENGE_TIMEOUT = "CHALLENGE_TIMEOUT"
    HANDLER_DISPATCH = "HANDLER_DISPATCH"
    FAILED = "FAILED"


@dataclass
class NavigationResult:
    """Outcome of a navigation that reached its handler."""
    request: CrawlRequest
    states: List[NavigationState] = field(default_factory=list)
    final_url: Optional[str] = None
    status_code: Optional[int] = None
    session_id: Optional[int] = None
    challenge_signature: Optional[str] = None

    @property
    def challenged(self) -> bool:
        return NavigationState.CHALLENGE_WAIT in self.states


PageHandler = Callable[[LoadedPage], Awaitable[Any]]


class NavigationSupervisor:
    """
    Loads pages through the session pool and hands clean ones to handlers.

    ``browser`` is anything with ``async open_page(session, identity)``
    returning a BrowserPage.
    """

    def __init__(
        self,
        session_pool: SessionPool,
        browser: Any,
        shaper: Optional[RateShaper] = None,
        timing: Optional[TimingConfig] = None,
    ):
        self.session_pool = session_pool
        self.browser = browser
        self.shaper = shaper or RateShaper()
        self.timing = timing or TimingConfig()

    async def visit(self, request: CrawlRequest, handler: PageHandler) -> NavigationResult:
        """
        Load ``request.url`` and dispatch it to ``handler``.

        Returns:
            NavigationResult with the traversed states

        Raises:
            RetryableNavigationError: blocked, challenge timeout or lingering,
                network failure, or session starvation
            Exception: anything the handler raises, unchanged
        """
        result = NavigationResult(request=request, states=[NavigationState.NAVIGATING])

        try:
            session = await self.session_pool.acquire()
        except RetryableNavigationError as e:
            self._fail(result, e)
            raise

        result.session_id = session.id
        page: Optional[BrowserPage] = None
        try:
            page = await self.browser.open_page(session, self.shaper.next_identity())
            html = await self._navigate(page, session, result)
            await self._dispatch(page, result, handler, html)
            return result
        except RetryableNavigationError as e:
            self._fail(result, e)
            raise
        finally:
            if page is not None:
                await page.close()
                await self.session_pool.record_usage(session)
            await self.session_pool.release(session)
            await self.session_pool.retire_if_exhausted(session)

    async def _navigate(self, page: BrowserPage, session: Session, result: NavigationResult) -> str:
        """Run the state machine up to HANDLER_DISPATCH and return the page HTML."""
        request = result.request
        timing = self.timing

        status = await page.goto(request.url, timing.navigation_timeout_secs)
        result.status_code = status
        await self.shaper.delay(*timing.page_delay_ms)

        html = await page.content()
        verdict = classify_response(status, html)

        if verdict is ResponseVerdict.BLOCKED:
            await self._blocked(session, request, status)

        if verdict is ResponseVerdict.CHALLENGE:
            result.challenge_signature = detect_challenge_signature(html)
            await self._await_challenge(page, session, result)

        await page.wait_for_body(timing.body_timeout_secs)
        if request.role == RequestRole.DETAIL:
            await self.shaper.delay(*timing.detail_delay_ms)

        status = page.status_code if NavigationState.RESOLVED in result.states else status
        result.status_code = status
        html = await page.content()
        verdict = classify_response(status, html)

        if verdict is ResponseVerdict.CHALLENGE:
            logger.warning(f"Challenge still present on {request.url}, waiting once more")
            await self.shaper.delay(*timing.challenge_linger_delay_ms)
            html = await page.content()
            verdict = classify_response(status, html)
            if verdict is ResponseVerdict.CHALLENGE:
                raise ChallengeLingeringError(
                    f"Challenge did not clear on {request.url}", url=request.url
                )

        if verdict is ResponseVerdict.BLOCKED:
            await self._blocked(session, request, status)

        await self.session_pool.mark_good(session)
        result.final_url = page.url
        result.states.append(NavigationState.HANDLER_DISPATCH)
        return html

    async def _await_challenge(self, page: BrowserPage, session: Session, result: NavigationResult) -> None:
        request = result.request
        timing = self.timing
        result.states.append(NavigationState.CHALLENGE_WAIT)
        logger.warning(
            f"Challenge detected on {request.url} ({result.challenge_signature}), "
            f"session {session.id}, waiting..."
        )

        async def _behave():
            await self.shaper.delay(*timing.challenge_delay_ms)
            await page.interact()

        timeout = self.shaper.uniform(*timing.challenge_redirect_timeout_secs) + timing.challenge_delay_ms[1] / 1000
        redirected = await page.wait_for_redirect(timeout, while_waiting=_behave)

        if not redirected:
            result.states.append(NavigationState.CHALLENGE_TIMEOUT)
            await self.session_pool.mark_bad(session)
            raise ChallengeTimeoutError(
                f"Challenge on {request.url} did not redirect within {timeout:.0f}s",
                url=request.url,
            )

        result.states.append(NavigationState.RESOLVED)
        logger.info(f"Challenge passed on {request.url}")

    async def _blocked(self, session: Session, request: CrawlRequest, status: Optional[int]) -> None:
        await self.session_pool.mark_bad(session)
        raise BlockedError(
            f"Blocked with status {status} on {request.url}",
            status_code=status or 0,
            url=request.url,
        )

    async def _dispatch(
        self, page: BrowserPage, result: NavigationResult, handler: PageHandler, html: str
    ) -> None:
        loaded = LoadedPage(
            request=result.request,
            url=result.final_url or page.url,
            status_code=result.status_code or 0,
            html=html,
        )
        await handler(loaded)

    @staticmethod
    def _fail(result: NavigationResult, error: RetryableNavigationError) -> None:
        if result.states[-1] != NavigationState.FAILED:
            result.states.append(NavigationState.FAILED)
        error.states = [s.value for s in result.states]
        logger.info(f"Navigation failed [{' -> '.join(error.states)}]: {error}")
