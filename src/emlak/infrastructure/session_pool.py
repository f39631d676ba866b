"""
Session Health Tracking.

A session is a browser identity bound to one proxy slot (and, once the
browser opens it, one browser context). The pool decides which session
serves the next navigation:
- Sessions are created lazily up to ``max_size``
- At capacity the least-recently-used GOOD session is reused
- A session marked BAD leaves the pool at once; its proxy slot and
  browser context are released as soon as its last navigation ends
- Sessions are retired once they exceed their usage ceiling
- When the proxy provider has no free slot, ``acquire`` polls until the
  starvation timeout and then raises ``SessionStarvedError``
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from emlak.constants import (
    DEFAULT_SESSION_POOL_SIZE,
    DEFAULT_SESSION_MAX_USAGE,
    SESSION_STARVATION_POLL_SECONDS,
    SESSION_STARVATION_TIMEOUT_SECONDS,
)
from emlak.errors import SessionStarvedError
from emlak.infrastructure.proxy_rotation import ProxyEntry, ProxyPool

logger = logging.getLogger(__name__)


class SessionHealth(str, Enum):
    """Session health status."""
    GOOD = "good"
    BAD = "bad"


@dataclass
class Session:
    """A browser identity tied to a proxy slot."""
    id: int
    proxy: Optional[ProxyEntry] = None
    usage_count: int = 0
    health: SessionHealth = SessionHealth.GOOD
    created_at: datetime = field(default_factory=datetime.now)
    last_used: float = 0.0
    handle: Any = None  # browser context, opened lazily by the browser
    active: int = 0  # navigations currently running on this session
    evicted: bool = False

    @property
    def is_good(self) -> bool:
        return self.health == SessionHealth.GOOD and not self.evicted

    @property
    def proxy_label(self) -> str:
        return self.proxy.label if self.proxy else "direct"


EvictHook = Callable[[Session], Awaitable[None]]


class SessionPool:
    """
    Bounded pool of sessions with GOOD/BAD health.

    Usage:
        session = await pool.acquire()
        try:
            ...navigate...
            await pool.mark_good(session)
        finally:
            await pool.release(session)
            await pool.retire_if_exhausted(session)
    """

    def __init__(
        self,
        max_size: int = DEFAULT_SESSION_POOL_SIZE,
        max_usage: int = DEFAULT_SESSION_MAX_USAGE,
        proxy_pool: Optional[ProxyPool] = None,
        on_evict: Optional[EvictHook] = None,
        starvation_timeout: float = SESSION_STARVATION_TIMEOUT_SECONDS,
        poll_interval: float = SESSION_STARVATION_POLL_SECONDS,
    ):
        """
        Initialize session pool.

        Args:
            max_size: Maximum number of live sessions
            max_usage: Navigations a session may serve before retirement
            proxy_pool: Provider of proxy slots; None means direct connections
            on_evict: Coroutine called with each evicted session once it is idle
            starvation_timeout: Seconds acquire() waits for a proxy slot
            poll_interval: Seconds between proxy-slot polls
        """
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.max_usage = max_usage
        self.proxy_pool = proxy_pool
        self.on_evict = on_evict
        self.starvation_timeout = starvation_timeout
        self.poll_interval = poll_interval

        self._sessions: Dict[int, Session] = {}
        self._lock = asyncio.Lock()
        self._next_session_id = 0
        self._total_created = 0
        self._total_evicted = 0
        self._total_marked_bad = 0

    @property
    def sessions(self) -> List[Session]:
        """Sessions currently in the pool."""
        return list(self._sessions.values())

    @property
    def size(self) -> int:
        return len(self._sessions)

    async def acquire(self) -> Session:
        """
        Get a GOOD session for the next navigation.

        Returns:
            A GOOD session with its active count incremented

        Raises:
            SessionStarvedError: no session could be created before the timeout
        """
        deadline = time.monotonic() + self.starvation_timeout

        while True:
            async with self._lock:
                session = await self._pick_or_create()
                if session is not None:
                    session.active += 1
                    session.last_used = time.monotonic()

            if session is not None:
                return session

            if time.monotonic() >= deadline:
                raise SessionStarvedError(
                    f"No proxy slot became available within {self.starvation_timeout:.1f}s"
                )
            logger.debug("Session pool starved, waiting for a proxy slot")
            await asyncio.sleep(self.poll_interval)

    async def _pick_or_create(self) -> Optional[Session]:
        """Choose a session; caller holds the lock."""
        good = [s for s in self._sessions.values() if s.is_good]

        if len(self._sessions) < self.max_size:
            session = await self._create_session()
            if session is not None:
                return session

        # At capacity, or the proxy provider has no free slot
        return min(good, key=lambda s: s.last_used) if good else None

    async def _create_session(self) -> Optional[Session]:
        proxy = None
        if self.proxy_pool is not None:
            proxy = await self.proxy_pool.get_proxy()
            if proxy is None:
                return None

        session = Session(id=self._next_session_id, proxy=proxy)
        self._next_session_id += 1
        self._total_created += 1
        self._sessions[session.id] = session
        logger.debug(f"Created session {session.id} via {session.proxy_label}")
        return session

    def _detach(self, session: Session, reason: str) -> Session:
        """Remove a session from the pool; caller holds the lock."""
        self._sessions.pop(session.id, None)
        session.evicted = True
        self._total_evicted += 1
        logger.info(f"Evicting session {session.id} ({reason})")
        return session

    async def _finalize_eviction(self, session: Session) -> None:
        """Release the proxy slot and close the browser context of an idle evicted session."""
        if session.active > 0:
            return  # finalized by the last release()

        if session.proxy is not None and self.proxy_pool is not None:
            await self.proxy_pool.release(session.proxy)
            session.proxy = None

        if self.on_evict is not None:
            try:
                await self.on_evict(session)
            except Exception as e:
                logger.warning(f"Error closing session {session.id}: {e}")
        session.handle = None

    async def release(self, session: Session) -> None:
        """Mark one navigation on ``session`` as finished."""
        async with self._lock:
            session.active = max(0, session.active - 1)
            finalize = session.evicted and session.active == 0
        if finalize:
            await self._finalize_eviction(session)

    async def record_usage(self, session: Session) -> None:
        """Count one navigation against the session's usage ceiling."""
        async with self._lock:
            session.usage_count += 1

    async def mark_good(self, session: Session) -> None:
        """Record a clean navigation."""
        if self.proxy_pool is not None and session.proxy is not None:
            await self.proxy_pool.record_result(session.proxy, success=True)

    async def mark_bad(self, session: Session) -> None:
        """Flag the session as burned and evict it from the pool."""
        async with self._lock:
            if session.health != SessionHealth.BAD:
                session.health = SessionHealth.BAD
                self._total_marked_bad += 1
                logger.warning(f"Session {session.id} marked BAD ({session.proxy_label})")
            detached = not session.evicted
            if detached:
                self._detach(session, "marked BAD")

        if self.proxy_pool is not None and session.proxy is not None:
            await self.proxy_pool.record_result(session.proxy, success=False, is_block=True)

        if detached:
            await self._finalize_eviction(session)

    async def retire_if_exhausted(self, session: Session) -> bool:
        """
        Evict the session once its usage count exceeds the ceiling.

        Returns:
            True if the session was evicted
        """
        async with self._lock:
            if session.evicted or session.usage_count <= self.max_usage:
                return False
            self._detach(session, f"usage {session.usage_count} > {self.max_usage}")

        await self._finalize_eviction(session)
        return True

    async def close(self) -> None:
        """Evict every session."""
        async with self._lock:
            sessions = [self._detach(s, "pool closing") for s in list(self._sessions.values())]
        for session in sessions:
            session.active = 0
            await self._finalize_eviction(session)

    def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics."""
        return {
            "size": self.size,
            "max_size": self.max_size,
            "good": len([s for s in self._sessions.values() if s.health == SessionHealth.GOOD]),
            "in_use": len([s for s in self._sessions.values() if s.active > 0]),
            "total_created": self._total_created,
            "total_evicted": self._total_evicted,
            "total_marked_bad": self._total_marked_bad,
        }
