"""Unit tests for SessionPool."""

import asyncio

import pytest

from emlak.errors import SessionStarvedError
from emlak.infrastructure.proxy_rotation import ProxyConfig, ProxyHealth, ProxyPool, ProxyPoolConfig, RotationStrategy
from emlak.infrastructure.session_pool import Session, SessionHealth, SessionPool


def _proxy_pool(count: int = 1, max_concurrent: int = 1) -> ProxyPool:
    pool = ProxyPool(ProxyPoolConfig(rotation_strategy=RotationStrategy.ROUND_ROBIN))
    for i in range(count):
        pool.add_proxy(ProxyConfig(host=f"10.0.0.{i + 1}", port=8080, max_concurrent=max_concurrent))
    return pool


class TestAcquire:
    """Tests for session acquisition."""

    @pytest.mark.asyncio
    async def test_creates_up_to_capacity(self):
        """New sessions are created while below capacity."""
        pool = SessionPool(max_size=3)
        sessions = [await pool.acquire() for _ in range(3)]

        assert len({s.id for s in sessions}) == 3
        assert pool.size == 3
        assert all(s.health == SessionHealth.GOOD for s in sessions)

    @pytest.mark.asyncio
    async def test_recycles_least_recently_used(self):
        """At capacity the least-recently-used GOOD session is reused."""
        pool = SessionPool(max_size=2)
        first = await pool.acquire()
        second = await pool.acquire()
        await pool.release(first)
        await pool.release(second)

        again = await pool.acquire()
        assert again is first
        assert pool.size == 2

    @pytest.mark.asyncio
    async def test_bad_session_never_returned(self):
        """A BAD session is excluded from later acquisitions."""
        pool = SessionPool(max_size=2)
        bad = await pool.acquire()
        good = await pool.acquire()
        await pool.mark_bad(bad)

        for _ in range(10):
            session = await pool.acquire()
            assert session is not bad
            assert session.health == SessionHealth.GOOD
            await pool.release(session)

    @pytest.mark.asyncio
    async def test_bad_session_evicted_and_replaced(self):
        """A BAD session leaves the pool at once and is closed when released."""
        closed = []

        async def on_evict(session: Session):
            closed.append(session.id)

        pool = SessionPool(max_size=1, on_evict=on_evict)
        bad = await pool.acquire()
        await pool.mark_bad(bad)
        assert pool.size == 0
        assert closed == []

        await pool.release(bad)

        fresh = await pool.acquire()
        assert fresh is not bad
        assert fresh.health == SessionHealth.GOOD
        assert closed == [bad.id]
        assert pool.size == 1

    @pytest.mark.asyncio
    async def test_bad_sessions_free_slots_while_good_remains(self):
        """BAD sessions give back their proxy slots even with a GOOD session still pooled."""
        proxies = _proxy_pool(count=3, max_concurrent=1)
        pool = SessionPool(max_size=3, proxy_pool=proxies)
        sessions = [await pool.acquire() for _ in range(3)]
        bad_proxies = [sessions[0].proxy, sessions[1].proxy]

        for session in sessions[:2]:
            await pool.mark_bad(session)
            await pool.release(session)

        assert pool.sessions == [sessions[2]]
        assert all(p.stats.current_connections == 0 for p in bad_proxies)

        acquired = [await pool.acquire() for _ in range(3)]

        assert {s.id for s in acquired[:2]} == {3, 4}
        assert {s.proxy.label for s in acquired[:2]} == {p.label for p in bad_proxies}
        assert not any(s in sessions[:2] for s in acquired)
        assert all(s.health == SessionHealth.GOOD for s in acquired)
        assert pool.size == 3
        assert pool.get_stats()["total_evicted"] == 2
        assert all(p.stats.current_connections == 1 for p in proxies._proxies)

    @pytest.mark.asyncio
    async def test_session_gets_proxy(self):
        """Sessions are bound to a proxy slot when a provider is configured."""
        pool = SessionPool(max_size=2, proxy_pool=_proxy_pool(count=2))
        s1 = await pool.acquire()
        s2 = await pool.acquire()
        assert s1.proxy is not None and s2.proxy is not None
        assert s1.proxy is not s2.proxy

    @pytest.mark.asyncio
    async def test_starvation_raises(self):
        """No proxy slot and no GOOD session ends in SessionStarvedError."""
        proxies = _proxy_pool(count=1)
        proxies._proxies[0].health = ProxyHealth.RETIRED
        pool = SessionPool(max_size=2, proxy_pool=proxies, starvation_timeout=0.05, poll_interval=0.01)

        with pytest.raises(SessionStarvedError) as exc_info:
            await pool.acquire()
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_starvation_resolves_when_slot_frees(self):
        """A waiting acquire() succeeds once an evicted session frees its slot."""
        proxies = _proxy_pool(count=1, max_concurrent=1)
        pool = SessionPool(max_size=1, proxy_pool=proxies, starvation_timeout=2.0, poll_interval=0.01)

        first = await pool.acquire()
        await pool.mark_bad(first)

        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0.05)
        assert not waiter.done()

        await pool.release(first)
        fresh = await asyncio.wait_for(waiter, timeout=1.0)
        assert fresh is not first
        assert fresh.proxy is proxies._proxies[0]

    @pytest.mark.asyncio
    async def test_reuses_good_session_when_proxies_exhausted(self):
        """Below capacity but out of proxy slots, a GOOD session is reused."""
        pool = SessionPool(max_size=5, proxy_pool=_proxy_pool(count=1, max_concurrent=1))
        first = await pool.acquire()
        second = await pool.acquire()
        assert second is first


class TestRetirement:
    """Tests for usage-based retirement."""

    @pytest.mark.asyncio
    async def test_retire_after_ceiling(self):
        """A session is evicted once usage exceeds the ceiling."""
        evicted = []

        async def on_evict(session):
            evicted.append(session.id)

        pool = SessionPool(max_size=2, max_usage=2, on_evict=on_evict)
        session = await pool.acquire()
        await pool.release(session)

        for _ in range(2):
            await pool.record_usage(session)
            assert not await pool.retire_if_exhausted(session)

        await pool.record_usage(session)
        assert await pool.retire_if_exhausted(session)
        assert evicted == [session.id]
        assert session not in pool.sessions

        replacement = await pool.acquire()
        assert replacement is not session

    @pytest.mark.asyncio
    async def test_eviction_deferred_while_active(self):
        """Closing waits until the last navigation on the session is released."""
        evicted = []

        async def on_evict(session):
            evicted.append(session.id)

        pool = SessionPool(max_size=1, max_usage=0, on_evict=on_evict)
        session = await pool.acquire()
        await pool.record_usage(session)

        assert await pool.retire_if_exhausted(session)
        assert evicted == []

        await pool.release(session)
        assert evicted == [session.id]

    @pytest.mark.asyncio
    async def test_eviction_releases_proxy_slot(self):
        """An evicted session gives its proxy slot back."""
        proxies = _proxy_pool(count=1, max_concurrent=1)
        pool = SessionPool(max_size=1, max_usage=0, proxy_pool=proxies)
        session = await pool.acquire()
        assert proxies._proxies[0].stats.current_connections == 1

        await pool.release(session)
        await pool.record_usage(session)
        await pool.retire_if_exhausted(session)
        assert proxies._proxies[0].stats.current_connections == 0


class TestHealthFeedback:
    """Tests for proxy feedback and stats."""

    @pytest.mark.asyncio
    async def test_mark_bad_reports_block(self):
        """mark_bad records a block against the session's proxy."""
        proxies = _proxy_pool(count=1)
        pool = SessionPool(max_size=1, proxy_pool=proxies)
        session = await pool.acquire()

        await pool.mark_bad(session)
        await pool.mark_bad(session)

        assert session.health == SessionHealth.BAD
        assert proxies._proxies[0].stats.blocked_requests == 2
        assert pool.get_stats()["total_marked_bad"] == 1
        assert pool.get_stats()["total_evicted"] == 1

    @pytest.mark.asyncio
    async def test_mark_good_reports_success(self):
        """mark_good records a success against the session's proxy."""
        proxies = _proxy_pool(count=1)
        pool = SessionPool(max_size=1, proxy_pool=proxies)
        session = await pool.acquire()

        await pool.mark_good(session)
        assert proxies._proxies[0].stats.successful_requests == 1
        assert session.health == SessionHealth.GOOD

    @pytest.mark.asyncio
    async def test_close_evicts_everything(self):
        """close() runs the evict hook for every session."""
        evicted = []

        async def on_evict(session):
            evicted.append(session.id)

        pool = SessionPool(max_size=3, on_evict=on_evict)
        for _ in range(3):
            await pool.acquire()

        await pool.close()
        assert sorted(evicted) == [0, 1, 2]
        assert pool.size == 0

    @pytest.mark.asyncio
    async def test_evict_hook_errors_are_logged(self):
        """A failing evict hook does not break the pool."""
        async def on_evict(session):
            raise RuntimeError("context already closed")

        pool = SessionPool(max_size=1, max_usage=0, on_evict=on_evict)
        session = await pool.acquire()
        await pool.release(session)
        await pool.record_usage(session)

        assert await pool.retire_if_exhausted(session)
        assert session.handle is None

    @pytest.mark.asyncio
    async def test_concurrent_acquire_respects_capacity(self):
        """Concurrent acquisitions never create more sessions than max_size."""
        pool = SessionPool(max_size=3)
        sessions = await asyncio.gather(*(pool.acquire() for _ in range(20)))

        assert pool.size == 3
        assert {s.id for s in sessions} == {0, 1, 2}

    def test_invalid_size(self):
        """A pool needs room for at least one session."""
        with pytest.raises(ValueError):
            SessionPool(max_size=0)
