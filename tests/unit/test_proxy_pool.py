"""Tests for the session/proxy pool."""
import asyncio

import pytest

from services.proxy_pool import PoolExhausted, ProxyPool
from services.proxy_providers import ProxyEndpoint, StaticProxyProvider
from services.sync_config import ProxyConfig, StealthConfig

from fakes import FakeClock


def endpoints(count: int, residential: bool = True):
    return [
        ProxyEndpoint(server=f"http://10.0.0.{i}:8000", username=f"user{i}", password="pw", residential=residential)
        for i in range(1, count + 1)
    ]


def make_pool(eps, clock=None, **proxy_overrides) -> ProxyPool:
    return ProxyPool(
        StaticProxyProvider(eps),
        ProxyConfig(**proxy_overrides),
        StealthConfig(),
        clock=clock or FakeClock(),
    )


class TestAcquireRelease:
    @pytest.mark.asyncio
    async def test_empty_pool_is_exhausted(self):
        pool = make_pool([])
        await pool.refresh()
        with pytest.raises(PoolExhausted):
            await pool.acquire()

    @pytest.mark.asyncio
    async def test_lease_is_exclusive(self):
        pool = make_pool(endpoints(1))
        await pool.refresh()

        lease = await pool.acquire()
        with pytest.raises(PoolExhausted):
            await pool.acquire()

        await pool.release(lease, success=True)
        again = await pool.acquire()
        assert again.identity_id == lease.identity_id

    @pytest.mark.asyncio
    async def test_concurrent_acquires_get_distinct_identities(self):
        pool = make_pool(endpoints(3))
        await pool.refresh()

        leases = await asyncio.gather(*(pool.acquire() for _ in range(3)))

        assert len({lease.identity_id for lease in leases}) == 3
        assert pool.stats()["in_use"] == 3

    @pytest.mark.asyncio
    async def test_double_release_rejected(self):
        pool = make_pool(endpoints(1))
        await pool.refresh()
        lease = await pool.acquire()
        await pool.release(lease, success=True)

        with pytest.raises(ValueError):
            await pool.release(lease, success=True)

    @pytest.mark.asyncio
    async def test_lease_carries_proxy_and_stealth(self):
        pool = make_pool(endpoints(1))
        await pool.refresh()
        lease = await pool.acquire()

        assert lease.proxy == {"server": "http://10.0.0.1:8000", "username": "user1", "password": "pw"}
        assert lease.stealth is not None

    @pytest.mark.asyncio
    async def test_prefers_better_success_rate(self):
        # Threshold 0 keeps both identities whatever their record
        pool = make_pool(endpoints(2), min_success_rate=0.0)
        await pool.refresh()

        first = await pool.acquire()
        second = await pool.acquire()
        await pool.release(first, success=False)
        await pool.release(second, success=True)

        chosen = await pool.acquire()
        assert chosen.identity_id == second.identity_id


class TestEviction:
    @pytest.mark.asyncio
    async def test_identity_below_min_success_rate_not_returned(self):
        pool = make_pool(endpoints(2), min_success_rate=0.7)
        await pool.refresh()

        bad = await pool.acquire()
        await pool.release(bad, success=False)

        assert bad.identity_id not in pool.identity_ids()
        for _ in range(3):
            lease = await pool.acquire()
            assert lease.identity_id != bad.identity_id
            await pool.release(lease, success=True)

    @pytest.mark.asyncio
    async def test_rolling_window_with_min_samples(self):
        pool = make_pool(endpoints(1), min_success_rate=0.7, min_samples=4, success_window=4)
        await pool.refresh()

        # 3 successes, then 1 failure: 0.75 >= 0.7, kept
        for outcome in (True, True, True, False):
            lease = await pool.acquire()
            await pool.release(lease, success=outcome)
        assert pool.evictions == 0

        # Window now (T, T, F, F): 0.5 < 0.7, evicted
        lease = await pool.acquire()
        await pool.release(lease, success=False)
        assert pool.evictions == 1
        with pytest.raises(PoolExhausted):
            await pool.acquire()

    @pytest.mark.asyncio
    async def test_release_without_outcome_records_nothing(self):
        pool = make_pool(endpoints(1))
        await pool.refresh()

        lease = await pool.acquire()
        await pool.release(lease, success=None)

        assert pool.evictions == 0
        assert pool.stats()["details"][0]["success_rate"] is None
        assert (await pool.acquire()).identity_id == lease.identity_id

    @pytest.mark.asyncio
    async def test_evicted_endpoint_not_readmitted_during_cooldown(self):
        clock = FakeClock()
        pool = make_pool(endpoints(1), clock=clock, ban_cooldown_minutes=60)
        await pool.refresh()
        lease = await pool.acquire()
        await pool.release(lease, success=False)

        clock.advance(minutes=59)
        added = await pool.refresh()

        assert added == 0
        assert pool.stats()["banned"] == 1
        with pytest.raises(PoolExhausted):
            await pool.acquire()

    @pytest.mark.asyncio
    async def test_evicted_endpoint_readmitted_after_cooldown(self):
        clock = FakeClock()
        pool = make_pool(endpoints(1), clock=clock, ban_cooldown_minutes=60)
        await pool.refresh()
        lease = await pool.acquire()
        await pool.release(lease, success=False)

        clock.advance(minutes=61)
        added = await pool.refresh()

        assert added == 1
        assert pool.stats()["banned"] == 0
        fresh = await pool.acquire()
        assert fresh.identity_id != lease.identity_id
        assert fresh.identity.endpoint.key == lease.identity.endpoint.key
        assert fresh.identity.success_rate is None

    @pytest.mark.asyncio
    async def test_direct_slot_replaced_immediately(self):
        direct = ProxyEndpoint(server=None, username="direct-0", provider="direct")
        pool = make_pool([direct])
        await pool.refresh()
        lease = await pool.acquire()
        await pool.release(lease, success=False)

        assert pool.evictions == 1
        assert pool.stats()["banned"] == 0
        fresh = await pool.acquire()
        assert fresh.identity_id != lease.identity_id
        assert fresh.identity.endpoint.key == direct.key


class TestRotation:
    @pytest.mark.asyncio
    async def test_idle_identity_rotated_after_interval(self):
        clock = FakeClock()
        pool = make_pool(endpoints(1), clock=clock, rotation_interval_minutes=30)
        await pool.refresh()
        first = await pool.acquire()
        await pool.release(first, success=True)

        clock.advance(minutes=31)
        second = await pool.acquire()

        assert second.identity_id != first.identity_id
        assert second.identity.endpoint == first.identity.endpoint
        assert pool.rotations == 1
        assert second.identity.success_rate is None

    @pytest.mark.asyncio
    async def test_rotation_ignores_outcome(self):
        clock = FakeClock()
        pool = make_pool(endpoints(1), clock=clock, rotation_interval_minutes=30)
        await pool.refresh()
        lease = await pool.acquire()

        clock.advance(minutes=45)
        await pool.release(lease, success=True)

        assert lease.identity_id not in pool.identity_ids()
        assert pool.rotations == 1
        assert len(pool.identity_ids()) == 1

    @pytest.mark.asyncio
    async def test_in_use_identity_not_rotated_mid_lease(self):
        clock = FakeClock()
        pool = make_pool(endpoints(2), clock=clock, rotation_interval_minutes=30)
        await pool.refresh()
        held = await pool.acquire()

        clock.advance(minutes=31)
        other = await pool.acquire()

        assert held.identity_id in pool.identity_ids()
        assert other.identity_id != held.identity_id


class TestResidentialFilter:
    @pytest.mark.asyncio
    async def test_datacenter_endpoints_skipped(self):
        eps = endpoints(1) + [ProxyEndpoint(server="http://192.168.1.1:3128", residential=False)]
        pool = make_pool(eps, residential_only=True)

        await pool.refresh()

        assert pool.stats()["identities"] == 1
        lease = await pool.acquire()
        assert lease.identity.endpoint.residential

    @pytest.mark.asyncio
    async def test_datacenter_allowed_when_not_residential_only(self):
        pool = make_pool(endpoints(2, residential=False), residential_only=False)
        await pool.refresh()
        assert pool.stats()["identities"] == 2


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_snapshot(self):
        pool = make_pool(endpoints(2))
        await pool.refresh()
        lease = await pool.acquire()
        await pool.release(lease, success=True)

        stats = pool.stats()

        assert stats["identities"] == 2
        assert stats["in_use"] == 0
        assert stats["evictions"] == 0
        detail = next(d for d in stats["details"] if d["id"] == lease.identity_id)
        assert detail["success_rate"] == 1.0
        assert detail["successes"] == 1
