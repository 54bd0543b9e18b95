"""
Session/proxy pool.

Hands out exclusive leases on proxy identities (endpoint + stealth profile)
to concurrent sync jobs and keeps the pool healthy:

- an identity is retired once it is older than proxy.rotationInterval and
  replaced by a fresh one (new fingerprint, clean counters)
- an identity whose rolling success rate drops below proxy.minSuccessRate is
  evicted at once; a proxy endpoint is held back for proxy.banCooldown,
  a direct connection slot rejoins straight away with a new fingerprint
- with proxy.residentialOnly, non-residential endpoints never join the pool

acquire()/release() only hold the pool lock for the bookkeeping itself; no
network I/O happens under it.
"""
import asyncio
import itertools
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional

from .clock import Clock, SYSTEM_CLOCK
from .proxy_providers import ProxyEndpoint, ProxyProvider
from .retry import retry_with_backoff
from .stealth import StealthProfile, build_stealth_profile
from .sync_config import ProxyConfig, StealthConfig

logger = logging.getLogger(__name__)


class PoolExhausted(Exception):
    """No healthy, idle identity is available right now"""
    pass


@dataclass
class ProxyIdentity:
    id: str
    endpoint: ProxyEndpoint
    stealth: Optional[StealthProfile]
    created_at: datetime
    window: int = 10
    outcomes: Deque[bool] = field(default_factory=deque)
    in_use: bool = False
    successes: int = 0
    failures: int = 0
    last_used_at: Optional[datetime] = None

    def __post_init__(self):
        self.outcomes = deque(self.outcomes, maxlen=self.window)

    @property
    def success_rate(self) -> Optional[float]:
        """Rolling success rate over the last `window` outcomes."""
        if not self.outcomes:
            return None
        return sum(1 for ok in self.outcomes if ok) / len(self.outcomes)

    def record(self, success: bool):
        self.outcomes.append(success)
        if success:
            self.successes += 1
        else:
            self.failures += 1

    def is_expired(self, now: datetime, rotation_interval: timedelta) -> bool:
        return now - self.created_at >= rotation_interval


@dataclass
class SessionLease:
    """Exclusive use of one identity for the duration of one sync attempt."""
    lease_id: str
    identity: ProxyIdentity
    acquired_at: datetime
    released: bool = False

    @property
    def identity_id(self) -> str:
        return self.identity.id

    @property
    def proxy(self) -> Optional[dict]:
        return self.identity.endpoint.playwright_proxy()

    @property
    def stealth(self) -> Optional[StealthProfile]:
        return self.identity.stealth


class ProxyPool:
    """
    Pool of leasable proxy identities shared by all sync jobs.

    Args:
        provider: Source of proxy endpoints
        proxy_config: Rotation / eviction / residential settings
        stealth_config: Settings for the fingerprint drawn per identity
        clock: Time source
        max_identities: Cap on simultaneous identities (None = one per endpoint)
    """

    def __init__(
        self,
        provider: ProxyProvider,
        proxy_config: ProxyConfig,
        stealth_config: StealthConfig,
        clock: Clock = SYSTEM_CLOCK,
        max_identities: Optional[int] = None,
    ):
        self.provider = provider
        self.proxy_config = proxy_config
        self.stealth_config = stealth_config
        self.clock = clock
        self.max_identities = max_identities

        self._lock = asyncio.Lock()
        self._identities: Dict[str, ProxyIdentity] = {}
        self._candidates: Deque[ProxyEndpoint] = deque()
        self._banned: Dict[str, datetime] = {}   # endpoint key -> banned until
        self._leases: Dict[str, SessionLease] = {}
        self._counter = itertools.count(1)

        self.evictions = 0
        self.rotations = 0
        self.refreshed_at: Optional[datetime] = None

    @property
    def rotation_interval(self) -> timedelta:
        return timedelta(minutes=self.proxy_config.rotation_interval_minutes)

    async def refresh(self, max_retries: int = 3, timeout_ms: int = 30000) -> int:
        """
        Pull endpoints from the provider and queue the usable new ones.

        Returns:
            Number of endpoints added to the candidate queue
        """
        endpoints = await retry_with_backoff(
            self.provider.get_endpoints,
            max_retries=max_retries,
            timeout_ms=timeout_ms,
            clock=self.clock,
            label=f"proxy provider '{self.provider.name}'",
        )

        async with self._lock:
            now = self.clock.now()
            known = {identity.endpoint.key for identity in self._identities.values()}
            known.update(endpoint.key for endpoint in self._candidates)
            added = 0
            skipped_datacenter = 0
            for endpoint in endpoints:
                if endpoint.key in known or self._is_banned(endpoint.key, now):
                    continue
                if self.proxy_config.residential_only and not endpoint.residential:
                    skipped_datacenter += 1
                    continue
                self._candidates.append(endpoint)
                known.add(endpoint.key)
                added += 1
            self.refreshed_at = now
            self._top_up(now)

        if skipped_datacenter:
            logger.info(f"Proxy pool: skipped {skipped_datacenter} non-residential endpoint(s)")
        logger.info(f"Proxy pool refreshed: {added} new endpoint(s), {len(self._identities)} identities")
        return added

    async def acquire(self) -> SessionLease:
        """
        Lease an idle, healthy identity.

        Raises:
            PoolExhausted: every identity is in use, evicted or none exist
        """
        async with self._lock:
            now = self.clock.now()
            self._rotate_idle(now)
            self._top_up(now)

            idle = [identity for identity in self._identities.values() if not identity.in_use]
            if not idle:
                raise PoolExhausted(
                    f"No session available ({len(self._identities)} identities, all busy)"
                    if self._identities else "No session available (pool empty)"
                )

            # Prefer the best track record, then the one idle longest
            identity = min(
                idle,
                key=lambda i: (-(i.success_rate if i.success_rate is not None else 1.0),
                               i.last_used_at or datetime.min),
            )
            identity.in_use = True
            identity.last_used_at = now

            lease = SessionLease(lease_id=uuid.uuid4().hex, identity=identity, acquired_at=now)
            self._leases[lease.lease_id] = lease
            return lease

    async def release(self, lease: SessionLease, success: Optional[bool]):
        """
        Return a lease and record how the attempt went for its identity.

        The identity is evicted when its rolling success rate falls below
        proxy.minSuccessRate, retired when past its rotation interval, and
        otherwise made available again. success=None (attempt cancelled
        before it finished) records no outcome.
        """
        async with self._lock:
            if lease.released or lease.lease_id not in self._leases:
                raise ValueError(f"Lease {lease.lease_id} was already released")
            lease.released = True
            del self._leases[lease.lease_id]

            identity = lease.identity
            identity.in_use = False
            if success is not None:
                identity.record(success)
            now = self.clock.now()

            if identity.id not in self._identities:
                return

            rate = identity.success_rate
            if (
                success is not None
                and len(identity.outcomes) >= self.proxy_config.min_samples
                and rate is not None
                and rate < self.proxy_config.min_success_rate
            ):
                self._evict(identity, rate, now)
            elif identity.is_expired(now, self.rotation_interval):
                self._retire(identity)

            self._top_up(now)

    def stats(self) -> dict:
        """Snapshot of pool health for status endpoints and logs."""
        return {
            "identities": len(self._identities),
            "in_use": sum(1 for i in self._identities.values() if i.in_use),
            "candidates": len(self._candidates),
            "banned": sum(1 for until in self._banned.values() if until > self.clock.now()),
            "evictions": self.evictions,
            "rotations": self.rotations,
            "refreshed_at": self.refreshed_at.isoformat() if self.refreshed_at else None,
            "details": [
                {
                    "id": identity.id,
                    "provider": identity.endpoint.provider,
                    "residential": identity.endpoint.residential,
                    "in_use": identity.in_use,
                    "success_rate": identity.success_rate,
                    "successes": identity.successes,
                    "failures": identity.failures,
                    "created_at": identity.created_at.isoformat(),
                }
                for identity in self._identities.values()
            ],
        }

    def identity_ids(self) -> List[str]:
        return list(self._identities)

    # ============================================
    # INTERNAL (called with the lock held)
    # ============================================

    def _capacity(self) -> int:
        if self.max_identities is not None:
            return self.max_identities
        return len(self._identities) + len(self._candidates)

    def _top_up(self, now: datetime):
        while self._candidates and len(self._identities) < self._capacity():
            endpoint = self._candidates.popleft()
            if self._is_banned(endpoint.key, now):
                continue
            identity = ProxyIdentity(
                id=f"{endpoint.provider}-{next(self._counter)}",
                endpoint=endpoint,
                stealth=build_stealth_profile(self.stealth_config),
                created_at=now,
                window=self.proxy_config.success_window,
            )
            self._identities[identity.id] = identity
            logger.debug(f"Proxy pool: identity {identity.id} joined")

    def _rotate_idle(self, now: datetime):
        for identity in list(self._identities.values()):
            if not identity.in_use and identity.is_expired(now, self.rotation_interval):
                self._retire(identity)

    def _retire(self, identity: ProxyIdentity):
        """Rotation: drop the identity, its endpoint comes back with a fresh fingerprint."""
        del self._identities[identity.id]
        self._candidates.append(identity.endpoint)
        self.rotations += 1
        logger.info(f"Proxy pool: rotated identity {identity.id} after {self.proxy_config.rotation_interval_minutes} min")

    def _is_banned(self, key: str, now: datetime) -> bool:
        until = self._banned.get(key)
        if until is None:
            return False
        if now >= until:
            del self._banned[key]
            logger.info(f"Proxy pool: ban on endpoint {key} lifted")
            return False
        return True

    def _evict(self, identity: ProxyIdentity, rate: float, now: datetime):
        del self._identities[identity.id]
        if identity.endpoint.server is None:
            # Direct connection: the IP cannot be swapped, only the fingerprint
            self._candidates.append(identity.endpoint)
        else:
            self._banned[identity.endpoint.key] = now + timedelta(minutes=self.proxy_config.ban_cooldown_minutes)
        self.evictions += 1
        logger.warning(
            f"Proxy pool: evicted identity {identity.id} "
            f"(success rate {rate:.2f} < {self.proxy_config.min_success_rate:.2f})"
        )
