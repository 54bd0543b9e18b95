"""
Calendar sync orchestrator.

Each scheduling pass selects the due properties (active, unflagged,
sync frequency elapsed) and runs them through a bounded worker pool:

    acquire session -> fetch calendar (with retry) -> write availability
    -> finalize sync log -> release session

Outcome mapping:
- rows returned          -> SUCCESS, last_synced advanced
- anti-bot challenge     -> ERROR with captcha flag, last_synced untouched
- transient, exhausted   -> ERROR, last_synced untouched
- structural / no adapter -> CRITICAL_ERROR, property flagged
- no session available   -> CANCELLED, property stays eligible

A property is never run twice at the same time. On shutdown, queued and
running jobs get a grace period and are then cancelled and logged CANCELLED.
"""
import asyncio
import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

from models import Property
from .availability_writer import AvailabilityWriter
from .clock import Clock, SYSTEM_CLOCK
from .proxy_pool import PoolExhausted, ProxyPool, SessionLease
from .retry import OperationTimeout, retry_with_backoff
from .scraper_backends.base import CalendarAdapter, FetchResult, StructuralParseError, UnsupportedPlatformError
from .scraper_backends.calendar import fetch_budget_ms
from .sync_config import SyncConfig
from .sync_state import SyncAttempt

logger = logging.getLogger(__name__)

NO_SESSION_MESSAGE = "no session available"
SHUTDOWN_MESSAGE = "Cancelled during shutdown"


class SyncRejected(Exception):
    """A manual sync request could not be admitted."""

    def __init__(self, property_id: int, reason: str, message: str):
        super().__init__(message)
        self.property_id = property_id
        self.reason = reason    # not_found | inactive | flagged | in_flight | shutting_down


class SyncOrchestrator:
    """
    Args:
        store: SyncStore
        pool: ProxyPool shared by every job
        adapters: Platform tag -> calendar adapter
        config: SyncConfig built at startup
        clock: Time source
        writer: AvailabilityWriter (built from the store when omitted)
    """

    def __init__(
        self,
        store,
        pool: ProxyPool,
        adapters: Dict[str, CalendarAdapter],
        config: SyncConfig,
        clock: Clock = SYSTEM_CLOCK,
        writer: Optional[AvailabilityWriter] = None,
    ):
        self.store = store
        self.pool = pool
        self.adapters = adapters
        self.config = config
        self.clock = clock
        self.writer = writer or AvailabilityWriter(store, clock)

        self._semaphore = asyncio.Semaphore(config.scraping.max_concurrency)
        self._attempts: Dict[int, SyncAttempt] = {}
        self._tasks: Dict[int, asyncio.Task] = {}
        self._accepting = True

    @property
    def accepting(self) -> bool:
        return self._accepting

    def in_flight_property_ids(self) -> List[int]:
        return sorted(self._tasks)

    def in_flight_attempts(self) -> List[dict]:
        return [
            {
                "property_id": attempt.property_id,
                "sync_log_id": attempt.log_id,
                "platform": attempt.platform,
                "status": attempt.status.value if attempt.status else None,
                "triggered_by": attempt.triggered_by,
            }
            for _, attempt in sorted(self._attempts.items())
        ]

    # ============================================
    # ENTRY POINTS
    # ============================================

    async def run_pass(self) -> dict:
        """
        Run one scheduling pass and wait for every job it admitted.

        Returns:
            Summary with counts of selected/admitted/skipped properties and
            terminal statuses
        """
        if not self._accepting:
            logger.info("Calendar sync pass skipped (shutting down)")
            return {"selected": 0, "admitted": 0, "skipped_in_flight": 0, "statuses": {}}

        await self._refresh_pool()

        now = self.clock.now()
        due = self.store.list_syncable_properties(now, self.config.scraping.default_sync_frequency_minutes)

        tasks = []
        skipped = 0
        for prop in due:
            if prop.id in self._tasks:
                skipped += 1
                continue
            _, task = self._admit(prop, triggered_by="scheduler")
            tasks.append(task)

        logger.info(
            f"Calendar sync pass: {len(due)} due, {len(tasks)} admitted, "
            f"{skipped} already in flight (concurrency {self.config.scraping.max_concurrency})"
        )

        attempts = await self._gather(tasks)
        statuses = Counter(attempt.status.value for attempt in attempts if attempt.status)
        summary = {
            "selected": len(due),
            "admitted": len(tasks),
            "skipped_in_flight": skipped,
            "statuses": dict(statuses),
        }
        logger.info(f"Calendar sync pass finished: {summary['statuses']}")
        return summary

    def start_sync(self, property_id: int, force: bool = False, triggered_by: str = "manual") -> SyncAttempt:
        """
        Admit one property right away, whether or not it is due.

        The job runs in the background; the returned attempt is already
        persisted in PENDING.

        Raises:
            SyncRejected: unknown, inactive, flagged (without force), already
                syncing, or the engine is shutting down
        """
        if not self._accepting:
            raise SyncRejected(property_id, "shutting_down", "Calendar sync is shutting down")

        prop = self.store.get_property(property_id)
        if prop is None:
            raise SyncRejected(property_id, "not_found", f"Property {property_id} not found")
        if not prop.active:
            raise SyncRejected(property_id, "inactive", f"Property {property_id} is not active")
        if property_id in self._tasks:
            raise SyncRejected(property_id, "in_flight", f"Property {property_id} is already syncing")
        if self.store.get_property_flag(property_id) is not None:
            if not force:
                raise SyncRejected(
                    property_id, "flagged",
                    f"Property {property_id} is flagged after a critical error (use force to override)"
                )
            logger.info(f"Property {property_id}: forced sync despite flag")

        attempt, _ = self._admit(prop, triggered_by=triggered_by)
        return attempt

    async def sync_now(self, property_id: int, force: bool = False) -> SyncAttempt:
        """Run one property immediately and wait for its outcome."""
        attempt = self.start_sync(property_id, force=force)
        task = self._tasks.get(property_id)
        if task is not None:
            await self._gather([task])
        return attempt

    def start_many(
        self,
        property_ids: Optional[Iterable[int]] = None,
        force: bool = False,
    ) -> Tuple[List[SyncAttempt], Dict[int, str]]:
        """
        Admit several properties (all active, unflagged ones when no ids are given).

        Returns:
            (admitted attempts, {property_id: rejection reason})
        """
        if property_ids is None:
            property_ids = [prop.id for prop in self.store.list_active_properties()]

        accepted = []
        rejected = {}
        for property_id in property_ids:
            try:
                accepted.append(self.start_sync(property_id, force=force))
            except SyncRejected as e:
                rejected[property_id] = e.reason
        return accepted, rejected

    async def sync_many(self, property_ids: Optional[Iterable[int]] = None, force: bool = False) -> dict:
        """Bulk variant of sync_now."""
        accepted, rejected = self.start_many(property_ids, force=force)
        tasks = [self._tasks[a.property_id] for a in accepted if a.property_id in self._tasks]
        await self._gather(tasks)
        return {
            "admitted": len(accepted),
            "rejected": rejected,
            "statuses": dict(Counter(a.status.value for a in accepted if a.status)),
            "sync_log_ids": [a.log_id for a in accepted],
        }

    async def shutdown(self, timeout: float = 30.0) -> int:
        """
        Stop admitting work and drain running jobs.

        Jobs still unfinished after `timeout` seconds are cancelled; each one
        records CANCELLED before it exits.

        Returns:
            Number of jobs that had to be cancelled
        """
        self._accepting = False
        tasks = list(self._tasks.values())
        if not tasks:
            return 0

        logger.info(f"Calendar sync shutdown: waiting up to {timeout}s for {len(tasks)} job(s)")
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Calendar sync shutdown: cancelled {len(pending)} unfinished job(s)")
        return len(pending)

    # ============================================
    # JOB PIPELINE
    # ============================================

    def _admit(self, prop: Property, triggered_by: str) -> Tuple[SyncAttempt, asyncio.Task]:
        attempt = SyncAttempt(self.store, prop.id, prop.platform, triggered_by=triggered_by, clock=self.clock)
        attempt.enqueue()

        task = asyncio.create_task(self._run(attempt, prop), name=f"calendar-sync-{prop.id}")
        self._attempts[prop.id] = attempt
        self._tasks[prop.id] = task
        task.add_done_callback(lambda done, property_id=prop.id: self._forget(property_id, done))
        return attempt, task

    def _forget(self, property_id: int, task: asyncio.Task):
        if self._tasks.get(property_id) is task:
            del self._tasks[property_id]
            self._attempts.pop(property_id, None)

    async def _gather(self, tasks: List[asyncio.Task]) -> List[SyncAttempt]:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        return [result for result in results if isinstance(result, SyncAttempt)]

    async def _run(self, attempt: SyncAttempt, prop: Property) -> SyncAttempt:
        try:
            async with self._semaphore:
                if not self._accepting:
                    attempt.cancel(SHUTDOWN_MESSAGE)
                    return attempt

                attempt.start()
                logger.info(f"Syncing property {prop.id} ({prop.platform}), log {attempt.log_id}")
                try:
                    await self._execute(attempt, prop)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Property {prop.id}: unexpected sync error: {e}", exc_info=True)
                    if not attempt.is_terminal:
                        attempt.fail(f"Unexpected error: {e}")
        except asyncio.CancelledError:
            if attempt.status is not None and not attempt.is_terminal:
                attempt.cancel(SHUTDOWN_MESSAGE)
                logger.warning(f"Property {prop.id}: sync log {attempt.log_id} cancelled")
            raise

        logger.info(
            f"Property {prop.id}: {attempt.status.value} in {attempt.execution_time_ms}ms "
            f"({attempt.availabilities_updated} day(s))"
        )
        return attempt

    async def _execute(self, attempt: SyncAttempt, prop: Property):
        try:
            adapter = self._adapter_for(prop)
        except UnsupportedPlatformError as e:
            self._critical(attempt, prop, str(e))
            return

        lease = await self._acquire_session(prop)
        if lease is None:
            attempt.cancel(NO_SESSION_MESSAGE)
            return

        # None: cancelled before the fetch settled
        identity_ok: Optional[bool] = None
        try:
            try:
                result = await self._fetch(adapter, lease, prop)
            except StructuralParseError as e:
                # The page changed, not the identity's fault
                identity_ok = True
                self._critical(attempt, prop, f"Structural failure: {e}")
                return
            except Exception as e:
                identity_ok = False
                attempt.fail(f"Fetch failed after {self.config.retry.max_retries} attempt(s): {e}")
                return

            if result.captcha_encountered:
                identity_ok = False
                reason = result.challenge_reason or "captcha"
                logger.warning(f"Property {prop.id}: anti-bot challenge on identity {lease.identity_id} ({reason})")
                attempt.fail(f"Anti-bot challenge encountered ({reason})", captcha_encountered=True)
                return

            identity_ok = True
            written = self.writer.write(prop.id, prop.platform, result.rows)
            attempt.succeed(written)
            self.store.mark_property_synced(prop.id, attempt.completed_at)
        finally:
            await self.pool.release(lease, identity_ok)

    def _adapter_for(self, prop: Property) -> CalendarAdapter:
        adapter = self.adapters.get(prop.platform)
        if adapter is None:
            raise UnsupportedPlatformError(f"No calendar adapter for platform '{prop.platform}'")
        return adapter

    async def _fetch(self, adapter: CalendarAdapter, lease: SessionLease, prop: Property) -> FetchResult:
        retry = self.config.retry
        # The paced month walk runs inside one attempt, so the attempt timeout
        # covers the whole walk rather than a single network step
        return await retry_with_backoff(
            lambda: adapter.fetch_availability(lease, prop.public_url),
            max_retries=retry.max_retries,
            timeout_ms=fetch_budget_ms(self.config.scraping, retry.timeout_ms),
            clock=self.clock,
            no_retry=(StructuralParseError,),
            label=f"property {prop.id} ({prop.platform}) fetch",
        )

    async def _acquire_session(self, prop: Property) -> Optional[SessionLease]:
        retry = self.config.retry
        if self.pool.refreshed_at is None:
            # Manual trigger before the first scheduled pass
            await self._refresh_pool()
        try:
            return await retry_with_backoff(
                self.pool.acquire,
                max_retries=retry.acquire_retries,
                timeout_ms=retry.timeout_ms,
                clock=self.clock,
                label=f"property {prop.id} session acquire",
            )
        except (PoolExhausted, OperationTimeout) as e:
            logger.warning(f"Property {prop.id}: {NO_SESSION_MESSAGE} ({e})")
            return None

    async def _refresh_pool(self):
        retry = self.config.retry
        try:
            await self.pool.refresh(max_retries=retry.max_retries, timeout_ms=retry.timeout_ms)
        except Exception as e:
            logger.error(f"Proxy pool refresh failed, continuing with current identities: {e}")

    def _critical(self, attempt: SyncAttempt, prop: Property, message: str):
        logger.error(f"Property {prop.id}: {message}")
        attempt.critical(message)
        self.store.flag_property(prop.id, message, attempt.log_id, self.clock.now())


