"""
Scheduled calendar sync job

Every scheduler.intervalMinutes (default 15) one scheduling pass runs:
due properties are synced with bounded concurrency through the shared
proxy pool. A daily cleanup closes sync logs left open by a crashed
process.

The engine (config, store, pool, browser, orchestrator) is built once at
application startup and passed to the jobs; nothing here is a module-level
singleton.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from database import SyncSessionLocal
from services.clock import Clock, SYSTEM_CLOCK
from services.proxy_pool import ProxyPool
from services.proxy_providers import ProxyProvider, build_proxy_provider
from services.scraper_backends import BrowserManager, build_adapters
from services.sync_config import SyncConfig, load_sync_config
from services.sync_orchestrator import SyncOrchestrator
from services.sync_store import SyncStore

logger = logging.getLogger(__name__)

# Logs open longer than this cannot belong to a live job
STALE_LOG_MINUTES = 120


@dataclass
class CalendarSyncEngine:
    config: SyncConfig
    store: SyncStore
    pool: ProxyPool
    browser: BrowserManager
    orchestrator: SyncOrchestrator
    clock: Clock = SYSTEM_CLOCK

    async def close(self, timeout: float = 30.0):
        """Drain running jobs, then stop the browser."""
        cancelled = await self.orchestrator.shutdown(timeout=timeout)
        await self.browser.close()
        # Anything still open was interrupted before it could record an outcome
        self.store.cancel_dangling_sync_logs(self.clock.now())
        return cancelled


def build_calendar_sync_engine(
    session_factory=SyncSessionLocal,
    provider: Optional[ProxyProvider] = None,
    browser: Optional[BrowserManager] = None,
    clock: Clock = SYSTEM_CLOCK,
) -> CalendarSyncEngine:
    """
    Wire up the sync engine from env + system_config settings.

    Args:
        session_factory: Session factory for the store and config lookup
        provider: Proxy provider (PROXY_LIST / PROXY_API_URL when None)
        browser: Browser manager (headless Chromium when None)
        clock: Time source
    """
    db = session_factory()
    try:
        config = load_sync_config(db)
    finally:
        db.close()

    store = SyncStore(session_factory)
    provider = provider or build_proxy_provider(slots=config.scraping.max_concurrency)
    pool = ProxyPool(provider, config.proxy, config.stealth, clock=clock)
    browser = browser or BrowserManager(headless=True)
    adapters = build_adapters(browser, config.scraping, clock)
    orchestrator = SyncOrchestrator(store, pool, adapters, config, clock=clock)

    logger.info(
        f"Calendar sync engine ready: platforms={sorted(adapters)}, "
        f"concurrency={config.scraping.max_concurrency}, stealth={config.stealth.enabled}, "
        f"rotation={config.proxy.rotation_interval_minutes}min, "
        f"min_success_rate={config.proxy.min_success_rate}"
    )
    return CalendarSyncEngine(
        config=config,
        store=store,
        pool=pool,
        browser=browser,
        orchestrator=orchestrator,
        clock=clock,
    )


async def run_scheduled_calendar_sync(engine: CalendarSyncEngine) -> Optional[dict]:
    """
    Main scheduled job: one scheduling pass over the due properties.
    """
    if not engine.config.enabled:
        logger.debug("Scheduled calendar sync skipped (disabled)")
        return None

    try:
        summary = await engine.orchestrator.run_pass()
        if summary["admitted"]:
            logger.info(
                f"Scheduled calendar sync completed: {summary['admitted']} properties, "
                f"statuses={summary['statuses']}"
            )
        else:
            logger.debug("Scheduled calendar sync: nothing due")
        return summary
    except Exception as e:
        logger.error(f"Scheduled calendar sync error: {e}", exc_info=True)
        return None


def run_stale_sync_log_cleanup(engine: CalendarSyncEngine) -> int:
    """Cancel PENDING/STARTED logs that have been open far longer than any job runs."""
    try:
        return engine.store.cancel_dangling_sync_logs(engine.clock.now(), max_age_minutes=STALE_LOG_MINUTES)
    except Exception as e:
        logger.error(f"Stale sync log cleanup error: {e}", exc_info=True)
        return 0
