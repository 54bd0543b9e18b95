"""
Lifecycle of one sync attempt.

    PENDING -> STARTED -> SUCCESS | ERROR | CRITICAL_ERROR | CANCELLED
    PENDING -> CANCELLED

Terminal states are final. completed_at and execution_time_ms are only set
on the terminal transition. Every transition is persisted through the store
before the in-memory state changes.
"""
import logging
from enum import Enum
from typing import Optional

from .clock import Clock, SYSTEM_CLOCK

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    PENDING = 'PENDING'
    STARTED = 'STARTED'
    SUCCESS = 'SUCCESS'
    ERROR = 'ERROR'
    CRITICAL_ERROR = 'CRITICAL_ERROR'
    CANCELLED = 'CANCELLED'


TERMINAL_STATUSES = frozenset({
    SyncStatus.SUCCESS,
    SyncStatus.ERROR,
    SyncStatus.CRITICAL_ERROR,
    SyncStatus.CANCELLED,
})

ALLOWED_TRANSITIONS = {
    SyncStatus.PENDING: {SyncStatus.STARTED, SyncStatus.CANCELLED},
    SyncStatus.STARTED: set(TERMINAL_STATUSES),
}


class InvalidTransition(Exception):
    """Attempted a status change the state machine does not allow"""
    pass


def can_transition(current: SyncStatus, target: SyncStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class SyncAttempt:
    """
    State machine around one SyncLog row.

    Args:
        store: SyncStore used to persist the log
        property_id: Property being synced
        platform: Platform tag of the property
        triggered_by: 'scheduler' or 'manual'
        clock: Time source for timestamps and durations
    """

    def __init__(self, store, property_id: int, platform: str, triggered_by: str = 'scheduler',
                 clock: Clock = SYSTEM_CLOCK):
        self.store = store
        self.property_id = property_id
        self.platform = platform
        self.triggered_by = triggered_by
        self.clock = clock

        self.log_id: Optional[int] = None
        self.status: Optional[SyncStatus] = None
        self.created_at = None
        self.started_at = None
        self.completed_at = None
        self.message: Optional[str] = None
        self.availabilities_updated = 0
        self.captcha_encountered = False
        self.execution_time_ms: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def enqueue(self, message: Optional[str] = None) -> 'SyncAttempt':
        """Create the log row in PENDING."""
        if self.status is not None:
            raise InvalidTransition(f"Sync log {self.log_id} already created")
        self.created_at = self.clock.now()
        self.log_id = self.store.create_sync_log(
            property_id=self.property_id,
            platform=self.platform,
            status=SyncStatus.PENDING.value,
            message=message,
            triggered_by=self.triggered_by,
            created_at=self.created_at,
        )
        self.status = SyncStatus.PENDING
        self.message = message
        return self

    def start(self):
        now = self.clock.now()
        self._transition(SyncStatus.STARTED, started_at=now)
        self.started_at = now

    def succeed(self, availabilities_updated: int, message: Optional[str] = None):
        self._finish(
            SyncStatus.SUCCESS,
            message or f"Synced {availabilities_updated} day(s)",
            availabilities_updated=availabilities_updated,
        )

    def fail(self, message: str, captcha_encountered: bool = False):
        self._finish(SyncStatus.ERROR, message, captcha_encountered=captcha_encountered)

    def critical(self, message: str):
        self._finish(SyncStatus.CRITICAL_ERROR, message)

    def cancel(self, message: str):
        self._finish(SyncStatus.CANCELLED, message)

    def _finish(self, status: SyncStatus, message: str, availabilities_updated: int = 0,
                captcha_encountered: bool = False):
        now = self.clock.now()
        reference = self.started_at or self.created_at or now
        elapsed_ms = max(0, int((now - reference).total_seconds() * 1000))
        self._transition(
            status,
            message=message,
            availabilities_updated=availabilities_updated,
            captcha_encountered=captcha_encountered,
            execution_time_ms=elapsed_ms,
            completed_at=now,
        )
        self.message = message
        self.availabilities_updated = availabilities_updated
        self.captcha_encountered = captcha_encountered
        self.execution_time_ms = elapsed_ms
        self.completed_at = now

    def _transition(self, target: SyncStatus, **fields):
        if self.status is None:
            raise InvalidTransition("Sync log has not been created yet")
        if not can_transition(self.status, target):
            raise InvalidTransition(f"Sync log {self.log_id}: {self.status.value} -> {target.value} not allowed")

        self.store.update_sync_log(
            self.log_id,
            expected_status=self.status.value,
            status=target.value,
            **fields,
        )
        logger.debug(f"Sync log {self.log_id} (property {self.property_id}): {self.status.value} -> {target.value}")
        self.status = target
