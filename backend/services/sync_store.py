"""
Storage boundary for the calendar sync engine.

Plain create/read/update calls over properties, availability, sync_logs and
property_sync_flags. Each call runs in its own short session so concurrent
sync jobs never share one.
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from models import Availability, Property, PropertySyncFlag, SyncLog
from .sync_state import InvalidTransition, TERMINAL_STATUSES, SyncStatus

logger = logging.getLogger(__name__)

TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]
OPEN_VALUES = [SyncStatus.PENDING.value, SyncStatus.STARTED.value]


def _dialect_insert(session: Session):
    """INSERT construct supporting ON CONFLICT for the bound database."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Availability upsert not supported on {dialect}")
    return insert


def is_due(prop: Property, now: datetime, default_frequency_minutes: int) -> bool:
    """A property is due when it never synced or its frequency has elapsed."""
    if prop.last_synced is None:
        return True
    frequency = prop.sync_frequency if prop.sync_frequency is not None else default_frequency_minutes
    return now - prop.last_synced >= timedelta(minutes=frequency)


class SyncStore:
    """
    Args:
        session_factory: sessionmaker (or any zero-arg callable) producing Sessions
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ============================================
    # PROPERTIES
    # ============================================

    def list_syncable_properties(self, now: datetime, default_frequency_minutes: int = 360) -> List[Property]:
        """Active, unflagged properties whose sync frequency has elapsed."""
        with self._session() as db:
            rows = db.execute(
                select(Property)
                .outerjoin(PropertySyncFlag, PropertySyncFlag.property_id == Property.id)
                .where(Property.active.is_(True))
                .where(PropertySyncFlag.property_id.is_(None))
                .order_by(Property.last_synced.asc().nullsfirst(), Property.id)
            ).scalars().all()
            return [prop for prop in rows if is_due(prop, now, default_frequency_minutes)]

    def list_active_properties(self, include_flagged: bool = False) -> List[Property]:
        """Active properties regardless of when they last synced (bulk manual runs)."""
        query = select(Property).where(Property.active.is_(True))
        if not include_flagged:
            query = (
                query.outerjoin(PropertySyncFlag, PropertySyncFlag.property_id == Property.id)
                .where(PropertySyncFlag.property_id.is_(None))
            )
        with self._session() as db:
            return db.execute(query.order_by(Property.id)).scalars().all()

    def get_property(self, property_id: int) -> Optional[Property]:
        with self._session() as db:
            return db.get(Property, property_id)

    def mark_property_synced(self, property_id: int, synced_at: datetime):
        with self._session() as db:
            db.execute(
                update(Property).where(Property.id == property_id).values(last_synced=synced_at)
            )

    def flag_property(self, property_id: int, reason: str, sync_log_id: Optional[int], flagged_at: datetime):
        """Keep a property out of automatic scheduling until an operator clears it."""
        with self._session() as db:
            flag = db.get(PropertySyncFlag, property_id)
            if flag is None:
                flag = PropertySyncFlag(property_id=property_id)
                db.add(flag)
            flag.reason = reason
            flag.sync_log_id = sync_log_id
            flag.flagged_at = flagged_at
        logger.warning(f"Property {property_id} flagged, automatic sync suspended: {reason}")

    def clear_property_flag(self, property_id: int) -> bool:
        with self._session() as db:
            flag = db.get(PropertySyncFlag, property_id)
            if flag is None:
                return False
            db.delete(flag)
        logger.info(f"Property {property_id} flag cleared, automatic sync resumed")
        return True

    def get_property_flag(self, property_id: int) -> Optional[PropertySyncFlag]:
        with self._session() as db:
            return db.get(PropertySyncFlag, property_id)

    def list_flagged_properties(self) -> List[PropertySyncFlag]:
        with self._session() as db:
            return db.execute(
                select(PropertySyncFlag).order_by(PropertySyncFlag.flagged_at.desc())
            ).scalars().all()

    # ============================================
    # SYNC LOGS
    # ============================================

    def create_sync_log(
        self,
        property_id: int,
        platform: str,
        created_at: datetime,
        status: str = SyncStatus.PENDING.value,
        message: Optional[str] = None,
        triggered_by: str = "scheduler",
    ) -> int:
        with self._session() as db:
            log = SyncLog(
                property_id=property_id,
                platform=platform,
                status=status,
                message=message,
                triggered_by=triggered_by,
                availabilities_updated=0,
                captcha_encountered=False,
                created_at=created_at,
            )
            db.add(log)
            db.flush()
            return log.id

    def update_sync_log(self, log_id: int, expected_status: Optional[str] = None, **values):
        """
        Move a sync log forward.

        The update only applies while the row is still non-terminal (and, when
        given, still in expected_status).

        Raises:
            InvalidTransition: the row is missing, terminal or changed underneath
        """
        stmt = update(SyncLog).where(SyncLog.id == log_id).where(SyncLog.status.notin_(TERMINAL_VALUES))
        if expected_status is not None:
            stmt = stmt.where(SyncLog.status == expected_status)

        with self._session() as db:
            result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
            if result.rowcount != 1:
                raise InvalidTransition(
                    f"Sync log {log_id} is not in an updatable state (expected {expected_status or 'non-terminal'})"
                )

    def get_sync_log(self, log_id: int) -> Optional[SyncLog]:
        with self._session() as db:
            return db.get(SyncLog, log_id)

    def list_sync_logs(
        self,
        property_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[SyncLog]:
        query = select(SyncLog)
        if property_id is not None:
            query = query.where(SyncLog.property_id == property_id)
        if status is not None:
            query = query.where(SyncLog.status == status)
        query = query.order_by(SyncLog.created_at.desc(), SyncLog.id.desc()).limit(limit)

        with self._session() as db:
            return db.execute(query).scalars().all()

    def cancel_dangling_sync_logs(
        self,
        now: datetime,
        max_age_minutes: Optional[int] = None,
        message: str = "Interrupted (process restart or shutdown)",
    ) -> int:
        """
        Close PENDING/STARTED logs left behind by a crashed or killed process.

        Args:
            now: Completion timestamp to record
            max_age_minutes: Only touch logs created longer ago than this (None = all)

        Returns:
            Number of logs moved to CANCELLED
        """
        query = select(SyncLog).where(SyncLog.status.in_(OPEN_VALUES))
        if max_age_minutes is not None:
            query = query.where(SyncLog.created_at < now - timedelta(minutes=max_age_minutes))

        with self._session() as db:
            logs = db.execute(query).scalars().all()
            for log in logs:
                reference = log.started_at or log.created_at
                log.status = SyncStatus.CANCELLED.value
                log.message = message
                log.completed_at = now
                log.execution_time_ms = max(0, int((now - reference).total_seconds() * 1000))
            cleaned = len(logs)

        if cleaned:
            logger.info(f"Cancelled {cleaned} dangling sync log(s)")
        return cleaned

    # ============================================
    # AVAILABILITY
    # ============================================

    def latest_availability_update(self, property_id: int) -> Optional[datetime]:
        with self._session() as db:
            return db.execute(
                select(func.max(Availability.last_updated)).where(Availability.property_id == property_id)
            ).scalar()

    def upsert_availability(self, property_id: int, source: str, rows: Iterable, last_updated: datetime) -> int:
        """
        Insert or update one availability row per (property_id, date).

        Rows not passed in are left as they are.

        Returns:
            Number of rows written
        """
        values = [
            {
                "property_id": property_id,
                "date": row.date,
                "is_available": row.is_available,
                "source": source,
                "price": row.price,
                "currency": row.currency,
                "minimum_stay": row.minimum_stay,
                "last_updated": last_updated,
            }
            for row in rows
        ]
        if not values:
            return 0

        with self._session() as db:
            insert = _dialect_insert(db)
            stmt = insert(Availability).values(values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Availability.property_id, Availability.date],
                set_={
                    "is_available": stmt.excluded.is_available,
                    "source": stmt.excluded.source,
                    "price": stmt.excluded.price,
                    "currency": stmt.excluded.currency,
                    "minimum_stay": stmt.excluded.minimum_stay,
                    "last_updated": stmt.excluded.last_updated,
                },
            )
            db.execute(stmt)
        return len(values)

    def get_availability(
        self,
        property_id: int,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> List[Availability]:
        query = select(Availability).where(Availability.property_id == property_id)
        if from_date is not None:
            query = query.where(Availability.date >= from_date)
        if to_date is not None:
            query = query.where(Availability.date <= to_date)

        with self._session() as db:
            return db.execute(query.order_by(Availability.date)).scalars().all()
