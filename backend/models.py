"""
Tables used by the calendar sync engine.

`properties` belongs to the host-management side and is only read here
(plus the last_synced stamp). Everything else is owned by the sync engine.
"""
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from database import Base


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True)
    site_id = Column(String(64), nullable=False)
    name = Column(String(255))
    platform = Column(String(32), nullable=False)
    public_url = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=False)
    last_synced = Column(DateTime)
    sync_frequency = Column(Integer)  # minutes


class Availability(Base):
    __tablename__ = "availability"
    __table_args__ = (
        UniqueConstraint("property_id", "date", name="uq_availability_property_date"),
    )

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    is_available = Column(Boolean, nullable=False)
    source = Column(String(32), nullable=False)
    price = Column(Numeric(10, 2))
    currency = Column(String(3))
    minimum_stay = Column(Integer)
    last_updated = Column(DateTime, nullable=False)


class SyncLog(Base):
    """One row per sync attempt."""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    platform = Column(String(32), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    message = Column(Text)
    availabilities_updated = Column(Integer, nullable=False, default=0)
    captcha_encountered = Column(Boolean, nullable=False, default=False)
    execution_time_ms = Column(Integer)
    triggered_by = Column(String(20), nullable=False, default="scheduler")
    created_at = Column(DateTime, nullable=False)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)


class PropertySyncFlag(Base):
    """Presence of a row keeps the property out of automatic scheduling."""

    __tablename__ = "property_sync_flags"

    property_id = Column(Integer, ForeignKey("properties.id"), primary_key=True)
    reason = Column(Text)
    sync_log_id = Column(Integer)
    flagged_at = Column(DateTime, nullable=False)


class SystemConfig(Base):
    __tablename__ = "system_config"

    config_key = Column(String(100), primary_key=True)
    config_value = Column(Text)
    description = Column(Text)
