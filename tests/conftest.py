"""Shared test fixtures."""
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
# Import all models so Base.metadata knows about them
from models import Availability, Property, PropertySyncFlag, SyncLog, SystemConfig  # noqa: F401
from services.sync_store import SyncStore

from fakes import FakeClock


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture(name="store")
def store_fixture(session_factory) -> SyncStore:
    return SyncStore(session_factory)


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="add_property")
def add_property_fixture(session_factory):
    """Insert a property; returns its id."""

    def _add(
        platform: str = "airbnb",
        public_url: str = "https://www.airbnb.com/rooms/1234",
        active: bool = True,
        last_synced: datetime = None,
        sync_frequency: int = 30,
        name: str = "Seaside Cottage",
    ) -> int:
        with session_factory() as db:
            prop = Property(
                site_id="site-1",
                name=name,
                platform=platform,
                public_url=public_url,
                active=active,
                last_synced=last_synced,
                sync_frequency=sync_frequency,
            )
            db.add(prop)
            db.commit()
            return prop.id

    return _add
