"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any app import so the
cached settings, the engine and the logging setup all pick them up.
"""

import os
from datetime import date, datetime
from zoneinfo import ZoneInfo

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_contractor_access.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("PROPERTY_NAME", "Sandpiper Run")
os.environ.setdefault("PROPERTY_TIMEZONE", "America/New_York")

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from app.config import get_settings
get_settings.cache_clear()

from app import models
from app.storage import SessionLocal, Base, engine


PROPERTY_TZ = ZoneInfo("America/New_York")

# 2026-10-20 is a Tuesday, 2026-10-24 a Saturday
TUESDAY_10AM = datetime(2026, 10, 20, 10, 0, tzinfo=PROPERTY_TZ)
TUESDAY_6PM = datetime(2026, 10, 20, 18, 0, tzinfo=PROPERTY_TZ)
SATURDAY_10AM = datetime(2026, 10, 24, 10, 0, tzinfo=PROPERTY_TZ)


class FixedClock:
    """Clock returning a settable moment."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def seed_directory(db) -> None:
    """
    Buildings A and B, valid units in buildings A, B and C (C has no
    building row), a live PIN for B and only an expired PIN for A.
    """
    db.add_all([
        models.Building(
            id="bldg-a",
            building_name="Building A",
            building_code="A",
            access_instructions="Lockbox by the north stairwell.",
            north_end_units=["A1A", "A1B"],
            south_end_units=["A2A"],
        ),
        models.Building(
            id="bldg-b",
            building_name="Building B",
            building_code="B",
            access_instructions="Lockbox by the south stairwell.",
            north_end_units=["B1A"],
            south_end_units=["B2G"],
        ),
    ])
    db.add_all([models.ValidUnit(unit_number=unit) for unit in ("A1A", "A1B", "A2A", "B1A", "B2G", "C1A")])
    db.add_all([
        models.ActivePin(
            building_id="bldg-b",
            pin_code="4821",
            valid_from=date(2026, 10, 1),
            valid_until=date(2026, 10, 31),
        ),
        models.ActivePin(
            building_id="bldg-b",
            pin_code="3307",
            valid_from=date(2026, 9, 1),
            valid_until=date(2026, 9, 30),
        ),
        models.ActivePin(
            building_id="bldg-a",
            pin_code="1111",
            valid_from=date(2025, 1, 1),
            valid_until=date(2025, 1, 31),
        ),
    ])
    db.commit()


@pytest.fixture(scope="function")
def db():
    """Session over a freshly created schema, dropped after the test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seeded_db(db):
    seed_directory(db)
    return db


@pytest.fixture
def clock():
    return FixedClock(TUESDAY_10AM)
