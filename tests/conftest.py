# tests/conftest.py

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fannu.api.routes.routes import get_db
from fannu.application.booking_service import BookingService
from fannu.domain.clock import utc_now
from fannu.domain.creators import CreatorStatus
from fannu.domain.state_machine import BookingType
from fannu.infrastructure.db.models import Creator
from fannu.infrastructure.db.session import Base
from fannu.main import app

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    monkeypatch.setenv("ADMIN_API_TOKEN", ADMIN_TOKEN)
    monkeypatch.setenv("PAYMENT_SIMULATED_OUTCOME", "success")
    monkeypatch.delenv("PAYMENT_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("BOOKING_AUTO_CONFIRM", raising=False)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN, "X-Admin-Id": "admin-1"}


@pytest.fixture
def creator(db):
    creator = Creator(
        slug="teddy-afro",
        display_name="Teddy Afro",
        phone="+251911000001",
        status=CreatorStatus.ACTIVE,
        booking_enabled=True,
        booking_approved=True,
        default_deposit_percent=30,
        default_deposit_refundable=True,
    )
    db.add(creator)
    db.commit()
    return creator


def _booking_fields(creator_slug: str, **overrides) -> dict:
    start = utc_now() + timedelta(days=14)
    fields = {
        "creator_slug": creator_slug,
        "booker_name": "Selam Tesfaye",
        "booker_phone": "+251922334455",
        "type": BookingType.LIVE_PERFORMANCE,
        "start_at": start,
        "end_at": start + timedelta(hours=3),
        "location_city": "Addis Ababa",
        "budget_min": 15000,
        "budget_max": 50000,
        "notes": "Wedding reception performance for about 300 guests.",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def make_booking(db, creator):

    def _make(**overrides):
        booking = BookingService(db).create_booking(
            **_booking_fields(overrides.pop("creator_slug", creator.slug), **overrides)
        )
        db.commit()
        return booking

    return _make


@pytest.fixture
def booking_payload(creator):
    """JSON body for POST /bookings."""

    def _payload(**overrides):
        fields = _booking_fields(overrides.pop("creator_slug", creator.slug), **overrides)
        for key in ("start_at", "end_at"):
            if hasattr(fields[key], "isoformat"):
                fields[key] = fields[key].isoformat()
        fields["type"] = getattr(fields["type"], "value", fields["type"])
        return fields

    return _payload
