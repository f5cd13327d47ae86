# backend/tests/conftest.py
"""
Pytest configuration for the lessonbook engine.

Every test gets its own file-backed SQLite database so that tests which
exercise concurrent writers can open one session per thread.
"""

import os

# Set test configuration BEFORE any lessonbook imports
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["CHECKOUT_FAKE"] = "true"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["SCHOOL_TIMEZONE"] = "Europe/Stockholm"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("NOTIFICATION_PROVIDER_RAISE_ON", None)

from datetime import date, time, timedelta
from typing import Iterator

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from lessonbook import models  # noqa: F401  registers mappers
from lessonbook.api.dependencies.database import get_db
from lessonbook.api.dependencies.services import get_checkout_gateway_singleton
from lessonbook.core.timezone_utils import get_school_today
from lessonbook.database import Base, enable_sqlite_foreign_keys
from lessonbook.integrations import FakeCheckoutGateway
from lessonbook.models.invoice import StoredCredit
from lessonbook.repositories.event_outbox_repository import EventOutboxRepository
from lessonbook.services.availability_service import AvailabilityService
from lessonbook.services.invoice_service import InvoiceService
from lessonbook.services.payment_hold_service import PaymentHoldService
from lessonbook.services.reservation_service import ReservationService
from lessonbook.services.schedule_service import ScheduleService
from tests.factories.reservation_builders import single_lesson, student

# ============================================================================
# Database fixtures
# ============================================================================


@pytest.fixture
def sqlite_engine(tmp_path) -> Iterator[Engine]:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'lessonbook_test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    event.listen(engine, "connect", enable_sqlite_foreign_keys)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False, autoflush=False, bind=sqlite_engine, expire_on_commit=False
    )


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Service fixtures
# ============================================================================


@pytest.fixture
def checkout_gateway() -> FakeCheckoutGateway:
    return FakeCheckoutGateway()


@pytest.fixture
def schedule_service(db: Session) -> ScheduleService:
    return ScheduleService(db)


@pytest.fixture
def availability_service(db: Session) -> AvailabilityService:
    return AvailabilityService(db)


@pytest.fixture
def reservation_service(db: Session, availability_service: AvailabilityService) -> ReservationService:
    return ReservationService(db, availability_service=availability_service)


@pytest.fixture
def payment_hold_service(db: Session, reservation_service: ReservationService) -> PaymentHoldService:
    return PaymentHoldService(
        db,
        reservation_service=reservation_service,
        event_publisher=reservation_service.event_publisher,
    )


@pytest.fixture
def invoice_service(
    db: Session,
    reservation_service: ReservationService,
    payment_hold_service: PaymentHoldService,
    checkout_gateway: FakeCheckoutGateway,
) -> InvoiceService:
    return InvoiceService(
        db,
        reservation_service=reservation_service,
        payment_hold_service=payment_hold_service,
        checkout_gateway=checkout_gateway,
        event_publisher=reservation_service.event_publisher,
    )


@pytest.fixture
def outbox(db: Session) -> EventOutboxRepository:
    return EventOutboxRepository(db)


# ============================================================================
# Schedule data
# ============================================================================


@pytest.fixture
def lesson_date() -> date:
    """A Tuesday at least a week ahead of the school's today."""
    candidate = get_school_today() + timedelta(days=7)
    while candidate.weekday() != 1:
        candidate += timedelta(days=1)
    return candidate


@pytest.fixture
def weekday_templates(schedule_service: ScheduleService) -> list:
    """Monday-Friday 09:00-17:00, no buffer."""
    return [
        schedule_service.create_template(day, time(9, 0), time(17, 0))
        for day in range(0, 5)
    ]


@pytest.fixture
def held_reservation(reservation_service: ReservationService, weekday_templates, lesson_date: date):
    """A HELD single lesson on ``lesson_date`` 10:00-11:00."""
    return reservation_service.create_reservation(
        single_lesson(),
        lesson_date,
        time(10, 0),
        60,
        [student(identity_id="cust-1")],
        identity="cust-1",
    )


@pytest.fixture
def stored_credit(db: Session) -> StoredCredit:
    credit = StoredCredit(
        identity_id="cust-1",
        lesson_type="manual",
        credits_remaining=1,
        credits_total=5,
    )
    db.add(credit)
    db.commit()
    return credit


# ============================================================================
# API client
# ============================================================================


@pytest.fixture
def client(session_factory: sessionmaker, checkout_gateway: FakeCheckoutGateway) -> Iterator[TestClient]:
    """Create test client with the test database and the fake checkout gateway."""
    from lessonbook.main import app

    def override_get_db() -> Iterator[Session]:
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
    app.dependency_overrides[get_checkout_gateway_singleton] = lambda: checkout_gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
