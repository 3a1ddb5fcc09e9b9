# backend/tests/conftest.py
"""
Pytest configuration for the booking engine.

Every test gets a fresh in-memory SQLite database and a frozen clock.
Outbound email is patched globally so no test can reach Resend.
"""

import os

# Set testing mode BEFORE any lessonbook imports
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("EMAIL_ENABLED", "false")

import unittest.mock

global_resend_mock = unittest.mock.patch("resend.Emails.send")
mocked_send = global_resend_mock.start()
mocked_send.return_value = {"id": "test-email-id"}

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lessonbook.core.clock import SystemClock
from lessonbook.database import Base
from lessonbook.models import Instructor, Package, PaymentMode, Student, TimeSlot
from lessonbook.services.booking_state_service import BookingStateService
from lessonbook.services.email import EmailService
from lessonbook.services.order_service import FinalizedOrder, OrderService, PackageSnapshot
from lessonbook.services.slot_service import SlotService
from lessonbook.services.stripe_service import ProcessorResult, StripeService

# Sunday 1 June 2025, 10:00 in London
FROZEN_NOW = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


class FrozenClock(SystemClock):
    """School clock pinned to a fixed instant."""

    def __init__(self, now: datetime = FROZEN_NOW):
        super().__init__("Europe/London")
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def instructor(db) -> Instructor:
    instructor = Instructor(
        name="Sarah Collins",
        email="sarah@example.com",
        stripe_account_id="acct_test_123",
        onboarding_complete=True,
        charges_enabled=True,
        payouts_enabled=True,
    )
    db.add(instructor)
    db.commit()
    return instructor


@pytest.fixture
def other_instructor(db) -> Instructor:
    instructor = Instructor(name="Tom Baker", email="tom@example.com")
    db.add(instructor)
    db.commit()
    return instructor


@pytest.fixture
def student(db) -> Student:
    student = Student(first_name="Jamie", surname="Reid", email="jamie@example.com")
    db.add(student)
    db.commit()
    return student


@pytest.fixture
def package(db, instructor) -> Package:
    package = Package(
        instructor_id=instructor.id,
        name="Five lesson starter",
        total_price_pence=20000,
        lessons_count=5,
    )
    db.add(package)
    db.commit()
    return package


@pytest.fixture
def slot_service(db, clock) -> SlotService:
    return SlotService(db, clock)


@pytest.fixture
def booking_service(db, clock, slot_service) -> BookingStateService:
    return BookingStateService(db, clock, slot_service=slot_service)


@pytest.fixture
def payment_processor() -> MagicMock:
    processor = MagicMock(spec=StripeService)
    processor.create_transfer.return_value = ProcessorResult.ok("tr_test_1")
    processor.create_customer.return_value = ProcessorResult.ok("cus_test_1")
    processor.create_price.return_value = ProcessorResult.ok("price_test_1", product_id="prod_test_1")
    processor.create_checkout_session.return_value = ProcessorResult.ok(
        "cs_test_1", url="https://checkout.stripe.test/cs_test_1"
    )
    processor.create_invoice.return_value = ProcessorResult.ok("in_test_1")
    return processor


@pytest.fixture
def email_service() -> MagicMock:
    return MagicMock(spec=EmailService)


@pytest.fixture
def order_service(db, clock, booking_service, payment_processor, email_service) -> OrderService:
    return OrderService(
        db,
        clock,
        booking_service=booking_service,
        payment_processor=payment_processor,
        email_service=email_service,
    )


@pytest.fixture
def make_slot(slot_service, instructor) -> Callable[..., TimeSlot]:
    def _make(
        day: date,
        start: time = time(9, 0),
        end: time = time(10, 0),
        instructor_id: Optional[str] = None,
    ) -> TimeSlot:
        return slot_service.create_slot(instructor_id or instructor.id, day, start, end)

    return _make


@pytest.fixture
def make_order(
    make_slot, booking_service, order_service, instructor, student
) -> Callable[..., FinalizedOrder]:
    """Publish a slot, hold a series from it and finalize the order."""

    def _make(
        payment_mode: PaymentMode = PaymentMode.UPFRONT,
        lessons_count: int = 1,
        total_price_pence: int = 4000,
        anchor: date = date(2025, 6, 10),
    ) -> FinalizedOrder:
        slot = make_slot(anchor)
        series = booking_service.reserve_series(slot.id, lessons_count)
        snapshot = PackageSnapshot(
            name=f"{lessons_count} lesson package",
            total_price_pence=total_price_pence,
            lessons_count=lessons_count,
        )
        return order_service.finalize_order(student.id, instructor.id, snapshot, payment_mode, series)

    return _make
