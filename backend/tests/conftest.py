# backend/tests/conftest.py
"""
Pytest configuration.

Each test gets its own file-backed SQLite database (threads in the
concurrency tests share it through separate connections), a fixed clock,
and a minimal catalog.
"""

import os

# Set before any tutorcart import: the module-level engine must never point at
# a developer database during tests.
os.environ["TUTORCART_ENVIRONMENT"] = "test"
os.environ["TUTORCART_DATABASE_URL"] = "sqlite://"
os.environ.pop("TUTORCART_STRIPE_SECRET_KEY", None)
os.environ.pop("TUTORCART_CHECKOUT_PRICE_POLICY", None)

from datetime import datetime, timezone
from unittest.mock import Mock

from fastapi.testclient import TestClient
import pytest
from sqlalchemy.orm import Session, sessionmaker

from tutorcart.api.dependencies import get_clock, get_db, get_payment_processor
from tutorcart.core.clock import FixedClock
from tutorcart.core.identity import Owner
from tutorcart.database import Base
from tutorcart.database.engines import build_engine
from tutorcart.main import app
from tutorcart.models import Course, Tutor
from tutorcart.services.cart_service import CartService
from tutorcart.services.payment_processor import PaymentIntentResult, PaymentProcessor
from tutorcart.services.slot_hold_manager import SlotHoldManager

from .factories import create_course, create_tutor

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'tutorcart_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(
        bind=test_engine, autocommit=False, autoflush=False, expire_on_commit=False
    )


@pytest.fixture
def db(session_factory):
    """Create a new database session for each test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def course(db: Session) -> Course:
    return create_course(db)


@pytest.fixture
def tutor(db: Session) -> Tutor:
    return create_tutor(db)


@pytest.fixture
def tutor_2(db: Session) -> Tutor:
    return create_tutor(db, name="Grace Hopper", rate="55.00")


@pytest.fixture
def user() -> Owner:
    return Owner.user("user-42")


@pytest.fixture
def guest() -> Owner:
    return Owner.session("sess-guest-1")


@pytest.fixture
def stranger() -> Owner:
    return Owner.session("sess-stranger-9")


@pytest.fixture
def hold_manager(db: Session, clock: FixedClock) -> SlotHoldManager:
    return SlotHoldManager(db, clock)


@pytest.fixture
def cart_service(db: Session, clock: FixedClock) -> CartService:
    return CartService(db, clock)


@pytest.fixture
def payment_processor() -> Mock:
    processor = Mock(spec=PaymentProcessor)
    processor.create_payment_intent.return_value = PaymentIntentResult(
        reference="pi_test_123",
        client_secret="pi_test_123_secret_abc",
        status="requires_payment_method",
    )
    return processor


@pytest.fixture
def client(db: Session, clock: FixedClock, payment_processor: Mock):
    """Create a test client bound to the test database and clock."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_payment_processor] = lambda: payment_processor

    # Don't use context manager - the lifespan would touch the module engine
    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()
    test_client.close()
