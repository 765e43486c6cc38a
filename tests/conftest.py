"""Pytest fixtures for testing"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import uuid
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from microfin_metrics.api.dependencies import get_event_bus
from microfin_metrics.api.main import create_app
from microfin_metrics.domain.models import CollectionEntry, LoanFacts
from microfin_metrics.infrastructure.database.models import Base, BranchData
from microfin_metrics.infrastructure.database.session import get_db
from microfin_metrics.infrastructure.notifications.bus import MetricsEventBus


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Noon UTC keeps local-midnight day buckets on the same calendar day in any test timezone
NOON_TODAY = datetime.now(timezone.utc).replace(hour=12, minute=0, second=0, microsecond=0)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def bus() -> MetricsEventBus:
    """Isolated metrics-changed bus that records what was published"""
    event_bus = MetricsEventBus()
    event_bus.published = []
    event_bus.subscribe(event_bus.published.append)
    return event_bus


@pytest.fixture
def client(db: Session, bus: MetricsEventBus) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_bus] = lambda: bus
    return TestClient(app)


@pytest.fixture
def now() -> datetime:
    return NOON_TODAY


@pytest.fixture
def sample_loan() -> LoanFacts:
    """10,000 LRD over 10 weeks at 20%: weekly installment 1,200"""
    return LoanFacts(
        id=uuid.uuid4(),
        branch_name="Paynesville",
        branch_code="PV01",
        currency="LRD",
        loan_amount=Decimal("10000"),
        interest_rate=Decimal("20"),
        loan_duration_number=10,
        loan_duration_unit="weeks",
        disbursement_date=NOON_TODAY - timedelta(days=14),
        ending_date=NOON_TODAY + timedelta(weeks=8),
        status="active",
        loan_officer_name="Musu Kamara",
        group_id=uuid.uuid4(),
    )


@pytest.fixture
def make_collection():
    """Factory for collection entries dated today at noon by default"""

    def _make(field_collection, principal=None, interest=None, fees=None, weekly=None, when=None, advance=None):
        return CollectionEntry(
            collection_date=when or NOON_TODAY,
            weekly_amount=Decimal(str(weekly)) if weekly is not None else None,
            field_collection=Decimal(str(field_collection)),
            advance_payment=Decimal(str(advance)) if advance is not None else None,
            principal_portion=Decimal(str(principal)) if principal is not None else None,
            interest_portion=Decimal(str(interest)) if interest is not None else None,
            fees_portion=Decimal(str(fees)) if fees is not None else None,
        )

    return _make


@pytest.fixture
def branch_data(db: Session) -> BranchData:
    """Approved-never branch-data record with manual shortages"""
    record = BranchData(
        branch_name="Paynesville",
        branch_code="PV01",
        currency="LRD",
        data_date=NOON_TODAY,
        loan_officer_shortage=Decimal("150"),
        branch_shortage=Decimal("0"),
        entity_shortage=Decimal("75"),
        bad_debt=Decimal("400"),
    )
    db.add(record)
    db.commit()
    return record
