"""Pytest fixtures for testing"""

import pytest
from datetime import datetime
from typing import Generator
from zoneinfo import ZoneInfo
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from thandal_ledger.api.dependencies import get_clock, get_event_client
from thandal_ledger.api.main import create_app
from thandal_ledger.infrastructure.clients.events import EventClient
from thandal_ledger.infrastructure.database.models import Base, Borrower
from thandal_ledger.infrastructure.database.repositories import BorrowerRepository
from thandal_ledger.infrastructure.database.session import get_db
from thandal_ledger.utils.clock import FrozenClock


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

IST = ZoneInfo("Asia/Kolkata")
LENDER_ID = "lender_ravi"


def ist(year: int, month: int, day: int, hour: int = 10, minute: int = 0) -> datetime:
    """Timezone-aware timestamp in the business timezone"""
    return datetime(year, month, day, hour, minute, tzinfo=IST)


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
def clock() -> FrozenClock:
    """Monday 2024-06-03, 10:00 IST"""
    return FrozenClock(ist(2024, 6, 3))


@pytest.fixture
def lender_id() -> str:
    return LENDER_ID


@pytest.fixture
def borrower(db: Session) -> Borrower:
    borrower = BorrowerRepository(db).create_borrower("Murugan", "9840012345")
    db.commit()
    return borrower


@pytest.fixture
def second_borrower(db: Session) -> Borrower:
    borrower = BorrowerRepository(db).create_borrower("Lakshmi", "9840067890")
    db.commit()
    return borrower


@pytest.fixture
def client(db: Session, clock: FrozenClock) -> TestClient:
    """Create FastAPI test client with test database, frozen clock and no outbound events"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_event_client] = lambda: EventClient(enabled=False)
    return TestClient(app)
