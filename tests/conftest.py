"""Pytest fixtures for testing"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_emi.db")

import pytest
from datetime import date, datetime, timezone
from typing import Callable, Dict, Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from emi_engine.api.dependencies import get_clock, get_notification_client
from emi_engine.api.main import create_app
from emi_engine.domain.applications import activate_application, approve_application, create_application
from emi_engine.domain.exceptions import NotificationDeliveryError
from emi_engine.domain.models import DeliveryResult, EmiApplication, EmiPlan
from emi_engine.infrastructure.database.models import Base
from emi_engine.infrastructure.database.repositories import ApplicationRepository, PlanRepository
from emi_engine.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test_emi.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autoflush=False, bind=engine, expire_on_commit=False)


class FakeNotificationSink:
    """Records every send; fails for the listed template types or users"""

    def __init__(self, fail_types: tuple = (), fail_users: tuple = ()):
        self.fail_types = set(fail_types)
        self.fail_users = set(fail_users)
        self.sent: List[Dict] = []

    async def send(self, user_id: str, template_type: str, substitutions: Dict[str, str]) -> DeliveryResult:
        if template_type in self.fail_types or user_id in self.fail_users:
            raise NotificationDeliveryError(f"{template_type} to {user_id} failed")
        self.sent.append({"user_id": user_id, "template_type": template_type, "substitutions": substitutions})
        return DeliveryResult(delivered=True, reference=f"n-{len(self.sent)}")

    def types(self) -> List[str]:
        return [s["template_type"] for s in self.sent]


class MutableClock:
    """Synthetic "now" the tests can move forward"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set_date(self, day: date, hour: int = 9) -> datetime:
        self.now = datetime(day.year, day.month, day.day, hour, 0, tzinfo=timezone.utc)
        return self.now


def at(day: date, hour: int = 9) -> datetime:
    """A batch instant on a business date; 09:00 UTC is the same calendar day in IST"""
    return datetime(day.year, day.month, day.day, hour, 0, tzinfo=timezone.utc)


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
def sink() -> FakeNotificationSink:
    return FakeNotificationSink()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def client(db: Session, sink: FakeNotificationSink, clock: MutableClock) -> TestClient:
    """Create FastAPI test client with test database, fake sink and synthetic clock"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_client] = lambda: sink
    app.dependency_overrides[get_clock] = lambda: clock
    return TestClient(app)


@pytest.fixture
def no_cost_plan() -> EmiPlan:
    """3 month no-cost EMI"""
    return EmiPlan(name="3 Month No-Cost EMI", tenure_months=3, interest_rate=0, min_order_amount=1000)


@pytest.fixture
def interest_plan() -> EmiPlan:
    """6 months at 12% with a processing fee"""
    return EmiPlan(
        name="6 Month EMI",
        tenure_months=6,
        interest_rate=12,
        processing_fee=99,
        min_order_amount=1000,
        max_order_amount=200000,
    )


@pytest.fixture
def make_active_application(db: Session, no_cost_plan: EmiPlan) -> Callable[..., EmiApplication]:
    """Persist an approved, active 3 month application generated on the given day"""
    PlanRepository(db).add(no_cost_plan)
    db.commit()

    def _make(generated_on: date = date(2025, 1, 10), principal: int = 3000, user_id: str = "user_good") -> EmiApplication:
        now = at(generated_on)
        application = create_application(no_cost_plan, principal, user_id, f"order-{user_id}", now)
        approve_application(application, now)
        activate_application(application, now)
        ApplicationRepository(db).add(application)
        db.commit()
        return application

    return _make
