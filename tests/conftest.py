"""Pytest fixtures for testing"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from autopay_engine.api.main import create_app
from autopay_engine.config import Settings
from autopay_engine.domain.models import Subscription
from autopay_engine.domain.tokens import token_address
from autopay_engine.infrastructure.clients.simulated_chain import SimulatedChainAdapter
from autopay_engine.infrastructure.database.models import Base
from autopay_engine.infrastructure.database.repositories import SubscriptionRepository
from autopay_engine.infrastructure.database.session import get_db
from autopay_engine.services.engine import Engine, build_engine


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
test_engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

OWNER = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"
RECEIVER = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"


class FakeClock:
    """Settable clock shared by every engine component"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=test_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def session_factory() -> sessionmaker:
    return TestingSessionLocal


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def chain() -> SimulatedChainAdapter:
    """Five demo chains with well-known tokens and venue routers"""
    return SimulatedChainAdapter.demo()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        auto_create_tables=False,
        scheduler_enabled=False,
        chain_call_timeout_seconds=2.0,
        max_execution_attempts=3,
        retry_backoff_base_seconds=30.0,
        consecutive_failure_limit=3,
        risk_blocklist=[],
        risk_watchlist=[],
    )


@pytest.fixture
def autopay(db: Session, test_settings: Settings, chain: SimulatedChainAdapter, clock: FakeClock) -> Engine:
    """Engine wired to the test database, the demo chain, and the fake clock"""
    return build_engine(test_settings, TestingSessionLocal, chain=chain, clock=clock)


@pytest.fixture
def make_subscription(db: Session) -> Callable[..., Subscription]:
    """Persist a subscription that is due one minute before NOW unless overridden"""
    repository = SubscriptionRepository(db)
    counter = {"n": 0}

    def make(**overrides) -> Subscription:
        counter["n"] += 1
        fields = dict(
            id=f"sub-{counter['n']}",
            name=f"Payment {counter['n']}",
            owner=OWNER,
            token_symbol="USDC",
            token_address=token_address("ethereum", "USDC"),
            amount=Decimal("100"),
            receiver=RECEIVER,
            from_chain="ethereum",
            to_chain="polygon",
            cadence="daily",
            next_run_date=NOW - timedelta(minutes=1),
            created_at=NOW - timedelta(days=1),
        )
        fields.update(overrides)
        subscription = repository.create(Subscription(**fields))
        db.commit()
        return subscription

    return make


@pytest.fixture
def client(db: Session, autopay: Engine, test_settings: Settings) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app(engine=autopay, config=test_settings, bind=test_engine)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)
