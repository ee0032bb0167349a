"""Pytest configuration and shared fixtures."""
import os

# Must be set before quoteledger.config is imported
os.environ["DATABASE_URL"] = "sqlite://"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from quoteledger.database import Base, get_db, make_engine
from quoteledger.main import app
from quoteledger.models.audit import AuditEvent  # noqa: F401
from quoteledger.models.domain import Agreement, MonthlyUsage, User  # noqa: F401
from quoteledger.models.enums import AgreementStatus, AuditActor, UserPlan
from quoteledger.services.agreement_service import AgreementService
from quoteledger.services.rate_limit import InMemoryCounterStore, RateLimiter
from quoteledger.services.state_machine import StateMachine

FORWARD_PATH = [
    AgreementStatus.SENT,
    AgreementStatus.ACCEPTED,
    AgreementStatus.DEPOSIT_SENT,
    AgreementStatus.DEPOSIT_RECEIVED,
    AgreementStatus.IN_PROGRESS,
    AgreementStatus.COMPLETED,
]


@pytest.fixture
def engine():
    """Fresh in-memory database for each test, shared by every session."""
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def contractor(db_session):
    """A contractor on the unlimited plan."""
    user = User(
        email="sam@joinery.example.com",
        business_name="Sam's Joinery",
        country="United Kingdom",
        plan=UserPlan.BUSINESS,
        default_currency="GBP",
        default_payment_instructions="Bank transfer to 12-34-56 / 12345678",
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def free_contractor(db_session):
    user = User(email="alex@decor.example.com", country="Ireland", plan=UserPlan.FREE)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def agreement_fields():
    return {
        "title": "Kitchen refit",
        "client_name": "Jordan Client",
        "client_email": "jordan@example.com",
        "work_included": "Remove old units, fit new units and worktops",
        "work_excluded": "Plumbing and electrics",
        "total_price": Decimal("1000.00"),
        "deposit_amount": Decimal("300.00"),
        "balance_due": Decimal("700.00"),
        "cancellation_terms": "Deposit is non-refundable within 7 days of start",
    }


@pytest.fixture
def draft_agreement(db_session, contractor, agreement_fields):
    """A DRAFT agreement created through the service (so it has a CREATED event)."""
    result = AgreementService(db_session).create_agreement(contractor.id, agreement_fields)
    assert result.success, result.error
    return result.data


@pytest.fixture
def advance_to(db_session):
    """Walk an agreement along the happy path from wherever it is until it reaches `target`."""
    def _advance(agreement_id, target):
        sm = StateMachine(db_session)
        current = db_session.query(Agreement.status).filter(Agreement.id == agreement_id).scalar()
        remaining = FORWARD_PATH[FORWARD_PATH.index(current) + 1:] if current in FORWARD_PATH else FORWARD_PATH
        if current == target:
            remaining = []
        for status in remaining:
            result = sm.transition(agreement_id, status, AuditActor.CONTRACTOR)
            assert result.success, result.error
            if status == target:
                break
        return db_session.query(Agreement).populate_existing().filter(Agreement.id == agreement_id).one()
    return _advance


@pytest.fixture
def client(engine):
    """API client bound to the test database, with a fresh rate limiter."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.rate_limiter = RateLimiter(InMemoryCounterStore(), max_requests=5, window_seconds=60)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
