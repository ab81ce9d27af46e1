"""
Pytest configuration and shared fixtures for admissions-service tests
"""

import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

# Configure the environment before the application modules are imported
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///./admissions_test.db"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["JWT_REFRESH_SECRET_KEY"] = "test-jwt-refresh-secret"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_secret"
os.environ.pop("PAYSTACK_WEBHOOK_SECRET", None)
os.environ.pop("BREVO_API_KEY", None)

# Add project root to path so the seed scripts can be imported
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from admissions.core.database import Base, get_db
from admissions.models import PaymentPlan, User, UserStatus
from admissions.repositories import UserRepository
from admissions.services.auth_service import AuthService
from admissions.services.paystack_client import PaystackClient
from admissions.services.subscription_service import SubscriptionService
from admissions.services.application_fee_service import ApplicationFeeService
from seed_plans import seed_plans

TEST_PAYSTACK_SECRET = "sk_test_secret"
TEST_PASSWORD = "Password123!"


def gateway_success(reference: str, amount_naira, channel: str = "card") -> dict:
    """Paystack verify payload for a successful charge"""
    return {
        "status": "success",
        "reference": reference,
        "amount": int(Decimal(str(amount_naira)) * 100),
        "paid_at": "2026-01-15T10:30:00.000Z",
        "channel": channel,
        "gateway_response": "Successful",
        "customer": {"email": "ada@example.com"},
    }


def gateway_failure(reference: str, gateway_response: str = "Declined") -> dict:
    return {
        "status": "failed",
        "reference": reference,
        "amount": 0,
        "paid_at": None,
        "channel": "card",
        "gateway_response": gateway_response,
    }


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so separate sessions see each other's commits"""
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'admissions.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def plans(db):
    """The three standard plans keyed by type value"""
    seed_plans(db)
    return {plan.type.value: plan for plan in db.query(PaymentPlan).all()}


def make_user(db: Session, email: str = "ada@example.com", **overrides) -> User:
    fields = {
        "first_name": "Ada",
        "last_name": "Obi",
        "email": email,
        "hashed_password": AuthService.get_password_hash(TEST_PASSWORD),
        "status": UserStatus.ACTIVE,
    }
    fields.update(overrides)
    user = UserRepository(db).create(**fields)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db) -> User:
    return make_user(db)


@pytest.fixture
def other_user(db) -> User:
    return make_user(db, email="chidi@example.com", first_name="Chidi")


@pytest.fixture
def paystack_client():
    """Real client for references and signatures; network calls are mocked"""
    client = PaystackClient(secret_key=TEST_PAYSTACK_SECRET, callback_url="http://testserver/payment/callback")
    client.initialize_transaction = AsyncMock(side_effect=lambda **kwargs: {
        "authorization_url": f"https://checkout.paystack.com/{kwargs['reference']}",
        "access_code": "ac_test",
        "reference": kwargs["reference"],
    })
    client.verify_transaction = AsyncMock()
    return client


@pytest.fixture
def email_service():
    service = MagicMock()
    service.send_email.return_value = True
    return service


@pytest.fixture
def subscription_service(db, paystack_client, email_service) -> SubscriptionService:
    return SubscriptionService(db, paystack_client, email_service)


@pytest.fixture
def application_fee_service(db, paystack_client, email_service) -> ApplicationFeeService:
    return ApplicationFeeService(db, paystack_client, email_service)


@pytest.fixture
def app():
    from admissions.main import app as fastapi_app
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app, session_factory, paystack_client, email_service) -> TestClient:
    """FastAPI test client bound to the test database and mocked outbound clients"""
    from admissions.services.dependencies import get_paystack_client, get_email_service

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_paystack_client] = lambda: paystack_client
    app.dependency_overrides[get_email_service] = lambda: email_service
    return TestClient(app)


def auth_headers(user: User) -> dict:
    token = AuthService.create_access_token(user.id, "user", user.token_version)
    return {"Authorization": f"Bearer {token}"}
