"""
Shared test configuration and fixtures
"""
import pytest
import os
import time
import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

TEST_PRIVY_KEY = "test-privy-verification-key-for-testing-only"
TEST_PRIVY_APP_ID = "test-app-id"
TEST_WALLET = "0x1111111111111111111111111111111111111111"

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SKIP_SCHEDULER"] = "true"  # Skip scheduler during tests
os.environ["PRIVY_VERIFICATION_KEY"] = TEST_PRIVY_KEY
os.environ["PRIVY_JWT_ALGORITHM"] = "HS256"
os.environ["PRIVY_APP_ID"] = TEST_PRIVY_APP_ID
os.environ.pop("DEPLOYER_PRIVATE_KEY", None)

from main import app
from db.base import Base

# Import all models to register them with Base
from db.models import User, Project, Subscription, Job, Settings  # noqa: F401

# One shared connection so every session sees the same in-memory database
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    """Override database dependency for tests"""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def test_db():
    """Create a fresh database for each test"""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db_session(test_db):
    session = TestSessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(test_db):
    """Create a test client with overridden database; jobs run inline against the test database"""
    from api.dependencies import get_db, build_job_service
    from api.services.job_service import JobRunner

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        app.state.job_runner = JobRunner(TestSessionLocal, build_job_service)
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_token():
    """Build a Privy-style token signed with the test verification key"""

    def _make(sub="did:privy:test-user", wallet=TEST_WALLET, expires_in=3600, **claims):
        now = int(time.time())
        payload = {
            "sub": sub,
            "iss": "privy.io",
            "aud": TEST_PRIVY_APP_ID,
            "iat": now,
            "exp": now + expires_in,
        }
        if wallet:
            payload["wallet"] = {"address": wallet}
        payload.update(claims)
        return jwt.encode(payload, TEST_PRIVY_KEY, algorithm="HS256")

    return _make


@pytest.fixture
def auth_headers(make_token):
    return {"Authorization": f"Bearer {make_token()}"}
