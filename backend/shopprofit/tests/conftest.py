"""Pytest configuration for shopprofit integration tests

WHAT: Provides shared fixtures for HTTP endpoint and database-backed service tests
WHY: Ensures consistent test setup, database isolation, and stored-credential helpers
REFERENCES:
    - shopprofit/main.py: FastAPI application
    - shopprofit/database.py: Database configuration
    - shopprofit/services/token_service.py: credential storage
"""

import os
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment
# Must be URL-safe base64-encoded 32-byte string (shopprofit.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.pop("SENTRY_DSN", None)

SHOP = "demo-store.myshopify.com"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine."""
    # StaticPool keeps one connection so the TestClient thread sees the same database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from shopprofit.models import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(test_db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    """Create test database session with rollback."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """Create FastAPI test application."""
    from shopprofit.database import get_db
    from shopprofit.main import create_app

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def shop() -> str:
    return SHOP


@pytest.fixture
def connect(test_db_session):
    """Store credentials for a platform: connect("google", access_token=..., ...)."""
    from shopprofit.services.credentials import parse_credentials
    from shopprofit.services.token_service import store_credentials

    def _connect(platform: str, shop: str = SHOP, **fields):
        fields.setdefault("access_token", f"{platform}-token")
        credentials = parse_credentials(platform, fields)
        return store_credentials(test_db_session, shop, platform, credentials)

    return _connect
