"""
Pytest configuration and shared fixtures for the anemia screening backend.

This module provides:
- Test database setup (SQLite in-memory)
- FastAPI TestClient configuration
- Fake identity verifier, inference gateway and Gemini service
- Sample users, scans and images
"""

import pytest
import os
import sys
import tempfile
from datetime import datetime, date
from typing import Generator

# =============================================================================
# TEST ENVIRONMENT BEFORE ANY IMPORTS
# =============================================================================
# config.py reads these at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["IMAGES_DIR"] = tempfile.mkdtemp(prefix="anevia-test-images-")
os.environ["GEMINI_API_KEY"] = ""

# Add backend directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Tests directory, for the shared fakes in fixtures/
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

import shared
from auth import IdentityClaims
from chat_handle_cache import ChatHandleCache
from database import Base, User, Scan
from fixtures.fakes import (
    FakeIdentityVerifier,
    FakeInferenceGateway,
    FakeGeminiService,
    anemic_result,
)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_db(test_engine) -> Generator[Session, None, None]:
    """Create a test database session with automatic rollback."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def override_get_db(test_db):
    """Override the get_db dependency to use test database."""
    def _override_get_db():
        try:
            yield test_db
        finally:
            pass
    return _override_get_db


@pytest.fixture(autouse=True)
def images_dir(tmp_path, monkeypatch):
    """Point file storage at a per-test directory."""
    monkeypatch.setattr(shared, "IMAGES_DIR", tmp_path)
    return tmp_path


# =============================================================================
# FAKE SERVICE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def identity_verifier():
    return FakeIdentityVerifier()


@pytest.fixture(scope="function")
def inference_gateway():
    return FakeInferenceGateway(classification=anemic_result())


@pytest.fixture(scope="function")
def gemini_service():
    return FakeGeminiService()


@pytest.fixture(scope="function")
def handle_cache():
    return ChatHandleCache()


# =============================================================================
# APPLICATION FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def app_instance():
    """Create a FastAPI app instance ONCE per test session."""
    from main import app as fastapi_app
    return fastapi_app


@pytest.fixture(scope="function")
def app(app_instance, override_get_db, identity_verifier, inference_gateway, gemini_service, handle_cache):
    """Configure the app with the test database and fake services for each test."""
    from database import get_db
    from auth import get_identity_verifier
    from inference_gateway import get_inference_gateway
    from gemini_service import get_gemini_service
    from chat_handle_cache import get_chat_handle_cache

    app_instance.dependency_overrides[get_db] = override_get_db
    app_instance.dependency_overrides[get_identity_verifier] = lambda: identity_verifier
    app_instance.dependency_overrides[get_inference_gateway] = lambda: inference_gateway
    app_instance.dependency_overrides[get_gemini_service] = lambda: gemini_service
    app_instance.dependency_overrides[get_chat_handle_cache] = lambda: handle_cache
    yield app_instance
    app_instance.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client(app) -> Generator[TestClient, None, None]:
    """Create a TestClient for making requests to the app."""
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


# =============================================================================
# IDENTITY FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def alice_claims():
    return IdentityClaims(
        uid="uid-alice",
        email="alice@example.com",
        name="alice",
        picture=None,
        email_verified=True,
    )


@pytest.fixture(scope="function")
def bob_claims():
    return IdentityClaims(uid="uid-bob", email="bob@example.com", name="bob", email_verified=True)


@pytest.fixture(scope="function")
def auth_headers(identity_verifier, alice_claims) -> dict:
    """Authorization headers for alice."""
    identity_verifier.register("token-alice", alice_claims)
    return {"Authorization": "Bearer token-alice"}


@pytest.fixture(scope="function")
def other_auth_headers(identity_verifier, bob_claims) -> dict:
    """Authorization headers for bob."""
    identity_verifier.register("token-bob", bob_claims)
    return {"Authorization": "Bearer token-bob"}


# =============================================================================
# DATA FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def test_user(test_db, alice_claims) -> User:
    """Local profile row for alice."""
    user = User(
        uid=alice_claims.uid,
        username="alice",
        email=alice_claims.email,
        birthdate=date(2000, 6, 15),
        created_at=datetime.utcnow(),
    )
    test_db.add(user)
    test_db.commit()
    test_db.refresh(user)
    return user


@pytest.fixture(scope="function")
def sample_scan(test_db) -> Scan:
    scan = Scan(
        scan_id="a1b2c3d4",
        photo_url="/scans/scan-a1b2c3d4.jpg",
        scan_result=True,
        confidence=0.82,
        result_source="model",
        scan_date=datetime(2024, 6, 1, 9, 30),
    )
    test_db.add(scan)
    test_db.commit()
    test_db.refresh(scan)
    return scan


@pytest.fixture(scope="function")
def user_named_scan(test_db, alice_claims) -> Scan:
    """Scan whose photo name carries alice's uid, as the generic session flow expects."""
    scan = Scan(
        scan_id="e5f6a7b8",
        photo_url=f"/scans/scan-{alice_claims.uid}.jpg",
        scan_result=False,
        confidence=0.2,
        result_source="model",
        scan_date=datetime(2024, 6, 2, 10, 0),
    )
    test_db.add(scan)
    test_db.commit()
    test_db.refresh(scan)
    return scan


# =============================================================================
# IMAGE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def sample_image_bytes():
    """JPEG-framed bytes; nothing in the backend decodes image content."""
    return b"\xff\xd8\xff\xe0" + b"\x00\x10JFIF-test-payload" + b"\xff\xd9"
