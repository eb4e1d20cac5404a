"""
Pytest configuration for testing
"""

import json
import os
from unittest.mock import MagicMock

import pytest

# Create mock Firebase credentials before any imports
credentials_path = "/tmp/pixcart-test-creds.json"
if not os.path.exists(credentials_path):
    os.makedirs(os.path.dirname(credentials_path), exist_ok=True)
    with open(credentials_path, "w") as f:
        json.dump({
            "type": "service_account",
            "project_id": "test-project",
            "private_key_id": "test-key-id",
            "client_email": "test@test-project.iam.gserviceaccount.com",
            "client_id": "123456789",
            "token_uri": "https://oauth2.googleapis.com/token",
        }, f)

# Set up environment variables for testing before any imports
os.environ["DATABASE_URL"] = "sqlite:////tmp/pixcart-test.db"
os.environ["FIREBASE_PROJECT_ID"] = "test-project"
os.environ["FIREBASE_CREDENTIALS_PATH"] = credentials_path
os.environ["BOOTSTRAP_ADMIN_EMAILS"] = "owner@pixcart.test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["REDIS_PASSWORD"] = ""
os.environ["GEMINI_API_KEY"] = "test-gemini-key"

ADMIN_EMAIL = "owner@pixcart.test"

# Token -> decoded claims understood by the fake Firebase auth provider
TEST_TOKENS = {
    "admin-token": {"uid": "admin_uid", "email": ADMIN_EMAIL},
    "alice-token": {"uid": "alice_uid", "email": "alice@example.com"},
    "bob-token": {"uid": "bob_uid", "email": "bob@example.com"},
    "no-email-token": {"uid": "phone_uid"},
}


# Mock Firebase Admin before it's imported
@pytest.fixture(autouse=True)
def mock_firebase_admin(monkeypatch):
    """Mock Firebase Admin SDK to avoid initialization issues in tests"""
    mock_credentials = MagicMock()
    monkeypatch.setattr("firebase_admin.credentials.Certificate", mock_credentials.Certificate)

    mock_init = MagicMock()
    monkeypatch.setattr("firebase_admin.initialize_app", mock_init)

    mock_auth = MagicMock()
    monkeypatch.setattr("firebase_admin.auth", mock_auth)

    yield mock_auth


@pytest.fixture
def auth_provider():
    """Fake auth provider that accepts only TEST_TOKENS"""
    provider = MagicMock()

    def verify_id_token(token):
        if token not in TEST_TOKENS:
            raise ValueError("Invalid ID token")
        return dict(TEST_TOKENS[token])

    provider.verify_id_token.side_effect = verify_id_token
    return provider


@pytest.fixture
def firebase_service(auth_provider):
    """Install a FirebaseService backed by the fake auth provider"""
    from app.core.firebase import FirebaseService, set_firebase_service

    service = FirebaseService(auth_provider=auth_provider)
    set_firebase_service(service)
    yield service
    set_firebase_service(None)


@pytest.fixture
def db_engine():
    """File-backed SQLite engine with a fresh schema for every test"""
    # Import after env vars are set
    from app.core.database import Base, engine
    import app.models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_engine):
    from app.core.database import SessionLocal
    return SessionLocal


@pytest.fixture
def db_session(session_factory):
    """Create a new database session for a test"""
    session = session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def make_user(db_session):
    """Insert an account directly"""
    from app.models.user import AccessStatus, User

    def _make_user(user_id, email, status=AccessStatus.WAITLISTED, daily_limit=10):
        user = User(
            id=user_id,
            email=email,
            access_status=status,
            daily_generation_limit=daily_limit,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user
