"""
Tests for Firebase identity verification and request identity resolution
"""

import pytest
from unittest.mock import MagicMock, patch
from datetime import datetime, timedelta
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from app.core.firebase import (
    FirebaseService,
    get_firebase_service,
    init_firebase,
    set_firebase_service,
    verify_firebase_token
)
from app.core.middleware import (
    LOOPBACK_IP,
    Principal,
    get_client_ip,
    get_current_user,
    get_optional_user
)


@pytest.fixture
def mock_auth_provider():
    """Mock Firebase auth provider"""
    provider = MagicMock()
    provider.verify_id_token.return_value = {
        "uid": "test_user_123",
        "email": "test@example.com",
        "exp": int((datetime.utcnow() + timedelta(hours=1)).timestamp())
    }
    return provider


@pytest.fixture(autouse=True)
def reset_firebase_service():
    yield
    set_firebase_service(None)


class TestFirebaseServiceDependencyInjection:
    """Test Firebase service with dependency injection"""

    def test_firebase_service_with_mock_provider(self, mock_auth_provider):
        service = FirebaseService(auth_provider=mock_auth_provider)

        result = service.verify_token("mock_token_123")

        assert result["uid"] == "test_user_123"
        assert result["email"] == "test@example.com"
        mock_auth_provider.verify_id_token.assert_called_once_with("mock_token_123")

    @pytest.mark.parametrize("message", ["Token expired", "Invalid token format", "Project ID mismatch"])
    def test_firebase_service_raises_on_invalid_token(self, mock_auth_provider, message):
        mock_auth_provider.verify_id_token.side_effect = Exception(message)
        service = FirebaseService(auth_provider=mock_auth_provider)

        with pytest.raises(Exception) as exc_info:
            service.verify_token("bad_token")

        assert message in str(exc_info.value)

    def test_verify_token_logs_failure(self, mock_auth_provider, caplog):
        mock_auth_provider.verify_id_token.side_effect = Exception("Invalid token")
        service = FirebaseService(auth_provider=mock_auth_provider)

        with pytest.raises(Exception):
            service.verify_token("bad_token")

        assert "verify_token: Failure" in caplog.text


class TestFirebaseServiceSingleton:
    """Test Firebase service singleton pattern"""

    def test_get_firebase_service_returns_same_instance(self):
        assert get_firebase_service() is get_firebase_service()

    def test_set_firebase_service_replaces_instance(self, mock_auth_provider):
        mock_service = FirebaseService(auth_provider=mock_auth_provider)

        set_firebase_service(mock_service)

        assert get_firebase_service() is mock_service
        assert verify_firebase_token("test_token")["uid"] == "test_user_123"


class TestInitFirebase:
    def test_initializes_once(self):
        with patch("app.core.firebase.firebase_admin") as mock_admin, \
             patch("app.core.firebase.credentials") as mock_credentials:
            mock_admin._apps = {}

            init_firebase()

            mock_credentials.Certificate.assert_called_once()
            mock_admin.initialize_app.assert_called_once()
            assert mock_admin.initialize_app.call_args[0][1] == {"projectId": "test-project"}

    def test_skips_when_already_initialized(self):
        with patch("app.core.firebase.firebase_admin") as mock_admin:
            mock_admin._apps = {"[DEFAULT]": MagicMock()}

            init_firebase()

            mock_admin.initialize_app.assert_not_called()


@pytest.fixture
def identity_app(firebase_service):
    app = FastAPI()

    @app.get("/required")
    async def required(principal: Principal = Depends(get_current_user)):
        return {"uid": principal.uid, "email": principal.email}

    @app.get("/optional")
    async def optional(request: Request, principal=Depends(get_optional_user)):
        return {"uid": principal.uid if principal else None, "ip": get_client_ip(request)}

    return TestClient(app)


class TestIdentityDependencies:
    def test_required_without_token(self, identity_app):
        response = identity_app.get("/required")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_required_with_valid_token(self, identity_app):
        response = identity_app.get("/required", headers={"Authorization": "Bearer alice-token"})

        assert response.json() == {"uid": "alice_uid", "email": "alice@example.com"}

    def test_optional_without_token_is_anonymous(self, identity_app):
        assert identity_app.get("/optional").json()["uid"] is None

    def test_optional_with_invalid_token_is_rejected(self, identity_app):
        response = identity_app.get("/optional", headers={"Authorization": "Bearer forged"})

        assert response.status_code == 401


def request_with_headers(headers):
    scope = {
        "type": "http",
        "headers": [(name.lower().encode(), value.encode()) for name, value in headers.items()],
    }
    return Request(scope)


class TestClientIp:
    def test_forwarded_for_first_hop(self):
        assert get_client_ip(request_with_headers({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})) == "203.0.113.7"

    def test_forwarded_for_wins_over_real_ip(self):
        request = request_with_headers({"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.1"})

        assert get_client_ip(request) == "203.0.113.7"

    def test_real_ip(self):
        assert get_client_ip(request_with_headers({"X-Real-IP": " 198.51.100.1 "})) == "198.51.100.1"

    def test_client_ip_header(self):
        assert get_client_ip(request_with_headers({"X-Client-IP": "192.0.2.4"})) == "192.0.2.4"

    def test_empty_forwarded_for_falls_through(self):
        request = request_with_headers({"X-Forwarded-For": " , 10.0.0.1", "X-Real-IP": "198.51.100.1"})

        assert get_client_ip(request) == "198.51.100.1"

    def test_loopback_fallback(self):
        assert get_client_ip(request_with_headers({})) == LOOPBACK_IP == "127.0.0.1"
