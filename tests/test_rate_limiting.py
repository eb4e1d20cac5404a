"""
Tests for the per-minute burst rate limiter
"""

import pytest
from unittest.mock import MagicMock, patch
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.rate_limit_middleware import RateLimitMiddleware


@pytest.fixture
def mock_cache():
    """Mock cache for rate limiting"""
    cache = MagicMock()
    cache.incr.return_value = 1
    return cache


@pytest.fixture
def limited_app(mock_cache):
    """Minimal app behind the rate limit middleware"""
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, cache=mock_cache)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


@pytest.fixture
def enabled():
    with patch("app.core.rate_limit_middleware.settings") as mock_settings:
        mock_settings.rate_limit_enabled = True
        mock_settings.rate_limit_per_minute = 60
        mock_settings.anonymous_rate_limit_per_minute = 20
        yield mock_settings


class TestAnonymousRateLimit:
    """Requests without a bearer token are keyed by client IP"""

    def test_within_limit(self, limited_app, mock_cache, enabled):
        mock_cache.incr.return_value = 5

        response = TestClient(limited_app).get("/ping", headers={"X-Forwarded-For": "203.0.113.7"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "20"
        assert response.headers["X-RateLimit-Remaining"] == "15"
        key = mock_cache.incr.call_args[0][0]
        assert key.startswith("rate_limit:ip:203.0.113.7:minute:")
        assert mock_cache.incr.call_args[1] == {"ttl_seconds": 60}

    def test_over_limit(self, limited_app, mock_cache, enabled):
        mock_cache.incr.return_value = 21

        response = TestClient(limited_app).get("/ping")

        assert response.status_code == 429
        assert response.json()["detail"]["error"] == "rate_limited"
        assert response.headers["Retry-After"] == "60"


class TestAuthenticatedRateLimit:
    """Requests with a verified bearer token are keyed by user id"""

    def test_user_gets_higher_limit(self, limited_app, mock_cache, enabled, firebase_service):
        mock_cache.incr.return_value = 30

        response = TestClient(limited_app).get("/ping", headers={"Authorization": "Bearer alice-token"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "60"
        assert mock_cache.incr.call_args[0][0].startswith("rate_limit:user:alice_uid:minute:")

    def test_invalid_token_falls_back_to_ip(self, limited_app, mock_cache, enabled, firebase_service):
        TestClient(limited_app).get("/ping", headers={"Authorization": "Bearer forged", "X-Real-IP": "198.51.100.1"})

        assert mock_cache.incr.call_args[0][0].startswith("rate_limit:ip:198.51.100.1:minute:")


class TestRateLimitBypass:
    def test_redis_unavailable_fails_open(self, limited_app, mock_cache, enabled):
        mock_cache.incr.return_value = None

        response = TestClient(limited_app).get("/ping")

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers

    def test_exempt_paths(self, limited_app, mock_cache, enabled):
        response = TestClient(limited_app).get("/health")

        assert response.status_code == 200
        mock_cache.incr.assert_not_called()

    def test_disabled(self, limited_app, mock_cache):
        with patch("app.core.rate_limit_middleware.settings") as mock_settings:
            mock_settings.rate_limit_enabled = False
            response = TestClient(limited_app).get("/ping")

        assert response.status_code == 200
        mock_cache.incr.assert_not_called()


class TestRedisCache:
    """Counter primitives behind the limiter"""

    def test_incr_sets_ttl_on_first_increment(self):
        from app.core.redis_cache import RedisCache

        client = MagicMock()
        client.incrby.return_value = 1
        cache = RedisCache(client=client)

        assert cache.incr("k", ttl_seconds=60) == 1
        client.expire.assert_called_once_with("k", 60)

    def test_incr_keeps_ttl_afterwards(self):
        from app.core.redis_cache import RedisCache

        client = MagicMock()
        client.incrby.return_value = 2
        cache = RedisCache(client=client)

        assert cache.incr("k", ttl_seconds=60) == 2
        client.expire.assert_not_called()

    def test_incr_returns_none_on_redis_error(self):
        from redis.exceptions import ConnectionError
        from app.core.redis_cache import RedisCache

        client = MagicMock()
        client.incrby.side_effect = ConnectionError("down")
        cache = RedisCache(client=client)

        assert cache.incr("k") is None

    def test_connect_uses_configured_db(self):
        from app.core.redis_cache import RedisCache

        with patch("app.core.redis_cache.settings") as mock_settings, \
             patch("app.core.redis_cache.redis.from_url") as mock_from_url:
            mock_settings.redis_url = "redis://localhost:6379"
            mock_settings.redis_password = None
            mock_settings.redis_db = 5

            cache = RedisCache()
            cache._connect()

        assert mock_from_url.call_args[1]["db"] == 5
        assert "password" not in mock_from_url.call_args[1]
        assert cache.ping() is True


@pytest.mark.integration
class TestRedisIntegration:
    """Requires a running Redis server"""

    def test_incr_against_real_redis(self):
        import redis
        from app.core.redis_cache import RedisCache

        client = redis.from_url("redis://localhost:6379/1", socket_connect_timeout=2)
        try:
            client.ping()
        except redis.exceptions.RedisError:
            pytest.skip("Redis not available")

        cache = RedisCache(client=client)
        client.delete("pixcart:test:counter")
        assert cache.incr("pixcart:test:counter", ttl_seconds=10) == 1
        assert cache.incr("pixcart:test:counter", ttl_seconds=10) == 2
        assert 0 < client.ttl("pixcart:test:counter") <= 10
        client.delete("pixcart:test:counter")
