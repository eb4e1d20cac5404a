from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from app.core.config import settings
from app.core.firebase import verify_firebase_token
from app.core.middleware import get_client_ip
from app.core.cache import get_cache
from datetime import datetime
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# Paths that are never throttled
EXEMPT_PATHS = ['/health', '/docs', '/openapi.json', '/redoc']


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-minute burst throttle keyed by user id (verified bearer token) or
    client IP. Independent of the daily generation quota, which lives in
    the database. Fails open when Redis is unavailable.
    """
    
    def __init__(self, app: ASGIApp, cache=None):
        super().__init__(app)
        self.cache = cache or get_cache()
    
    async def dispatch(self, request: Request, call_next):
        if not settings.rate_limit_enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)
        
        user_id = self._get_user_id(request)
        if user_id:
            identity = f"user:{user_id}"
            limit = settings.rate_limit_per_minute
        else:
            identity = f"ip:{get_client_ip(request)}"
            limit = settings.anonymous_rate_limit_per_minute
        
        allowed, count = self._check_rate_limit(identity, limit)
        if not allowed:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": {
                        "error": "rate_limited",
                        "message": f"Too many requests. Limit is {limit} per minute. Please try again later.",
                        "retry_after": 60,
                    }
                },
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                }
            )
        
        response = await call_next(request)
        
        if count is not None:
            response.headers["X-RateLimit-Limit"] = str(limit)
            response.headers["X-RateLimit-Remaining"] = str(max(0, limit - count))
        
        return response
    
    def _get_user_id(self, request: Request) -> Optional[str]:
        """Extract user id from the bearer token if one verifies"""
        auth_header = request.headers.get('Authorization')
        if not auth_header or not auth_header.startswith('Bearer '):
            return None
        
        try:
            token = auth_header.split(' ', 1)[1]
            decoded_token = verify_firebase_token(token)
            return decoded_token.get('uid')
        except Exception as e:
            # The auth dependency reports invalid tokens; throttle by IP here
            logger.debug(f"Rate limit middleware: Could not verify token: {e}")
            return None
    
    def _check_rate_limit(self, identity: str, limit: int):
        """Count this request in the current minute window; returns (allowed, count)"""
        current_minute = datetime.utcnow().replace(second=0, microsecond=0)
        minute_key = f"rate_limit:{identity}:minute:{current_minute.isoformat()}"
        
        count = self.cache.incr(minute_key, ttl_seconds=60)
        if count is None:
            # Redis unavailable
            return True, None
        
        if count > limit:
            logger.warning(f"Rate limit exceeded (per minute) - {identity}")
            return False, count
        
        return True, count
