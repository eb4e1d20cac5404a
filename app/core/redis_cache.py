import logging
from typing import Optional
import redis
from redis.exceptions import RedisError
from app.core.config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis-backed counters for burst rate limiting"""
    
    def __init__(self, client: Optional[redis.Redis] = None):
        """Initialize Redis cache (lazy connection unless a client is injected)"""
        self._client: Optional[redis.Redis] = client
        self._connected = client is not None
    
    def _connect(self):
        """Connect to Redis server"""
        try:
            client_kwargs = {
                'decode_responses': False,
                'socket_connect_timeout': 2,
                'socket_timeout': 2,
                'retry_on_timeout': False,
                # A database index in the URL path wins over this
                'db': settings.redis_db,
            }
            # settings.redis_password takes precedence over a password in the URL
            if settings.redis_password:
                client_kwargs['password'] = settings.redis_password
            
            self._client = redis.from_url(settings.redis_url, **client_kwargs)
            self._client.ping()
            self._connected = True
            logger.info("RedisCache: Connected to Redis")
        except (RedisError, ValueError) as e:
            error_msg = str(e)
            if 'auth' in error_msg.lower() or 'password' in error_msg.lower():
                logger.error(f"RedisCache: Authentication failed - {error_msg}. Ensure REDIS_PASSWORD env var is set correctly or password is included in REDIS_URL.")
            else:
                logger.warning(f"RedisCache: Connection failed - {error_msg}")
            self._connected = False
            self._client = None
    
    def _ensure_connected(self) -> Optional[redis.Redis]:
        """Return a live client, or None when Redis is unavailable"""
        if not self._connected or self._client is None:
            self._connect()
        return self._client
    
    def incr(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> Optional[int]:
        """
        Atomically increment a counter in Redis.
        
        Args:
            key: The key to increment
            amount: Amount to increment by (default 1)
            ttl_seconds: Expiry applied when the counter is first created
        
        Returns:
            The new value after increment, or None if Redis unavailable
        """
        client = self._ensure_connected()
        if client is None:
            logger.warning(f"RedisCache: Cannot increment key {key} - Redis not available")
            return None
        
        try:
            new_value = client.incrby(key, amount)
            if ttl_seconds and new_value == amount:
                client.expire(key, ttl_seconds)
            logger.debug(f"RedisCache: Incremented {key} by {amount} to {new_value}")
            return new_value
        except RedisError as e:
            logger.error(f"RedisCache: Error incrementing key {key}: {e}")
            self._connected = False
            return None
    
    def delete(self, key: str):
        """Delete cache entry"""
        client = self._ensure_connected()
        if client is None:
            logger.warning(f"RedisCache: Cannot delete key {key} - Redis not available")
            return
        
        try:
            client.delete(key)
        except RedisError as e:
            logger.error(f"RedisCache: Error deleting key {key}: {e}")
            self._connected = False
    
    def ping(self) -> bool:
        """Check if Redis connection is alive"""
        client = self._ensure_connected()
        if client is None:
            return False
        try:
            client.ping()
            return True
        except RedisError:
            self._connected = False
            return False
