from typing import Optional
from app.core.redis_cache import RedisCache


# Global cache instance
_cache_instance: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """Get global Redis cache instance"""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = RedisCache()
    return _cache_instance


def set_cache(cache: Optional[RedisCache]):
    """Replace the global cache instance (for testing)"""
    global _cache_instance
    _cache_instance = cache
