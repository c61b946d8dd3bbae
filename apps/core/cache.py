"""
Caching utilities for access rule snapshots.

Provides centralized cache management with consistent key naming, TTLs
and invalidation. Every rule write invalidates its scope synchronously.
"""
import logging
from typing import Any, Callable
from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    # Rule snapshot segments (TTL: RBAC_SNAPSHOT_CACHE_TTL)
    PLATFORM_RULES = "rbac:platform:{role}"
    ROLE_RULES = "rbac:role_rules:{company_id}:{role}"
    USER_OVERRIDES = "rbac:overrides:{company_id}:{user_id}"
    DYNAMIC_ASSIGNMENTS = "rbac:dynamic_assignments:{user_id}"
    DYNAMIC_ROLE_EFFECTS = "rbac:dynamic_role:{role_id}"
    MENU_RULES = "rbac:menu:{role}"

    # Company configuration
    FEATURE_FLAGS = "company:features:{company_id}"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheTTL:
    """Cache TTL (Time To Live) constants in seconds."""

    @staticmethod
    def rule_snapshot() -> int:
        return getattr(settings, 'RBAC_SNAPSHOT_CACHE_TTL', 300)


class CacheService:
    """Service for managing cached data with consistent patterns."""

    @staticmethod
    def get(key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Backend errors are logged and reported as a miss so that a cache
        outage degrades to direct rule store reads.
        """
        try:
            value = cache.get(key, default)
            if value is not None:
                logger.debug(f"Cache HIT: {key}")
            else:
                logger.debug(f"Cache MISS: {key}")
            return value
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {str(e)}")
            return default

    @staticmethod
    def set(key: str, value: Any, ttl: int = None) -> bool:
        """Set value in cache. Returns True if successful."""
        try:
            cache.set(key, value, timeout=ttl)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {str(e)}")
            return False

    @staticmethod
    def delete(key: str) -> bool:
        """Delete value from cache. Returns True if successful."""
        try:
            cache.delete(key)
            logger.debug(f"Cache DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {str(e)}")
            return False

    @staticmethod
    def get_or_set(key: str, default_func: Callable, ttl: int = None) -> Any:
        """
        Get value from cache or compute it with default_func on a miss.

        Exceptions raised by default_func propagate to the caller and
        nothing is cached.
        """
        value = CacheService.get(key)
        if value is None:
            value = default_func()
            if value is not None:
                CacheService.set(key, value, ttl)
        return value
