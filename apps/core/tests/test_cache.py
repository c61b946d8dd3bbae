"""
Tests for caching utilities.
"""
import pytest
from apps.core.cache import CacheService, CacheKeys, CacheTTL


class TestCacheService:
    """Test CacheService basic operations."""

    def test_get_set(self):
        """Test basic get and set operations."""
        key = "test:key"
        value = {"view_news": True}

        assert CacheService.set(key, value, ttl=60) is True
        assert CacheService.get(key) == value

    def test_get_default(self):
        assert CacheService.get("nonexistent:key", default="default_value") == "default_value"

    def test_delete(self):
        CacheService.set("test:key", "test_value")

        assert CacheService.delete("test:key") is True
        assert CacheService.get("test:key") is None

    def test_get_or_set_computes_once(self):
        calls = []

        def compute():
            calls.append(1)
            return {'approvals': True}

        assert CacheService.get_or_set("test:key", compute, ttl=60) == {'approvals': True}
        assert CacheService.get_or_set("test:key", compute, ttl=60) == {'approvals': True}
        assert len(calls) == 1

    def test_empty_mapping_is_cached(self):
        calls = []

        def compute():
            calls.append(1)
            return {}

        CacheService.get_or_set("test:empty", compute)
        CacheService.get_or_set("test:empty", compute)
        assert len(calls) == 1

    def test_loader_errors_propagate_and_nothing_is_cached(self):
        def broken():
            raise RuntimeError('boom')

        with pytest.raises(RuntimeError):
            CacheService.get_or_set("test:broken", broken)
        assert CacheService.get("test:broken") is None

    def test_backend_errors_read_as_miss(self, monkeypatch):
        from apps.core import cache as cache_module

        def broken(*args, **kwargs):
            raise ConnectionError('redis down')

        monkeypatch.setattr(cache_module.cache, 'get', broken)

        assert CacheService.get("test:key", default='fallback') == 'fallback'


class TestCacheKeys:

    def test_scope_keys(self):
        assert CacheKeys.format(CacheKeys.ROLE_RULES, company_id='c1', role='manager') == 'rbac:role_rules:c1:manager'
        assert CacheKeys.format(CacheKeys.FEATURE_FLAGS, company_id='c1') == 'company:features:c1'

    def test_ttl_comes_from_settings(self, settings):
        settings.RBAC_SNAPSHOT_CACHE_TTL = 42
        assert CacheTTL.rule_snapshot() == 42
