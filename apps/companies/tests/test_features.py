"""
Tests for the feature flag catalog.
"""
from apps.companies.features import (
    FEATURE_DEFINITIONS, FEATURE_KEYS, FeatureKey, get_feature_definition, is_known_feature,
)


class TestFeatureCatalog:

    def test_every_key_has_one_definition(self):
        assert [d.key for d in FEATURE_DEFINITIONS] == list(FeatureKey)
        assert len(FEATURE_KEYS) == len(FeatureKey)

    def test_lookup_by_string_and_enum(self):
        assert get_feature_definition('approvals') is get_feature_definition(FeatureKey.APPROVALS)

    def test_unknown_keys(self):
        assert is_known_feature('teleportation') is False
        assert get_feature_definition(None) is None
