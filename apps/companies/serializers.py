"""
Serializers for company feature flags.
"""
from rest_framework import serializers


class FeatureFlagSerializer(serializers.Serializer):
    """One catalog feature with its state for a company."""

    key = serializers.CharField()
    label = serializers.CharField()
    description = serializers.CharField()
    enabled = serializers.BooleanField()
    updated_at = serializers.DateTimeField(allow_null=True)


class FeatureFlagWriteSerializer(serializers.Serializer):
    enabled = serializers.BooleanField(required=True)
