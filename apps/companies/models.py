"""
Company models for multi-tenant isolation.

A company is the tenant scope for role rules, user overrides, dynamic roles
and feature flags.
"""
from django.conf import settings
from django.db import models
from apps.core.models import BaseModel, RuleModel


class Company(BaseModel):
    """
    Company (tenant) served by the portal.

    Each company has:
    - Its own boolean rule matrix per role
    - Its own dynamic roles and user overrides
    - Its own feature flags
    """

    name = models.CharField(
        max_length=255,
        help_text="Company name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier (also used as the portal subdomain)"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive companies keep their data but are hidden from pickers"
    )

    class Meta:
        db_table = 'companies'
        ordering = ['name']
        verbose_name_plural = 'companies'

    def __str__(self):
        return f"{self.name} ({self.slug})"


class FeatureFlagManager(models.Manager):
    """Manager for feature flag queries."""

    def for_company(self, company):
        return self.filter(company=company)

    def enabled_map(self, company_id):
        """Return {feature_key: enabled} for a company."""
        return dict(
            self.filter(company_id=company_id).values_list('feature_key', 'enabled')
        )


class FeatureFlag(RuleModel):
    """
    Per-company feature switch.

    One row per (company, feature_key). Absence means disabled.
    """

    company = models.ForeignKey(
        Company,
        on_delete=models.CASCADE,
        related_name='feature_flags',
        help_text="Company this flag belongs to"
    )
    feature_key = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Feature catalog key (e.g., 'knowledge_base')"
    )
    enabled = models.BooleanField(
        default=False,
        help_text="Whether the feature is enabled for the company"
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        help_text="User who last changed the flag"
    )

    objects = FeatureFlagManager()

    class Meta:
        db_table = 'feature_flags'
        unique_together = [('company', 'feature_key')]
        ordering = ['feature_key']

    def __str__(self):
        state = 'on' if self.enabled else 'off'
        return f"{self.company_id}:{self.feature_key}={state}"
