"""
Core models for the portal.
Provides BaseModel with UUID primary keys, soft delete, and timestamp fields,
and RuleModel for rows that must be physically removed when cleared.
"""
import uuid
from django.db import models
from django.utils import timezone


class BaseModelManager(models.Manager):
    """Manager that excludes soft-deleted objects by default."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModelQuerySet(models.QuerySet):
    """QuerySet with soft delete support."""

    def delete(self):
        """Soft delete all objects in queryset."""
        return self.update(deleted_at=timezone.now())


class BaseModel(models.Model):
    """
    Abstract base model with UUID primary key, soft delete, and timestamps.

    Entity tables (companies, users, audit entries) inherit from this model.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when the record was last updated"
    )

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp when the record was soft deleted"
    )

    # Default manager excludes soft-deleted objects
    objects = BaseModelManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def delete(self, using=None, keep_parents=False):
        """Soft delete the object."""
        self.deleted_at = timezone.now()
        self.save(using=using)


class RuleModel(models.Model):
    """
    Abstract base for access rule rows.

    Rule rows are keyed by a natural unique key and are upserted in place.
    Clearing a rule removes the row outright, so there is no soft delete
    here: a tombstone would collide with the unique key on the next upsert.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        help_text="Timestamp when the rule was first written"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when the rule was last changed"
    )

    class Meta:
        abstract = True
