"""
RBAC signals for automatic rule seeding.

Seeds the tenant_admin role rules when a new company is created so the
company's first administrator can manage everything else.
"""
import logging

from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_save, sender='companies.Company')
def seed_rules_on_company_creation(sender, instance, created, **kwargs):
    """
    Grant every tenant permission to tenant_admin in a new company.

    Existing rows are left alone, so re-saving never re-enables a rule an
    administrator turned off.
    """
    if not created:
        return

    from apps.rbac.store import RuleStore

    with transaction.atomic():
        created_count = RuleStore.seed_tenant_admin(instance)

    logger.info(
        f"Seeded tenant_admin rules for company {instance.name}",
        extra={'company_id': str(instance.pk), 'rules_created': created_count}
    )
