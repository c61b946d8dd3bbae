"""
Management command to sync the permissions table with the catalog.

Upserts one Permission row per catalog key, removes rows for retired keys,
seeds the tenant_admin rules for every company, and reports stored rules
that reference keys the catalog no longer knows. Idempotent and safe to
re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.companies.models import Company
from apps.core.cache import CacheKeys
from apps.rbac.catalog import PERMISSION_DEFINITIONS, PERMISSION_KEYS
from apps.rbac.models import (
    DynamicRolePermission, Permission, PlatformPermission, RolePermission, UserPermission,
)
from apps.rbac.store import RuleStore


class Command(BaseCommand):
    help = 'Sync the permissions table with the catalog and seed tenant_admin rules (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--skip-seed',
            action='store_true',
            help='Do not seed tenant_admin rules for existing companies',
        )

    def handle(self, *args, **options):
        self.stdout.write('Syncing permission catalog...\n')

        created_count, updated_count, removed_count, affected_roles = self._sync_catalog()
        RuleStore.invalidate(*(
            CacheKeys.format(CacheKeys.DYNAMIC_ROLE_EFFECTS, role_id=role_id) for role_id in affected_roles
        ))
        self.stdout.write(
            self.style.SUCCESS(
                f'✓ Catalog synced: {created_count} created, {updated_count} updated, '
                f'{removed_count} removed'
            )
        )

        if not options['skip_seed']:
            seeded = 0
            for company in Company.objects.all():
                seeded += RuleStore.seed_tenant_admin(company)
            self.stdout.write(self.style.SUCCESS(f'✓ Seeded {seeded} tenant_admin rules'))

        self._report_unknown_keys()

    @transaction.atomic
    def _sync_catalog(self):
        created_count = 0
        updated_count = 0

        for definition in PERMISSION_DEFINITIONS:
            fields = {
                'label': definition.label,
                'description': definition.description,
                'category': definition.category,
                'resource': definition.resource,
                'action': definition.action,
                'scope': definition.scope,
            }
            permission, created = Permission.objects.get_or_create(key=definition.key, defaults=fields)
            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'✓ Created: {permission.key}'))
                continue

            changed = {name: value for name, value in fields.items() if getattr(permission, name) != value}
            if changed:
                for name, value in changed.items():
                    setattr(permission, name, value)
                permission.save(update_fields=[*changed, 'updated_at'])
                updated_count += 1
                self.stdout.write(self.style.WARNING(f'↻ Updated: {permission.key}'))

        retired = Permission.objects.exclude(key__in=PERMISSION_KEYS)
        removed_count = retired.count()
        affected_roles = set(
            DynamicRolePermission.objects.filter(permission__in=retired).values_list('role_id', flat=True)
        )
        for key in retired.values_list('key', flat=True):
            self.stdout.write(self.style.WARNING(f'✗ Removed: {key}'))
        retired.delete()

        return created_count, updated_count, removed_count, affected_roles

    def _report_unknown_keys(self):
        sources = (
            ('role rules', RolePermission),
            ('platform rules', PlatformPermission),
            ('user overrides', UserPermission),
        )
        for label, model in sources:
            unknown = sorted(set(
                model.objects.exclude(permission_key__in=PERMISSION_KEYS)
                .values_list('permission_key', flat=True)
            ))
            if unknown:
                self.stdout.write(
                    self.style.WARNING(
                        f'⚠ {label} reference unknown keys (ignored at evaluation): {", ".join(unknown)}'
                    )
                )
