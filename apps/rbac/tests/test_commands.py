"""
Tests for RBAC management commands.
"""
from io import StringIO

import pytest
from django.core.management import call_command

from apps.rbac.catalog import DEFAULT_MENU_HEADINGS, PERMISSION_KEYS
from apps.rbac.models import DynamicRolePermission, MenuHeading, Permission, RolePermission
from apps.rbac.store import RuleStore


@pytest.mark.django_db
class TestSyncPermissions:

    def test_mirrors_catalog(self):
        call_command('sync_permissions', stdout=StringIO())

        assert set(Permission.objects.values_list('key', flat=True)) == set(PERMISSION_KEYS)
        approve = Permission.objects.get(key='approve_hardware_requests')
        assert approve.action == 'approve'
        assert approve.resource == 'hardware_requests'
        assert approve.category == 'approvals'

    def test_is_idempotent_and_repairs_drift(self):
        call_command('sync_permissions', stdout=StringIO())
        Permission.objects.filter(key='view_news').update(label='Stale')

        out = StringIO()
        call_command('sync_permissions', stdout=out)

        assert Permission.objects.get(key='view_news').label == 'View News'
        assert Permission.objects.count() == len(PERMISSION_KEYS)
        assert 'Updated: view_news' in out.getvalue()

    def test_removes_retired_permissions(self):
        Permission.objects.create(key='launch_rockets', label='Launch Rockets', category='legacy')

        call_command('sync_permissions', stdout=StringIO())

        assert not Permission.objects.filter(key='launch_rockets').exists()

    def test_retired_key_leaves_cached_dynamic_effects(self, company):
        retired = Permission.objects.create(key='launch_rockets', label='Launch Rockets', category='legacy')
        role = RuleStore.create_dynamic_role(company, 'Launch Crew')
        DynamicRolePermission.objects.create(role=role, permission=retired, effect='allow')
        assert RuleStore.dynamic_role_effects(role.pk) == {'launch_rockets': 'allow'}

        call_command('sync_permissions', '--skip-seed', stdout=StringIO())

        assert RuleStore.dynamic_role_effects(role.pk) == {}

    def test_seeds_existing_companies(self, company):
        RolePermission.objects.filter(company=company).delete()

        call_command('sync_permissions', stdout=StringIO())

        assert RolePermission.objects.filter(company=company, role='tenant_admin').exists()

    def test_reports_unknown_rule_keys(self, company):
        RolePermission.objects.create(company=company, role='manager', permission_key='legacy_key', enabled=True)

        out = StringIO()
        call_command('sync_permissions', '--skip-seed', stdout=out)

        assert 'legacy_key' in out.getvalue()


@pytest.mark.django_db
class TestSeedMenu:

    def test_seeds_headings(self):
        call_command('seed_menu', stdout=StringIO())
        call_command('seed_menu', stdout=StringIO())

        assert MenuHeading.objects.count() == len(DEFAULT_MENU_HEADINGS)
        assert list(MenuHeading.objects.values_list('key', flat=True)) == [h.key for h in DEFAULT_MENU_HEADINGS]
