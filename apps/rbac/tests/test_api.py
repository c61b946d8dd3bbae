"""
Tests for RBAC REST API endpoints.

Tests:
- Actor endpoints (own permissions, checks, menu)
- Role and permission catalogs
- Company and platform rule matrices with staged commits
- User overrides, static role assignment, and dynamic roles
- Menu rules and audit log viewing
"""
import pytest
from django.db import DatabaseError
from rest_framework import status

from apps.rbac.engine import Effect
from apps.rbac.models import AuditLog, DynamicRole, RolePermission, UserPermission
from apps.rbac.store import RuleStore


def row_for(rules, key):
    return next(row for row in rules if row['key'] == key)


@pytest.fixture
def role_admin(make_user, company):
    """Tenant admin explicitly granted the platform-scoped rule editing permission."""
    admin = make_user('tenant_admin', company)
    RuleStore.set_user_override(company, admin, 'manage_role_permissions', True)
    return admin


@pytest.mark.django_db
class TestMyPermissions:

    def test_requires_authentication(self, api_client):
        response = api_client.get('/v1/rbac/me/permissions')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data['error']['code'] == 'NOT_AUTHENTICATED'

    def test_invalid_token_is_anonymous(self, api_client):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer not-a-token')

        response = api_client.get('/v1/rbac/me/permissions')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_lists_effective_permissions_and_features(self, auth_client, company, manager):
        RuleStore.set_role_rule(company, 'manager', 'approve_hardware_requests', True)
        RuleStore.set_role_rule(company, 'manager', 'view_dashboard', True)
        RuleStore.set_user_override(company, manager, 'view_dashboard', False)
        RuleStore.set_feature(company, 'approvals', True)

        response = auth_client(manager).get('/v1/rbac/me/permissions')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['permissions'] == ['approve_hardware_requests']
        assert response.data['features'] == ['approvals']
        assert response.data['role'] == {'key': 'manager', 'label': 'Manager'}
        assert response.data['company_id'] == str(company.pk)
        assert response.data['is_super_admin'] is False

    def test_super_admin_gets_sentinel(self, auth_client, super_admin):
        response = auth_client(super_admin).get('/v1/rbac/me/permissions')

        assert 'manage_all' in response.data['permissions']
        assert response.data['company_id'] is None

    def test_super_admin_scopes_with_header(self, auth_client, super_admin, company):
        response = auth_client(super_admin, company=company).get('/v1/rbac/me/permissions')

        assert response.data['company_id'] == str(company.pk)

    def test_malformed_company_header(self, api_client, super_admin, token_for):
        api_client.credentials(
            HTTP_AUTHORIZATION=f"Bearer {token_for(super_admin)}",
            HTTP_X_COMPANY_ID='acme',
        )

        response = api_client.get('/v1/rbac/me/permissions')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['error']['code'] == 'INVALID_COMPANY_ID'

    def test_super_admin_impersonates_requester(self, api_client, super_admin, company, token_for):
        api_client.credentials(
            HTTP_AUTHORIZATION=f"Bearer {token_for(super_admin)}",
            HTTP_X_COMPANY_ID=str(company.pk),
            HTTP_X_IMPERSONATE_ROLE='requester',
        )

        me = api_client.get('/v1/rbac/me/permissions')
        check = api_client.post('/v1/rbac/check', {'permission': 'view_news'}, format='json')

        assert me.data['role']['key'] == 'requester'
        assert me.data['is_impersonating'] is True
        assert me.data['is_super_admin'] is False
        assert me.data['permissions'] == []
        assert check.data['allowed'] is False


@pytest.mark.django_db
class TestPermissionCheck:

    def test_single_permission_with_trace(self, auth_client, company, manager):
        RuleStore.set_role_rule(company, 'manager', 'approve_hardware_requests', True)
        RuleStore.set_user_override(company, manager, 'approve_hardware_requests', False)

        response = auth_client(manager).post(
            '/v1/rbac/check', {'permission': 'approve_hardware_requests', 'trace': True}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['allowed'] is False
        assert response.data['decision']['layer'] == 'user_override'
        assert [step['step'] for step in response.data['decision']['trace']] == ['user_status', 'user_override']

    def test_permission_list_any_and_all(self, auth_client, company, manager):
        RuleStore.set_role_rule(company, 'manager', 'view_news', True)
        client = auth_client(manager)

        any_response = client.post('/v1/rbac/check', {'permissions': ['view_news', 'create_news']}, format='json')
        all_response = client.post(
            '/v1/rbac/check', {'permissions': ['view_news', 'create_news'], 'require_all': True}, format='json'
        )

        assert any_response.data['allowed'] is True
        assert all_response.data['allowed'] is False

    def test_feature(self, auth_client, company, manager):
        RuleStore.set_feature(company, 'knowledge_base', True)

        response = auth_client(manager).post('/v1/rbac/check', {'feature': 'knowledge_base'}, format='json')

        assert response.data == {'feature': 'knowledge_base', 'allowed': True}

    def test_exactly_one_target(self, auth_client, manager):
        response = auth_client(manager).post(
            '/v1/rbac/check', {'permission': 'view_news', 'feature': 'approvals'}, format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error']['code'] == 'VALIDATION_ERROR'


@pytest.mark.django_db
class TestCatalogs:

    def test_roles_flag_assignable(self, auth_client, tenant_admin):
        response = auth_client(tenant_admin).get('/v1/rbac/roles')

        roles = {role['key']: role for role in response.data['roles']}
        assert roles['manager']['assignable'] is True
        assert roles['super_admin']['assignable'] is False
        assert roles['requester']['is_default'] is True

    def test_permissions_grouped(self, auth_client, requester):
        response = auth_client(requester).get('/v1/rbac/permissions')

        groups = {group['key']: group for group in response.data['categories']}
        assert groups['system-admin']['scope'] == 'platform'
        approvals = [p['key'] for p in groups['approvals']['permissions']]
        assert 'approve_hardware_requests' in approvals


@pytest.mark.django_db
class TestCompanyRoleRules:

    def test_requires_manage_role_permissions(self, auth_client, company, tenant_admin):
        response = auth_client(tenant_admin).get(f'/v1/rbac/companies/{company.pk}/roles/manager/rules')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_matrix_for_granted_admin(self, auth_client, company, role_admin):
        RuleStore.set_role_rule(company, 'manager', 'view_news', True)

        response = auth_client(role_admin).get(f'/v1/rbac/companies/{company.pk}/roles/manager/rules')

        assert response.status_code == status.HTTP_200_OK
        assert row_for(response.data['rules'], 'view_news')['enabled'] is True
        assert row_for(response.data['rules'], 'create_news')['enabled'] is None

    def test_other_company_is_forbidden(self, auth_client, other_company, role_admin):
        response = auth_client(role_admin).get(f'/v1/rbac/companies/{other_company.pk}/roles/manager/rules')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_unknown_role(self, auth_client, company, super_admin):
        response = auth_client(super_admin).get(f'/v1/rbac/companies/{company.pk}/roles/janitor/rules')

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_commit(self, auth_client, company, super_admin):
        RuleStore.set_role_rule(company, 'manager', 'view_dashboard', True)

        response = auth_client(super_admin).post(
            f'/v1/rbac/companies/{company.pk}/roles/manager/rules/commit',
            {'changes': {'view_news': True, 'create_news': False, 'view_dashboard': None}},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert set(response.data['succeeded']) == {'view_news', 'create_news', 'view_dashboard'}
        assert response.data['failed'] == {}
        assert RolePermission.objects.enabled_map(company.pk, 'manager') == {
            'view_news': True, 'create_news': False,
        }
        assert row_for(response.data['rules'], 'view_dashboard')['enabled'] is None
        log = AuditLog.objects.filter(action='role_rule_set', user=super_admin).first()
        assert log is not None
        assert log.request_id

    def test_commit_rejects_unknown_keys(self, auth_client, company, super_admin):
        response = auth_client(super_admin).post(
            f'/v1/rbac/companies/{company.pk}/roles/manager/rules/commit',
            {'changes': {'launch_rockets': True}},
            format='json',
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert not RolePermission.objects.filter(company=company, role='manager').exists()

    def test_partial_failure_is_multi_status(self, auth_client, company, super_admin, monkeypatch):
        original = RuleStore.set_role_rule

        def flaky(company, role, key, value, user=None, request=None):
            if key == 'view_news':
                raise DatabaseError('deadlock detected')
            return original(company, role, key, value, user=user, request=request)

        monkeypatch.setattr(RuleStore, 'set_role_rule', flaky)

        response = auth_client(super_admin).post(
            f'/v1/rbac/companies/{company.pk}/roles/manager/rules/commit',
            {'changes': {'view_news': True, 'view_dashboard': True}},
            format='json',
        )

        assert response.status_code == status.HTTP_207_MULTI_STATUS
        assert response.data['succeeded'] == ['view_dashboard']
        assert 'deadlock' in response.data['failed']['view_news']
        assert row_for(response.data['rules'], 'view_dashboard')['enabled'] is True
        assert row_for(response.data['rules'], 'view_news')['enabled'] is None


@pytest.mark.django_db
class TestPlatformRules:

    def test_super_admin_updates_rules(self, auth_client, super_admin):
        client = auth_client(super_admin)

        response = client.put(
            '/v1/rbac/platform/roles/super_admin/rules',
            {'rules': {'manage_file_storage': False}},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert row_for(response.data['rules'], 'manage_file_storage')['enabled'] is False
        assert client.post('/v1/rbac/check', {'permission': 'manage_file_storage'}, format='json').data['allowed'] is False

    def test_tenant_actor_is_forbidden(self, auth_client, role_admin):
        response = auth_client(role_admin).get('/v1/rbac/platform/roles/super_admin/rules')

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestUserOverrides:

    def test_set_list_and_clear(self, auth_client, company, tenant_admin, manager):
        client = auth_client(tenant_admin)
        base = f'/v1/rbac/companies/{company.pk}/users/{manager.pk}/overrides'

        put = client.put(f'{base}/view_request_metrics', {'granted': True, 'reason': 'Quarterly review'}, format='json')
        assert put.status_code == status.HTTP_200_OK
        assert put.data['granted'] is True
        assert put.data['granted_by_email'] == tenant_admin.email

        listing = client.get(base)
        assert listing.data['count'] == 1

        delete = client.delete(f'{base}/view_request_metrics')
        assert delete.status_code == status.HTTP_204_NO_CONTENT
        assert not UserPermission.objects.exists()

    def test_delete_missing_override(self, auth_client, company, tenant_admin, manager):
        response = auth_client(tenant_admin).delete(
            f'/v1/rbac/companies/{company.pk}/users/{manager.pk}/overrides/view_news'
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_unknown_permission_key(self, auth_client, company, tenant_admin, manager):
        response = auth_client(tenant_admin).put(
            f'/v1/rbac/companies/{company.pk}/users/{manager.pk}/overrides/launch_rockets',
            {'granted': True},
            format='json',
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_user_outside_company(self, auth_client, company, other_company, tenant_admin, make_user):
        outsider = make_user('manager', other_company)

        response = auth_client(tenant_admin).put(
            f'/v1/rbac/companies/{company.pk}/users/{outsider.pk}/overrides/view_news',
            {'granted': True},
            format='json',
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_requires_manage_company_users(self, auth_client, company, manager, requester):
        response = auth_client(manager).get(f'/v1/rbac/companies/{company.pk}/users/{requester.pk}/overrides')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_unavailable_rules_answer_503(self, auth_client, company, tenant_admin, manager, monkeypatch):
        def broken(*args, **kwargs):
            raise DatabaseError('connection lost')

        monkeypatch.setattr(RolePermission.objects, 'enabled_map', broken)

        response = auth_client(tenant_admin).get(f'/v1/rbac/companies/{company.pk}/users/{manager.pk}/overrides')

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.data['error']['code'] == 'RULES_UNAVAILABLE'


@pytest.mark.django_db
class TestUserRoles:

    def test_tenant_admin_assigns_tenant_role(self, auth_client, company, tenant_admin, requester):
        response = auth_client(tenant_admin).put(
            f'/v1/rbac/companies/{company.pk}/users/{requester.pk}/role', {'role': 'manager'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['role'] == 'manager'
        assert response.data['role_label'] == 'Manager'
        requester.refresh_from_db()
        assert requester.role == 'manager'
        assert AuditLog.objects.by_action('user_role_set').for_user(tenant_admin).count() == 1

    def test_tenant_admin_cannot_assign_platform_role(self, auth_client, company, tenant_admin, requester):
        response = auth_client(tenant_admin).put(
            f'/v1/rbac/companies/{company.pk}/users/{requester.pk}/role', {'role': 'super_admin'}, format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        requester.refresh_from_db()
        assert requester.role == 'requester'
        assert not AuditLog.objects.by_action('user_role_set').exists()

    def test_platform_role_stays_out_of_companies(self, auth_client, company, super_admin, requester):
        response = auth_client(super_admin, company=company).put(
            f'/v1/rbac/companies/{company.pk}/users/{requester.pk}/role', {'role': 'super_admin'}, format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        requester.refresh_from_db()
        assert requester.role == 'requester'

    def test_unknown_role(self, auth_client, company, tenant_admin, requester):
        response = auth_client(tenant_admin).put(
            f'/v1/rbac/companies/{company.pk}/users/{requester.pk}/role', {'role': 'janitor'}, format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_requires_manage_company_users(self, auth_client, company, manager, requester):
        response = auth_client(manager).put(
            f'/v1/rbac/companies/{company.pk}/users/{requester.pk}/role', {'role': 'manager'}, format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_user_outside_company(self, auth_client, company, other_company, tenant_admin, make_user):
        outsider = make_user('requester', other_company)

        response = auth_client(tenant_admin).put(
            f'/v1/rbac/companies/{company.pk}/users/{outsider.pk}/role', {'role': 'manager'}, format='json'
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestDynamicRoles:

    def test_create_and_list(self, auth_client, company, role_admin):
        client = auth_client(role_admin)

        created = client.post('/v1/rbac/dynamic-roles', {'name': 'Front Desk', 'description': 'Reception'}, format='json')
        assert created.status_code == status.HTTP_201_CREATED
        assert created.data['user_count'] == 0

        duplicate = client.post('/v1/rbac/dynamic-roles', {'name': 'Front Desk'}, format='json')
        assert duplicate.status_code == status.HTTP_400_BAD_REQUEST

        listing = client.get('/v1/rbac/dynamic-roles')
        assert [role['name'] for role in listing.data['roles']] == ['Front Desk']

    def test_list_counts_holders(self, auth_client, company, role_admin, requester, manager):
        role = RuleStore.create_dynamic_role(company, 'Front Desk')
        RuleStore.set_user_dynamic_roles(requester, [role.pk])
        RuleStore.set_user_dynamic_roles(manager, [role.pk])

        response = auth_client(role_admin).get('/v1/rbac/dynamic-roles')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['roles'][0]['user_count'] == 2

    def test_super_admin_needs_company(self, auth_client, company, super_admin):
        client = auth_client(super_admin)

        assert client.get('/v1/rbac/dynamic-roles').status_code == status.HTTP_400_BAD_REQUEST
        response = client.get(f'/v1/rbac/dynamic-roles?company_id={company.pk}')
        assert response.status_code == status.HTTP_200_OK

    def test_tenant_cannot_target_other_company(self, auth_client, other_company, role_admin):
        response = auth_client(role_admin).post(
            '/v1/rbac/dynamic-roles', {'name': 'Spy', 'company': str(other_company.pk)}, format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_commit_tri_state_rules(self, auth_client, company, role_admin, permission_catalog):
        role = RuleStore.create_dynamic_role(company, 'Editors')
        view_news = str(permission_catalog['view_news'].pk)
        create_news = str(permission_catalog['create_news'].pk)
        RuleStore.set_dynamic_effect(role, view_news, Effect.ALLOW)
        client = auth_client(role_admin)

        response = client.post(
            f'/v1/rbac/dynamic-roles/{role.pk}/rules/commit',
            {'changes': {view_news: 'unset', create_news: 'deny'}},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        rules = {row['key']: row['effect'] for row in response.data['rules']}
        assert rules['view_news'] == 'unset'
        assert rules['create_news'] == 'deny'

        matrix = client.get(f'/v1/rbac/dynamic-roles/{role.pk}/rules')
        assert {row['key']: row['effect'] for row in matrix.data['rules']}['create_news'] == 'deny'

    def test_commit_rejects_unknown_ids(self, auth_client, company, role_admin, permission_catalog):
        role = RuleStore.create_dynamic_role(company, 'Editors')

        response = auth_client(role_admin).post(
            f'/v1/rbac/dynamic-roles/{role.pk}/rules/commit',
            {'changes': {'not-a-uuid': 'allow'}},
            format='json',
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_assign_and_delete(self, auth_client, company, role_admin, tenant_admin, requester, permission_catalog):
        role = RuleStore.create_dynamic_role(company, 'Editors')
        RuleStore.set_dynamic_effect(role, permission_catalog['create_news'], Effect.ALLOW)

        assign = auth_client(tenant_admin).put(
            f'/v1/rbac/dynamic-roles/users/{requester.pk}', {'role_ids': [str(role.pk)]}, format='json'
        )
        assert assign.status_code == status.HTTP_200_OK
        check = auth_client(requester).post('/v1/rbac/check', {'permission': 'create_news'}, format='json')
        assert check.data['allowed'] is True

        delete = auth_client(role_admin).delete(f'/v1/rbac/dynamic-roles/{role.pk}')
        assert delete.status_code == status.HTTP_204_NO_CONTENT
        assert not DynamicRole.objects.exists()
        check = auth_client(requester).post('/v1/rbac/check', {'permission': 'create_news'}, format='json')
        assert check.data['allowed'] is False

    def test_assign_foreign_role(self, auth_client, company, other_company, tenant_admin, requester):
        foreign = RuleStore.create_dynamic_role(other_company, 'Billing')

        response = auth_client(tenant_admin).put(
            f'/v1/rbac/dynamic-roles/users/{requester.pk}', {'role_ids': [str(foreign.pk)]}, format='json'
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestMenu:

    def test_menu_for_requester(self, auth_client, requester):
        response = auth_client(requester).get('/v1/rbac/menu')

        keys = [item['key'] for item in response.data['items']]
        assert 'home' in keys
        assert 'audit-log' not in keys

    def test_menu_rule_hides_item(self, auth_client, super_admin, requester):
        response = auth_client(super_admin).put(
            '/v1/rbac/menu/requester/directory', {'is_visible': False, 'custom_label': 'People'}, format='json'
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data['is_visible'] is False

        menu = auth_client(requester).get('/v1/rbac/menu')
        assert 'directory' not in [item['key'] for item in menu.data['items']]

    def test_menu_rule_requires_manage_menu(self, auth_client, tenant_admin):
        response = auth_client(tenant_admin).put('/v1/rbac/menu/requester/directory', {'is_visible': False}, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_unknown_menu_item(self, auth_client, super_admin):
        response = auth_client(super_admin).put('/v1/rbac/menu/requester/casino', {'is_visible': False}, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestAuditLogs:

    def test_tenant_actor_sees_own_company_only(self, auth_client, company, other_company, make_user):
        auditor = make_user('tenant_admin', company)
        RuleStore.set_user_override(company, auditor, 'view_audit_logs', True)
        RuleStore.set_role_rule(other_company, 'manager', 'view_news', True)

        response = auth_client(auditor).get('/v1/rbac/audit-logs')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == 1
        assert response.data['results'][0]['action'] == 'override_set'

    def test_super_admin_filters(self, auth_client, company, other_company, super_admin):
        RuleStore.set_role_rule(company, 'manager', 'view_news', True)
        RuleStore.set_role_rule(other_company, 'manager', 'view_news', True)

        response = auth_client(super_admin).get(f'/v1/rbac/audit-logs?company_id={other_company.pk}')

        assert response.data['count'] == 1
        assert response.data['results'][0]['company_name'] == other_company.name

    def test_requires_view_audit_logs(self, auth_client, tenant_admin):
        response = auth_client(tenant_admin).get('/v1/rbac/audit-logs')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_filters_by_target_and_user(self, auth_client, company, super_admin, tenant_admin):
        RuleStore.set_role_rule(company, 'manager', 'view_news', True, user=tenant_admin)
        RuleStore.set_role_rule(company, 'manager', 'edit_news', True, user=super_admin)
        RuleStore.set_feature(company, 'approvals', True, user=super_admin)
        client = auth_client(super_admin)

        by_target = client.get('/v1/rbac/audit-logs?target_type=RolePermission&target_id=manager:edit_news')
        by_user = client.get(f'/v1/rbac/audit-logs?user_id={tenant_admin.pk}')

        assert by_target.data['count'] == 1
        assert by_target.data['results'][0]['target_id'] == 'manager:edit_news'
        assert by_user.data['count'] == 1
        assert by_user.data['results'][0]['target_id'] == 'manager:view_news'
