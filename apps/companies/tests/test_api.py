"""
Tests for company feature flag endpoints.
"""
import pytest
from rest_framework import status

from apps.companies.features import FEATURE_KEYS
from apps.companies.models import FeatureFlag
from apps.rbac.models import AuditLog


@pytest.mark.django_db
class TestFeatureFlagAPI:

    def test_list_defaults_to_disabled(self, auth_client, company, tenant_admin):
        response = auth_client(tenant_admin).get(f'/v1/companies/{company.pk}/features')

        assert response.status_code == status.HTTP_200_OK
        assert [f['key'] for f in response.data['features']] == list(FEATURE_KEYS)
        assert not any(f['enabled'] for f in response.data['features'])

    def test_toggle_takes_effect_immediately(self, auth_client, company, tenant_admin):
        client = auth_client(tenant_admin)

        response = client.put(f'/v1/companies/{company.pk}/features/knowledge_base', {'enabled': True}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['enabled'] is True
        check = client.post('/v1/rbac/check', {'feature': 'knowledge_base'}, format='json')
        assert check.data['allowed'] is True
        assert AuditLog.objects.filter(action='feature_flag_set', company=company).exists()

    def test_unknown_feature(self, auth_client, company, tenant_admin):
        response = auth_client(tenant_admin).put(
            f'/v1/companies/{company.pk}/features/teleportation', {'enabled': True}, format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert not FeatureFlag.objects.exists()

    def test_requires_manage_company_features(self, auth_client, company, manager):
        response = auth_client(manager).get(f'/v1/companies/{company.pk}/features')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_other_company_is_forbidden(self, auth_client, other_company, tenant_admin):
        response = auth_client(tenant_admin).put(
            f'/v1/companies/{other_company.pk}/features/approvals', {'enabled': True}, format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert not FeatureFlag.objects.exists()

    def test_super_admin_manages_any_company(self, auth_client, other_company, super_admin):
        response = auth_client(super_admin).put(
            f'/v1/companies/{other_company.pk}/features/approvals', {'enabled': True}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert FeatureFlag.objects.get(company=other_company, feature_key='approvals').enabled is True

    def test_missing_company(self, auth_client, super_admin):
        response = auth_client(super_admin).get('/v1/companies/00000000-0000-0000-0000-000000000000/features')

        assert response.status_code == status.HTTP_404_NOT_FOUND
