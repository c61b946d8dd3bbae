"""
Company feature flag views.

Flags are single-cell writes: each PUT takes effect immediately and
invalidates the company's cached features before responding.
"""
import logging

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.companies.features import FEATURE_DEFINITIONS, get_feature_definition
from apps.companies.models import Company, FeatureFlag
from apps.companies.serializers import FeatureFlagSerializer, FeatureFlagWriteSerializer
from apps.core.permissions import HasPortalPermission, requires_permission
from apps.rbac.store import RuleStore

logger = logging.getLogger(__name__)


def _flag_payload(definition, flag):
    return {
        'key': definition.key.value,
        'label': definition.label,
        'description': definition.description,
        'enabled': flag.enabled if flag else False,
        'updated_at': flag.updated_at if flag else None,
    }


@extend_schema_view(
    get=extend_schema(
        tags=['Companies - Features'],
        summary='List feature flags for a company',
        description='''
Every catalog feature with its state. Features without a stored flag are
disabled.

**Required permission:** `manage_company_features`
        ''',
    )
)
@requires_permission('manage_company_features')
class FeatureFlagListView(APIView):
    """GET /v1/companies/{company_id}/features"""

    permission_classes = [HasPortalPermission]

    def get(self, request, company_id):
        company = get_object_or_404(Company, pk=company_id)
        flags = {flag.feature_key: flag for flag in FeatureFlag.objects.for_company(company)}
        features = [_flag_payload(d, flags.get(d.key.value)) for d in FEATURE_DEFINITIONS]
        return Response({
            'company': str(company.pk),
            'count': len(features),
            'features': FeatureFlagSerializer(features, many=True).data,
        })


@extend_schema_view(
    put=extend_schema(
        tags=['Companies - Features'],
        summary='Enable or disable a feature for a company',
        request=FeatureFlagWriteSerializer,
        responses={200: FeatureFlagSerializer},
    )
)
@requires_permission('manage_company_features')
class FeatureFlagDetailView(APIView):
    """PUT /v1/companies/{company_id}/features/{feature_key}"""

    permission_classes = [HasPortalPermission]

    def put(self, request, company_id, feature_key):
        company = get_object_or_404(Company, pk=company_id)
        definition = get_feature_definition(feature_key)
        if definition is None:
            raise ValidationError({'feature_key': [f"Unknown feature '{feature_key}'"]})

        serializer = FeatureFlagWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        flag = RuleStore.set_feature(
            company, feature_key, serializer.validated_data['enabled'],
            user=request.user, request=request,
        )
        logger.info(
            f"Feature {feature_key} set to {flag.enabled}",
            extra={'company_id': str(company.pk), 'user_id': str(request.user.pk)}
        )
        return Response(FeatureFlagSerializer(_flag_payload(definition, flag)).data)
