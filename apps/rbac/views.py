"""
RBAC REST API views.

Implements endpoints for:
- The actor's own permissions, features, and menu
- Permission checks with optional decision traces
- Role and permission catalogs
- Boolean role rule matrices (per company) and platform rules
- User overrides, static role assignment, and dynamic roles (tri-state surface)
- Menu rules
- Audit log viewing
"""
import logging

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter
from drf_spectacular.types import OpenApiTypes
from rest_framework import status
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.companies.models import Company
from apps.core.logging import SecurityLogger
from apps.core.permissions import HasPortalPermission, requires_permission
from apps.rbac import catalog
from apps.rbac.editing import CompanyRoleEditSession, RoleEffectEditSession
from apps.rbac.engine import Effect
from apps.rbac.models import (
    AuditLog, DynamicRole, Permission, PlatformPermission, User, UserPermission,
)
from apps.rbac.roles import (
    ROLE_DEFINITIONS, can_manage_role, format_role_label, get_assignable_roles, is_known_role,
)
from apps.rbac.serializers import (
    AuditLogSerializer, CommitResultSerializer, DecisionSerializer,
    DynamicRoleAssignSerializer, DynamicRoleCreateSerializer, DynamicRoleSerializer,
    DynamicRuleCommitSerializer, MenuEntrySerializer, MenuRuleWriteSerializer,
    MenuVisibilitySerializer, PermissionCheckSerializer, PermissionGroupSerializer,
    PlatformRulesSerializer, RoleDefinitionSerializer, RoleRulesCommitSerializer,
    UserOverrideSerializer, UserOverrideWriteSerializer, UserRoleSerializer, UserRoleWriteSerializer,
)
from apps.rbac.services import AccessControlService
from apps.rbac.store import RuleStore, UnknownRuleKey

logger = logging.getLogger(__name__)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


def _require_known_role(role):
    if not is_known_role(role):
        raise NotFound(f"Unknown role '{role}'")
    return role


def _company_in_scope(request, company_id):
    """
    Resolve a company the actor may administer.

    Platform administrators may target any company; everyone else only
    their own.
    """
    actor = request.actor
    if not actor.is_super and str(actor.company_id) != str(company_id):
        SecurityLogger.log_cross_company_access(actor, company_id, path=request.path)
        raise PermissionDenied("You cannot administer another company.")
    return get_object_or_404(Company, pk=company_id)


def _commit_response(result, extra):
    payload = CommitResultSerializer({
        'succeeded': [str(cell) for cell in result.succeeded],
        'failed': {str(cell): error for cell, error in result.failed.items()},
    }).data
    payload.update(extra)
    return Response(payload, status=status.HTTP_200_OK if result.ok else status.HTTP_207_MULTI_STATUS)


def _boolean_matrix(cells):
    return [
        {
            'key': definition.key,
            'label': definition.label,
            'category': definition.category,
            'scope': definition.scope,
            'enabled': cells.get(definition.key),
        }
        for definition in catalog.PERMISSION_DEFINITIONS
    ]


# ===== ACTOR ENDPOINTS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Me'],
        summary='Effective permissions for the current actor',
        description='''
Return the effective permission keys, enabled features, and role for the
authenticated actor. Platform administrators receive the `manage_all`
sentinel in addition to any explicitly enabled keys. With the
`X-IMPERSONATE-ROLE` header a platform administrator sees the access of
that role instead.
        ''',
    )
)
class MyPermissionsView(APIView):
    """
    GET /v1/rbac/me/permissions

    No permission required - actors can always see their own access.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        actor = request.actor
        permissions = AccessControlService.get_all_permissions(actor)
        return Response({
            'user_id': str(actor.user_id),
            'company_id': str(actor.company_id) if actor.company_id else None,
            'role': {
                'key': actor.role,
                'label': format_role_label(actor.role),
            },
            'is_super_admin': actor.is_super,
            'is_impersonating': actor.is_impersonating,
            'permissions': sorted(permissions),
            'features': AccessControlService.enabled_features(actor),
        })


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Me'],
        summary='Check permissions or a feature for the current actor',
        request=PermissionCheckSerializer,
    )
)
class PermissionCheckView(APIView):
    """
    POST /v1/rbac/check

    Check one permission, a list of permissions (any or all), or a feature.
    Set ``trace`` to receive the deciding layer for a single permission.
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PermissionCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        actor = request.actor

        if 'feature' in data:
            return Response({
                'feature': data['feature'],
                'allowed': AccessControlService.has_feature(actor, data['feature']),
            })

        if 'permissions' in data:
            return Response({
                'permissions': data['permissions'],
                'require_all': data['require_all'],
                'allowed': AccessControlService.has_any_permission(
                    actor, data['permissions'], require_all=data['require_all']
                ),
            })

        decision = AccessControlService.explain_permission(actor, data['permission'])
        payload = {'permission': data['permission'], 'allowed': decision.allowed}
        if data['trace']:
            payload['decision'] = DecisionSerializer(decision).data
        return Response(payload)


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Menu'], summary='Visible menu for the current actor')
)
class MenuView(APIView):
    """GET /v1/rbac/menu"""

    permission_classes = [IsAuthenticated]

    def get(self, request):
        entries = AccessControlService.build_menu(request.actor)
        return Response({
            'count': len(entries),
            'items': MenuEntrySerializer(entries, many=True).data,
        })


# ===== CATALOG ENDPOINTS =====

@extend_schema_view(
    get=extend_schema(tags=['RBAC - Catalog'], summary='List static roles')
)
class RoleListView(APIView):
    """
    GET /v1/rbac/roles

    Every role in catalog order, flagged with whether the actor may assign it.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        assignable = {d.key for d in get_assignable_roles(request.actor.role)}
        serializer = RoleDefinitionSerializer(
            ROLE_DEFINITIONS, many=True, context={'assignable_keys': assignable}
        )
        return Response({'count': len(ROLE_DEFINITIONS), 'roles': serializer.data})


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Catalog'], summary='List permissions grouped by category')
)
class PermissionCatalogView(APIView):
    """GET /v1/rbac/permissions"""

    permission_classes = [IsAuthenticated]

    def get(self, request):
        groups = catalog.permissions_by_category()
        return Response({
            'count': len(catalog.PERMISSION_DEFINITIONS),
            'categories': PermissionGroupSerializer(groups, many=True).data,
        })


# ===== BOOLEAN RULE MATRICES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Role Rules'],
        summary='Boolean rule matrix for a company role',
        description='''
One row per catalog permission with `enabled` true, false, or null (no rule).

**Required permission:** `manage_role_permissions`
        ''',
    )
)
@requires_permission('manage_role_permissions')
class CompanyRoleRulesView(APIView):
    """GET /v1/rbac/companies/{company_id}/roles/{role}/rules"""

    permission_classes = [HasPortalPermission]

    def get(self, request, company_id, role):
        company = _company_in_scope(request, company_id)
        _require_known_role(role)
        cells = RuleStore.load_role_rule_cells(company.pk, role)
        return Response({
            'company': str(company.pk),
            'role': role,
            'rules': _boolean_matrix(cells),
        })


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Role Rules'],
        summary='Commit staged boolean rule changes',
        description='''
Replay the client's pending cells through an edit session and commit them
row by row. `null` clears a rule. Responds 207 when some cells failed; the
`rules` field always reflects storage after the commit.

**Required permission:** `manage_role_permissions`
        ''',
        request=RoleRulesCommitSerializer,
    )
)
@requires_permission('manage_role_permissions')
class CompanyRoleRulesCommitView(APIView):
    """POST /v1/rbac/companies/{company_id}/roles/{role}/rules/commit"""

    permission_classes = [HasPortalPermission]

    def post(self, request, company_id, role):
        company = _company_in_scope(request, company_id)
        _require_known_role(role)

        serializer = RoleRulesCommitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        session = CompanyRoleEditSession(company, role, user=request.user, request=request)
        for key, value in serializer.validated_data['changes'].items():
            session.set_value(key, value)
        result = session.commit()

        return _commit_response(result, {
            'company': str(company.pk),
            'role': role,
            'rules': _boolean_matrix(session.committed_state),
        })


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Platform Rules'], summary='Platform rules for a role'),
    put=extend_schema(
        tags=['RBAC - Platform Rules'],
        summary='Update platform rules for a role',
        request=PlatformRulesSerializer,
    ),
)
@requires_permission('manage_role_permissions')
class PlatformRoleRulesView(APIView):
    """
    GET/PUT /v1/rbac/platform/roles/{role}/rules

    Platform administrators only.
    """

    permission_classes = [HasPortalPermission]

    def _check_platform_actor(self, request):
        if not request.actor.is_super:
            raise PermissionDenied("Platform rules are restricted to platform administrators.")

    def get(self, request, role):
        self._check_platform_actor(request)
        _require_known_role(role)
        cells = PlatformPermission.objects.enabled_map(role)
        return Response({'role': role, 'rules': _boolean_matrix(cells)})

    def put(self, request, role):
        self._check_platform_actor(request)
        _require_known_role(role)

        serializer = PlatformRulesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        for key, enabled in serializer.validated_data['rules'].items():
            RuleStore.set_platform_rule(role, key, enabled, user=request.user, request=request)

        cells = PlatformPermission.objects.enabled_map(role)
        return Response({'role': role, 'rules': _boolean_matrix(cells)})


# ===== USER OVERRIDES =====

def _company_user(company, user_id):
    return get_object_or_404(User.objects.for_company(company), pk=user_id)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Overrides'],
        summary='List overrides for a user',
        description='**Required permission:** `manage_company_users`',
    )
)
@requires_permission('manage_company_users')
class UserOverridesView(APIView):
    """GET /v1/rbac/companies/{company_id}/users/{user_id}/overrides"""

    permission_classes = [HasPortalPermission]

    def get(self, request, company_id, user_id):
        company = _company_in_scope(request, company_id)
        target = _company_user(company, user_id)
        overrides = UserPermission.objects.for_user(target, company).select_related('granted_by')
        return Response({
            'count': overrides.count(),
            'overrides': UserOverrideSerializer(overrides, many=True).data,
        })


@extend_schema_view(
    put=extend_schema(
        tags=['RBAC - Overrides'],
        summary='Grant or deny a permission for a user',
        description='''
The override takes precedence over every role rule for this key.

**Required permission:** `manage_company_users`
        ''',
        request=UserOverrideWriteSerializer,
        responses={200: UserOverrideSerializer},
    ),
    delete=extend_schema(
        tags=['RBAC - Overrides'],
        summary='Remove an override',
        responses={204: None},
    ),
)
@requires_permission('manage_company_users')
class UserOverrideDetailView(APIView):
    """PUT/DELETE /v1/rbac/companies/{company_id}/users/{user_id}/overrides/{permission_key}"""

    permission_classes = [HasPortalPermission]

    def put(self, request, company_id, user_id, permission_key):
        company = _company_in_scope(request, company_id)
        target = _company_user(company, user_id)
        if not catalog.is_known_permission(permission_key):
            raise ValidationError({'permission_key': [f"Unknown permission '{permission_key}'"]})

        serializer = UserOverrideWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        override = RuleStore.set_user_override(
            company,
            target,
            permission_key,
            serializer.validated_data['granted'],
            reason=serializer.validated_data['reason'],
            granted_by=request.user,
            request=request,
        )
        return Response(UserOverrideSerializer(override).data)

    def delete(self, request, company_id, user_id, permission_key):
        company = _company_in_scope(request, company_id)
        target = _company_user(company, user_id)
        if not UserPermission.objects.filter(
            user=target, company=company, permission_key=permission_key
        ).exists():
            raise NotFound("No override for this permission.")

        RuleStore.set_user_override(
            company, target, permission_key, None, granted_by=request.user, request=request
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


# ===== STATIC ROLE ASSIGNMENT =====

@extend_schema_view(
    put=extend_schema(
        tags=['RBAC - Users'],
        summary="Change a company user's role",
        description='''
The acting role must be allowed to assign both the user's current role and
the new one (see `assignable` in `/v1/rbac/roles`). Platform roles cannot be
assigned within a company.

**Required permission:** `manage_company_users`
        ''',
        request=UserRoleWriteSerializer,
        responses={200: UserRoleSerializer},
    )
)
@requires_permission('manage_company_users')
class UserRoleView(APIView):
    """PUT /v1/rbac/companies/{company_id}/users/{user_id}/role"""

    permission_classes = [HasPortalPermission]

    def put(self, request, company_id, user_id):
        company = _company_in_scope(request, company_id)
        target = _company_user(company, user_id)

        serializer = UserRoleWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        role = serializer.validated_data['role']

        actor = request.actor
        for key in (target.role, role):
            if not can_manage_role(actor.role, key):
                SecurityLogger.log_permission_denied(
                    actor,
                    [f"assign_role:{key}"],
                    view=self.__class__.__name__,
                    ip_address=request.META.get('REMOTE_ADDR'),
                )
                raise PermissionDenied(f"Your role cannot assign the '{format_role_label(key)}' role.")

        try:
            updated = RuleStore.set_user_role(company, target, role, user=request.user, request=request)
        except ValueError as e:
            raise ValidationError({'role': [str(e)]})
        return Response(UserRoleSerializer(updated).data)


# ===== DYNAMIC ROLES =====

def _dynamic_role_in_scope(request, role_id):
    role = get_object_or_404(DynamicRole.objects.select_related('company'), pk=role_id)
    _company_in_scope(request, role.company_id)
    return role


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Dynamic Roles'],
        summary='List dynamic roles with user counts',
        parameters=[
            OpenApiParameter('company_id', OpenApiTypes.UUID, description='Company (platform administrators)'),
        ],
    ),
    post=extend_schema(
        tags=['RBAC - Dynamic Roles'],
        summary='Create a dynamic role',
        request=DynamicRoleCreateSerializer,
        responses={201: DynamicRoleSerializer},
    ),
)
@requires_permission('manage_role_permissions')
class DynamicRoleListView(APIView):
    """GET/POST /v1/rbac/dynamic-roles"""

    permission_classes = [HasPortalPermission]

    def _target_company(self, request, company_id):
        company_id = company_id or request.actor.company_id
        if company_id is None:
            raise ValidationError({'company': ['A company is required.']})
        return _company_in_scope(request, company_id)

    def get(self, request):
        company = self._target_company(request, request.query_params.get('company_id'))
        roles = DynamicRole.objects.for_company(company).with_user_counts()
        return Response({
            'count': roles.count(),
            'roles': DynamicRoleSerializer(roles, many=True).data,
        })

    def post(self, request):
        serializer = DynamicRoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        company = self._target_company(request, data.get('company'))
        if DynamicRole.objects.filter(company=company, name=data['name']).exists():
            raise ValidationError({'name': ['A role with this name already exists.']})

        role = RuleStore.create_dynamic_role(
            company, data['name'], data['description'], user=request.user, request=request
        )
        role.user_count = 0
        return Response(DynamicRoleSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Dynamic Roles'],
        summary='Delete a dynamic role with its rules and assignments',
        responses={204: None},
    )
)
@requires_permission('manage_role_permissions')
class DynamicRoleDetailView(APIView):
    """DELETE /v1/rbac/dynamic-roles/{role_id}"""

    permission_classes = [HasPortalPermission]

    def delete(self, request, role_id):
        role = _dynamic_role_in_scope(request, role_id)
        RuleStore.delete_dynamic_role(role, user=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


def _tri_state_matrix(cells):
    return [
        {
            'permission_id': str(permission.pk),
            'key': permission.key,
            'label': permission.label,
            'category': permission.category,
            'effect': cells.get(str(permission.pk), Effect.UNSET).value,
        }
        for permission in Permission.objects.all()
    ]


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Dynamic Roles'], summary='Tri-state rule matrix for a dynamic role')
)
@requires_permission('manage_role_permissions')
class DynamicRoleRulesView(APIView):
    """GET /v1/rbac/dynamic-roles/{role_id}/rules"""

    permission_classes = [HasPortalPermission]

    def get(self, request, role_id):
        role = _dynamic_role_in_scope(request, role_id)
        cells = RuleStore.load_dynamic_role_cells(role.pk)
        return Response({'role': str(role.pk), 'name': role.name, 'rules': _tri_state_matrix(cells)})


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Dynamic Roles'],
        summary='Commit staged tri-state rule changes',
        description='''
Pending cells are keyed by permission id with values `allow`, `deny` or
`unset`. `unset` removes the rule row. Responds 207 when some cells failed.
        ''',
        request=DynamicRuleCommitSerializer,
    )
)
@requires_permission('manage_role_permissions')
class DynamicRoleRulesCommitView(APIView):
    """POST /v1/rbac/dynamic-roles/{role_id}/rules/commit"""

    permission_classes = [HasPortalPermission]

    def post(self, request, role_id):
        role = _dynamic_role_in_scope(request, role_id)

        serializer = DynamicRuleCommitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        session = RoleEffectEditSession(role, user=request.user, request=request)
        for permission_id, effect in serializer.validated_data['changes'].items():
            session.set_value(permission_id, effect)
        result = session.commit()

        return _commit_response(result, {
            'role': str(role.pk),
            'rules': _tri_state_matrix(session.committed_state),
        })


@extend_schema_view(
    put=extend_schema(
        tags=['RBAC - Dynamic Roles'],
        summary="Replace a user's dynamic roles",
        description='**Required permission:** `manage_company_users`',
        request=DynamicRoleAssignSerializer,
    )
)
@requires_permission('manage_company_users')
class UserDynamicRolesView(APIView):
    """PUT /v1/rbac/dynamic-roles/users/{user_id}"""

    permission_classes = [HasPortalPermission]

    def put(self, request, user_id):
        target = get_object_or_404(User, pk=user_id)
        if target.company_id is None:
            raise ValidationError({'user': ['Platform users cannot hold dynamic roles.']})
        _company_in_scope(request, target.company_id)

        serializer = DynamicRoleAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            roles = RuleStore.set_user_dynamic_roles(
                target, serializer.validated_data['role_ids'], user=request.user, request=request
            )
        except ValueError as e:
            raise ValidationError({'role_ids': [str(e)]})

        return Response({
            'user': str(target.pk),
            'roles': DynamicRoleSerializer(roles, many=True).data,
        })


# ===== MENU RULES =====

@extend_schema_view(
    put=extend_schema(
        tags=['RBAC - Menu'],
        summary='Upsert the menu rule for a role and item',
        description='**Required permission:** `manage_menu`',
        request=MenuRuleWriteSerializer,
        responses={200: MenuVisibilitySerializer},
    )
)
@requires_permission('manage_menu')
class MenuRuleView(APIView):
    """PUT /v1/rbac/menu/{role}/{item_key}"""

    permission_classes = [HasPortalPermission]

    def put(self, request, role, item_key):
        _require_known_role(role)
        if catalog.get_menu_item(item_key) is None:
            raise NotFound(f"Unknown menu item '{item_key}'")

        serializer = MenuRuleWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            row = RuleStore.set_menu_rule(
                role, item_key, user=request.user, request=request, **serializer.validated_data
            )
        except UnknownRuleKey as e:
            raise ValidationError(str(e))
        return Response(MenuVisibilitySerializer(row).data)


# ===== AUDIT LOGS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='List audit log entries',
        parameters=[
            OpenApiParameter('action', OpenApiTypes.STR),
            OpenApiParameter('target_type', OpenApiTypes.STR),
            OpenApiParameter('target_id', OpenApiTypes.STR, description='Only with target_type'),
            OpenApiParameter('user_id', OpenApiTypes.UUID),
            OpenApiParameter('company_id', OpenApiTypes.UUID, description='Platform administrators only'),
        ],
    )
)
@requires_permission('view_audit_logs')
class AuditLogListView(APIView):
    """
    GET /v1/rbac/audit-logs

    Tenant actors see their own company's entries; platform administrators
    see everything and may filter by company.

    Required permission: view_audit_logs
    """

    permission_classes = [HasPortalPermission]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        actor = request.actor
        logs = AuditLog.objects.select_related('user', 'company')

        if actor.is_super:
            company_id = request.query_params.get('company_id')
            if company_id:
                logs = logs.for_company(company_id)
        else:
            logs = logs.for_company(actor.company_id)

        action = request.query_params.get('action')
        if action:
            logs = logs.by_action(action)

        target_type = request.query_params.get('target_type')
        if target_type:
            logs = logs.by_target(target_type, request.query_params.get('target_id'))

        user_id = request.query_params.get('user_id')
        if user_id:
            logs = logs.for_user(user_id)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request)
        serializer = AuditLogSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)
