"""
RBAC API URLs.

Provides endpoints for:
- The actor's own permissions, checks, and menu
- Role and permission catalogs
- Company and platform role rule matrices
- User overrides, static roles, and dynamic roles
- Menu rules and audit log viewing
"""
from django.urls import path
from apps.rbac.views import (
    MyPermissionsView,
    PermissionCheckView,
    MenuView,
    RoleListView,
    PermissionCatalogView,
    CompanyRoleRulesView,
    CompanyRoleRulesCommitView,
    PlatformRoleRulesView,
    UserOverridesView,
    UserOverrideDetailView,
    UserRoleView,
    DynamicRoleListView,
    DynamicRoleDetailView,
    DynamicRoleRulesView,
    DynamicRoleRulesCommitView,
    UserDynamicRolesView,
    MenuRuleView,
    AuditLogListView,
)

app_name = 'rbac'

urlpatterns = [
    # Actor endpoints
    path('me/permissions', MyPermissionsView.as_view(), name='my-permissions'),
    path('check', PermissionCheckView.as_view(), name='permission-check'),
    path('menu', MenuView.as_view(), name='menu'),

    # Catalogs
    path('roles', RoleListView.as_view(), name='role-list'),
    path('permissions', PermissionCatalogView.as_view(), name='permission-list'),

    # Boolean rule matrices
    path('companies/<uuid:company_id>/roles/<str:role>/rules',
         CompanyRoleRulesView.as_view(), name='company-role-rules'),
    path('companies/<uuid:company_id>/roles/<str:role>/rules/commit',
         CompanyRoleRulesCommitView.as_view(), name='company-role-rules-commit'),
    path('platform/roles/<str:role>/rules',
         PlatformRoleRulesView.as_view(), name='platform-role-rules'),

    # User overrides
    path('companies/<uuid:company_id>/users/<uuid:user_id>/overrides',
         UserOverridesView.as_view(), name='user-overrides'),
    path('companies/<uuid:company_id>/users/<uuid:user_id>/overrides/<str:permission_key>',
         UserOverrideDetailView.as_view(), name='user-override-detail'),

    # Static role assignment
    path('companies/<uuid:company_id>/users/<uuid:user_id>/role',
         UserRoleView.as_view(), name='user-role'),

    # Dynamic roles
    path('dynamic-roles', DynamicRoleListView.as_view(), name='dynamic-role-list'),
    path('dynamic-roles/users/<uuid:user_id>', UserDynamicRolesView.as_view(), name='user-dynamic-roles'),
    path('dynamic-roles/<uuid:role_id>', DynamicRoleDetailView.as_view(), name='dynamic-role-detail'),
    path('dynamic-roles/<uuid:role_id>/rules', DynamicRoleRulesView.as_view(), name='dynamic-role-rules'),
    path('dynamic-roles/<uuid:role_id>/rules/commit',
         DynamicRoleRulesCommitView.as_view(), name='dynamic-role-rules-commit'),

    # Menu rules
    path('menu/<str:role>/<str:item_key>', MenuRuleView.as_view(), name='menu-rule'),

    # Audit logs
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]
