"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Role and permission catalogs
- Permission checks and decisions
- Boolean and tri-state rule matrices and their staged commits
- User overrides, static role changes, and dynamic role assignments
- Menu entries and menu rules
- Audit logs
"""
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers

from apps.rbac.catalog import get_menu_item, is_known_permission
from apps.rbac.engine import Effect
from apps.rbac.models import (
    AuditLog, DynamicRole, MenuHeading, MenuVisibility, Permission, User, UserPermission,
)
from apps.rbac.roles import ROLE_CHOICES, format_role_label


def _validate_permission_keys(keys):
    unknown = sorted(key for key in keys if not is_known_permission(key))
    if unknown:
        raise serializers.ValidationError(f"Unknown permission keys: {', '.join(unknown)}")


# ===== CATALOG SERIALIZERS =====

class RoleDefinitionSerializer(serializers.Serializer):
    """Serializer for a static role definition, with the actor's assignability."""

    key = serializers.CharField(source='key.value')
    label = serializers.CharField()
    description = serializers.CharField()
    scope = serializers.CharField(source='scope.value')
    is_default = serializers.BooleanField()
    assignable = serializers.SerializerMethodField()

    def get_assignable(self, definition):
        return definition.key in self.context.get('assignable_keys', ())


class PermissionDefinitionSerializer(serializers.Serializer):
    """Serializer for a catalog permission."""

    key = serializers.CharField()
    label = serializers.CharField()
    category = serializers.CharField()
    description = serializers.CharField()
    resource = serializers.CharField()
    action = serializers.CharField()
    scope = serializers.CharField()


class PermissionGroupSerializer(serializers.Serializer):
    """Serializer for a permission category with its permissions."""

    key = serializers.CharField()
    name = serializers.CharField()
    description = serializers.CharField()
    scope = serializers.CharField()
    permissions = PermissionDefinitionSerializer(many=True)


class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for the Permission catalog mirror."""

    class Meta:
        model = Permission
        fields = ['id', 'key', 'label', 'category', 'description', 'resource', 'action', 'scope']
        read_only_fields = fields


# ===== DECISION SERIALIZERS =====

class PermissionCheckSerializer(serializers.Serializer):
    """
    Serializer for a permission check request.

    Exactly one of ``permission``, ``permissions`` or ``feature`` must be given.
    """

    permission = serializers.CharField(required=False)
    permissions = serializers.ListField(
        child=serializers.CharField(),
        required=False,
        allow_empty=True,
    )
    require_all = serializers.BooleanField(default=False)
    feature = serializers.CharField(required=False)
    trace = serializers.BooleanField(default=False)

    def validate(self, attrs):
        given = [name for name in ('permission', 'permissions', 'feature') if name in attrs]
        if len(given) != 1:
            raise serializers.ValidationError(
                "Provide exactly one of 'permission', 'permissions' or 'feature'."
            )
        return attrs


class TraceStepSerializer(serializers.Serializer):
    step = serializers.CharField()
    result = serializers.CharField()
    detail = serializers.CharField()


class DecisionSerializer(serializers.Serializer):
    """Serializer for an engine decision with its trace."""

    allowed = serializers.BooleanField()
    layer = serializers.CharField(source='layer.value')
    reason = serializers.CharField()
    trace = TraceStepSerializer(many=True)


# ===== RULE MATRIX SERIALIZERS =====

class RoleRulesCommitSerializer(serializers.Serializer):
    """Staged changes for a boolean matrix: {permission_key: true | false | null}."""

    changes = serializers.DictField(
        child=serializers.BooleanField(allow_null=True),
        allow_empty=False,
        help_text="Pending cells; null clears the rule"
    )

    def validate_changes(self, value):
        _validate_permission_keys(value)
        return value


class PlatformRulesSerializer(serializers.Serializer):
    """Platform rule updates: {permission_key: true | false | null}."""

    rules = serializers.DictField(
        child=serializers.BooleanField(allow_null=True),
        allow_empty=False,
    )

    def validate_rules(self, value):
        _validate_permission_keys(value)
        return value


class DynamicRuleCommitSerializer(serializers.Serializer):
    """Staged changes for a tri-state matrix: {permission_id: 'allow' | 'deny' | 'unset'}."""

    changes = serializers.DictField(
        child=serializers.ChoiceField(choices=[effect.value for effect in Effect]),
        allow_empty=False,
    )

    def validate_changes(self, value):
        ids = list(value)
        try:
            known = {
                str(pk) for pk in Permission.objects.filter(pk__in=ids).values_list('pk', flat=True)
            }
        except (ValueError, DjangoValidationError):
            raise serializers.ValidationError("Permission ids must be UUIDs.")
        unknown = sorted(set(ids) - known)
        if unknown:
            raise serializers.ValidationError(f"Unknown permission ids: {', '.join(unknown)}")
        return {str(key): Effect(effect) for key, effect in value.items()}


class CommitResultSerializer(serializers.Serializer):
    succeeded = serializers.ListField(child=serializers.CharField())
    failed = serializers.DictField(child=serializers.CharField())


# ===== OVERRIDE SERIALIZERS =====

class UserOverrideSerializer(serializers.ModelSerializer):
    """Serializer for UserPermission (permission overrides)."""

    granted_by_email = serializers.EmailField(
        source='granted_by.email',
        read_only=True,
        default=None
    )

    class Meta:
        model = UserPermission
        fields = [
            'id', 'user', 'company', 'permission_key', 'granted',
            'reason', 'granted_by_email', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class UserOverrideWriteSerializer(serializers.Serializer):
    """Serializer for setting a user override."""

    granted = serializers.BooleanField(required=True)
    reason = serializers.CharField(
        required=False,
        allow_blank=True,
        default='',
        help_text="Reason for this permission override"
    )


# ===== USER ROLE SERIALIZERS =====

class UserRoleSerializer(serializers.ModelSerializer):
    """Serializer for a company user's static role."""

    role_label = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'email', 'company', 'role', 'role_label', 'updated_at']
        read_only_fields = fields

    def get_role_label(self, user):
        return format_role_label(user.role)


class UserRoleWriteSerializer(serializers.Serializer):
    """Serializer for assigning a static role."""

    role = serializers.ChoiceField(choices=[key for key, _ in ROLE_CHOICES])


# ===== DYNAMIC ROLE SERIALIZERS =====

class DynamicRoleSerializer(serializers.ModelSerializer):
    """Serializer for DynamicRole with the number of users holding it."""

    user_count = serializers.IntegerField(read_only=True, default=0)

    class Meta:
        model = DynamicRole
        fields = ['id', 'company', 'name', 'description', 'user_count', 'created_at', 'updated_at']
        read_only_fields = ['id', 'company', 'user_count', 'created_at', 'updated_at']


class DynamicRoleCreateSerializer(serializers.Serializer):
    """Serializer for creating a dynamic role."""

    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    company = serializers.UUIDField(
        required=False,
        help_text="Target company; platform administrators only"
    )

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Role name cannot be empty.")
        return value.strip()


class DynamicRoleAssignSerializer(serializers.Serializer):
    """Serializer for replacing a user's dynamic roles."""

    role_ids = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=True,
        help_text="Complete set of dynamic role ids the user should hold"
    )


# ===== MENU SERIALIZERS =====

class MenuEntrySerializer(serializers.Serializer):
    key = serializers.CharField()
    label = serializers.CharField()
    url = serializers.CharField()
    icon = serializers.CharField()
    heading = serializers.CharField()
    sort_order = serializers.IntegerField()


class MenuRuleWriteSerializer(serializers.Serializer):
    """Serializer for upserting a menu rule. Omitted fields keep their stored value."""

    is_visible = serializers.BooleanField(required=False)
    sort_order = serializers.IntegerField(required=False)
    custom_label = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=100)
    custom_icon = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=50)
    item_type = serializers.ChoiceField(choices=[c[0] for c in MenuVisibility.ITEM_TYPE_CHOICES], required=False)
    parent_key = serializers.CharField(required=False, allow_null=True, max_length=100)
    heading_key = serializers.CharField(required=False, allow_null=True)

    def validate_heading_key(self, value):
        if value and not MenuHeading.objects.filter(key=value).exists():
            raise serializers.ValidationError(f"Unknown menu heading '{value}'")
        return value

    def validate_parent_key(self, value):
        if value and get_menu_item(value) is None:
            raise serializers.ValidationError(f"Unknown menu item '{value}'")
        return value


class MenuVisibilitySerializer(serializers.ModelSerializer):
    heading_key = serializers.CharField(source='heading.key', read_only=True, default=None)

    class Meta:
        model = MenuVisibility
        fields = [
            'id', 'role', 'item_key', 'item_type', 'parent_key', 'is_visible',
            'sort_order', 'custom_label', 'custom_icon', 'heading_key', 'updated_at'
        ]
        read_only_fields = fields


# ===== AUDIT SERIALIZERS =====

class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for AuditLog model."""

    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)
    company_name = serializers.CharField(source='company.name', read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'company', 'company_name', 'user_email', 'action',
            'target_type', 'target_id', 'diff', 'metadata',
            'ip_address', 'user_agent', 'request_id',
            'created_at'
        ]
        read_only_fields = fields
