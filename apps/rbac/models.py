"""
RBAC models for portal access control.

Implements:
- User identity (one role and at most one company per user)
- Permission (tenant-visible mirror of the static permission catalog)
- RolePermission (boolean rule per company, role, and permission key)
- PlatformPermission (boolean rule per role, consulted for the super-role)
- UserPermission (per-user override with grant/deny)
- DynamicRole, DynamicRolePermission, DynamicRoleAssignment (tri-state surface)
- MenuHeading, MenuVisibility (menu rules per role)
- AuditLog (audit trail for every rule write)
"""
import logging
from django.db import DatabaseError, models, transaction
from django.db.models import Count
from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet, RuleModel
from apps.rbac.roles import DEFAULT_TENANT_ROLE, ROLE_CHOICES, is_super_role

logger = logging.getLogger(__name__)


class UserManager(BaseModelManager.from_queryset(BaseModelQuerySet)):
    """
    Manager for User queries.

    Compatible with Django's authentication system.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def for_company(self, company):
        return self.filter(company=company)

    def create_user(self, email, role=None, company=None, **extra_fields):
        """Create a portal user with the given role (defaults to the default tenant role)."""
        if not email:
            raise ValueError('Email address is required')

        extra_fields.setdefault('is_active', True)
        user = self.model(
            email=self.normalize_email(email),
            role=role or DEFAULT_TENANT_ROLE.value,
            company=company,
            **extra_fields
        )
        user.save(using=self._db)
        return user

    @staticmethod
    def normalize_email(email):
        """Normalize the email address by lowercasing the domain part."""
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email


class User(BaseModel):
    """
    Portal user identity.

    Tenant users belong to exactly one company; platform administrators may
    have none. Credentials live with the identity provider that issues
    tokens, so this model carries no password.

    This is the AUTH_USER_MODEL for the application.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    first_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User first name"
    )
    last_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User last name"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    role = models.CharField(
        max_length=50,
        choices=ROLE_CHOICES,
        default=DEFAULT_TENANT_ROLE.value,
        db_index=True,
        help_text="Static role key"
    )
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='users',
        help_text="Company the user belongs to (empty for platform administrators)"
    )

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['email']
        indexes = [
            models.Index(fields=['company', 'role']),
        ]

    def __str__(self):
        return self.email

    @property
    def is_authenticated(self):
        """
        Always return True for User instances.
        This is required for Django authentication compatibility.
        """
        return True

    @property
    def is_anonymous(self):
        """
        Always return False for User instances.
        This is required for Django authentication compatibility.
        """
        return False

    @property
    def is_super_admin(self):
        return is_super_role(self.role)


class Permission(RuleModel):
    """
    Tenant-visible mirror of the static permission catalog.

    Rows are written only by the ``sync_permissions`` command.
    """

    key = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Stable permission key (e.g., 'approve_hardware_requests')"
    )
    label = models.CharField(
        max_length=255,
        help_text="Human-readable label"
    )
    description = models.TextField(
        blank=True,
        help_text="What this permission grants"
    )
    category = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Permission group key (e.g., 'approvals')"
    )
    resource = models.CharField(
        max_length=100,
        help_text="Resource part of the key (e.g., 'hardware_requests')"
    )
    action = models.CharField(
        max_length=50,
        help_text="Action part of the key (e.g., 'approve')"
    )
    scope = models.CharField(
        max_length=20,
        default='tenant',
        help_text="'tenant' or 'platform'"
    )

    class Meta:
        db_table = 'permissions'
        ordering = ['category', 'key']

    def __str__(self):
        return f"{self.key} - {self.label}"


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def enabled_map(self, company_id, role):
        """Return {permission_key: enabled} for a company and role."""
        return dict(
            self.filter(company_id=company_id, role=role).values_list('permission_key', 'enabled')
        )


class RolePermission(RuleModel):
    """
    Boolean rule: whether a static role holds a permission within a company.

    Exactly one row per (company, role, permission_key). Absence means not granted.
    """

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Company the rule applies to"
    )
    role = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Static role key"
    )
    permission_key = models.CharField(
        max_length=100,
        help_text="Permission catalog key"
    )
    enabled = models.BooleanField(
        default=False,
        help_text="Whether the role holds the permission"
    )
    updated_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('company', 'role', 'permission_key')]
        ordering = ['role', 'permission_key']

    def __str__(self):
        return f"{self.company_id}:{self.role}:{self.permission_key}={self.enabled}"


class PlatformPermissionManager(models.Manager):

    def enabled_map(self, role):
        return dict(self.filter(role=role).values_list('permission_key', 'enabled'))


class PlatformPermission(RuleModel):
    """
    Platform-wide boolean rule for a role, independent of company.

    Only consulted when the actor holds the super-role.
    """

    role = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Static role key"
    )
    permission_key = models.CharField(
        max_length=100,
        help_text="Permission catalog key"
    )
    enabled = models.BooleanField(
        default=False,
        help_text="Whether the role holds the permission platform-wide"
    )
    updated_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    objects = PlatformPermissionManager()

    class Meta:
        db_table = 'platform_permissions'
        unique_together = [('role', 'permission_key')]
        ordering = ['role', 'permission_key']

    def __str__(self):
        return f"platform:{self.role}:{self.permission_key}={self.enabled}"


class UserPermissionManager(models.Manager):
    """Manager for UserPermission queries."""

    def for_user(self, user, company=None):
        qs = self.filter(user=user)
        if company is not None:
            qs = qs.filter(company=company)
        return qs

    def granted_map(self, company_id, user_id):
        """Return {permission_key: granted} for a user within a company."""
        return dict(
            self.filter(company_id=company_id, user_id=user_id).values_list('permission_key', 'granted')
        )


class UserPermission(RuleModel):
    """
    Per-user permission override.

    When present, ``granted`` alone decides the outcome for the key.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='permission_overrides',
        help_text="User the override applies to"
    )
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        related_name='user_permissions',
        help_text="Company scope of the override"
    )
    permission_key = models.CharField(
        max_length=100,
        help_text="Permission catalog key"
    )
    granted = models.BooleanField(
        help_text="True to grant, False to deny"
    )
    reason = models.TextField(
        blank=True,
        help_text="Why the override exists"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        help_text="User who created or last changed the override"
    )

    objects = UserPermissionManager()

    class Meta:
        db_table = 'user_permissions'
        unique_together = [('user', 'company', 'permission_key')]
        ordering = ['permission_key']

    def __str__(self):
        verb = 'grant' if self.granted else 'deny'
        return f"{self.user_id}:{self.permission_key}={verb}"


class DynamicRoleQuerySet(models.QuerySet):

    def for_company(self, company):
        return self.filter(company=company)

    def with_user_counts(self):
        return self.annotate(user_count=Count('assignments', distinct=True))


class DynamicRole(RuleModel):
    """
    Company-defined role on the tri-state rule surface.

    Deleting a dynamic role removes its rule rows and user assignments.
    """

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        related_name='dynamic_roles',
        help_text="Company that owns the role"
    )
    name = models.CharField(
        max_length=100,
        help_text="Role name (unique per company)"
    )
    description = models.TextField(
        blank=True,
    )
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    objects = models.Manager.from_queryset(DynamicRoleQuerySet)()

    class Meta:
        db_table = 'dynamic_roles'
        unique_together = [('company', 'name')]
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.company_id})"


class DynamicRolePermission(RuleModel):
    """
    Tri-state rule for a dynamic role: a row holds allow or deny, absence is unset.
    """

    EFFECT_ALLOW = 'allow'
    EFFECT_DENY = 'deny'
    EFFECT_CHOICES = [
        (EFFECT_ALLOW, 'Allow'),
        (EFFECT_DENY, 'Deny'),
    ]

    role = models.ForeignKey(
        DynamicRole,
        on_delete=models.CASCADE,
        related_name='rules',
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='dynamic_rules',
    )
    effect = models.CharField(
        max_length=10,
        choices=EFFECT_CHOICES,
    )

    class Meta:
        db_table = 'dynamic_role_permissions'
        unique_together = [('role', 'permission')]

    def __str__(self):
        return f"{self.role_id}:{self.permission_id}={self.effect}"


class DynamicRoleAssignment(RuleModel):
    """A user holding a dynamic role. A user may hold several."""

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='dynamic_role_assignments',
    )
    role = models.ForeignKey(
        DynamicRole,
        on_delete=models.CASCADE,
        related_name='assignments',
    )
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    class Meta:
        db_table = 'dynamic_role_assignments'
        unique_together = [('user', 'role')]

    def __str__(self):
        return f"{self.user_id} -> {self.role_id}"


class MenuHeading(RuleModel):
    """Section heading that groups menu items."""

    key = models.CharField(
        max_length=50,
        unique=True,
    )
    label = models.CharField(
        max_length=100,
    )
    sort_order = models.IntegerField(
        default=0,
    )

    class Meta:
        db_table = 'menu_headings'
        ordering = ['sort_order', 'key']

    def __str__(self):
        return self.label


class MenuVisibilityManager(models.Manager):

    def for_role(self, role):
        return self.filter(role=role).select_related('heading')


class MenuVisibility(RuleModel):
    """
    Menu rule for one item and one static role.

    Items without a row are visible with their catalog label and icon.
    """

    ITEM_TYPE_CHOICES = [
        ('item', 'Item'),
        ('group', 'Group'),
        ('heading', 'Heading'),
    ]

    role = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Static role key"
    )
    item_key = models.CharField(
        max_length=100,
        help_text="Menu catalog key"
    )
    item_type = models.CharField(
        max_length=20,
        choices=ITEM_TYPE_CHOICES,
        default='item',
    )
    parent_key = models.CharField(
        max_length=100,
        null=True,
        blank=True,
    )
    is_visible = models.BooleanField(
        default=True,
    )
    sort_order = models.IntegerField(
        default=0,
    )
    custom_label = models.CharField(
        max_length=100,
        null=True,
        blank=True,
    )
    custom_icon = models.CharField(
        max_length=50,
        null=True,
        blank=True,
    )
    heading = models.ForeignKey(
        MenuHeading,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='items',
    )

    objects = MenuVisibilityManager()

    class Meta:
        db_table = 'menu_visibility'
        unique_together = [('role', 'item_key')]
        ordering = ['role', 'sort_order', 'item_key']

    def __str__(self):
        return f"{self.role}:{self.item_key} visible={self.is_visible}"


class AuditLogQuerySet(BaseModelQuerySet):
    """Chainable AuditLog filters with company scoping."""

    def for_company(self, company):
        """Get audit logs for a specific company."""
        return self.filter(company=company)

    def for_user(self, user):
        """Get audit logs for a specific user."""
        return self.filter(user=user)

    def by_action(self, action):
        """Get audit logs for a specific action."""
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        """Get audit logs for a specific target type and optionally target ID."""
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs


class AuditLog(BaseModel):
    """
    Audit trail for access rule changes.

    Every rule write records who changed what, in which company, with the
    before/after values and the request it came from.
    """

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Company this action belongs to (null for platform-level)"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'role_rule_set', 'override_cleared')"
    )
    target_type = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Type of target entity (e.g., 'RolePermission')"
    )
    target_id = models.CharField(
        max_length=200,
        blank=True,
        help_text="Identifier of the target (row id or natural key)"
    )
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after changes in JSON format"
    )
    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
    )
    user_agent = models.TextField(
        blank=True,
    )
    request_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="Request ID for tracing"
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
    )

    objects = BaseModelManager.from_queryset(AuditLogQuerySet)()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', 'created_at']),
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        user_str = self.user.email if self.user else 'System'
        company_str = str(self.company_id) if self.company_id else 'Platform'
        return f"{company_str} - {user_str} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, company=None, target_type='', target_id='',
                   diff=None, metadata=None, request=None):
        """
        Convenience method to create audit log entry.

        Args:
            action: Action being performed
            user: User performing the action
            company: Company context
            target_type: Type of target entity
            target_id: Identifier of target entity
            diff: Before/after changes
            metadata: Additional context
            request: Django request object (for IP, user agent, request ID)

        Returns:
            AuditLog instance, or None if the entry could not be written
        """
        if user is not None and not user.is_authenticated:
            user = None

        log_data = {
            'action': action,
            'user': user,
            'company': company,
            'target_type': target_type,
            'target_id': str(target_id) if target_id else '',
            'diff': diff or {},
            'metadata': metadata or {},
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', '') or ''

        try:
            # Savepoint keeps an audit failure from poisoning the caller's transaction
            with transaction.atomic():
                return cls.objects.create(**log_data)
        except DatabaseError as e:
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action, 'company_id': str(company.pk) if company else None},
                exc_info=True
            )
            return None

    @staticmethod
    def _get_client_ip(request):
        """Extract client IP from request."""
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
