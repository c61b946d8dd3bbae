"""
Rule store: cached reads and serialized writes for every access rule surface.

Reads are cached per scope through CacheService. A database failure on read
raises RuleStoreUnavailable instead of looking like an empty rule set.

Writes run inside ``transaction.atomic()`` with the parent row (company,
dynamic role, or user) locked via ``select_for_update()``, upsert or delete a
single keyed row, write an audit entry, and invalidate the affected cache
scope before returning.
"""
import logging
from typing import Dict, Iterable, List, Optional

from django.db import DatabaseError, transaction

from apps.companies.features import is_known_feature
from apps.companies.models import Company, FeatureFlag
from apps.core.cache import CacheKeys, CacheService, CacheTTL
from apps.core.exceptions import RuleStoreUnavailable
from apps.core.logging import SecurityLogger
from apps.rbac.catalog import (
    TENANT_PERMISSION_KEYS, get_menu_item, is_known_permission,
)
from apps.rbac.engine import Actor, Effect, MenuRule, RuleSnapshot
from apps.rbac.models import (
    AuditLog, DynamicRole, DynamicRoleAssignment, DynamicRolePermission,
    MenuHeading, MenuVisibility, Permission, PlatformPermission,
    RolePermission, User, UserPermission,
)
from apps.rbac.roles import RoleKey, get_role_definition, is_known_role, is_super_role

logger = logging.getLogger(__name__)


class UnknownRuleKey(ValueError):
    """Raised when a write names a role, permission, feature, or menu item outside the catalog."""


class RuleStore:
    """
    Storage gateway for access rules.

    All methods are classmethods; the store holds no state of its own beyond
    the shared cache.
    """

    # ------------------------------------------------------------------
    # Cache handling
    # ------------------------------------------------------------------

    @classmethod
    def invalidate(cls, *scope_keys: str) -> None:
        """Drop cached rule segments for the given scope keys."""
        for scope_key in scope_keys:
            CacheService.delete(scope_key)
        logger.debug("Invalidated rule scopes", extra={'scope_keys': list(scope_keys)})

    @classmethod
    def _cached(cls, scope_key: str, operation: str, loader):
        def load():
            try:
                return loader()
            except DatabaseError as e:
                logger.error(
                    f"Rule store read failed: {operation}",
                    extra={'scope_key': scope_key, 'error': str(e)},
                    exc_info=True
                )
                SecurityLogger.log_rule_store_unavailable(operation, str(e))
                raise RuleStoreUnavailable() from e

        return CacheService.get_or_set(scope_key, load, CacheTTL.rule_snapshot())

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    @classmethod
    def platform_rules(cls, role: str) -> Dict[str, bool]:
        return cls._cached(
            CacheKeys.format(CacheKeys.PLATFORM_RULES, role=role),
            'platform_rules',
            lambda: PlatformPermission.objects.enabled_map(role),
        )

    @classmethod
    def role_rules(cls, company_id, role: str) -> Dict[str, bool]:
        return cls._cached(
            CacheKeys.format(CacheKeys.ROLE_RULES, company_id=company_id, role=role),
            'role_rules',
            lambda: RolePermission.objects.enabled_map(company_id, role),
        )

    @classmethod
    def user_overrides(cls, company_id, user_id) -> Dict[str, bool]:
        return cls._cached(
            CacheKeys.format(CacheKeys.USER_OVERRIDES, company_id=company_id, user_id=user_id),
            'user_overrides',
            lambda: UserPermission.objects.granted_map(company_id, user_id),
        )

    @classmethod
    def dynamic_role_ids(cls, user_id) -> List[str]:
        return cls._cached(
            CacheKeys.format(CacheKeys.DYNAMIC_ASSIGNMENTS, user_id=user_id),
            'dynamic_assignments',
            lambda: [
                str(role_id) for role_id in
                DynamicRoleAssignment.objects.filter(user_id=user_id).values_list('role_id', flat=True)
            ],
        )

    @classmethod
    def dynamic_role_effects(cls, role_id) -> Dict[str, str]:
        """Return {permission_key: 'allow'|'deny'} for one dynamic role."""
        return cls._cached(
            CacheKeys.format(CacheKeys.DYNAMIC_ROLE_EFFECTS, role_id=role_id),
            'dynamic_role_effects',
            lambda: dict(
                DynamicRolePermission.objects.filter(role_id=role_id)
                .values_list('permission__key', 'effect')
            ),
        )

    @classmethod
    def features(cls, company_id) -> Dict[str, bool]:
        return cls._cached(
            CacheKeys.format(CacheKeys.FEATURE_FLAGS, company_id=company_id),
            'features',
            lambda: FeatureFlag.objects.enabled_map(company_id),
        )

    @classmethod
    def menu_rules(cls, role: str) -> Dict[str, dict]:
        def load():
            return {
                row.item_key: {
                    'is_visible': row.is_visible,
                    'sort_order': row.sort_order,
                    'custom_label': row.custom_label,
                    'custom_icon': row.custom_icon,
                    'heading': row.heading.key if row.heading_id else None,
                }
                for row in MenuVisibility.objects.for_role(role)
            }

        return cls._cached(
            CacheKeys.format(CacheKeys.MENU_RULES, role=role),
            'menu_rules',
            load,
        )

    @classmethod
    def snapshot_for(cls, actor: Actor) -> RuleSnapshot:
        """
        Assemble every rule segment that can affect decisions for ``actor``.

        Args:
            actor: Actor to load rules for

        Returns:
            RuleSnapshot (empty for anonymous actors)

        Raises:
            RuleStoreUnavailable: if a segment cannot be read from the database
        """
        if actor is None or not actor.is_authenticated:
            return RuleSnapshot()

        role = actor.role
        company_id = actor.company_id
        menu = {key: MenuRule(**values) for key, values in cls.menu_rules(role).items()}

        if is_super_role(role):
            return RuleSnapshot(
                platform_rules=cls.platform_rules(role),
                role_rules=cls.role_rules(company_id, role) if company_id else {},
                features=cls.features(company_id) if company_id else {},
                menu=menu,
            )

        if company_id is None:
            return RuleSnapshot(menu=menu)

        return RuleSnapshot(
            role_rules=cls.role_rules(company_id, role),
            overrides=cls.user_overrides(company_id, actor.user_id),
            dynamic_effects=tuple(
                cls.dynamic_role_effects(role_id) for role_id in cls.dynamic_role_ids(actor.user_id)
            ),
            features=cls.features(company_id),
            menu=menu,
        )

    # ------------------------------------------------------------------
    # Direct reads (edit sessions show storage truth, never the cache)
    # ------------------------------------------------------------------

    @classmethod
    def load_role_rule_cells(cls, company_id, role: str) -> Dict[str, bool]:
        return RolePermission.objects.enabled_map(company_id, role)

    @classmethod
    def load_dynamic_role_cells(cls, role_id) -> Dict[str, Effect]:
        """Return {permission_id: Effect} for one dynamic role."""
        return {
            str(permission_id): Effect(effect)
            for permission_id, effect in
            DynamicRolePermission.objects.filter(role_id=role_id).values_list('permission_id', 'effect')
        }

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_role(role: str) -> str:
        if isinstance(role, RoleKey):
            role = role.value
        if not is_known_role(role):
            raise UnknownRuleKey(f"Unknown role '{role}'")
        return role

    @staticmethod
    def _check_permission(key: str) -> str:
        if not is_known_permission(key):
            raise UnknownRuleKey(f"Unknown permission '{key}'")
        return key

    @staticmethod
    def _lock_company(company) -> Company:
        return Company.objects.select_for_update().get(pk=getattr(company, 'pk', company))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @classmethod
    def set_role_rule(cls, company, role: str, permission_key: str, enabled: Optional[bool],
                      user=None, request=None) -> Optional[RolePermission]:
        """
        Upsert or clear the boolean rule for (company, role, permission_key).

        Args:
            company: Company instance or id
            role: Static role key
            permission_key: Permission catalog key
            enabled: True/False to upsert, None to delete the row
            user: Acting user
            request: Request for audit context

        Returns:
            The RolePermission row, or None when cleared
        """
        role = cls._check_role(role)
        cls._check_permission(permission_key)

        with transaction.atomic():
            company = cls._lock_company(company)
            existing = RolePermission.objects.filter(
                company=company, role=role, permission_key=permission_key
            ).first()
            before = existing.enabled if existing else None

            if enabled is None:
                row = None
                if existing:
                    existing.delete()
            else:
                row, _ = RolePermission.objects.update_or_create(
                    company=company,
                    role=role,
                    permission_key=permission_key,
                    defaults={'enabled': enabled, 'updated_by': user},
                )

            AuditLog.log_action(
                action='role_rule_cleared' if enabled is None else 'role_rule_set',
                user=user,
                company=company,
                target_type='RolePermission',
                target_id=f"{role}:{permission_key}",
                diff={'before': before, 'after': enabled},
                request=request,
            )

        cls.invalidate(CacheKeys.format(CacheKeys.ROLE_RULES, company_id=company.pk, role=role))
        return row

    @classmethod
    def set_platform_rule(cls, role: str, permission_key: str, enabled: Optional[bool],
                          user=None, request=None) -> Optional[PlatformPermission]:
        """Upsert or clear a platform-wide rule for a role."""
        role = cls._check_role(role)
        cls._check_permission(permission_key)

        with transaction.atomic():
            existing = PlatformPermission.objects.select_for_update().filter(
                role=role, permission_key=permission_key
            ).first()
            before = existing.enabled if existing else None

            if enabled is None:
                row = None
                if existing:
                    existing.delete()
            else:
                row, _ = PlatformPermission.objects.update_or_create(
                    role=role,
                    permission_key=permission_key,
                    defaults={'enabled': enabled, 'updated_by': user},
                )

            AuditLog.log_action(
                action='platform_rule_cleared' if enabled is None else 'platform_rule_set',
                user=user,
                target_type='PlatformPermission',
                target_id=f"{role}:{permission_key}",
                diff={'before': before, 'after': enabled},
                request=request,
            )

        cls.invalidate(CacheKeys.format(CacheKeys.PLATFORM_RULES, role=role))
        return row

    @classmethod
    def set_user_override(cls, company, target_user: User, permission_key: str,
                          granted: Optional[bool], reason: str = '', granted_by=None,
                          request=None) -> Optional[UserPermission]:
        """
        Upsert or clear a user override within a company.

        Args:
            company: Company instance or id
            target_user: User the override applies to (must belong to the company)
            permission_key: Permission catalog key
            granted: True to grant, False to deny, None to remove the override
            reason: Free-text justification stored with the override
            granted_by: Acting user
            request: Request for audit context

        Returns:
            The UserPermission row, or None when cleared
        """
        cls._check_permission(permission_key)

        with transaction.atomic():
            company = cls._lock_company(company)
            if target_user.company_id != company.pk:
                raise ValueError("User does not belong to this company")

            existing = UserPermission.objects.filter(
                user=target_user, company=company, permission_key=permission_key
            ).first()
            before = existing.granted if existing else None

            if granted is None:
                row = None
                if existing:
                    existing.delete()
            else:
                row, _ = UserPermission.objects.update_or_create(
                    user=target_user,
                    company=company,
                    permission_key=permission_key,
                    defaults={'granted': granted, 'reason': reason, 'granted_by': granted_by},
                )

            AuditLog.log_action(
                action='override_cleared' if granted is None else 'override_set',
                user=granted_by,
                company=company,
                target_type='UserPermission',
                target_id=f"{target_user.pk}:{permission_key}",
                diff={'before': before, 'after': granted},
                metadata={'reason': reason} if reason else None,
                request=request,
            )

        cls.invalidate(CacheKeys.format(
            CacheKeys.USER_OVERRIDES, company_id=company.pk, user_id=target_user.pk
        ))
        return row

    @classmethod
    def set_user_role(cls, company, target_user: User, role: str, user=None, request=None) -> User:
        """
        Change the static role of a company user.

        Args:
            company: Company instance or id
            target_user: User to update (must belong to the company)
            role: Tenant role key
            user: Acting user
            request: Request for audit context

        Returns:
            The updated User

        Raises:
            UnknownRuleKey: if the role is not in the catalog
            ValueError: if the role is platform-scoped or the user is outside the company
        """
        role = cls._check_role(role)
        if get_role_definition(role).is_platform:
            raise ValueError(f"Role '{role}' cannot be assigned within a company")

        with transaction.atomic():
            company = cls._lock_company(company)
            locked = User.objects.select_for_update().filter(pk=target_user.pk, company=company).first()
            if locked is None:
                raise ValueError("User does not belong to this company")

            before = locked.role
            if before != role:
                locked.role = role
                locked.save(update_fields=['role', 'updated_at'])

            AuditLog.log_action(
                action='user_role_set',
                user=user,
                company=company,
                target_type='User',
                target_id=str(locked.pk),
                diff={'before': before, 'after': role},
                request=request,
            )

        return locked

    @classmethod
    def set_feature(cls, company, feature_key: str, enabled: bool,
                    user=None, request=None) -> FeatureFlag:
        """Upsert a company feature flag. Takes effect immediately."""
        if not is_known_feature(feature_key):
            raise UnknownRuleKey(f"Unknown feature '{feature_key}'")

        with transaction.atomic():
            company = cls._lock_company(company)
            existing = FeatureFlag.objects.filter(company=company, feature_key=feature_key).first()
            before = existing.enabled if existing else None

            flag, _ = FeatureFlag.objects.update_or_create(
                company=company,
                feature_key=feature_key,
                defaults={'enabled': enabled, 'updated_by': user},
            )

            AuditLog.log_action(
                action='feature_flag_set',
                user=user,
                company=company,
                target_type='FeatureFlag',
                target_id=feature_key,
                diff={'before': before, 'after': enabled},
                request=request,
            )

        cls.invalidate(CacheKeys.format(CacheKeys.FEATURE_FLAGS, company_id=company.pk))
        return flag

    @classmethod
    def set_menu_rule(cls, role: str, item_key: str, user=None, request=None,
                      **fields) -> MenuVisibility:
        """
        Upsert the menu rule for (role, item_key).

        Accepted fields: is_visible, sort_order, custom_label, custom_icon,
        item_type, parent_key, heading_key.
        """
        role = cls._check_role(role)
        if get_menu_item(item_key) is None:
            raise UnknownRuleKey(f"Unknown menu item '{item_key}'")

        defaults = {
            name: fields[name]
            for name in ('is_visible', 'sort_order', 'custom_label', 'custom_icon', 'item_type', 'parent_key')
            if name in fields
        }
        if 'heading_key' in fields:
            heading_key = fields['heading_key']
            defaults['heading'] = MenuHeading.objects.get(key=heading_key) if heading_key else None

        with transaction.atomic():
            row, created = MenuVisibility.objects.update_or_create(
                role=role,
                item_key=item_key,
                defaults=defaults,
            )

            AuditLog.log_action(
                action='menu_rule_set',
                user=user,
                target_type='MenuVisibility',
                target_id=f"{role}:{item_key}",
                diff={'after': {k: getattr(v, 'key', v) for k, v in defaults.items()}, 'created': created},
                request=request,
            )

        cls.invalidate(CacheKeys.format(CacheKeys.MENU_RULES, role=role))
        return row

    @classmethod
    def create_dynamic_role(cls, company, name: str, description: str = '',
                            user=None, request=None) -> DynamicRole:
        with transaction.atomic():
            company = cls._lock_company(company)
            role = DynamicRole.objects.create(
                company=company,
                name=name,
                description=description,
                created_by=user,
            )
            AuditLog.log_action(
                action='dynamic_role_created',
                user=user,
                company=company,
                target_type='DynamicRole',
                target_id=role.pk,
                diff={'name': name},
                request=request,
            )
        return role

    @classmethod
    def delete_dynamic_role(cls, role: DynamicRole, user=None, request=None) -> None:
        """Delete a dynamic role together with its rule rows and assignments."""
        with transaction.atomic():
            role = DynamicRole.objects.select_for_update().get(pk=role.pk)
            holder_ids = list(role.assignments.values_list('user_id', flat=True))
            role_id = role.pk
            company = role.company
            name = role.name
            role.delete()

            AuditLog.log_action(
                action='dynamic_role_deleted',
                user=user,
                company=company,
                target_type='DynamicRole',
                target_id=role_id,
                diff={'name': name, 'holders': [str(pk) for pk in holder_ids]},
                request=request,
            )

        cls.invalidate(
            CacheKeys.format(CacheKeys.DYNAMIC_ROLE_EFFECTS, role_id=role_id),
            *[CacheKeys.format(CacheKeys.DYNAMIC_ASSIGNMENTS, user_id=pk) for pk in holder_ids]
        )

    @classmethod
    def set_dynamic_effect(cls, role: DynamicRole, permission, effect: Effect,
                           user=None, request=None) -> Optional[DynamicRolePermission]:
        """
        Set one tri-state cell. Effect.UNSET deletes the row.

        Args:
            role: DynamicRole instance or id
            permission: Permission instance or id
            effect: Target Effect
            user: Acting user
            request: Request for audit context

        Returns:
            The DynamicRolePermission row, or None when unset
        """
        effect = Effect(effect)

        with transaction.atomic():
            role = DynamicRole.objects.select_for_update().get(pk=getattr(role, 'pk', role))
            permission = Permission.objects.get(pk=getattr(permission, 'pk', permission))

            existing = DynamicRolePermission.objects.filter(role=role, permission=permission).first()
            before = existing.effect if existing else Effect.UNSET.value

            if effect is Effect.UNSET:
                row = None
                if existing:
                    existing.delete()
            else:
                row, _ = DynamicRolePermission.objects.update_or_create(
                    role=role,
                    permission=permission,
                    defaults={'effect': effect.value},
                )

            AuditLog.log_action(
                action='dynamic_rule_set',
                user=user,
                company=role.company,
                target_type='DynamicRolePermission',
                target_id=f"{role.pk}:{permission.key}",
                diff={'before': before, 'after': effect.value},
                request=request,
            )

        cls.invalidate(CacheKeys.format(CacheKeys.DYNAMIC_ROLE_EFFECTS, role_id=role.pk))
        return row

    @classmethod
    def set_user_dynamic_roles(cls, target_user: User, role_ids: Iterable,
                               user=None, request=None) -> List[DynamicRole]:
        """
        Replace the set of dynamic roles a user holds.

        Every role must belong to the user's company.
        """
        wanted = {str(role_id) for role_id in role_ids}

        with transaction.atomic():
            target_user = User.objects.select_for_update().get(pk=target_user.pk)
            roles = list(DynamicRole.objects.filter(pk__in=wanted, company_id=target_user.company_id))
            if len(roles) != len(wanted):
                raise ValueError("Every dynamic role must exist and belong to the user's company")

            current = {
                str(role_id) for role_id in
                DynamicRoleAssignment.objects.filter(user=target_user).values_list('role_id', flat=True)
            }
            DynamicRoleAssignment.objects.filter(user=target_user).exclude(role_id__in=wanted).delete()
            for role in roles:
                if str(role.pk) not in current:
                    DynamicRoleAssignment.objects.create(user=target_user, role=role, assigned_by=user)

            AuditLog.log_action(
                action='dynamic_roles_assigned',
                user=user,
                company=target_user.company,
                target_type='User',
                target_id=target_user.pk,
                diff={'before': sorted(current), 'after': sorted(wanted)},
                request=request,
            )

        cls.invalidate(CacheKeys.format(CacheKeys.DYNAMIC_ASSIGNMENTS, user_id=target_user.pk))
        return roles

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    @classmethod
    def seed_tenant_admin(cls, company) -> int:
        """
        Grant every tenant permission to tenant_admin in a company.

        Existing rows are left untouched, so an explicit disable survives.

        Returns:
            Number of rows created
        """
        role = RoleKey.TENANT_ADMIN.value
        created_count = 0
        with transaction.atomic():
            company = cls._lock_company(company)
            for key in TENANT_PERMISSION_KEYS:
                _, created = RolePermission.objects.get_or_create(
                    company=company,
                    role=role,
                    permission_key=key,
                    defaults={'enabled': True},
                )
                created_count += int(created)

        if created_count:
            cls.invalidate(CacheKeys.format(CacheKeys.ROLE_RULES, company_id=company.pk, role=role))
        return created_count
