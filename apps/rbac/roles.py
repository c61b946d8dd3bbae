"""
Static role catalog.

Roles are a closed set of tags. Each tag has one metadata record, and all
lookups go through a single table keyed by the tag value. Lookups never
raise: unknown or empty keys resolve to None / False / an empty list.
"""
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, List, Optional


class RoleKey(str, Enum):
    REQUESTER = 'requester'
    MARKETING = 'marketing'
    MANAGER = 'manager'
    MARKETING_MANAGER = 'marketing_manager'
    TENANT_ADMIN = 'tenant_admin'
    SUPER_ADMIN = 'super_admin'


class RoleScope(str, Enum):
    TENANT = 'tenant'
    PLATFORM = 'platform'


@dataclass(frozen=True)
class RoleDefinition:
    key: RoleKey
    label: str
    description: str
    scope: RoleScope
    assignable_by: FrozenSet[RoleKey]
    is_default: bool = False

    @property
    def is_platform(self) -> bool:
        return self.scope is RoleScope.PLATFORM


_TENANT_MANAGERS = frozenset({RoleKey.SUPER_ADMIN, RoleKey.TENANT_ADMIN})

# Catalog order is the display order everywhere roles are listed.
ROLE_DEFINITIONS = (
    RoleDefinition(
        key=RoleKey.REQUESTER,
        label='Requester',
        description='Create and track requests for their own needs.',
        scope=RoleScope.TENANT,
        assignable_by=_TENANT_MANAGERS,
        is_default=True,
    ),
    RoleDefinition(
        key=RoleKey.MARKETING,
        label='Marketing',
        description='Submit and collaborate on marketing requests.',
        scope=RoleScope.TENANT,
        assignable_by=_TENANT_MANAGERS,
    ),
    RoleDefinition(
        key=RoleKey.MANAGER,
        label='Manager',
        description='Approve and oversee requests across their team.',
        scope=RoleScope.TENANT,
        assignable_by=_TENANT_MANAGERS,
    ),
    RoleDefinition(
        key=RoleKey.MARKETING_MANAGER,
        label='Marketing Manager',
        description='Coordinate company-wide marketing initiatives.',
        scope=RoleScope.TENANT,
        assignable_by=_TENANT_MANAGERS,
    ),
    RoleDefinition(
        key=RoleKey.TENANT_ADMIN,
        label='Tenant Admin',
        description=(
            'Manage users, overrides, and features for their company. '
            'Role rule matrices require a platform grant.'
        ),
        scope=RoleScope.TENANT,
        assignable_by=_TENANT_MANAGERS,
    ),
    RoleDefinition(
        key=RoleKey.SUPER_ADMIN,
        label='Super Admin',
        description='Platform-wide administrator with access to every company.',
        scope=RoleScope.PLATFORM,
        assignable_by=frozenset({RoleKey.SUPER_ADMIN}),
    ),
)

_ROLE_DEFINITION_MAP = {definition.key.value: definition for definition in ROLE_DEFINITIONS}

TENANT_ROLES = tuple(d for d in ROLE_DEFINITIONS if d.scope is RoleScope.TENANT)
PLATFORM_ROLES = tuple(d for d in ROLE_DEFINITIONS if d.scope is RoleScope.PLATFORM)

DEFAULT_TENANT_ROLE = next(d.key for d in TENANT_ROLES if d.is_default)

SUPER_ROLE = RoleKey.SUPER_ADMIN

ROLE_CHOICES = [(d.key.value, d.label) for d in ROLE_DEFINITIONS]


def _coerce(role_key) -> Optional[str]:
    if isinstance(role_key, RoleKey):
        return role_key.value
    if isinstance(role_key, str) and role_key:
        return role_key
    return None


def get_role_definition(role_key) -> Optional[RoleDefinition]:
    """Return the definition for a role key, or None for unknown or empty keys."""
    return _ROLE_DEFINITION_MAP.get(_coerce(role_key))


def is_known_role(role_key) -> bool:
    return get_role_definition(role_key) is not None


def is_super_role(role_key) -> bool:
    return _coerce(role_key) == SUPER_ROLE.value


def get_assignable_roles(acting_role) -> List[RoleDefinition]:
    """
    List the roles an actor holding ``acting_role`` may assign, in catalog order.

    Args:
        acting_role: Role key of the acting user

    Returns:
        Every role whose assignable_by set contains the acting role
    """
    acting = get_role_definition(acting_role)
    if acting is None:
        return []
    return [d for d in ROLE_DEFINITIONS if acting.key in d.assignable_by]


def can_manage_role(acting_role, target_role) -> bool:
    """True when ``target_role`` may be assigned by a holder of ``acting_role``."""
    acting = get_role_definition(acting_role)
    target = get_role_definition(target_role)
    if acting is None or target is None:
        return False
    return acting.key in target.assignable_by


def format_role_label(role_key) -> str:
    """Human label for a role key; unknown keys are title-cased word by word."""
    definition = get_role_definition(role_key)
    if definition is not None:
        return definition.label
    key = _coerce(role_key) or ''
    return ' '.join(part[:1].upper() + part[1:] for part in key.split('_') if part)
