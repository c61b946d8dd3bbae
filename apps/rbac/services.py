"""
Access control service.

Single entry point for callers that need a decision: it loads the actor's
rule snapshot from the RuleStore and delegates to the pure engine.
"""
import logging
from typing import FrozenSet, Iterable, List

from django.contrib.auth.models import AnonymousUser

from apps.companies.features import FEATURE_DEFINITIONS
from apps.core.logging import SecurityLogger
from apps.rbac import engine
from apps.rbac.engine import Actor, Decision, MenuEntry, RuleSnapshot
from apps.rbac.roles import get_role_definition, is_super_role
from apps.rbac.store import RuleStore

logger = logging.getLogger(__name__)


class AccessControlService:
    """
    Service for permission, feature, and menu decisions.

    Provides methods for:
    - Building an Actor from a user (with optional role impersonation)
    - Checking single or multiple permissions
    - Checking feature flags
    - Listing effective permissions and enabled features
    - Resolving the visible menu
    """

    @classmethod
    def actor_for_user(cls, user, company_id=None, impersonate_role=None) -> Actor:
        """
        Build an Actor for a user.

        Args:
            user: User instance (or AnonymousUser / None)
            company_id: Company scope override, honoured only for the super-role
            impersonate_role: Role to evaluate access as, honoured only for the
                super-role; impersonating the super-role itself is a no-op

        Returns:
            Actor; anonymous when the user is missing or inactive

        Raises:
            ValueError: if a super-role user asks to impersonate an unknown role
        """
        if user is None or isinstance(user, AnonymousUser) or not user.is_active:
            return Actor.anonymous()
        scope = company_id if (company_id and user.is_super_admin) else user.company_id

        if impersonate_role and user.is_super_admin:
            definition = get_role_definition(impersonate_role)
            if definition is None:
                raise ValueError(f"Unknown role '{impersonate_role}'")
            if not is_super_role(definition.key):
                SecurityLogger.log_role_impersonation(user.pk, user.role, definition.key.value, company_id=scope)
                return Actor(
                    user_id=user.pk,
                    role=definition.key.value,
                    company_id=scope,
                    impersonator_role=user.role,
                )

        return Actor(user_id=user.pk, role=user.role, company_id=scope)

    @classmethod
    def snapshot(cls, actor: Actor) -> RuleSnapshot:
        return RuleStore.snapshot_for(actor)

    @classmethod
    def explain_permission(cls, actor: Actor, key: str) -> Decision:
        """
        Decide a permission and return the deciding layer with its trace.

        Raises:
            RuleStoreUnavailable: if rules cannot be loaded
        """
        decision = engine.explain_permission(actor, key, cls.snapshot(actor))
        logger.debug(
            f"Permission {key}: {'allow' if decision.allowed else 'deny'} ({decision.layer.value})",
            extra={
                'user_id': str(actor.user_id) if actor.user_id else None,
                'permission': key,
                'layer': decision.layer.value,
            }
        )
        return decision

    @classmethod
    def has_permission(cls, actor: Actor, key: str) -> bool:
        return cls.explain_permission(actor, key).allowed

    @classmethod
    def has_any_permission(cls, actor: Actor, keys: Iterable[str], require_all: bool = False) -> bool:
        return engine.has_any_permission(actor, keys, cls.snapshot(actor), require_all=require_all)

    @classmethod
    def has_feature(cls, actor: Actor, feature_key: str) -> bool:
        return engine.has_feature(actor, feature_key, cls.snapshot(actor))

    @classmethod
    def get_all_permissions(cls, actor: Actor) -> FrozenSet[str]:
        return engine.get_all_permissions(actor, cls.snapshot(actor))

    @classmethod
    def enabled_features(cls, actor: Actor) -> List[str]:
        """Feature keys enabled for the actor, in catalog order."""
        snapshot = cls.snapshot(actor)
        return [
            definition.key.value for definition in FEATURE_DEFINITIONS
            if engine.has_feature(actor, definition.key.value, snapshot)
        ]

    @classmethod
    def is_visible(cls, actor: Actor, item_key: str) -> bool:
        return engine.is_visible(actor, item_key, cls.snapshot(actor))

    @classmethod
    def build_menu(cls, actor: Actor) -> List[MenuEntry]:
        return engine.build_menu(actor, cls.snapshot(actor))
