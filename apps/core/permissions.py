"""
DRF permission classes and decorators for portal permission enforcement.

This module provides:
- HasPortalPermission: DRF permission class that enforces catalog permissions
  and feature flags through the access control service
- @requires_permission: Decorator to declare required permission keys
- @requires_feature: Decorator to declare required feature flags
"""
import logging
from rest_framework.permissions import BasePermission

from apps.core.exceptions import RuleStoreUnavailable
from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


def _declared(view, request, attr):
    """
    Return the keys declared for the current handler or, failing that, the view.

    Method-level declarations win over class-level ones.
    """
    handler = getattr(view, request.method.lower(), None)
    declared = getattr(handler, attr, None)
    if declared is None:
        declared = getattr(view, attr, None)
    if not declared:
        return []
    if isinstance(declared, str):
        return [declared]
    return list(declared)


class HasPortalPermission(BasePermission):
    """
    DRF permission class that enforces permission and feature requirements.

    This permission class:
    1. Denies anonymous actors when the view declares any requirement
    2. Checks declared features first with has_feature
    3. Checks declared permissions with has_permission (all by default,
       any when ``require_all_permissions = False``)
    4. Restricts company-scoped URLs to members of that company unless the
       actor is a platform administrator
    5. Logs an unavailable rule store and re-raises RuleStoreUnavailable (503)

    Usage in views:
        class RoleRulesView(APIView):
            permission_classes = [HasPortalPermission]
            required_permissions = ['manage_role_permissions']

    Or with decorators:
        @requires_feature('knowledge_base')
        @requires_permission('edit_knowledge_base')
        class ArticleView(APIView):
            pass
    """

    company_url_kwarg = 'company_id'

    def has_permission(self, request, view):
        """
        Check the actor against the view's declared features and permissions.

        Args:
            request: DRF request object with actor attribute
            view: DRF view instance with optional requirement attributes

        Returns:
            bool: True if every requirement is satisfied, False otherwise
        """
        from apps.rbac.engine import Actor
        from apps.rbac.services import AccessControlService

        actor = getattr(request, 'actor', None) or Actor.anonymous()
        required_features = _declared(view, request, 'required_features')
        required_permissions = _declared(view, request, 'required_permissions')
        require_all = getattr(view, 'require_all_permissions', True)

        if not required_features and not required_permissions:
            return True

        if not actor.is_authenticated:
            return False

        if not self._company_in_scope(request, view, actor):
            return False

        try:
            for feature in required_features:
                if not AccessControlService.has_feature(actor, feature):
                    self._deny(request, view, actor, [f"feature:{feature}"])
                    return False

            if required_permissions and not AccessControlService.has_any_permission(
                actor, required_permissions, require_all=require_all
            ):
                self._deny(request, view, actor, required_permissions)
                return False
        except RuleStoreUnavailable as e:
            logger.error(
                "Refusing request because access rules are unavailable",
                extra={
                    'view': view.__class__.__name__,
                    'error': str(e),
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            raise

        logger.debug(
            "Permission granted",
            extra={
                'required_permissions': required_permissions,
                'required_features': required_features,
                'view': view.__class__.__name__,
            }
        )
        return True

    def _company_in_scope(self, request, view, actor):
        from apps.rbac.roles import is_super_role

        company_id = getattr(view, 'kwargs', {}).get(self.company_url_kwarg)
        if company_id is None or is_super_role(actor.role):
            return True

        if actor.company_id is not None and str(actor.company_id) == str(company_id):
            return True

        SecurityLogger.log_cross_company_access(actor, company_id, path=request.path)
        return False

    def _deny(self, request, view, actor, required):
        logger.warning(
            f"Permission denied: user {actor.user_id} missing {required}",
            extra={
                'user_id': str(actor.user_id),
                'role': actor.role,
                'company_id': str(actor.company_id) if actor.company_id else None,
                'required': list(required),
                'view': view.__class__.__name__,
                'method': request.method,
                'path': request.path,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        SecurityLogger.log_permission_denied(
            actor,
            required,
            view=view.__class__.__name__,
            ip_address=request.META.get('REMOTE_ADDR'),
        )


def _declare(attr, keys):
    def decorator(view_or_method):
        setattr(view_or_method, attr, list(keys))
        return view_or_method
    return decorator


def requires_permission(*keys):
    """
    Decorator to declare required permission keys on view classes or methods.

    The keys are checked by HasPortalPermission; a method-level declaration
    replaces the class-level one for that HTTP method.

    Usage:
        @requires_permission('manage_company_users')
        class OverrideView(APIView):
            permission_classes = [HasPortalPermission]

    Args:
        *keys: Permission keys required for access

    Returns:
        Decorator function that sets the required_permissions attribute
    """
    return _declare('required_permissions', keys)


def requires_feature(*features):
    """
    Decorator to declare required feature flags on view classes or methods.

    Features are evaluated before permissions.
    """
    return _declare('required_features', features)
