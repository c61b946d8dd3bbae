# Export portal permission classes and decorators for easy importing
from apps.core.permissions import HasPortalPermission, requires_feature, requires_permission

__all__ = ['HasPortalPermission', 'requires_feature', 'requires_permission']
