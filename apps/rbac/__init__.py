"""
RBAC (Role-Based Access Control) application.

Provides multi-tenant access control with:
- A static role and permission catalog
- Per-company boolean role rules and platform rules
- User overrides and tri-state dynamic roles (deny wins)
- Feature flags and per-role menu visibility
- Staged edit sessions and audit logging
"""
