"""
Static permission and menu catalogs.

The permission catalog is the source of truth for every evaluable key. The
``permissions`` table mirrors it for tenant-facing listings and is kept in
sync by the ``sync_permissions`` management command.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


# Sentinel added to a super-role's effective permission set
MANAGE_ALL = 'manage_all'


@dataclass(frozen=True)
class PermissionDefinition:
    key: str
    label: str
    category: str
    description: str
    scope: str = 'tenant'

    @property
    def action(self) -> str:
        return self.key.partition('_')[0]

    @property
    def resource(self) -> str:
        return self.key.partition('_')[2]


@dataclass(frozen=True)
class PermissionGroup:
    key: str
    name: str
    description: str
    scope: str
    permissions: Tuple[Tuple[str, str], ...]

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(key for key, _ in self.permissions)


PERMISSION_GROUPS = (
    PermissionGroup(
        key='basic-access',
        name='Basic Access',
        description='Permissions that every active company user typically needs.',
        scope='tenant',
        permissions=(
            ('view_dashboard', 'Open the company dashboard.'),
            ('view_own_requests', 'See requests the user submitted.'),
            ('edit_own_drafts', 'Edit requests still in draft.'),
        ),
    ),
    PermissionGroup(
        key='create-requests',
        name='Create Requests',
        description='Grant users the ability to submit new requests.',
        scope='tenant',
        permissions=(
            ('create_hardware_request', 'Submit hardware requests.'),
            ('create_toner_request', 'Submit toner orders.'),
            ('create_marketing_request', 'Submit marketing requests.'),
            ('create_user_account_request', 'Request new user accounts.'),
            ('create_user_offboarding_request', 'Request user offboarding.'),
            ('create_ticket_request', 'Open IT support tickets.'),
            ('create_facility_services_request', 'Submit facility services requests.'),
            ('create_office_services_request', 'Submit office services requests.'),
            ('create_accounts_payable_request', 'Submit accounts payable requests.'),
            ('create_finance_request', 'Submit finance requests.'),
            ('create_technology_training_request', 'Request technology training.'),
            ('create_it_service_desk_request', 'Submit IT service desk requests.'),
            ('create_hr_request', 'Submit HR requests.'),
            ('create_department_request', 'Submit requests to a department.'),
        ),
    ),
    PermissionGroup(
        key='approvals',
        name='Approvals',
        description='Approval capabilities for leadership roles.',
        scope='tenant',
        permissions=(
            ('approve_hardware_requests', 'Approve or decline hardware requests.'),
            ('approve_user_account_requests', 'Approve or decline user account requests.'),
        ),
    ),
    PermissionGroup(
        key='marketing',
        name='Marketing',
        description='Marketing campaigns and promotional tools.',
        scope='tenant',
        permissions=(
            ('approve_marketing_requests', 'Approve or decline marketing requests.'),
            ('approve_newsletter_submissions', 'Approve newsletter submissions.'),
            ('view_fax_campaigns', 'See fax campaign history.'),
        ),
    ),
    PermissionGroup(
        key='management',
        name='Management',
        description='Manage people and operational workflows within a company.',
        scope='tenant',
        permissions=(
            ('manage_company_users', 'Manage company users and their access.'),
            ('manage_newsletter_cycle', 'Open and close newsletter cycles.'),
            ('view_all_company_requests', 'See every request in the company.'),
            ('view_request_metrics', 'See request volume and turnaround metrics.'),
        ),
    ),
    PermissionGroup(
        key='configuration',
        name='Configuration',
        description='Company-specific configuration and integrations.',
        scope='tenant',
        permissions=(
            ('configure_company_settings', 'Change company settings and branding.'),
            ('manage_company_features', 'Turn company features on or off.'),
            ('manage_office365_integration', 'Configure the Office 365 integration.'),
            ('configure_sharepoint', 'Configure SharePoint document libraries.'),
        ),
    ),
    PermissionGroup(
        key='documentation',
        name='Documentation',
        description='Surface company resources and share updates.',
        scope='tenant',
        permissions=(
            ('view_modality_details', 'See clinic modality details.'),
            ('view_sharepoint_documents', 'Browse company SharePoint documents.'),
            ('submit_newsletter', 'Submit newsletter content.'),
            ('view_news', 'Read company news.'),
            ('create_news', 'Publish news posts.'),
            ('edit_news', 'Edit news posts.'),
            ('delete_news', 'Delete news posts.'),
            ('manage_knowledge_base', 'Organise knowledge base categories.'),
            ('edit_knowledge_base', 'Edit knowledge base articles.'),
            ('delete_knowledge_base', 'Delete knowledge base articles.'),
        ),
    ),
    PermissionGroup(
        key='ticket-management',
        name='Ticket Management',
        description='Assign, track, and resolve support tickets.',
        scope='tenant',
        permissions=(
            ('view_ticket_queue', 'See the ticket queue.'),
            ('view_ticket_audit_log', 'See the history of a ticket.'),
            ('assign_ticket_requests', 'Assign tickets to staff.'),
            ('start_ticket_requests', 'Start work on tickets.'),
            ('resolve_ticket_requests', 'Resolve tickets.'),
            ('manage_ticket_watchers', 'Add or remove ticket watchers.'),
        ),
    ),
    PermissionGroup(
        key='system-admin',
        name='System Administration',
        description='Platform-wide capabilities reserved for the portal operator.',
        scope='platform',
        permissions=(
            ('manage_all_companies', 'Create and configure any company.'),
            ('manage_system_users', 'Manage users across every company.'),
            ('view_audit_logs', 'Read the access control audit trail.'),
            ('manage_file_storage', 'Manage shared file storage.'),
            ('manage_user_invites', 'Send and revoke user invitations.'),
            ('manage_role_permissions', 'Edit role and dynamic role permissions.'),
            ('view_system_metrics', 'See platform health metrics.'),
            ('manage_menu', 'Configure menu visibility per role.'),
        ),
    ),
)

_LABEL_WORDS = {
    'it': 'IT',
    'hr': 'HR',
    'office365': 'Office 365',
    'sharepoint': 'SharePoint',
}


def _label_for(key: str) -> str:
    return ' '.join(_LABEL_WORDS.get(word, word.capitalize()) for word in key.split('_'))


PERMISSION_DEFINITIONS = tuple(
    PermissionDefinition(
        key=key,
        label=_label_for(key),
        category=group.key,
        description=description,
        scope=group.scope,
    )
    for group in PERMISSION_GROUPS
    for key, description in group.permissions
)

_PERMISSION_MAP: Dict[str, PermissionDefinition] = {p.key: p for p in PERMISSION_DEFINITIONS}
_GROUP_MAP: Dict[str, PermissionGroup] = {g.key: g for g in PERMISSION_GROUPS}

PERMISSION_KEYS = tuple(_PERMISSION_MAP)
TENANT_PERMISSION_KEYS = tuple(p.key for p in PERMISSION_DEFINITIONS if p.scope == 'tenant')
PLATFORM_PERMISSION_KEYS = tuple(p.key for p in PERMISSION_DEFINITIONS if p.scope == 'platform')


def get_permission_definition(key) -> Optional[PermissionDefinition]:
    if not isinstance(key, str):
        return None
    return _PERMISSION_MAP.get(key)


def is_known_permission(key) -> bool:
    return get_permission_definition(key) is not None


def get_permission_group(group_key: str) -> Optional[PermissionGroup]:
    return _GROUP_MAP.get(group_key)


def permissions_by_category() -> List[dict]:
    """Catalog grouped for display: one entry per group, permissions in catalog order."""
    return [
        {
            'key': group.key,
            'name': group.name,
            'description': group.description,
            'scope': group.scope,
            'permissions': [_PERMISSION_MAP[key] for key in group.keys],
        }
        for group in PERMISSION_GROUPS
    ]


@dataclass(frozen=True)
class MenuHeadingDefinition:
    key: str
    label: str
    sort_order: int


@dataclass(frozen=True)
class MenuItemDefinition:
    key: str
    label: str
    url: str
    icon: str
    heading: str
    # Any one of these grants the entry; empty means no permission gate
    permissions: Tuple[str, ...] = ()
    feature: Optional[str] = None


DEFAULT_MENU_HEADINGS = (
    MenuHeadingDefinition('main', 'Main', 0),
    MenuHeadingDefinition('requests', 'Requests', 10),
    MenuHeadingDefinition('resources', 'Resources', 20),
    MenuHeadingDefinition('administration', 'Administration', 30),
)

DEFAULT_MENU_ITEMS = (
    MenuItemDefinition('home', 'Home', '/home', 'Home', 'main'),
    MenuItemDefinition('dashboard', 'Dashboard', '/dashboard', 'BarChart3', 'main',
                       permissions=('view_dashboard',)),
    MenuItemDefinition('requests', 'Requests', '/requests', 'ShoppingCart', 'main',
                       permissions=('view_own_requests', 'view_all_company_requests')),
    MenuItemDefinition('reminders', 'Reminders', '/reminders', 'Bell', 'main'),
    MenuItemDefinition('help', 'Help Guide', '/help', 'HelpCircle', 'main'),
    MenuItemDefinition('help-ticket', 'Submit IT Ticket', '/help-ticket', 'LifeBuoy', 'main',
                       permissions=('create_ticket_request',)),
    MenuItemDefinition('catalog', 'Hardware Catalog', '/catalog', 'Package', 'requests',
                       permissions=('create_hardware_request',), feature='hardware_requests'),
    MenuItemDefinition('print-orders', 'Print Ordering Forms', '/marketing/print-orders', 'Printer',
                       'requests', permissions=('create_marketing_request',), feature='print_ordering'),
    MenuItemDefinition('fax-campaigns', 'Fax Campaigns', '/fax-campaigns', 'Send', 'requests',
                       permissions=('view_fax_campaigns',), feature='fax_campaigns'),
    MenuItemDefinition('newsletter', 'Monthly Newsletter', '/newsletter', 'Newspaper', 'requests',
                       permissions=('submit_newsletter',), feature='monthly_newsletter'),
    MenuItemDefinition('knowledge-base', 'Knowledge Base', '/knowledge-base', 'BookOpen', 'resources',
                       feature='knowledge_base'),
    MenuItemDefinition('news', 'News', '/news/view-all', 'Newspaper', 'resources',
                       permissions=('view_news',)),
    MenuItemDefinition('directory', 'Company Directory', '/directory', 'Users', 'resources'),
    MenuItemDefinition('documentation', 'Company Documents', '/documentation', 'FolderOpen', 'resources',
                       permissions=('view_sharepoint_documents',)),
    MenuItemDefinition('modality-management', 'Modality Details', '/modality-management', 'Network',
                       'resources', permissions=('view_modality_details',), feature='modality_management'),
    MenuItemDefinition('approvals', 'Pending Approvals', '/approvals', 'Clock', 'administration',
                       permissions=('approve_hardware_requests', 'approve_user_account_requests',
                                    'approve_marketing_requests'),
                       feature='approvals'),
    MenuItemDefinition('audit-log', 'Audit Log', '/audit-log', 'ScrollText', 'administration',
                       permissions=('view_audit_logs',)),
    MenuItemDefinition('integrations', 'Integrations', '/integrations', 'Plug', 'administration',
                       permissions=('manage_office365_integration',)),
    MenuItemDefinition('settings', 'Settings', '/settings', 'Settings', 'administration',
                       permissions=('configure_company_settings',)),
)

_MENU_ITEM_MAP = {item.key: item for item in DEFAULT_MENU_ITEMS}
MENU_ITEM_KEYS = tuple(_MENU_ITEM_MAP)


def get_menu_item(item_key) -> Optional[MenuItemDefinition]:
    if not isinstance(item_key, str):
        return None
    return _MENU_ITEM_MAP.get(item_key)
