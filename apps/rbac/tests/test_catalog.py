"""
Tests for the static permission and menu catalogs.
"""
from apps.companies.features import is_known_feature
from apps.rbac.catalog import (
    DEFAULT_MENU_HEADINGS, DEFAULT_MENU_ITEMS, PERMISSION_DEFINITIONS,
    PERMISSION_KEYS, PLATFORM_PERMISSION_KEYS, TENANT_PERMISSION_KEYS,
    get_menu_item, get_permission_definition, is_known_permission,
    permissions_by_category,
)


class TestPermissionCatalog:

    def test_keys_are_unique(self):
        assert len(PERMISSION_KEYS) == len(PERMISSION_DEFINITIONS)

    def test_scopes_partition_catalog(self):
        assert set(TENANT_PERMISSION_KEYS) | set(PLATFORM_PERMISSION_KEYS) == set(PERMISSION_KEYS)
        assert not set(TENANT_PERMISSION_KEYS) & set(PLATFORM_PERMISSION_KEYS)

    def test_admin_surfaces_are_platform_scoped(self):
        for key in ('manage_role_permissions', 'manage_menu', 'view_audit_logs'):
            assert key in PLATFORM_PERMISSION_KEYS

    def test_resource_and_action_split_on_first_underscore(self):
        definition = get_permission_definition('approve_hardware_requests')

        assert definition.action == 'approve'
        assert definition.resource == 'hardware_requests'

    def test_labels(self):
        assert get_permission_definition('manage_office365_integration').label == 'Manage Office 365 Integration'
        assert get_permission_definition('create_hr_request').label == 'Create HR Request'

    def test_unknown_keys(self):
        assert is_known_permission('launch_rockets') is False
        assert is_known_permission(None) is False
        assert get_permission_definition(42) is None

    def test_grouped_listing_covers_every_key(self):
        keys = [p.key for group in permissions_by_category() for p in group['permissions']]
        assert keys == list(PERMISSION_KEYS)


class TestMenuCatalog:

    def test_item_headings_exist(self):
        headings = {heading.key for heading in DEFAULT_MENU_HEADINGS}
        assert {item.heading for item in DEFAULT_MENU_ITEMS} <= headings

    def test_item_gates_use_catalog_keys(self):
        for item in DEFAULT_MENU_ITEMS:
            assert all(is_known_permission(key) for key in item.permissions), item.key
            assert item.feature is None or is_known_feature(item.feature), item.key

    def test_lookup(self):
        assert get_menu_item('audit-log').permissions == ('view_audit_logs',)
        assert get_menu_item('missing') is None
